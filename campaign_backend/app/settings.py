from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import date


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _date_env(name: str, default: date) -> date:
    raw = os.getenv(name)
    if not raw or not raw.strip():
        return default
    try:
        return date.fromisoformat(raw.strip())
    except ValueError:
        return default


def _sqlite_url(path: str) -> str:
    return f"sqlite:///{path.replace(chr(92), '/')}"


@dataclass(frozen=True)
class SourceTags:
    lead: str = "cml5adx980000la04tuyyeh8e"
    regular_target: str = "cmkurqj560002kt043hp58v76"
    telegram_global: str = "telegram-global"
    telegram_ads: str = "telegram-ads"


@dataclass(frozen=True)
class CampaignSettings:
    corridor_region_id: str = "9"
    corridor_city_id: str = "2"
    corridor_region_name: str = "Toshkent Viloyati"
    driver_role_id: str = "2"
    data_start_date: date = date(2026, 1, 26)
    flyer_start_date: date = date(2026, 1, 26)
    campaign_start_date: date = date(2026, 1, 29)
    campaign_end_date: date = date(2026, 2, 27)
    duration_days: int = 30
    target_active_drivers: int = 250
    utc_offset_hours: int = 5
    source_tags: SourceTags = field(default_factory=SourceTags)

    @property
    def corridor(self) -> tuple[str, str]:
        return (self.corridor_region_id, self.corridor_city_id)


@dataclass(frozen=True)
class BudgetSettings:
    total_budget_usd: float = 3000.0
    usd_to_uzs: float = 12900.0
    sms_cost_per_unit_uzs: float = 190.0


@dataclass(frozen=True)
class Settings:
    app_env: str
    registry_database_url: str
    state_store_enabled: bool
    state_db_path: str
    state_database_url: str
    campaign: CampaignSettings
    budget: BudgetSettings


def load_campaign_settings() -> CampaignSettings:
    defaults = CampaignSettings()
    data_start = _date_env("DATA_START_DATE", defaults.data_start_date)
    tags = SourceTags(
        lead=os.getenv("SOURCE_TAG_LEAD", defaults.source_tags.lead).strip(),
        regular_target=os.getenv(
            "SOURCE_TAG_REGULAR_TARGET", defaults.source_tags.regular_target
        ).strip(),
        telegram_global=os.getenv(
            "SOURCE_TAG_TELEGRAM_GLOBAL", defaults.source_tags.telegram_global
        ).strip(),
        telegram_ads=os.getenv(
            "SOURCE_TAG_TELEGRAM_ADS", defaults.source_tags.telegram_ads
        ).strip(),
    )
    return CampaignSettings(
        corridor_region_id=os.getenv("CORRIDOR_REGION_ID", defaults.corridor_region_id).strip(),
        corridor_city_id=os.getenv("CORRIDOR_CITY_ID", defaults.corridor_city_id).strip(),
        corridor_region_name=os.getenv(
            "CORRIDOR_REGION_NAME", defaults.corridor_region_name
        ).strip(),
        driver_role_id=os.getenv("DRIVER_ROLE_ID", defaults.driver_role_id).strip(),
        data_start_date=data_start,
        flyer_start_date=_date_env("FLYER_START_DATE", data_start),
        campaign_start_date=_date_env("CAMPAIGN_START_DATE", defaults.campaign_start_date),
        campaign_end_date=_date_env("CAMPAIGN_END_DATE", defaults.campaign_end_date),
        duration_days=max(1, _int_env("CAMPAIGN_DURATION_DAYS", defaults.duration_days)),
        target_active_drivers=max(
            1, _int_env("TARGET_ACTIVE_DRIVERS", defaults.target_active_drivers)
        ),
        utc_offset_hours=max(-12, min(14, _int_env("UTC_OFFSET_HOURS", defaults.utc_offset_hours))),
        source_tags=tags,
    )


def load_budget_settings() -> BudgetSettings:
    defaults = BudgetSettings()
    return BudgetSettings(
        total_budget_usd=_float_env("TOTAL_BUDGET_USD", defaults.total_budget_usd),
        usd_to_uzs=max(1.0, _float_env("USD_TO_UZS", defaults.usd_to_uzs)),
        sms_cost_per_unit_uzs=max(
            0.0, _float_env("SMS_COST_PER_UNIT_UZS", defaults.sms_cost_per_unit_uzs)
        ),
    )


def load_settings() -> Settings:
    registry_database_url = os.getenv("REGISTRY_DATABASE_URL", "").strip()
    if not registry_database_url:
        registry_database_url = _sqlite_url("data/driver_registry.sqlite3")
    state_db_path = os.getenv("STATE_DB_PATH", "data/campaign_state.sqlite3").strip()
    state_database_url = os.getenv("STATE_DATABASE_URL", "").strip()
    if not state_database_url:
        state_database_url = _sqlite_url(state_db_path)
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        registry_database_url=registry_database_url,
        state_store_enabled=_bool_env("STATE_STORE_ENABLED", True),
        state_db_path=state_db_path,
        state_database_url=state_database_url,
        campaign=load_campaign_settings(),
        budget=load_budget_settings(),
    )
