from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from campaign_backend.app.main import create_app
from campaign_backend.app.registry import DriverRegistry
from campaign_backend.app.settings import CampaignSettings

LEAD_TAG = "cml5adx980000la04tuyyeh8e"
REGULAR_TAG = "cmkurqj560002kt043hp58v76"

REGIONS = [
    {"id": "2", "name": "Toshkent Shahri"},
    {"id": "5", "name": "Samarqand"},
    {"id": "9", "name": "Toshkent Viloyati"},
]

SUB_REGIONS = [
    {"id": "91", "name": "Chirchiq", "region_id": "9"},
    {"id": "92", "name": "Angren", "region_id": "9"},
    {"id": "51", "name": "Urgut", "region_id": "5"},
]

REASONS = [
    {"id": "59", "title": "Shaxsiy ma'lumotlarda xato"},
    {"id": "60", "title": "Avtomobil ma'lumotlarida xato"},
    {"id": "65", "title": "Avtomobil talabga javob bermaydi"},
]


def _customer(
    id: str,
    first_name,
    phone: str,
    status: str,
    created_at: datetime,
    *,
    last_name=None,
    role_id: str = "2",
    tag=None,
) -> dict:
    return {
        "id": id,
        "first_name": first_name,
        "last_name": last_name,
        "phone_number": phone,
        "status": status,
        "role_id": role_id,
        "created_at": created_at,
        "register_sources_comment": tag,
    }


def _info(customer_id: str, departure: str, arrival: str, *, home=None, departure_sub=None) -> dict:
    return {
        "customer_id": customer_id,
        "region_id": home or departure,
        "sub_region_id": departure_sub,
        "departure_region_id": departure,
        "departure_sub_region_id": departure_sub,
        "arrival_region_id": arrival,
        "arrival_sub_region_id": None,
    }


CUSTOMERS = [
    # Registered after the data start date (2026-01-26).
    _customer(
        "d1", "Ali", "+998 90 111 11 11", "active", datetime(2026, 1, 28, 10), last_name="Valiyev"
    ),
    _customer("d2", "Bobur", "998902222222", "pending", datetime(2026, 1, 29, 20)),
    _customer("d3", None, "998903333333", "pending", datetime(2026, 1, 30, 9)),
    _customer(
        "d4", "Sardor", "998904444444", "active", datetime(2026, 1, 31, 9), tag="telegram-ads"
    ),
    _customer("d5", "Jamshid", "998905555555", "active", datetime(2026, 2, 1, 9), tag=LEAD_TAG),
    _customer("d6", "  ", "998906666666", "inactive", datetime(2026, 2, 2, 9), tag=REGULAR_TAG),
    _customer("d7", "Nodir", "998908888888", "pending", datetime(2026, 2, 3, 9)),
    _customer("c1", "Client", "998907777777", "active", datetime(2026, 2, 1, 12), role_id="1"),
    # Pre-campaign drivers.
    _customer("o1", "Olim", "998911111111", "inactive", datetime(2025, 12, 1, 9)),
    _customer("o2", "Orif", "998912222222", "inactive", datetime(2025, 12, 2, 9)),
    _customer("o3", "Otabek", "998913333333", "pending", datetime(2025, 12, 3, 9)),
    _customer("o4", "Oybek", "998914444444", "active", datetime(2025, 12, 4, 9)),
    _customer("o5", "Ozod", "998915555555", "inactive", datetime(2025, 12, 5, 9)),
]

DRIVER_INFOS = [
    _info("d1", "9", "2", departure_sub="91"),
    _info("d2", "2", "9"),
    _info("d3", "9", "2", departure_sub="91"),
    _info("d4", "5", "2", departure_sub="51"),
    _info("d5", "9", "2", departure_sub="92"),
    _info("d6", "5", "2"),
    _info("o1", "9", "2"),
    _info("o2", "5", "2", home="9"),
    _info("o3", "2", "9"),
    _info("o4", "9", "2"),
    _info("o5", "5", "1"),
]

MODERATION_REASONS = [
    {"customer_id": "d6", "reason_id": "60"},
    {"customer_id": "o1", "reason_id": "59"},
    {"customer_id": "o2", "reason_id": "65"},
    {"customer_id": "o5", "reason_id": "59"},
]


def seed_registry(registry: DriverRegistry) -> None:
    registry.create_schema()
    with registry.engine.begin() as conn:
        conn.execute(registry.regions.insert(), REGIONS)
        conn.execute(registry.sub_regions.insert(), SUB_REGIONS)
        conn.execute(registry.reasons.insert(), REASONS)
        conn.execute(registry.customers.insert(), CUSTOMERS)
        conn.execute(registry.driver_infos.insert(), DRIVER_INFOS)
        conn.execute(registry.customer_moderation_reasons.insert(), MODERATION_REASONS)


def sqlite_url(path: Path) -> str:
    return f"sqlite:///{path.as_posix()}"


@pytest.fixture()
def registry_url(tmp_path: Path) -> str:
    url = sqlite_url(tmp_path / "registry.sqlite3")
    seed_registry(DriverRegistry(url))
    return url


@pytest.fixture()
def registry(registry_url: str) -> DriverRegistry:
    return DriverRegistry(registry_url)


@pytest.fixture()
def campaign() -> CampaignSettings:
    return CampaignSettings()


@pytest.fixture()
def app_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, registry_url: str) -> Path:
    state_path = tmp_path / "state" / "campaign_state.sqlite3"
    monkeypatch.setenv("REGISTRY_DATABASE_URL", registry_url)
    monkeypatch.setenv("STATE_STORE_ENABLED", "true")
    monkeypatch.setenv("STATE_DATABASE_URL", sqlite_url(state_path))
    monkeypatch.setenv("DATA_START_DATE", "2026-01-26")
    monkeypatch.setenv("CAMPAIGN_START_DATE", "2026-01-29")
    monkeypatch.setenv("USD_TO_UZS", "12900")
    monkeypatch.setenv("SMS_COST_PER_UNIT_UZS", "190")
    monkeypatch.setenv("TOTAL_BUDGET_USD", "3000")
    return state_path


@pytest.fixture()
def client(app_env: Path) -> TestClient:
    return TestClient(create_app())
