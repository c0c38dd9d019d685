from __future__ import annotations

import logging
from datetime import datetime, time
from typing import Optional

from campaign_backend.app.models import (
    BudgetCategory,
    BudgetLedgerDocument,
    Channel,
    ConversionStats,
    CostBreakdown,
    CostedFunnel,
    CostOnly,
    DriverRecord,
    DriverStatus,
    FlyerTelegramResponse,
    LeadTargetFunnel,
    RegularTargetFunnel,
    SmsMatchResponse,
    SmsMatchSummary,
    SmsReportResponse,
    SmsUploadDocument,
    SmsUploadResponse,
    StatusSummary,
    TargetCost,
    TargetReportResponse,
    TargetStatsDocument,
    TargetStatsUpdateRequest,
    utc_now,
)
from campaign_backend.app.registry import DriverQuery, DriverRegistry
from campaign_backend.app.services.budget import (
    LEAD_TARGET_CATEGORIES,
    REGULAR_TARGET_CATEGORIES,
    category_spend_usd,
    per_unit_cost,
)
from campaign_backend.app.services.contact_import import (
    EmptyContactListError,
    parse_contact_list,
    unique_phones,
)
from campaign_backend.app.services.funnel import (
    AttributionContext,
    build_funnel,
    channel_funnels,
    conversion_rate,
    is_corridor_route,
)
from campaign_backend.app.services.matcher import build_key_set, match_drivers
from campaign_backend.app.services.phones import last_nine, normalize_phone
from campaign_backend.app.settings import BudgetSettings, CampaignSettings

logger = logging.getLogger(__name__)


def _day_start(value) -> datetime:
    return datetime.combine(value, time.min)


def _conversion_stats(drivers: list[DriverRecord]) -> ConversionStats:
    return ConversionStats(
        total_matched=len(drivers),
        converted=sum(1 for d in drivers if d.status == DriverStatus.active),
        pending=sum(1 for d in drivers if d.status == DriverStatus.pending),
        inactive=sum(1 for d in drivers if d.status == DriverStatus.inactive),
    )


def _sms_cost(total_sent: int, budget: BudgetSettings) -> CostBreakdown:
    uzs = total_sent * budget.sms_cost_per_unit_uzs
    return CostBreakdown(uzs=uzs, usd=uzs / budget.usd_to_uzs)


# SMS


def upload_sms_list(
    registry: DriverRegistry,
    text: str,
    *,
    phone_column: int = 0,
    now: Optional[datetime] = None,
) -> SmsUploadDocument:
    phones = unique_phones(parse_contact_list(text, phone_column=phone_column))
    if not phones:
        raise EmptyContactListError("no importable phone numbers found")
    drivers = registry.fetch_drivers(DriverQuery(require_phone=True))
    matched = [match.record for match in match_drivers(phones, drivers)]
    logger.info("sms_list_uploaded phones=%s matched=%s", len(phones), len(matched))
    return SmsUploadDocument(
        phone_numbers=phones,
        uploaded_at=now or utc_now(),
        total_sent=len(phones),
        matched_drivers=[driver.id for driver in matched],
        conversion_stats=_conversion_stats(matched),
    )


def sms_upload_response(document: SmsUploadDocument, budget: BudgetSettings) -> SmsUploadResponse:
    stats = document.conversion_stats
    return SmsUploadResponse(
        total_numbers=document.total_sent,
        matched_drivers=len(document.matched_drivers),
        conversion_stats=stats,
        cost=_sms_cost(document.total_sent, budget),
        conversion_rate=conversion_rate(stats.converted, stats.total_matched),
    )


def _one_per_phone(drivers: list[DriverRecord]) -> list[DriverRecord]:
    # Newest registration wins when several accounts share a phone key.
    by_key: dict[str, DriverRecord] = {}
    for driver in sorted(drivers, key=lambda d: d.created_at):
        by_key[last_nine(driver.phone_number)] = driver
    return list(by_key.values())


def build_sms_report(
    registry: DriverRegistry,
    document: SmsUploadDocument,
    campaign: CampaignSettings,
    budget: BudgetSettings,
) -> SmsReportResponse:
    stats = document.conversion_stats
    if document.matched_drivers:
        current = registry.fetch_drivers(DriverQuery(driver_ids=document.matched_drivers))
        stats = _conversion_stats(current)

    recent = registry.fetch_drivers(
        DriverQuery(created_from=_day_start(campaign.data_start_date), require_phone=True)
    )
    cohort = _one_per_phone([m.record for m in match_drivers(document.phone_numbers, recent)])
    funnel = build_funnel(cohort, campaign.corridor, contacted=document.total_sent)
    cost = _sms_cost(document.total_sent, budget)

    return SmsReportResponse(
        uploaded=True,
        uploaded_at=document.uploaded_at,
        total_sent=document.total_sent,
        matched_drivers=len(document.matched_drivers),
        conversion_stats=stats,
        funnel=funnel,
        cost=cost,
        cost_per_sms_uzs=budget.sms_cost_per_unit_uzs,
        cost_per_active_usd=per_unit_cost(cost.usd, funnel.without_route_filter.active),
        conversion_rate=conversion_rate(stats.converted, stats.total_matched),
    )


def match_sms_phones(
    registry: DriverRegistry, phone_numbers: list[str], campaign: CampaignSettings
) -> SmsMatchResponse:
    normalized = [normalize_phone(phone) for phone in phone_numbers if phone and phone.strip()]
    if not normalized:
        raise EmptyContactListError("no phone numbers provided")
    drivers = registry.fetch_drivers(DriverQuery(require_phone=True))
    matched = [match.record for match in match_drivers(normalized, drivers)]
    matched_keys = build_key_set(d.phone_number or "" for d in matched)
    not_registered = [phone for phone in normalized if last_nine(phone) not in matched_keys]

    breakdown = StatusSummary(total=len(matched))
    for driver in matched:
        setattr(breakdown, driver.status.value, getattr(breakdown, driver.status.value) + 1)

    return SmsMatchResponse(
        summary=SmsMatchSummary(
            total_sent=len(normalized),
            registered=len(matched),
            not_registered=len(not_registered),
            in_corridor_route=sum(1 for d in matched if is_corridor_route(d, campaign.corridor)),
            conversion_rate=conversion_rate(len(matched), len(normalized)),
        ),
        status_breakdown=breakdown,
        matched=matched,
        not_registered=not_registered,
    )


# Target ads


def merge_target_stats(
    document: TargetStatsDocument,
    request: TargetStatsUpdateRequest,
    *,
    now: Optional[datetime] = None,
) -> TargetStatsDocument:
    changes = request.model_dump(exclude_none=True)
    changes["updated_at"] = now or utc_now()
    return document.model_copy(update=changes)


def target_cost(ledger: BudgetLedgerDocument, rate: float) -> TargetCost:
    regular = category_spend_usd(ledger, REGULAR_TARGET_CATEGORIES, rate)
    lead = category_spend_usd(ledger, LEAD_TARGET_CATEGORIES, rate)
    return TargetCost(regular_usd=regular, lead_usd=lead, total_usd=regular + lead)


def build_target_report(
    registry: DriverRegistry,
    manual: TargetStatsDocument,
    ledger: BudgetLedgerDocument,
    campaign: CampaignSettings,
    budget: BudgetSettings,
) -> TargetReportResponse:
    tags = campaign.source_tags
    rows = registry.fetch_drivers(
        DriverQuery(
            created_from=_day_start(campaign.data_start_date),
            source_tags=[tags.lead, tags.regular_target],
            require_phone=True,
        )
    )
    lead = build_funnel([r for r in rows if r.source_tag == tags.lead], campaign.corridor)
    regular = build_funnel(
        [r for r in rows if r.source_tag == tags.regular_target], campaign.corridor
    )
    cost = target_cost(ledger, budget.usd_to_uzs)
    active = lead.without_route_filter.active + regular.without_route_filter.active
    return TargetReportResponse(
        lead=LeadTargetFunnel(
            **lead.model_dump(),
            views=manual.lead_views,
            installs=manual.lead_installs,
        ),
        regular=RegularTargetFunnel(
            **regular.model_dump(),
            views=manual.regular_views,
            installs=manual.regular_installs,
            registrations=manual.regular_registrations,
        ),
        target_cost=cost,
        cost_per_active_usd=per_unit_cost(cost.total_usd, active),
    )


# Flyer / Telegram


def _costed(funnel, usd: float, rate: float) -> CostedFunnel:
    return CostedFunnel(
        **funnel.model_dump(),
        cost_usd=usd,
        cost_uzs=usd * rate,
        cost_per_active_usd=per_unit_cost(usd, funnel.without_route_filter.active),
    )


def build_flyer_telegram_report(
    registry: DriverRegistry,
    sms: SmsUploadDocument,
    ledger: BudgetLedgerDocument,
    campaign: CampaignSettings,
    budget: BudgetSettings,
) -> FlyerTelegramResponse:
    rows = registry.fetch_drivers(
        DriverQuery(created_from=_day_start(campaign.flyer_start_date), require_phone=True)
    )
    context = AttributionContext(
        tags=campaign.source_tags,
        corridor=campaign.corridor,
        sms_keys=frozenset(build_key_set(sms.phone_numbers)),
    )
    funnels = channel_funnels(rows, context)
    rate = budget.usd_to_uzs
    flyer_usd = category_spend_usd(ledger, [BudgetCategory.flyers], rate)
    telegram_usd = category_spend_usd(ledger, [BudgetCategory.telegram], rate)
    # Telegram spend is booked as one line; the global channel is organic.
    return FlyerTelegramResponse(
        flyer=_costed(funnels[Channel.flyer], flyer_usd, rate),
        telegram_global=_costed(funnels[Channel.telegram_global], 0.0, rate),
        telegram_ads=_costed(funnels[Channel.telegram_ads], telegram_usd, rate),
        telegram_total=CostOnly(cost_usd=telegram_usd, cost_uzs=telegram_usd * rate),
    )
