from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional

from campaign_backend.app.models import (
    AllRegionsStatsResponse,
    CorridorStatsResponse,
    DailyStats,
    DriverStatus,
    InactiveBreakdown,
    StatsMeta,
)
from campaign_backend.app.registry import (
    FIXABLE_REASON_IDS,
    NOT_ELIGIBLE_REASON_IDS,
    DriverQuery,
    DriverRegistry,
)
from campaign_backend.app.services.pacing import compute_pacing
from campaign_backend.app.services.reactivation import reactivated_active_count
from campaign_backend.app.settings import CampaignSettings


def daily_buckets(
    rows: Iterable[tuple[datetime, str]], utc_offset_hours: int
) -> list[DailyStats]:
    """Group registrations by campaign-local calendar day."""
    shift = timedelta(hours=utc_offset_hours)
    buckets: dict[date, DailyStats] = {}
    for created_at, status in rows:
        day = (created_at + shift).date()
        bucket = buckets.setdefault(day, DailyStats(date=day))
        if status in DriverStatus.__members__:
            setattr(bucket, status, getattr(bucket, status) + 1)
        bucket.total += 1
    return [buckets[day] for day in sorted(buckets)]


def _inactive_breakdown(registry: DriverRegistry, query: DriverQuery) -> InactiveBreakdown:
    return InactiveBreakdown(
        reasons=registry.inactive_reason_counts(query),
        fixable=registry.count_with_reasons(query, FIXABLE_REASON_IDS),
        not_eligible=registry.count_with_reasons(query, NOT_ELIGIBLE_REASON_IDS),
    )


def _meta(campaign: CampaignSettings, start: date, scope: str, **extra) -> StatsMeta:
    return StatsMeta(
        data_start_date=campaign.data_start_date,
        from_date=start,
        campaign_start=campaign.campaign_start_date,
        campaign_end=campaign.campaign_end_date,
        scope=scope,
        **extra,
    )


def _pacing(campaign: CampaignSettings, current: int, now: Optional[datetime]):
    return compute_pacing(
        start_date=campaign.campaign_start_date,
        duration_days=campaign.duration_days,
        target=campaign.target_active_drivers,
        current=current,
        now=now,
        utc_offset_hours=campaign.utc_offset_hours,
    )


def corridor_stats(
    registry: DriverRegistry,
    campaign: CampaignSettings,
    *,
    tracked_ids: list[str],
    from_date: Optional[date] = None,
    now: Optional[datetime] = None,
) -> CorridorStatsResponse:
    start = from_date or campaign.data_start_date
    query = DriverQuery(
        created_from=datetime.combine(start, time.min),
        corridor=campaign.corridor,
    )
    summary = registry.status_summary(query)
    reactivated = reactivated_active_count(registry, tracked_ids)

    return CorridorStatsResponse(
        summary=summary,
        target=_pacing(campaign, summary.active, now),
        combined_target=_pacing(campaign, summary.active + reactivated, now),
        reactivated_active=reactivated,
        inactive_breakdown=_inactive_breakdown(registry, query),
        daily=daily_buckets(registry.created_statuses(query), campaign.utc_offset_hours),
        sub_regions=registry.sub_region_breakdown(query),
        meta=_meta(
            campaign,
            start,
            "corridor",
            region=campaign.corridor_region_name,
            region_id=campaign.corridor_region_id,
        ),
    )


def all_regions_stats(
    registry: DriverRegistry,
    campaign: CampaignSettings,
    *,
    from_date: Optional[date] = None,
    now: Optional[datetime] = None,
) -> AllRegionsStatsResponse:
    start = from_date or campaign.data_start_date
    since = datetime.combine(start, time.min)
    query = DriverQuery(created_from=since)
    summary = registry.status_summary(query)
    old_active = registry.status_summary(
        DriverQuery(created_before=since, statuses=[DriverStatus.active.value])
    ).active
    by_region = registry.region_breakdown(query, exclude_region_id=campaign.corridor_city_id)
    by_region.sort(key=lambda region: (-region.active, -region.total))

    return AllRegionsStatsResponse(
        summary=summary,
        old_active_drivers=old_active,
        target=_pacing(campaign, summary.active, now),
        inactive_breakdown=_inactive_breakdown(registry, query),
        by_region=by_region,
        daily=daily_buckets(registry.created_statuses(query), campaign.utc_offset_hours),
        meta=_meta(campaign, start, "all_regions"),
    )
