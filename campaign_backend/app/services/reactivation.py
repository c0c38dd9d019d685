from __future__ import annotations

import logging
from datetime import datetime, time
from typing import Iterable, Optional

from campaign_backend.app.models import (
    DriverRecord,
    DriverStatus,
    ReactivationCallStatus,
    ReactivationSummary,
    TrackedDriversDocument,
    TrackingDocument,
    TrackingEntry,
    TrackingStats,
    TrackingUpdateRequest,
    utc_now,
)
from campaign_backend.app.registry import DriverQuery, DriverRegistry
from campaign_backend.app.services.funnel import conversion_rate
from campaign_backend.app.settings import CampaignSettings

logger = logging.getLogger(__name__)

REACTIVATION_STATUSES = (DriverStatus.inactive.value, DriverStatus.pending.value)

# Alphabetical status DESC: pending, inactive, blocked, active.
_STATUS_ORDER = {
    DriverStatus.pending: 0,
    DriverStatus.inactive: 1,
    DriverStatus.blocked: 2,
    DriverStatus.active: 3,
}


def _old_driver_query(campaign: CampaignSettings, **overrides) -> DriverQuery:
    return DriverQuery(
        created_before=datetime.combine(campaign.data_start_date, time.min),
        corridor=campaign.corridor,
        home_region_id=campaign.corridor_region_id,
        **overrides,
    )


def reactivation_candidates(
    registry: DriverRegistry,
    campaign: CampaignSettings,
    *,
    tracked_ids: Iterable[str] = (),
    status: Optional[DriverStatus] = None,
) -> list[DriverRecord]:
    """Pre-campaign corridor drivers worth a call, plus tracked ones already converted."""
    if status is not None:
        return registry.fetch_drivers(
            _old_driver_query(campaign, statuses=[status.value]), with_reasons=True
        )

    drivers = registry.fetch_drivers(
        _old_driver_query(campaign, statuses=list(REACTIVATION_STATUSES)), with_reasons=True
    )
    tracked = list(dict.fromkeys(tracked_ids))
    if tracked:
        drivers.extend(
            registry.fetch_drivers(
                _old_driver_query(
                    campaign, statuses=[DriverStatus.active.value], driver_ids=tracked
                )
            )
        )
    drivers.sort(key=lambda d: d.created_at, reverse=True)
    drivers.sort(key=lambda d: _STATUS_ORDER[d.status])
    return drivers


def summarize_candidates(drivers: list[DriverRecord]) -> ReactivationSummary:
    active = sum(1 for d in drivers if d.status == DriverStatus.active)
    return ReactivationSummary(
        total=len(drivers),
        inactive=sum(1 for d in drivers if d.status == DriverStatus.inactive),
        active=active,
        pending=sum(1 for d in drivers if d.status == DriverStatus.pending),
        conversion_rate=conversion_rate(active, len(drivers)),
    )


def _recompute_stats(entries: dict[str, TrackingEntry], now: datetime) -> TrackingStats:
    values = list(entries.values())
    return TrackingStats(
        total_called=sum(
            1 for e in values if e.call_status != ReactivationCallStatus.not_called
        ),
        total_converted=sum(
            1 for e in values if e.call_status == ReactivationCallStatus.converted
        ),
        last_updated=now,
    )


def update_tracking_entry(
    document: TrackingDocument,
    request: TrackingUpdateRequest,
    *,
    now: Optional[datetime] = None,
) -> TrackingDocument:
    stamp = now or utc_now()
    existing = document.entries.get(request.driver_id) or TrackingEntry(
        driver_id=request.driver_id, created_at=stamp, updated_at=stamp
    )
    status = request.call_status
    contacted = status is not None and status != ReactivationCallStatus.not_called

    changes: dict = {"updated_at": stamp}
    if status is not None:
        changes["call_status"] = status
    if request.notes is not None:
        changes["notes"] = request.notes
    if contacted:
        changes["last_contact_date"] = stamp
        if status != existing.call_status:
            changes["call_attempts"] = existing.call_attempts + 1
    entry = existing.model_copy(update=changes)
    entries = {**document.entries, request.driver_id: entry}
    return document.model_copy(
        update={"entries": entries, "stats": _recompute_stats(entries, stamp)}
    )


def remove_tracking_entry(
    document: TrackingDocument, driver_id: str
) -> tuple[TrackingDocument, bool]:
    if driver_id not in document.entries:
        return document, False
    entries = {key: value for key, value in document.entries.items() if key != driver_id}
    return (
        document.model_copy(
            update={"entries": entries, "stats": _recompute_stats(entries, utc_now())}
        ),
        True,
    )


def add_tracked_ids(
    document: TrackedDriversDocument, driver_ids: Iterable[str]
) -> tuple[TrackedDriversDocument, int]:
    present = set(document.driver_ids)
    appended = []
    for driver_id in driver_ids:
        value = driver_id.strip()
        if value and value not in present:
            present.add(value)
            appended.append(value)
    updated = document.model_copy(
        update={"driver_ids": [*document.driver_ids, *appended], "updated_at": utc_now()}
    )
    return updated, len(appended)


def remove_tracked_id(
    document: TrackedDriversDocument, driver_id: str
) -> tuple[TrackedDriversDocument, bool]:
    if driver_id not in document.driver_ids:
        return document, False
    kept = [value for value in document.driver_ids if value != driver_id]
    return document.model_copy(update={"driver_ids": kept, "updated_at": utc_now()}), True


def is_sync_eligible(driver: DriverRecord) -> bool:
    if driver.status == DriverStatus.pending:
        return True
    if driver.status == DriverStatus.inactive:
        return any(reason.is_fixable for reason in driver.inactive_reasons)
    return False


def sync_tracked_ids(
    document: TrackedDriversDocument, candidates: Iterable[DriverRecord]
) -> tuple[TrackedDriversDocument, int]:
    eligible = [driver.id for driver in candidates if is_sync_eligible(driver)]
    updated, added = add_tracked_ids(document, eligible)
    logger.info("tracked_ids_synced added=%s total=%s", added, len(updated.driver_ids))
    return updated, added


def all_tracked_ids(
    tracked: TrackedDriversDocument, tracking: TrackingDocument
) -> list[str]:
    return list(dict.fromkeys([*tracked.driver_ids, *tracking.entries.keys()]))


def reactivated_active_count(registry: DriverRegistry, driver_ids: list[str]) -> int:
    if not driver_ids:
        return 0
    statuses = registry.fetch_statuses(driver_ids)
    return sum(1 for status in statuses.values() if status == DriverStatus.active)
