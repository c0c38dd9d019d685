from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from campaign_backend.app.models import (
    CallCenterDocument,
    CallCenterEntryUpdateRequest,
    CallCenterEntryView,
    CallCenterReportResponse,
    CallCenterStats,
    CallCenterStatus,
    CallConversion,
    ContactEntry,
    DriverRecord,
    DriverStatus,
    utc_now,
)
from campaign_backend.app.services.contact_import import EmptyContactListError, parse_contact_list
from campaign_backend.app.services.funnel import conversion_rate
from campaign_backend.app.services.matcher import index_by_key
from campaign_backend.app.services.phones import last_nine, normalize_phone

logger = logging.getLogger(__name__)


class ContactNotFoundError(LookupError):
    pass


def import_call_list(text: str, *, now: Optional[datetime] = None) -> CallCenterDocument:
    rows = parse_contact_list(text, with_message=True)
    if not rows:
        raise EmptyContactListError("no importable phone numbers found")
    logger.info("call_list_imported entries=%s", len(rows))
    return CallCenterDocument(
        entries=[ContactEntry(phone=row.phone, message=row.message) for row in rows],
        uploaded_at=now or utc_now(),
    )


def update_entry(
    document: CallCenterDocument,
    request: CallCenterEntryUpdateRequest,
    *,
    now: Optional[datetime] = None,
) -> CallCenterDocument:
    wanted = normalize_phone(request.phone)
    for index, entry in enumerate(document.entries):
        if normalize_phone(entry.phone) != wanted:
            continue
        changes: dict = {}
        if request.call_status is not None:
            changes["call_status"] = request.call_status
            changes["called_at"] = now or utc_now()
        # Explicit null clears the manual classification; omission keeps it.
        if "manual_type" in request.model_fields_set:
            changes["manual_type"] = request.manual_type
        if "notes" in request.model_fields_set:
            changes["notes"] = request.notes
        entries = list(document.entries)
        entries[index] = entry.model_copy(update=changes)
        return document.model_copy(update={"entries": entries})
    raise ContactNotFoundError(f"phone not in call list: {request.phone}")


def reset_calls(document: CallCenterDocument) -> CallCenterDocument:
    entries = [
        entry.model_copy(
            update={"call_status": CallCenterStatus.not_called, "called_at": None, "notes": None}
        )
        for entry in document.entries
    ]
    return document.model_copy(update={"entries": entries})


def _entry_view(
    entry: ContactEntry, record: Optional[DriverRecord], driver_role_id: str
) -> CallCenterEntryView:
    is_driver = record is not None and record.role_id == driver_role_id
    return CallCenterEntryView(
        phone=entry.phone,
        message=entry.message,
        manual_type=entry.manual_type,
        call_status=entry.call_status,
        called_at=entry.called_at,
        notes=entry.notes,
        is_registered=record is not None,
        is_driver=is_driver,
        is_full_register=record is not None and record.is_full_register,
        driver_status=record.status if is_driver else None,
        user_name=record.full_name if record is not None else None,
    )


def build_report(
    document: CallCenterDocument,
    directory: list[DriverRecord],
    *,
    driver_role_id: str = "2",
) -> CallCenterReportResponse:
    keys = {last_nine(entry.phone) for entry in document.entries}
    lookup = index_by_key(directory, keys)
    views = [
        _entry_view(entry, lookup.get(last_nine(entry.phone)), driver_role_id)
        for entry in document.entries
    ]

    called = [v for v in views if v.call_status != CallCenterStatus.not_called]
    drivers = [v for v in views if v.is_driver]
    called_registered = sum(1 for v in called if v.is_registered)

    stats = CallCenterStats(
        total=len(views),
        needs_call=sum(
            1
            for v in views
            if not v.is_full_register and v.call_status == CallCenterStatus.not_called
        ),
        called=len(called),
        full_registered=sum(1 for v in views if v.is_full_register),
        will_register=sum(1 for v in views if v.call_status == CallCenterStatus.will_register),
        not_reachable=sum(1 for v in views if v.call_status == CallCenterStatus.not_reachable),
        drivers=len(drivers),
        active_drivers=sum(1 for v in drivers if v.driver_status == DriverStatus.active),
        call_conversion=CallConversion(
            registered=called_registered,
            login_only=sum(1 for v in called if v.is_registered and not v.is_full_register),
            full_register=sum(1 for v in called if v.is_full_register),
            drivers=sum(1 for v in called if v.is_driver),
            active_drivers=sum(
                1 for v in called if v.is_driver and v.driver_status == DriverStatus.active
            ),
            conversion_rate=conversion_rate(called_registered, len(called)),
        ),
    )
    return CallCenterReportResponse(
        uploaded=True,
        uploaded_at=document.uploaded_at,
        stats=stats,
        entries=views,
    )
