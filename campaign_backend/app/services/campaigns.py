from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from campaign_backend.app.models import (
    CampaignCreateRequest,
    CampaignExpense,
    CampaignExpenseRequest,
    CampaignRecord,
    CampaignsDocument,
    CampaignUpdateRequest,
    SmsBatch,
    SmsBatchRequest,
    utc_now,
)
from campaign_backend.app.services.budget import split_amount
from campaign_backend.app.services.pacing import campaign_today
from campaign_backend.app.store import new_id

logger = logging.getLogger(__name__)


class CampaignNotFoundError(LookupError):
    pass


def _index_of(document: CampaignsDocument, campaign_id: str) -> int:
    for index, campaign in enumerate(document.campaigns):
        if campaign.id == campaign_id:
            return index
    raise CampaignNotFoundError(f"campaign not found: {campaign_id}")


def create_campaign(
    document: CampaignsDocument,
    request: CampaignCreateRequest,
    *,
    now: Optional[datetime] = None,
    utc_offset_hours: int = 5,
) -> tuple[CampaignsDocument, CampaignRecord]:
    stamp = now or utc_now()
    campaign = CampaignRecord(
        id=new_id("cmp"),
        name=request.name.strip(),
        channel=request.channel,
        start_date=request.start_date or campaign_today(stamp, utc_offset_hours),
        end_date=request.end_date,
        budget=request.budget,
        spent=request.spent,
        status=request.status,
        notes=request.notes,
    )
    logger.info("campaign_created id=%s channel=%s", campaign.id, campaign.channel.value)
    updated = document.model_copy(
        update={"campaigns": [*document.campaigns, campaign], "last_updated": stamp}
    )
    return updated, campaign


def update_campaign(
    document: CampaignsDocument,
    campaign_id: str,
    request: CampaignUpdateRequest,
    *,
    now: Optional[datetime] = None,
) -> tuple[CampaignsDocument, CampaignRecord]:
    """Applies only the fields present in the request; an explicit null clears end_date."""
    index = _index_of(document, campaign_id)
    changes = {
        name: getattr(request, name)
        for name in request.model_fields_set
        if getattr(request, name) is not None or name == "end_date"
    }
    campaign = document.campaigns[index].model_copy(update=changes)
    campaigns = list(document.campaigns)
    campaigns[index] = campaign
    updated = document.model_copy(
        update={"campaigns": campaigns, "last_updated": now or utc_now()}
    )
    return updated, campaign


def add_expense(
    document: CampaignsDocument,
    campaign_id: str,
    request: CampaignExpenseRequest,
    *,
    now: Optional[datetime] = None,
    utc_offset_hours: int = 5,
) -> tuple[CampaignsDocument, list[CampaignExpense]]:
    """Books a ranged expense as one line per day and adds the full amount to spent."""
    stamp = now or utc_now()
    index = _index_of(document, campaign_id)
    start = request.date_from or campaign_today(stamp, utc_offset_hours)
    end = request.date_to or start
    lines = split_amount(request.amount, start, end)
    description = request.description.strip()
    if len(lines) > 1:
        description = f"{description} ({start.isoformat()} - {end.isoformat()})".strip()

    expenses = [
        CampaignExpense(
            id=new_id("cexp"),
            date=line_date,
            campaign_id=campaign_id,
            amount=amount,
            description=description,
        )
        for line_date, amount in lines
    ]
    campaign = document.campaigns[index]
    campaigns = list(document.campaigns)
    campaigns[index] = campaign.model_copy(update={"spent": campaign.spent + request.amount})
    updated = document.model_copy(
        update={
            "campaigns": campaigns,
            "daily_expenses": [*document.daily_expenses, *expenses],
            "last_updated": stamp,
        }
    )
    return updated, expenses


def add_sms_batch(
    document: CampaignsDocument,
    campaign_id: str,
    request: SmsBatchRequest,
    *,
    now: Optional[datetime] = None,
    utc_offset_hours: int = 5,
) -> tuple[CampaignsDocument, SmsBatch]:
    stamp = now or utc_now()
    _index_of(document, campaign_id)
    batch = SmsBatch(
        id=new_id("smsb"),
        campaign_id=campaign_id,
        sent_date=request.sent_date or campaign_today(stamp, utc_offset_hours),
        phone_numbers=request.phone_numbers,
        total_sent=request.total_sent or len(request.phone_numbers),
        delivered=request.delivered,
        notes=request.notes,
    )
    updated = document.model_copy(
        update={"sms_batches": [*document.sms_batches, batch], "last_updated": stamp}
    )
    return updated, batch
