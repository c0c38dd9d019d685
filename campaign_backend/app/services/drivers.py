from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta
from typing import Optional

from campaign_backend.app.models import DriverListResponse, DriverStatus, Pagination
from campaign_backend.app.registry import DriverQuery, DriverRegistry
from campaign_backend.app.settings import CampaignSettings


def driver_list_query(
    campaign: CampaignSettings,
    *,
    status: Optional[DriverStatus] = None,
    region_id: Optional[str] = None,
    sub_region_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    route_region_id: Optional[str] = None,
) -> DriverQuery:
    """Filters for the driver list; date_to includes the whole day."""
    return DriverQuery(
        created_from=datetime.combine(date_from, time.min) if date_from else None,
        created_before=(
            datetime.combine(date_to + timedelta(days=1), time.min) if date_to else None
        ),
        statuses=[status.value] if status else None,
        corridor=(route_region_id, campaign.corridor_city_id) if route_region_id else None,
        region_id=region_id or None,
        sub_region_id=sub_region_id or None,
    )


def list_drivers(
    registry: DriverRegistry,
    query: DriverQuery,
    *,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 20,
) -> DriverListResponse:
    total = registry.count_drivers(query)
    drivers = registry.list_drivers_page(
        query,
        sort_by=sort_by,
        descending=sort_order.lower() != "asc",
        limit=limit,
        offset=(page - 1) * limit,
    )
    return DriverListResponse(
        data=drivers,
        pagination=Pagination(
            page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)
        ),
    )
