from __future__ import annotations

import math
from datetime import date, datetime, timedelta
from typing import Optional

from campaign_backend.app.models import CampaignPacing, utc_now


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def round_tenth(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def campaign_today(now: Optional[datetime] = None, utc_offset_hours: int = 5) -> date:
    """Calendar date at the campaign's fixed UTC offset; `now` is naive UTC."""
    current = now or utc_now()
    if current.tzinfo is not None:
        current = current.replace(tzinfo=None) - current.utcoffset()
    return (current + timedelta(hours=utc_offset_hours)).date()


def days_passed(start_date: date, today: date) -> int:
    return max(1, (today - start_date).days + 1)


def compute_pacing(
    *,
    start_date: date,
    duration_days: int,
    target: int,
    current: int,
    now: Optional[datetime] = None,
    utc_offset_hours: int = 5,
) -> CampaignPacing:
    duration = max(1, duration_days)
    passed = days_passed(start_date, campaign_today(now, utc_offset_hours))
    remaining = max(0, duration - passed)

    daily_target = target / duration
    expected = round_half_up(daily_target * passed)
    difference = current - expected
    daily_required = (target - current) / remaining if remaining > 0 else 0.0
    current_rate = current / passed
    progress = (current / target) * 100 if target else 0.0

    return CampaignPacing(
        goal=target,
        current=current,
        progress=round_tenth(progress),
        days_passed=passed,
        days_remaining=remaining,
        daily_required=round_tenth(daily_required),
        current_rate=round_tenth(current_rate),
        daily_target=round_tenth(daily_target),
        expected_by_today=expected,
        difference=difference,
        on_track=difference >= 0,
    )
