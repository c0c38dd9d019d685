from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Sequence

from campaign_backend.app.models import (
    Channel,
    ChannelFunnel,
    DriverRecord,
    DriverStatus,
    FunnelStats,
)
from campaign_backend.app.services.phones import last_nine
from campaign_backend.app.settings import SourceTags

__all__ = [
    "ATTRIBUTION_RULES",
    "AttributionContext",
    "ChannelFunnel",
    "FunnelStats",
    "attribute_channel",
    "build_funnel",
    "channel_funnels",
    "conversion_rate",
    "is_corridor_route",
]


@dataclass(frozen=True)
class AttributionContext:
    tags: SourceTags
    corridor: tuple[str, str]
    sms_keys: frozenset[str] = field(default_factory=frozenset)


def is_corridor_route(row: DriverRecord, corridor: tuple[str, str]) -> bool:
    region_id, city_id = corridor
    pair = (row.departure_region_id, row.arrival_region_id)
    return pair == (region_id, city_id) or pair == (city_id, region_id)


def _stage_counts(rows: Sequence[DriverRecord]) -> FunnelStats:
    full = [row for row in rows if row.is_full_register]
    active = [row for row in full if row.status == DriverStatus.active]
    return FunnelStats(login=len(rows), full_register=len(full), active=len(active))


def build_funnel(
    rows: Iterable[DriverRecord],
    corridor: tuple[str, str],
    *,
    contacted: Optional[int] = None,
) -> ChannelFunnel:
    cohort = list(rows)
    in_corridor = [row for row in cohort if is_corridor_route(row, corridor)]
    return ChannelFunnel(
        contacted=len(cohort) if contacted is None else contacted,
        with_route_filter=_stage_counts(in_corridor),
        without_route_filter=_stage_counts(cohort),
    )


AttributionPredicate = Callable[[DriverRecord, AttributionContext], bool]

# Evaluated top-down; first match wins.
ATTRIBUTION_RULES: tuple[tuple[AttributionPredicate, Channel], ...] = (
    (lambda row, ctx: row.source_tag == ctx.tags.telegram_global, Channel.telegram_global),
    (lambda row, ctx: row.source_tag == ctx.tags.telegram_ads, Channel.telegram_ads),
    (lambda row, ctx: row.source_tag == ctx.tags.lead, Channel.target_lead),
    (lambda row, ctx: row.source_tag == ctx.tags.regular_target, Channel.target_regular),
    (lambda row, ctx: last_nine(row.phone_number) not in ctx.sms_keys, Channel.flyer),
    (lambda row, ctx: True, Channel.sms),
)


def attribute_channel(row: DriverRecord, context: AttributionContext) -> Channel:
    for predicate, channel in ATTRIBUTION_RULES:
        if predicate(row, context):
            return channel
    return Channel.sms


def channel_funnels(
    rows: Iterable[DriverRecord], context: AttributionContext
) -> dict[Channel, ChannelFunnel]:
    cohorts: dict[Channel, list[DriverRecord]] = {channel: [] for channel in Channel}
    for row in rows:
        cohorts[attribute_channel(row, context)].append(row)
    return {
        channel: build_funnel(cohort, context.corridor)
        for channel, cohort in cohorts.items()
    }


def conversion_rate(numerator: float, denominator: float) -> str:
    if not denominator:
        return "0%"
    return f"{numerator / denominator * 100:.1f}%"
