from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    and_,
    case,
    create_engine,
    func,
    or_,
    select,
    union,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from campaign_backend.app.models import (
    DriverRecord,
    DriverStatus,
    InactiveReason,
    InactiveReasonCount,
    RegionItem,
    RegionStats,
    StatusSummary,
    SubRegionItem,
    SubRegionStats,
)
from campaign_backend.app.persistence import normalize_database_url

logger = logging.getLogger(__name__)

FIXABLE_REASON_IDS = frozenset({"59", "60"})
NOT_ELIGIBLE_REASON_IDS = frozenset({"65"})
TRACKED_REASON_IDS = FIXABLE_REASON_IDS | NOT_ELIGIBLE_REASON_IDS

UNKNOWN_SUB_REGION_ID = "0"
UNKNOWN_SUB_REGION_NAME = "Noma'lum"

# Keeps IN (...) lists under SQLite's bound-parameter ceiling.
_ID_CHUNK = 500


class RegistryUnavailableError(Exception):
    pass


@dataclass(frozen=True)
class DriverQuery:
    created_from: Optional[datetime] = None
    created_before: Optional[datetime] = None
    statuses: Optional[Sequence[str]] = None
    source_tags: Optional[Sequence[str]] = None
    corridor: Optional[tuple[str, str]] = None
    home_region_id: Optional[str] = None
    region_id: Optional[str] = None
    sub_region_id: Optional[str] = None
    driver_ids: Optional[Sequence[str]] = None
    require_phone: bool = False
    drivers_only: bool = True


def _chunks(values: Sequence[str], size: int = _ID_CHUNK) -> Iterable[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _known_status(row) -> Optional[DriverStatus]:
    try:
        return DriverStatus(row.status)
    except ValueError:
        logger.warning("registry_unknown_status customer_id=%s status=%s", row.id, row.status)
        return None


class DriverRegistry:
    """Read-only access to the ride-hailing customer tables."""

    def __init__(self, database_url: str, *, driver_role_id: str = "2") -> None:
        self.database_url = normalize_database_url(database_url)
        self.driver_role_id = driver_role_id
        self.engine: Engine = create_engine(
            self.database_url,
            future=True,
            pool_pre_ping=True,
        )
        self.metadata = MetaData()
        self.customers = Table(
            "customers",
            self.metadata,
            Column("id", String(64), primary_key=True),
            Column("first_name", String(120), nullable=True),
            Column("last_name", String(120), nullable=True),
            Column("phone_number", String(40), nullable=True),
            Column("status", String(20), nullable=False),
            Column("role_id", String(20), nullable=False),
            Column("created_at", DateTime, nullable=False),
            Column("register_sources_comment", String(120), nullable=True),
        )
        self.driver_infos = Table(
            "driver_infos",
            self.metadata,
            Column("customer_id", String(64), primary_key=True),
            Column("region_id", String(20), nullable=True),
            Column("sub_region_id", String(20), nullable=True),
            Column("departure_region_id", String(20), nullable=True),
            Column("departure_sub_region_id", String(20), nullable=True),
            Column("arrival_region_id", String(20), nullable=True),
            Column("arrival_sub_region_id", String(20), nullable=True),
        )
        self.regions = Table(
            "regions",
            self.metadata,
            Column("id", String(20), primary_key=True),
            Column("name", String(120), nullable=False),
        )
        self.sub_regions = Table(
            "sub_regions",
            self.metadata,
            Column("id", String(20), primary_key=True),
            Column("name", String(120), nullable=False),
            Column("region_id", String(20), nullable=False),
        )
        self.reasons = Table(
            "reasons",
            self.metadata,
            Column("id", String(20), primary_key=True),
            Column("title", String(255), nullable=False),
        )
        self.customer_moderation_reasons = Table(
            "customer_moderation_reasons",
            self.metadata,
            Column("customer_id", String(64), primary_key=True),
            Column("reason_id", String(20), primary_key=True),
        )

    def create_schema(self) -> None:
        """Local/dev only; production tables are owned by the main platform."""
        self.metadata.create_all(self.engine)

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            return False

    def _fetch(self, stmt) -> list:
        try:
            with self.engine.connect() as conn:
                return conn.execute(stmt).all()
        except SQLAlchemyError as exc:
            logger.error("registry_query_failed error=%s", exc)
            raise RegistryUnavailableError(str(exc)) from exc

    def _base_join(self):
        return self.customers.outerjoin(
            self.driver_infos, self.driver_infos.c.customer_id == self.customers.c.id
        )

    def _corridor_clause(self, corridor: tuple[str, str]):
        region_id, city_id = corridor
        departure = self.driver_infos.c.departure_region_id
        arrival = self.driver_infos.c.arrival_region_id
        return or_(
            and_(departure == region_id, arrival == city_id),
            and_(departure == city_id, arrival == region_id),
        )

    def _where(self, query: DriverQuery) -> list:
        c = self.customers.c
        clauses: list = []
        if query.drivers_only:
            clauses.append(c.role_id == self.driver_role_id)
        if query.require_phone:
            clauses.append(c.phone_number.is_not(None))
        if query.created_from is not None:
            clauses.append(c.created_at >= query.created_from)
        if query.created_before is not None:
            clauses.append(c.created_at < query.created_before)
        if query.statuses:
            clauses.append(c.status.in_(list(query.statuses)))
        if query.source_tags:
            clauses.append(c.register_sources_comment.in_(list(query.source_tags)))
        if query.corridor and query.home_region_id:
            clauses.append(
                or_(
                    self._corridor_clause(query.corridor),
                    self.driver_infos.c.region_id == query.home_region_id,
                )
            )
        elif query.corridor:
            clauses.append(self._corridor_clause(query.corridor))
        elif query.home_region_id:
            clauses.append(self.driver_infos.c.region_id == query.home_region_id)
        if query.region_id:
            clauses.append(self.driver_infos.c.region_id == query.region_id)
        if query.sub_region_id:
            clauses.append(self.driver_infos.c.sub_region_id == query.sub_region_id)
        return clauses

    def fetch_drivers(
        self, query: DriverQuery, *, with_reasons: bool = False
    ) -> list[DriverRecord]:
        if query.driver_ids is not None:
            ids = list(dict.fromkeys(query.driver_ids))
            rows: list = []
            for chunk in _chunks(ids):
                rows.extend(self._fetch_driver_rows(query, chunk))
            rows.sort(key=lambda row: row.created_at, reverse=True)
        else:
            rows = self._fetch_driver_rows(query, None)
        drivers = [self._to_record(row) for row in rows if _known_status(row) is not None]
        if with_reasons:
            self._attach_reasons(drivers)
        return drivers

    def _fetch_driver_rows(self, query: DriverQuery, ids: Optional[Sequence[str]]) -> list:
        stmt, _ = self._driver_select(query)
        stmt = stmt.order_by(self.customers.c.created_at.desc())
        if ids is not None:
            stmt = stmt.where(self.customers.c.id.in_(list(ids)))
        return self._fetch(stmt)

    def _driver_select(self, query: DriverQuery):
        home = self.regions.alias("home_region")
        departure = self.regions.alias("departure_region")
        arrival = self.regions.alias("arrival_region")
        home_sub = self.sub_regions.alias("home_sub_region")
        info = self.driver_infos.c
        joined = (
            self._base_join()
            .outerjoin(home, home.c.id == info.region_id)
            .outerjoin(home_sub, home_sub.c.id == info.sub_region_id)
            .outerjoin(departure, departure.c.id == info.departure_region_id)
            .outerjoin(arrival, arrival.c.id == info.arrival_region_id)
        )
        stmt = (
            select(
                self.customers.c.id,
                self.customers.c.first_name,
                self.customers.c.last_name,
                self.customers.c.phone_number,
                self.customers.c.status,
                self.customers.c.role_id,
                self.customers.c.created_at,
                self.customers.c.register_sources_comment,
                info.region_id,
                home.c.name.label("region_name"),
                info.sub_region_id,
                home_sub.c.name.label("sub_region_name"),
                info.departure_region_id,
                departure.c.name.label("departure_region_name"),
                info.departure_sub_region_id,
                info.arrival_region_id,
                arrival.c.name.label("arrival_region_name"),
                info.arrival_sub_region_id,
            )
            .select_from(joined)
            .where(*self._where(query))
        )
        sort_columns = {
            "created_at": self.customers.c.created_at,
            "status": self.customers.c.status,
            "first_name": self.customers.c.first_name,
            "last_name": self.customers.c.last_name,
            "region_name": home.c.name,
            "sub_region_name": home_sub.c.name,
        }
        return stmt, sort_columns

    def list_drivers_page(
        self,
        query: DriverQuery,
        *,
        sort_by: str = "created_at",
        descending: bool = True,
        limit: int = 20,
        offset: int = 0,
    ) -> list[DriverRecord]:
        """One page of drivers; unknown sort columns fall back to created_at."""
        stmt, sort_columns = self._driver_select(query)
        column = sort_columns.get(sort_by, self.customers.c.created_at)
        stmt = (
            stmt.order_by(column.desc() if descending else column.asc(), self.customers.c.id)
            .limit(limit)
            .offset(offset)
        )
        drivers = [
            self._to_record(row) for row in self._fetch(stmt) if _known_status(row) is not None
        ]
        self._attach_reasons(drivers)
        return drivers

    def count_drivers(self, query: DriverQuery) -> int:
        stmt = (
            select(func.count(self.customers.c.id).label("n"))
            .select_from(self._base_join())
            .where(*self._where(query))
        )
        rows = self._fetch(stmt)
        return int(rows[0].n or 0) if rows else 0

    @staticmethod
    def _to_record(row) -> DriverRecord:
        return DriverRecord(
            id=str(row.id),
            first_name=row.first_name,
            last_name=row.last_name,
            phone_number=row.phone_number,
            status=DriverStatus(row.status),
            role_id=str(row.role_id),
            created_at=row.created_at,
            region_id=_str_or_none(row.region_id),
            region_name=row.region_name,
            sub_region_id=_str_or_none(row.sub_region_id),
            sub_region_name=row.sub_region_name,
            departure_region_id=_str_or_none(row.departure_region_id),
            departure_region_name=row.departure_region_name,
            departure_sub_region_id=_str_or_none(row.departure_sub_region_id),
            arrival_region_id=_str_or_none(row.arrival_region_id),
            arrival_region_name=row.arrival_region_name,
            arrival_sub_region_id=_str_or_none(row.arrival_sub_region_id),
            source_tag=row.register_sources_comment,
        )

    def _attach_reasons(self, drivers: list[DriverRecord]) -> None:
        inactive_ids = [d.id for d in drivers if d.status == DriverStatus.inactive]
        if not inactive_ids:
            return
        cmr = self.customer_moderation_reasons
        by_driver: dict[str, list[InactiveReason]] = {}
        for chunk in _chunks(inactive_ids):
            stmt = (
                select(cmr.c.customer_id, self.reasons.c.id, self.reasons.c.title)
                .select_from(cmr.join(self.reasons, self.reasons.c.id == cmr.c.reason_id))
                .where(
                    cmr.c.customer_id.in_(list(chunk)),
                    self.reasons.c.id.in_(sorted(TRACKED_REASON_IDS)),
                )
                .order_by(self.reasons.c.id)
            )
            for row in self._fetch(stmt):
                reason_id = str(row.id)
                by_driver.setdefault(str(row.customer_id), []).append(
                    InactiveReason(
                        reason_id=reason_id,
                        reason_title=row.title,
                        is_fixable=reason_id in FIXABLE_REASON_IDS,
                    )
                )
        for driver in drivers:
            driver.inactive_reasons = by_driver.get(driver.id, [])

    def fetch_phone_directory(self) -> list[DriverRecord]:
        """Every customer with a phone, any role."""
        return self.fetch_drivers(DriverQuery(require_phone=True, drivers_only=False))

    def fetch_statuses(self, driver_ids: Sequence[str]) -> dict[str, DriverStatus]:
        ids = list(dict.fromkeys(driver_ids))
        statuses: dict[str, DriverStatus] = {}
        for chunk in _chunks(ids):
            stmt = select(self.customers.c.id, self.customers.c.status).where(
                self.customers.c.id.in_(list(chunk))
            )
            for row in self._fetch(stmt):
                driver_status = _known_status(row)
                if driver_status is not None:
                    statuses[str(row.id)] = driver_status
        return statuses

    def status_summary(self, query: DriverQuery) -> StatusSummary:
        stmt = (
            select(self.customers.c.status, func.count(self.customers.c.id).label("n"))
            .select_from(self._base_join())
            .where(*self._where(query))
            .group_by(self.customers.c.status)
        )
        summary = StatusSummary()
        for row in self._fetch(stmt):
            if row.status in DriverStatus.__members__:
                setattr(summary, row.status, int(row.n))
            summary.total += int(row.n)
        return summary

    def created_statuses(self, query: DriverQuery) -> list[tuple[datetime, str]]:
        stmt = (
            select(self.customers.c.created_at, self.customers.c.status)
            .select_from(self._base_join())
            .where(*self._where(query))
        )
        return [(row.created_at, row.status) for row in self._fetch(stmt)]

    def inactive_reason_counts(self, query: DriverQuery) -> list[InactiveReasonCount]:
        cmr = self.customer_moderation_reasons
        joined = self._base_join().join(cmr, cmr.c.customer_id == self.customers.c.id).join(
            self.reasons, self.reasons.c.id == cmr.c.reason_id
        )
        stmt = (
            select(
                self.reasons.c.id,
                self.reasons.c.title,
                func.count(func.distinct(self.customers.c.id)).label("n"),
            )
            .select_from(joined)
            .where(
                *self._where(query),
                self.customers.c.status == DriverStatus.inactive.value,
                self.reasons.c.id.in_(sorted(TRACKED_REASON_IDS)),
            )
            .group_by(self.reasons.c.id, self.reasons.c.title)
            .order_by(func.count(func.distinct(self.customers.c.id)).desc())
        )
        return [
            InactiveReasonCount(
                reason_id=str(row.id),
                reason_title=row.title,
                count=int(row.n),
                is_fixable=str(row.id) in FIXABLE_REASON_IDS,
            )
            for row in self._fetch(stmt)
        ]

    def count_with_reasons(self, query: DriverQuery, reason_ids: Iterable[str]) -> int:
        """Distinct inactive drivers carrying any of the given reasons."""
        cmr = self.customer_moderation_reasons
        joined = self._base_join().join(cmr, cmr.c.customer_id == self.customers.c.id)
        stmt = (
            select(func.count(func.distinct(self.customers.c.id)).label("n"))
            .select_from(joined)
            .where(
                *self._where(query),
                self.customers.c.status == DriverStatus.inactive.value,
                cmr.c.reason_id.in_(sorted(reason_ids)),
            )
        )
        rows = self._fetch(stmt)
        return int(rows[0].n or 0) if rows else 0

    def _status_sums(self, status_column) -> list:
        return [
            func.sum(case((status_column == status.value, 1), else_=0)).label(status.value)
            for status in DriverStatus
        ]

    def sub_region_breakdown(self, query: DriverQuery) -> list[SubRegionStats]:
        """Departure sub-regions; drivers without one land in the unknown bucket."""
        info = self.driver_infos.c
        joined = self._base_join().outerjoin(
            self.sub_regions, self.sub_regions.c.id == info.departure_sub_region_id
        )
        sub_region_id = func.coalesce(self.sub_regions.c.id, UNKNOWN_SUB_REGION_ID)
        sub_region_name = func.coalesce(self.sub_regions.c.name, UNKNOWN_SUB_REGION_NAME)
        total = func.count(self.customers.c.id)
        stmt = (
            select(
                sub_region_id.label("id"),
                sub_region_name.label("name"),
                total.label("total"),
                *self._status_sums(self.customers.c.status),
            )
            .select_from(joined)
            .where(*self._where(query))
            .group_by(sub_region_id, sub_region_name)
            .order_by(total.desc(), sub_region_name)
        )
        return [
            SubRegionStats(
                id=str(row.id),
                name=row.name,
                total=int(row.total),
                pending=int(row.pending or 0),
                active=int(row.active or 0),
                inactive=int(row.inactive or 0),
                blocked=int(row.blocked or 0),
            )
            for row in self._fetch(stmt)
        ]

    def region_breakdown(self, query: DriverQuery, *, exclude_region_id: str) -> list[RegionStats]:
        """Drivers per region touched by departure or arrival, each counted once per region."""
        info = self.driver_infos.c
        where = self._where(query)

        def leg(column):
            return (
                select(
                    self.customers.c.id.label("customer_id"),
                    self.customers.c.status.label("status"),
                    column.label("region_id"),
                )
                .select_from(self._base_join())
                .where(*where, column.is_not(None))
            )

        touched = union(leg(info.departure_region_id), leg(info.arrival_region_id)).subquery()
        stmt = (
            select(
                touched.c.region_id,
                self.regions.c.name,
                func.count(touched.c.customer_id).label("total"),
                *self._status_sums(touched.c.status),
            )
            .select_from(touched.join(self.regions, self.regions.c.id == touched.c.region_id))
            .where(touched.c.region_id != exclude_region_id)
            .group_by(touched.c.region_id, self.regions.c.name)
            .order_by(func.count(touched.c.customer_id).desc())
        )
        return [
            RegionStats(
                region_id=str(row.region_id),
                region_name=row.name,
                total=int(row.total),
                pending=int(row.pending or 0),
                active=int(row.active or 0),
                inactive=int(row.inactive or 0),
                blocked=int(row.blocked or 0),
            )
            for row in self._fetch(stmt)
        ]

    def list_regions(self) -> list[RegionItem]:
        stmt = select(self.regions.c.id, self.regions.c.name).order_by(self.regions.c.name)
        return [RegionItem(id=str(row.id), name=row.name) for row in self._fetch(stmt)]

    def list_sub_regions(self, region_id: Optional[str] = None) -> list[SubRegionItem]:
        stmt = select(
            self.sub_regions.c.id, self.sub_regions.c.name, self.sub_regions.c.region_id
        ).order_by(self.sub_regions.c.name)
        if region_id:
            stmt = stmt.where(self.sub_regions.c.region_id == region_id)
        return [
            SubRegionItem(id=str(row.id), name=row.name, region_id=str(row.region_id))
            for row in self._fetch(stmt)
        ]
