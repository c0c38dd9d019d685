from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from campaign_backend.app.models import DriverRecord, DriverStatus
from campaign_backend.app.services.phones import KEY_LENGTH, last_nine


@dataclass(frozen=True)
class DriverMatch:
    driver_id: str
    phone_number: str
    status: DriverStatus
    is_full_register: bool
    is_driver: bool
    name: Optional[str]
    record: DriverRecord


def build_key_set(phones: Iterable[str]) -> set[str]:
    keys = set()
    for phone in phones:
        key = last_nine(phone)
        if len(key) == KEY_LENGTH:
            keys.add(key)
    return keys


def _row_key(row: DriverRecord) -> Optional[str]:
    if not row.phone_number:
        return None
    key = last_nine(row.phone_number)
    return key or None


def match_drivers(
    phones: Iterable[str],
    rows: Iterable[DriverRecord],
    *,
    driver_role_id: str = "2",
) -> list[DriverMatch]:
    keys = build_key_set(phones)
    if not keys:
        return []
    matches: list[DriverMatch] = []
    for row in rows:
        key = _row_key(row)
        if key is None or key not in keys:
            continue
        matches.append(
            DriverMatch(
                driver_id=row.id,
                phone_number=row.phone_number or "",
                status=row.status,
                is_full_register=row.is_full_register,
                is_driver=row.role_id == driver_role_id,
                name=row.full_name,
                record=row,
            )
        )
    return matches


def index_by_key(rows: Iterable[DriverRecord], keys: Iterable[str]) -> dict[str, DriverRecord]:
    """Registry rows keyed by last-9 for the wanted keys; later rows win."""
    wanted = set(keys)
    index: dict[str, DriverRecord] = {}
    for row in rows:
        key = _row_key(row)
        if key is not None and key in wanted:
            index[key] = row
    return index
