from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from campaign_backend.app.services.phones import is_importable, normalize_phone

logger = logging.getLogger(__name__)

HEADER_TOKENS = ("phone", "telefon", "raqam")

_DELIMITERS = re.compile(r"[,;\t]")
_QUOTED_LINE = re.compile(r"^([^,]+),(.*)$")


class EmptyContactListError(ValueError):
    pass


@dataclass(frozen=True)
class ContactRow:
    phone: str
    message: str = ""


def _looks_like_header(line: str) -> bool:
    lowered = line.lower()
    return any(token in lowered for token in HEADER_TOKENS)


def _split_quoted(line: str) -> Optional[tuple[str, str]]:
    match = _QUOTED_LINE.match(line)
    if not match:
        return None
    phone = match.group(1).replace('"', "").strip()
    message = match.group(2)
    if message.startswith('"'):
        message = message[1:]
    if message.endswith('"'):
        message = message[:-1]
    return phone, message.strip()


def _split_plain(line: str, phone_column: int, with_message: bool) -> tuple[str, str]:
    parts = _DELIMITERS.split(line, maxsplit=phone_column + 1)
    phone = parts[phone_column].strip() if len(parts) > phone_column else ""
    message = ""
    if with_message and len(parts) > phone_column + 1:
        message = parts[phone_column + 1].strip()
    return phone, message


def parse_contact_list(
    text: str,
    *,
    phone_column: int = 0,
    with_message: bool = False,
) -> list[ContactRow]:
    """Parse pasted/uploaded delimited text into unique normalized contacts.

    Bad lines are dropped, never raised. When a normalized phone repeats, the
    later line's message wins while the first position is kept.
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if lines and _looks_like_header(lines[0]):
        lines = lines[1:]

    rows: dict[str, ContactRow] = {}
    for line in lines:
        if with_message and '"' in line:
            parsed = _split_quoted(line)
            if parsed is None:
                logger.debug("contact_line_dropped reason=unparseable line=%r", line)
                continue
            phone, message = parsed
        else:
            phone, message = _split_plain(line, phone_column, with_message)

        if not phone:
            logger.debug("contact_line_dropped reason=no_phone line=%r", line)
            continue
        normalized = normalize_phone(phone)
        if not is_importable(normalized):
            logger.debug("contact_line_dropped reason=short_phone phone=%r", phone)
            continue
        rows[normalized] = ContactRow(phone=normalized, message=message)
    return list(rows.values())


def unique_phones(rows: Iterable[ContactRow]) -> list[str]:
    return list(dict.fromkeys(row.phone for row in rows))
