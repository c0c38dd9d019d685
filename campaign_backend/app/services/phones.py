from __future__ import annotations

import re
from typing import Optional

COUNTRY_PREFIX = "998"
MOBILE_LEADING_DIGIT = "9"
KEY_LENGTH = 9

_NON_DIGITS = re.compile(r"\D")


def digits_only(raw: Optional[str]) -> str:
    if not raw:
        return ""
    return _NON_DIGITS.sub("", raw)


def normalize_phone(raw: Optional[str]) -> str:
    digits = digits_only(raw)
    if digits.startswith(COUNTRY_PREFIX) and len(digits) == len(COUNTRY_PREFIX) + KEY_LENGTH:
        return digits
    if digits.startswith(MOBILE_LEADING_DIGIT) and len(digits) == KEY_LENGTH:
        return COUNTRY_PREFIX + digits
    return digits


def last_nine(raw: Optional[str]) -> str:
    return digits_only(raw)[-KEY_LENGTH:]


def is_importable(normalized: str) -> bool:
    return len(digits_only(normalized)) >= KEY_LENGTH
