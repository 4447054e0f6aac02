"""Syntactic checks for search and auth configuration values.

Every predicate is total: anything that is not a well-formed string simply
returns False.
"""

from __future__ import annotations

import re
from typing import Iterable

_REGION_CODE_RE = re.compile(r"[0-9]{6}")
# Letters (any script) plus spaces and the punctuation found in district names.
_DISTRICT_RE = re.compile(r"(?:[^\W\d_]|[ .,'()&/-])+")
_PHONE_RE = re.compile(r"[6-9][0-9]{9}")
_SUBJECT_ID_RE = re.compile(r"[0-9]{14}")


def _full_match(pattern: re.Pattern[str], value: object) -> bool:
    if not isinstance(value, str):
        return False
    return pattern.fullmatch(value) is not None


def is_valid_region_code(value: object) -> bool:
    return _full_match(_REGION_CODE_RE, value)


def is_valid_district(value: object) -> bool:
    if not _full_match(_DISTRICT_RE, value):
        return False
    # "-" or "()" alone is not a name.
    return any(ch.isalpha() for ch in value)  # type: ignore[union-attr]


def is_valid_phone_number(value: object) -> bool:
    return _full_match(_PHONE_RE, value)


def is_valid_subject_id(value: object) -> bool:
    return _full_match(_SUBJECT_ID_RE, value)


def _is_valid_search(enabled: bool, values: Iterable[str] | None, is_valid) -> bool:
    if not enabled:
        return True
    try:
        items = list(values or ())
    except TypeError:
        return False
    return bool(items) and all(is_valid(v) for v in items)


def is_valid_region_search(enabled: bool, codes: Iterable[str] | None) -> bool:
    return _is_valid_search(enabled, codes, is_valid_region_code)


def is_valid_district_search(enabled: bool, districts: Iterable[str] | None) -> bool:
    return _is_valid_search(enabled, districts, is_valid_district)
