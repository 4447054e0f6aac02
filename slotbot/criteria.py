"""Building and validating the search plan from settings.

Everything here runs before the first network call; any failure aborts the
run with the offending field and values.
"""

from __future__ import annotations

import datetime as dt

from slotbot.config import Settings
from slotbot.domain import (
    AuthCriteria,
    InvalidAuthCriteriaError,
    InvalidSearchCriteriaError,
    SearchCriteria,
)
from slotbot.validators import (
    is_valid_district,
    is_valid_district_search,
    is_valid_phone_number,
    is_valid_region_code,
    is_valid_region_search,
    is_valid_subject_id,
)

DATE_FORMAT = "%d-%m-%Y"


def resolve_search_date(raw: str | None, today: dt.date) -> str:
    """Configured date re-formatted as dd-mm-yyyy, or tomorrow when unset."""
    if not raw:
        return (today + dt.timedelta(days=1)).strftime(DATE_FORMAT)
    try:
        parsed = dt.datetime.strptime(raw, DATE_FORMAT).date()
    except ValueError as e:
        raise InvalidSearchCriteriaError(
            "DATE_TO_SEARCH", [raw], "Expected a calendar date in dd-mm-yyyy form."
        ) from e
    return parsed.strftime(DATE_FORMAT)


def build_search_criteria(settings: Settings, today: dt.date) -> SearchCriteria:
    facility_names: tuple[str, ...] = ()
    if settings.search_by_facility_name:
        names = [n.strip().lower() for n in settings.facility_names]
        facility_names = tuple(dict.fromkeys(n for n in names if n))

    return SearchCriteria(
        by_region_code=settings.search_by_region_code,
        region_codes=tuple(settings.region_codes),
        by_district=settings.search_by_district,
        districts=tuple(settings.districts),
        facility_names=facility_names,
        date=resolve_search_date(settings.search_date, today),
        resource_type=settings.resource_type,
    )


def validate_search_criteria(criteria: SearchCriteria) -> None:
    if criteria.by_district:
        bad = [d for d in criteria.districts if not is_valid_district(d)]
        if bad:
            raise InvalidSearchCriteriaError("DISTRICTS", bad)

    if criteria.by_region_code:
        bad = [c for c in criteria.region_codes if not is_valid_region_code(c)]
        if bad:
            raise InvalidSearchCriteriaError("PINCODES", bad, "A PIN code is exactly 6 digits.")

    if not is_valid_district_search(criteria.by_district, criteria.districts):
        raise InvalidSearchCriteriaError(
            "DISTRICTS",
            criteria.districts,
            "SEARCH_BY_DISTRICT is enabled; provide at least one valid district or disable it.",
        )

    if not is_valid_region_search(criteria.by_region_code, criteria.region_codes):
        raise InvalidSearchCriteriaError(
            "PINCODES",
            criteria.region_codes,
            "SEARCH_BY_PINCODE is enabled; provide at least one valid PIN code or disable it.",
        )

    if not criteria.targets():
        raise InvalidSearchCriteriaError(
            "SEARCH_BY_PINCODE/SEARCH_BY_DISTRICT",
            [],
            "Enable searching by PIN code or by district (or both).",
        )


def build_auth_criteria(settings: Settings) -> AuthCriteria:
    return AuthCriteria(
        phone_number=settings.phone_number.strip(),
        subject_ids=tuple(s.strip() for s in settings.subject_ids),
    )


def validate_auth_criteria(auth: AuthCriteria) -> None:
    if not is_valid_phone_number(auth.phone_number):
        raise InvalidAuthCriteriaError("MOBILE", [auth.phone_number], "Expected a 10 digit mobile number.")

    if not auth.subject_ids:
        raise InvalidAuthCriteriaError("BENEFICIARY_IDS", [], "Provide at least one beneficiary id.")

    bad = [s for s in auth.subject_ids if not is_valid_subject_id(s)]
    if bad:
        raise InvalidAuthCriteriaError("BENEFICIARY_IDS", bad, "A beneficiary id is exactly 14 digits.")
