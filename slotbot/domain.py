from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable


class TargetKind(str, Enum):
    REGION_CODE = "region_code"
    DISTRICT = "district"


@dataclass(frozen=True)
class SearchTarget:
    kind: TargetKind
    value: str


@dataclass(frozen=True)
class SearchCriteria:
    by_region_code: bool
    region_codes: tuple[str, ...]
    by_district: bool
    districts: tuple[str, ...]
    # Lower-cased and trimmed; empty means "any centre".
    facility_names: tuple[str, ...]
    date: str  # dd-mm-yyyy
    resource_type: str

    def targets(self) -> list[SearchTarget]:
        """Targets for one attempt, region codes first, in declaration order."""
        result: list[SearchTarget] = []
        if self.by_region_code:
            result.extend(SearchTarget(TargetKind.REGION_CODE, code) for code in self.region_codes)
        if self.by_district:
            result.extend(SearchTarget(TargetKind.DISTRICT, name) for name in self.districts)
        return result


@dataclass(frozen=True)
class AuthCriteria:
    phone_number: str
    subject_ids: tuple[str, ...]


@dataclass
class RunState:
    """Stop signal shared between the finder and the slot query of one run."""

    attempt: int = 0
    succeeded: bool = False

    def mark_succeeded(self) -> None:
        self.succeeded = True


class RunOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Session:
    token: str = field(repr=False)
    phone_number: str


@dataclass(frozen=True, order=True)
class Slot:
    """A single open vaccination session at one centre."""

    date: str  # dd-mm-yyyy, as returned by the API
    center_id: int
    center_name: str
    pincode: str
    session_id: str
    vaccine: str
    capacity_dose1: int
    capacity_dose2: int
    time_slots: tuple[str, ...] = ()

    def capacity_for(self, dose: int) -> int:
        return self.capacity_dose2 if dose == 2 else self.capacity_dose1


class SlotBotError(RuntimeError):
    stage = "run"


class ConfigurationFormatError(SlotBotError):
    stage = "configuration"


class InvalidCriteriaError(SlotBotError):
    def __init__(self, field: str, values: Iterable[str], hint: str = "") -> None:
        self.field = field
        self.values = tuple(values)
        shown = ", ".join(repr(v) for v in self.values)
        message = f"Invalid {field}: [{shown}] found in your configuration."
        if hint:
            message = f"{message} {hint}"
        super().__init__(message)


class InvalidSearchCriteriaError(InvalidCriteriaError):
    stage = "search criteria"


class InvalidAuthCriteriaError(InvalidCriteriaError):
    stage = "auth criteria"


class AuthenticationError(SlotBotError):
    stage = "authentication"


class ProviderQueryError(SlotBotError):
    stage = "polling"


class ProviderBusyError(SlotBotError):
    """Transient provider state: rate limited, 5xx, timeout or dropped connection.

    Retried inside the API client. Once retries are exhausted the slot query
    treats it as "nothing found this time"; it never aborts a run.
    """

    stage = "polling"
