from __future__ import annotations

import logging
import re
from typing import Iterable

from slotbot.cowin_client import CowinClient
from slotbot.domain import (
    AuthCriteria,
    InvalidSearchCriteriaError,
    ProviderBusyError,
    ProviderQueryError,
    RunState,
    SearchCriteria,
    Session,
    Slot,
)
from slotbot.notifications import Notifier

logger = logging.getLogger(__name__)

_QUALIFIED_DISTRICT = re.compile(r"(.+?)\s*\(([^()]+)\)")


def _format_slot(slot: Slot) -> str:
    times = ", ".join(slot.time_slots) if slot.time_slots else "any time"
    return f"{slot.center_name} ({slot.pincode}) on {slot.date}: {slot.vaccine}, {times}"


class CowinSlotQuery:
    """Queries one target, filters the sessions and books (or reports) a match.

    Sets `run_state` the moment a reservation completes.
    """

    def __init__(
        self,
        client: CowinClient,
        session: Session,
        criteria: SearchCriteria,
        auth: AuthCriteria,
        run_state: RunState,
        *,
        notifier: Notifier | None = None,
        dose: int = 1,
        auto_book: bool = True,
    ) -> None:
        self._client = client
        self._session = session
        self._facility_names = set(criteria.facility_names)
        self._auth = auth
        self._run_state = run_state
        self._notifier = notifier
        self._dose = dose
        self._auto_book = auto_book
        self._district_ids: dict[str, list[tuple[str, int]]] | None = None

    def query_by_region_code(self, code: str, date: str, resource_type: str) -> None:
        label = f"PIN {code}"
        try:
            slots = self._client.calendar_by_pin(code, date, resource_type, token=self._session.token)
        except ProviderBusyError as e:
            logger.warning("%s: provider busy, nothing checked this time (%s)", label, e)
            return
        self._handle(label, slots, resource_type)

    def query_by_district(self, district: str, date: str, resource_type: str) -> None:
        label = f"district {district}"
        try:
            district_id = self._district_id(district)
            slots = self._client.calendar_by_district(district_id, date, resource_type, token=self._session.token)
        except ProviderBusyError as e:
            logger.warning("%s: provider busy, nothing checked this time (%s)", label, e)
            return
        self._handle(label, slots, resource_type)

    def _load_districts(self) -> dict[str, list[tuple[str, int]]]:
        districts: dict[str, list[tuple[str, int]]] = {}
        try:
            for state in self._client.states():
                state_name = str(state.get("state_name", "")).strip()
                for district in self._client.districts(int(state["state_id"])):
                    key = str(district["district_name"]).strip().lower()
                    districts.setdefault(key, []).append((state_name, int(district["district_id"])))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ProviderQueryError(f"Malformed location response ({type(e).__name__}: {e})") from e
        logger.info("Loaded %d district names", len(districts))
        return districts

    def _district_id(self, name: str) -> int:
        """Resolve a district name, or "Name (State)" when the name is not unique."""
        if self._district_ids is None:
            self._district_ids = self._load_districts()

        key = name.strip().lower()
        candidates = self._district_ids.get(key)
        if candidates is None:
            qualified = _QUALIFIED_DISTRICT.fullmatch(key)
            if qualified is not None:
                district, state = qualified.group(1), qualified.group(2).strip()
                candidates = [c for c in self._district_ids.get(district, ()) if c[0].lower() == state]

        if not candidates:
            raise InvalidSearchCriteriaError("DISTRICTS", [name], "No district with this name is known to CoWIN.")
        if len(candidates) > 1:
            states = ", ".join(sorted(state for state, _ in candidates))
            raise InvalidSearchCriteriaError(
                "DISTRICTS",
                [name],
                f"This district name exists in several states ({states}); write it as 'Name (State)'.",
            )
        return candidates[0][1]

    def matching_slots(self, slots: Iterable[Slot], resource_type: str) -> list[Slot]:
        needed = len(self._auth.subject_ids)
        result: list[Slot] = []
        for slot in slots:
            if self._facility_names and slot.center_name.strip().lower() not in self._facility_names:
                continue
            if resource_type and slot.vaccine and slot.vaccine.upper() != resource_type.upper():
                continue
            if slot.capacity_for(self._dose) < needed:
                continue
            result.append(slot)
        return result

    def _handle(self, label: str, slots: list[Slot], resource_type: str) -> None:
        matches = self.matching_slots(slots, resource_type)
        logger.info("%s: %d sessions, %d matching", label, len(slots), len(matches))

        for slot in matches:
            if not self._auto_book:
                logger.info("Slot found: %s", _format_slot(slot))
                self._succeed(f"Vaccination slot available:\n{_format_slot(slot)}")
                return

            if not slot.time_slots:
                logger.info("Skipping session %s: no time slot offered", slot.session_id)
                continue

            # Any failure other than "slot gone" propagates and ends the run.
            confirmation = self._client.schedule(
                self._session.token,
                slot,
                dose=self._dose,
                beneficiaries=self._auth.subject_ids,
            )
            if confirmation is None:
                continue

            logger.info("Booked %s, confirmation %s", _format_slot(slot), confirmation)
            self._succeed(f"Vaccination slot booked:\n{_format_slot(slot)}\nConfirmation: {confirmation}")
            return

    def _succeed(self, text: str) -> None:
        self._run_state.mark_succeeded()
        if self._notifier is not None:
            self._notifier.notify_best_effort(text)
