"""Search orchestration: validate, pace, authenticate, then poll until a slot is taken."""

from __future__ import annotations

import datetime as dt
import logging
import time
from typing import Callable, Protocol, Sequence

from slotbot.config import Settings
from slotbot.criteria import (
    build_auth_criteria,
    build_search_criteria,
    validate_auth_criteria,
    validate_search_criteria,
)
from slotbot.domain import (
    AuthCriteria,
    RunOutcome,
    RunState,
    SearchCriteria,
    SearchTarget,
    Session,
    TargetKind,
)
from slotbot.pacing import compute_delay_ms

logger = logging.getLogger(__name__)


class Gate(Protocol):
    def should_run(self) -> bool: ...


class Authenticator(Protocol):
    def authenticate(self, phone_number: str, subject_ids: Sequence[str]) -> Session: ...


class SlotQuery(Protocol):
    def query_by_region_code(self, code: str, date: str, resource_type: str) -> None: ...

    def query_by_district(self, district: str, date: str, resource_type: str) -> None: ...


QueryFactory = Callable[[Session, SearchCriteria, AuthCriteria, RunState], SlotQuery]


class SlotFinder:
    def __init__(
        self,
        settings: Settings,
        *,
        gate: Gate,
        authenticator: Authenticator,
        query_factory: QueryFactory,
        sleep: Callable[[float], None] = time.sleep,
        today: Callable[[], dt.date] = dt.date.today,
    ) -> None:
        self._settings = settings
        self._gate = gate
        self._authenticator = authenticator
        self._query_factory = query_factory
        self._sleep = sleep
        self._today = today

    def run(self) -> RunOutcome:
        if not self._gate.should_run():
            logger.info("Version check says this build must not run, exiting")
            return RunOutcome.SKIPPED

        criteria = build_search_criteria(self._settings, today=self._today())
        validate_search_criteria(criteria)

        auth = build_auth_criteria(self._settings)
        validate_auth_criteria(auth)

        targets = criteria.targets()
        delay_ms = compute_delay_ms(self._settings.throttle, len(targets))
        logger.info(
            "Searching %d targets for %s (%s), pause between tries %d ms",
            len(targets),
            criteria.date,
            criteria.resource_type or "any vaccine",
            delay_ms,
        )

        session = self._authenticator.authenticate(auth.phone_number, auth.subject_ids)

        run_state = RunState()
        query = self._query_factory(session, criteria, auth, run_state)
        return self._poll(query, criteria, targets, delay_ms, run_state)

    def _poll(
        self,
        query: SlotQuery,
        criteria: SearchCriteria,
        targets: list[SearchTarget],
        delay_ms: int,
        run_state: RunState,
    ) -> RunOutcome:
        max_attempts = self._settings.max_attempts

        for attempt in range(1, max_attempts + 1):
            if run_state.succeeded:
                return self._succeeded(run_state)

            run_state.attempt = attempt
            logger.info("Finding available slots, try #%d of %d", attempt, max_attempts)

            for target in targets:
                self._query(query, target, criteria)
                if run_state.succeeded:
                    return self._succeeded(run_state)

            if attempt < max_attempts:
                self._sleep(delay_ms / 1000)

        logger.info("No slot found after %d tries", max_attempts)
        return RunOutcome.NOT_FOUND

    @staticmethod
    def _query(query: SlotQuery, target: SearchTarget, criteria: SearchCriteria) -> None:
        if target.kind is TargetKind.REGION_CODE:
            query.query_by_region_code(target.value, criteria.date, criteria.resource_type)
        else:
            query.query_by_district(target.value, criteria.date, criteria.resource_type)

    @staticmethod
    def _succeeded(run_state: RunState) -> RunOutcome:
        logger.info("Slot secured on try #%d", run_state.attempt)
        return RunOutcome.SUCCEEDED
