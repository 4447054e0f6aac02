from __future__ import annotations

from unittest.mock import Mock

import pytest

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
from slotbot.slot_query import CowinSlotQuery


def _slot(session_id: str, *, name: str = "Apollo Hospital", vaccine: str = "COVISHIELD", dose1: int = 5) -> Slot:
    return Slot(
        date="01-06-2021",
        center_id=1,
        center_name=name,
        pincode="110001",
        session_id=session_id,
        vaccine=vaccine,
        capacity_dose1=dose1,
        capacity_dose2=0,
        time_slots=("09:00AM-11:00AM",),
    )


def _criteria(facility_names: tuple[str, ...] = ()) -> SearchCriteria:
    return SearchCriteria(
        by_region_code=True,
        region_codes=("110001",),
        by_district=False,
        districts=(),
        facility_names=facility_names,
        date="01-06-2021",
        resource_type="COVISHIELD",
    )


def _query(client: Mock, *, facility_names=(), auto_book: bool = True, notifier=None, subject_ids=("12345678901234",)):
    run_state = RunState()
    query = CowinSlotQuery(
        client,
        Session(token="tok", phone_number="9876543210"),
        _criteria(facility_names),
        AuthCriteria(phone_number="9876543210", subject_ids=subject_ids),
        run_state,
        notifier=notifier,
        auto_book=auto_book,
    )
    return query, run_state


def test_books_first_matching_slot_and_marks_success() -> None:
    client = Mock()
    client.calendar_by_pin.return_value = [_slot("a"), _slot("b")]
    client.schedule.return_value = "CONF-1"
    notifier = Mock()

    query, run_state = _query(client, notifier=notifier)
    query.query_by_region_code("110001", "01-06-2021", "COVISHIELD")

    assert run_state.succeeded is True
    client.calendar_by_pin.assert_called_once_with("110001", "01-06-2021", "COVISHIELD", token="tok")
    assert client.schedule.call_count == 1
    assert client.schedule.call_args.args[1].session_id == "a"
    assert "CONF-1" in notifier.notify_best_effort.call_args.args[0]


def test_gone_slot_falls_through_to_next_match() -> None:
    client = Mock()
    client.calendar_by_pin.return_value = [_slot("a"), _slot("b")]
    client.schedule.side_effect = [None, "CONF-2"]

    query, run_state = _query(client)
    query.query_by_region_code("110001", "01-06-2021", "COVISHIELD")

    assert run_state.succeeded is True
    assert [c.args[1].session_id for c in client.schedule.call_args_list] == ["a", "b"]


def test_no_match_leaves_run_state_untouched() -> None:
    client = Mock()
    client.calendar_by_pin.return_value = [_slot("a", dose1=0), _slot("b", vaccine="COVAXIN")]

    query, run_state = _query(client)
    query.query_by_region_code("110001", "01-06-2021", "COVISHIELD")

    assert run_state.succeeded is False
    client.schedule.assert_not_called()


def test_facility_filter_and_capacity_for_all_beneficiaries() -> None:
    client = Mock()
    query, _ = _query(
        client,
        facility_names=("city clinic",),
        subject_ids=("12345678901234", "43210987654321"),
    )
    slots = [
        _slot("a", name="Apollo Hospital"),
        _slot("b", name=" City Clinic ", dose1=1),
        _slot("c", name="CITY CLINIC", dose1=2),
    ]

    assert [s.session_id for s in query.matching_slots(slots, "covishield")] == ["c"]


def test_report_only_marks_success_without_booking() -> None:
    client = Mock()
    client.calendar_by_pin.return_value = [_slot("a")]

    query, run_state = _query(client, auto_book=False)
    query.query_by_region_code("110001", "01-06-2021", "COVISHIELD")

    assert run_state.succeeded is True
    client.schedule.assert_not_called()


def test_busy_provider_counts_as_no_match() -> None:
    client = Mock()
    client.calendar_by_pin.side_effect = ProviderBusyError("HTTP 503")

    query, run_state = _query(client)
    query.query_by_region_code("110001", "01-06-2021", "COVISHIELD")

    assert run_state.succeeded is False


def test_hard_provider_failure_propagates() -> None:
    client = Mock()
    client.calendar_by_pin.side_effect = ProviderQueryError("HTTP 401")

    query, _ = _query(client)
    with pytest.raises(ProviderQueryError):
        query.query_by_region_code("110001", "01-06-2021", "COVISHIELD")


def test_districts_are_resolved_once_by_name() -> None:
    client = Mock()
    client.states.return_value = [{"state_id": 21, "state_name": "Maharashtra"}]
    client.districts.return_value = [
        {"district_id": 363, "district_name": "Pune"},
        {"district_id": 395, "district_name": "Mumbai"},
    ]
    client.calendar_by_district.return_value = []

    query, _ = _query(client)
    query.query_by_district("pune", "01-06-2021", "COVISHIELD")
    query.query_by_district("Mumbai", "01-06-2021", "COVISHIELD")

    assert client.states.call_count == 1
    assert [c.args[0] for c in client.calendar_by_district.call_args_list] == [363, 395]


def test_unknown_booking_outcome_ends_the_run() -> None:
    client = Mock()
    client.calendar_by_pin.return_value = [_slot("a"), _slot("b")]
    client.schedule.side_effect = ProviderQueryError("Booking outcome unknown for session a")

    query, run_state = _query(client)
    with pytest.raises(ProviderQueryError, match=r"outcome unknown"):
        query.query_by_region_code("110001", "01-06-2021", "COVISHIELD")

    assert client.schedule.call_count == 1
    assert run_state.succeeded is False


def test_sessions_without_time_slots_are_not_booked() -> None:
    client = Mock()
    no_times = Slot(
        date="01-06-2021",
        center_id=1,
        center_name="Apollo Hospital",
        pincode="110001",
        session_id="a",
        vaccine="COVISHIELD",
        capacity_dose1=5,
        capacity_dose2=0,
    )
    client.calendar_by_pin.return_value = [no_times, _slot("b")]
    client.schedule.return_value = "CONF-2"

    query, run_state = _query(client)
    query.query_by_region_code("110001", "01-06-2021", "COVISHIELD")

    assert run_state.succeeded is True
    assert [c.args[1].session_id for c in client.schedule.call_args_list] == ["b"]


def _two_states_with_aurangabad(client: Mock) -> None:
    client.states.return_value = [
        {"state_id": 5, "state_name": "Bihar"},
        {"state_id": 21, "state_name": "Maharashtra"},
    ]
    by_state = {
        5: [{"district_id": 74, "district_name": "Aurangabad"}, {"district_id": 97, "district_name": "Patna"}],
        21: [{"district_id": 397, "district_name": "Aurangabad"}, {"district_id": 363, "district_name": "Pune"}],
    }
    client.districts.side_effect = lambda state_id: by_state[state_id]
    client.calendar_by_district.return_value = []


def test_district_name_in_several_states_is_rejected() -> None:
    client = Mock()
    _two_states_with_aurangabad(client)

    query, _ = _query(client)
    with pytest.raises(InvalidSearchCriteriaError) as excinfo:
        query.query_by_district("Aurangabad", "01-06-2021", "COVISHIELD")

    message = str(excinfo.value)
    assert "Bihar" in message
    assert "Maharashtra" in message
    client.calendar_by_district.assert_not_called()


def test_district_can_be_qualified_with_its_state() -> None:
    client = Mock()
    _two_states_with_aurangabad(client)

    query, _ = _query(client)
    query.query_by_district("Aurangabad (Maharashtra)", "01-06-2021", "COVISHIELD")
    query.query_by_district("aurangabad(bihar)", "01-06-2021", "COVISHIELD")
    query.query_by_district("Pune", "01-06-2021", "COVISHIELD")

    assert [c.args[0] for c in client.calendar_by_district.call_args_list] == [397, 74, 363]


def test_district_qualified_with_wrong_state_is_unknown() -> None:
    client = Mock()
    _two_states_with_aurangabad(client)

    query, _ = _query(client)
    with pytest.raises(InvalidSearchCriteriaError, match=r"No district"):
        query.query_by_district("Pune (Bihar)", "01-06-2021", "COVISHIELD")


def test_unknown_district_is_a_criteria_error() -> None:
    client = Mock()
    client.states.return_value = [{"state_id": 21, "state_name": "Maharashtra"}]
    client.districts.return_value = [{"district_id": 363, "district_name": "Pune"}]

    query, _ = _query(client)
    with pytest.raises(InvalidSearchCriteriaError, match=r"Atlantis"):
        query.query_by_district("Atlantis", "01-06-2021", "COVISHIELD")
