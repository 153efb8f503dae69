import pytest

from hplc_scheduler.assigner import assign
from hplc_scheduler.constants import SchedulingConstants
from hplc_scheduler.grouping import CompatibilityGrouper
from hplc_scheduler.plan import (
    EXCEEDS_INSTRUMENT_CAPACITY,
    NO_ELIGIBLE_INSTRUMENT,
    Instrument,
    TestState,
)
from hplc_scheduler.plan_export import export_plan_to_dict, validate_plan


@pytest.fixture
def two_instruments():
    return [Instrument("HPLC-1", "HPLC 1"), Instrument("HPLC-2", "HPLC 2")]


def _layout(plan):
    return {iid: [t.id for t in s.tests] for iid, s in plan.schedules.items()}


def test_urgent_test_is_assigned_first(make_request, two_instruments):
    requests = [
        make_request("B1-0", 0, sample_injection=3, column_code="C-A"),
        make_request("B2-0", 1, sample_injection=5, column_code="C-B", priority="urgent"),
        make_request("B3-0", 2, sample_injection=2, column_code="C-C"),
    ]
    plan = assign([], requests, two_instruments)

    assert _layout(plan) == {"HPLC-1": ["B2-0"], "HPLC-2": ["B3-0", "B1-0"]}
    assert plan.schedules["HPLC-1"].total_time == pytest.approx(50.0)
    assert plan.schedules["HPLC-2"].total_time == pytest.approx(50.0)


def test_shortest_test_first_within_priority(make_request, two_instruments):
    requests = [
        make_request("B1-0", 0, sample_injection=9, column_code="C-A"),
        make_request("B2-0", 1, sample_injection=1, column_code="C-B"),
        make_request("B3-0", 2, sample_injection=4, column_code="C-C"),
    ]
    plan = assign([], requests, two_instruments)

    assert _layout(plan) == {"HPLC-1": ["B2-0", "B1-0"], "HPLC-2": ["B3-0"]}


def test_ties_follow_submission_order(make_request, two_instruments):
    requests = [
        make_request("B1-0", 0, column_code="C-A"),
        make_request("B2-0", 1, column_code="C-B"),
    ]
    plan = assign([], requests, two_instruments)
    assert _layout(plan) == {"HPLC-1": ["B1-0"], "HPLC-2": ["B2-0"]}


def test_group_is_placed_as_one_contiguous_unit(scenario_pair, make_request, two_instruments):
    grouping = CompatibilityGrouper().group(
        list(scenario_pair) + [make_request("B3-0", 2, column_code="C-X")]
    )
    plan = assign(grouping.groups, grouping.ungrouped, two_instruments)

    schedule = plan.schedules["HPLC-2"]
    assert [t.id for t in schedule.tests] == ["B1-0", "B2-0"]
    assert schedule.total_time == pytest.approx(70.0)
    lead, member = schedule.tests
    assert lead.is_grouped and member.is_grouped
    assert lead.group_id == member.group_id == "grp-B1-0"
    assert member.time_saved == pytest.approx(5.0)
    assert schedule.groups[0].member_ids == ["B1-0", "B2-0"]
    assert validate_plan(plan) == []


def test_incapable_instruments_leave_test_unassigned(make_request):
    instruments = [Instrument("HPLC-1", "HPLC 1", frozenset({"PDA"}))]
    plan = assign([], [make_request("B1-0", 0, detector_type_id="UV1")], instruments)

    assert plan.all_tests() == []
    assert len(plan.unassigned) == 1
    assert plan.unassigned[0].code == NO_ELIGIBLE_INSTRUMENT
    assert plan.unassigned[0].request.request_id == "B1-0"


def test_inactive_instrument_receives_nothing(make_request):
    instruments = [
        Instrument("HPLC-1", "HPLC 1", is_active=False),
        Instrument("HPLC-2", "HPLC 2"),
    ]
    requests = [make_request(f"B{i}-0", i, column_code=f"C-{i}") for i in range(3)]
    plan = assign([], requests, instruments)

    assert list(plan.schedules) == ["HPLC-2"]
    assert len(plan.schedules["HPLC-2"].tests) == 3


def test_instrument_load_limit(make_request, two_instruments):
    constants = SchedulingConstants(max_instrument_minutes=25)
    requests = [
        make_request("B1-0", 0, sample_injection=2, column_code="C-A"),
        make_request("B2-0", 1, sample_injection=2, column_code="C-B"),
        make_request("B3-0", 2, sample_injection=2, column_code="C-C"),
        make_request("B4-0", 3, sample_injection=3, column_code="C-D"),
    ]
    plan = assign([], requests, two_instruments, constants)

    assert all(s.total_time <= 25 for s in plan.schedules.values())
    codes = {u.request.request_id: u.code for u in plan.unassigned}
    assert codes == {"B3-0": EXCEEDS_INSTRUMENT_CAPACITY, "B4-0": EXCEEDS_INSTRUMENT_CAPACITY}


def test_assign_is_idempotent(make_request, two_instruments):
    requests = [
        make_request(f"B{i}-0", i, sample_injection=(i * 7) % 5 + 1,
                     standard_injection=1, wash_time=5.0,
                     column_code="C18-1" if i % 2 else "C8-2",
                     priority=("urgent", "high", "normal")[i % 3])
        for i in range(8)
    ]
    grouping = CompatibilityGrouper().group(requests)

    first = assign(grouping.groups, grouping.ungrouped, two_instruments)
    second = assign(grouping.groups, grouping.ungrouped, two_instruments)
    assert export_plan_to_dict(first) == export_plan_to_dict(second)


def test_assigned_tests_carry_instrument_and_position(make_request, two_instruments):
    requests = [make_request(f"B{i}-0", i, column_code=f"C-{i}") for i in range(4)]
    plan = assign([], requests, two_instruments, company_id="CO1", location_id="LOC1")

    assert plan.key == ("CO1", "LOC1")
    for schedule in plan.schedules.values():
        for idx, test in enumerate(schedule.tests):
            assert test.instrument_id == schedule.instrument_id
            assert test.position_index == idx
            assert test.state == TestState.SCHEDULED


def test_default_limit_holds_runs_longer_than_72_hours(make_request, two_instruments):
    requests = [
        make_request("B1-0", 0, sample_injection=500, column_code="C-A"),
        make_request("B2-0", 1, sample_injection=3, column_code="C-B"),
    ]
    plan = assign([], requests, two_instruments)

    assert [t.id for t in plan.all_tests()] == ["B2-0"]
    assert [(u.request.request_id, u.code) for u in plan.unassigned] == [
        ("B1-0", EXCEEDS_INSTRUMENT_CAPACITY)
    ]
