import pytest

from hplc_scheduler.constants import SchedulingConstants
from hplc_scheduler.grouping import (
    CompatibilityGrouper,
    describe_key,
    evaluate_group,
    grouping_key,
)


def test_scenario_pair_is_grouped(scenario_pair):
    result = CompatibilityGrouper().group(list(scenario_pair))

    assert len(result.groups) == 1
    assert result.ungrouped == []
    group = result.groups[0]
    assert group.member_ids == ["B1-0", "B2-0"]
    assert group.group_id == "grp-B1-0"
    assert group.timing.execution_time == pytest.approx(70.0)
    assert group.timing.time_saved == pytest.approx(5.0)


def test_group_reason_names_shared_key(scenario_pair):
    result = CompatibilityGrouper().group(list(scenario_pair))
    reason = result.groups[0].reason
    assert "C18-1" in reason
    assert "UV1" in reason
    assert "MP01/MP02" in reason


def test_no_saving_means_no_group(make_request):
    # Nothing shared and no wash: merging saves nothing
    first = make_request("B1-0", 0, sample_injection=2)
    second = make_request("B2-0", 1, sample_injection=3)

    result = CompatibilityGrouper().group([first, second])

    assert result.groups == []
    assert [r.request_id for r in result.ungrouped] == ["B1-0", "B2-0"]


def test_missing_column_or_detector_stays_ungrouped(make_request):
    requests = [
        make_request("B1-0", 0, standard_injection=1, wash_time=5.0, column_code=None),
        make_request("B2-0", 1, standard_injection=1, wash_time=5.0, detector_type_id=None),
        make_request("B3-0", 2, standard_injection=1, wash_time=5.0),
    ]
    result = CompatibilityGrouper().group(requests)

    assert result.groups == []
    assert len(result.ungrouped) == 3


def test_not_applicable_configuration_is_not_grouped(make_request):
    requests = [
        make_request("B1-0", 0, standard_injection=1, wash_time=5.0, test_applicability=False),
        make_request("B2-0", 1, standard_injection=1, wash_time=5.0),
    ]
    assert grouping_key(requests[0]) is None
    assert CompatibilityGrouper().group(requests).groups == []


def test_phase_order_matters(make_request):
    first = make_request("B1-0", 0, standard_injection=1, wash_time=5.0)
    second = make_request(
        "B2-0", 1, standard_injection=1, wash_time=5.0,
        mobile_phase_codes=("MP02", "MP01", "", "", "", ""),
    )
    assert grouping_key(first) != grouping_key(second)
    assert CompatibilityGrouper().group([first, second]).groups == []


def test_wash_slots_do_not_affect_compatibility(make_request):
    first = make_request(
        "B1-0", 0, standard_injection=1, wash_time=5.0,
        mobile_phase_codes=("MP01", "MP02", "", "", "W1", ""),
    )
    second = make_request(
        "B2-0", 1, standard_injection=1, wash_time=5.0,
        mobile_phase_codes=("MP01", "MP02", "", "", "W2", "W3"),
    )
    assert len(CompatibilityGrouper().group([first, second]).groups) == 1


def test_classes_are_grouped_separately(make_request):
    requests = [
        make_request("B1-0", 0, standard_injection=1, wash_time=5.0),
        make_request("B2-0", 1, standard_injection=1, wash_time=5.0, column_code="C8-2"),
        make_request("B3-0", 2, standard_injection=1, wash_time=5.0),
        make_request("B4-0", 3, standard_injection=1, wash_time=5.0, column_code="C8-2"),
    ]
    result = CompatibilityGrouper().group(requests)

    assert [g.member_ids for g in result.groups] == [["B1-0", "B3-0"], ["B2-0", "B4-0"]]


def test_oversized_class_is_partitioned(make_request):
    constants = SchedulingConstants(max_group_size=2, solver_timeout_seconds=5)
    requests = [
        make_request(f"B{i}-0", i, standard_injection=1, standard_run_time=15.0, wash_time=5.0)
        for i in range(3)
    ]
    result = CompatibilityGrouper(constants).group(requests)

    assert len(result.groups) == 1
    assert result.groups[0].timing.execution_time == pytest.approx(15 + 5 + 20)
    assert len(result.ungrouped) == 1
    assert result.total_time_saved == pytest.approx(20.0)


def test_group_run_limit_splits_class(make_request):
    # Each test alone is 40 min; a pair is 60 min, three together 80 min
    constants = SchedulingConstants(max_group_run_minutes=60, solver_timeout_seconds=5)
    requests = [
        make_request(f"B{i}-0", i, sample_injection=2, standard_injection=1,
                     standard_run_time=15.0, wash_time=5.0)
        for i in range(4)
    ]
    result = CompatibilityGrouper(constants).group(requests)

    assert len(result.groups) == 2
    assert all(g.timing.execution_time <= 60 for g in result.groups)
    assert result.total_time_saved == pytest.approx(2 * 20.0)


def test_grouper_never_emits_negative_savings(make_request):
    requests = [
        make_request(f"B{i}-0", i, sample_injection=i + 1, standard_injection=i % 2,
                     standard_run_time=9.0, blank_injection=1, wash_time=float(i))
        for i in range(5)
    ]
    result = CompatibilityGrouper().group(requests)
    assert all(g.timing.time_saved >= 0 for g in result.groups)


def test_grouping_is_deterministic(make_request):
    constants = SchedulingConstants(max_group_size=2, solver_timeout_seconds=5)
    requests = [
        make_request(f"B{i}-0", i, standard_injection=1, wash_time=5.0) for i in range(5)
    ]
    first = CompatibilityGrouper(constants).group(requests)
    second = CompatibilityGrouper(constants).group(requests)
    assert [g.member_ids for g in first.groups] == [g.member_ids for g in second.groups]


def test_evaluate_group_respects_size_limit(scenario_pair):
    assert evaluate_group(list(scenario_pair), SchedulingConstants(max_group_size=1)) is None
    assert evaluate_group(list(scenario_pair), SchedulingConstants()) is not None


def test_describe_key_marks_empty_slots():
    assert describe_key(("C18-1", "UV1", ("MP01", "", "", ""))) == (
        "Shared run: column=C18-1, detector=UV1, phases=MP01/-/-/-"
    )


def test_member_adding_no_saving_stays_standalone(make_request):
    # B3-0 shares nothing and has no wash: the pair saves as much as all three
    requests = [
        make_request("B1-0", 0, sample_injection=2, standard_injection=1,
                     standard_run_time=15.0, wash_time=5.0),
        make_request("B3-0", 1, sample_injection=3),
        make_request("B2-0", 2, sample_injection=2, standard_injection=1,
                     standard_run_time=15.0, wash_time=5.0),
    ]
    result = CompatibilityGrouper().group(requests)

    assert [g.member_ids for g in result.groups] == [["B1-0", "B2-0"]]
    assert [r.request_id for r in result.ungrouped] == ["B3-0"]
    assert result.total_time_saved == pytest.approx(20.0)


def test_free_rider_dropped_from_solver_partition(make_request):
    constants = SchedulingConstants(max_group_size=3, solver_timeout_seconds=5)
    requests = [
        make_request("B1-0", 0, standard_injection=1, standard_run_time=15.0, wash_time=5.0),
        make_request("B2-0", 1, sample_injection=4),
        make_request("B3-0", 2, standard_injection=1, standard_run_time=15.0, wash_time=5.0),
        make_request("B4-0", 3, sample_injection=4),
    ]
    result = CompatibilityGrouper(constants).group(requests)

    assert [g.member_ids for g in result.groups] == [["B1-0", "B3-0"]]
    assert [r.request_id for r in result.ungrouped] == ["B2-0", "B4-0"]
