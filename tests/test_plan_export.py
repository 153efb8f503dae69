import json

import openpyxl
import pytest

from hplc_scheduler.assigner import assign
from hplc_scheduler.events import ChangeEvent, assignment_events, publish_events
from hplc_scheduler.grouping import CompatibilityGrouper
from hplc_scheduler.plan import Instrument
from hplc_scheduler.plan_export import (
    export_plan_to_dict,
    export_plan_to_excel,
    export_to_json,
    generate_plan_summary,
    validate_plan,
)


@pytest.fixture
def plan(scenario_pair, make_request):
    instruments = [
        Instrument("HPLC-1", "HPLC 1"),
        Instrument("HPLC-2", "HPLC 2", frozenset({"PDA"})),
    ]
    requests = list(scenario_pair) + [make_request("B3-0", 2, column_code="C-X")]
    grouping = CompatibilityGrouper().group(requests)
    return assign(grouping.groups, grouping.ungrouped, instruments, company_id="CO1", location_id="LOC1")


def test_snapshot_layout(plan):
    snapshot = export_plan_to_dict(plan)

    assert set(snapshot["instruments"]) == {"HPLC-1", "HPLC-2"}
    hplc1 = snapshot["instruments"]["HPLC-1"]
    assert set(hplc1) >= {"tests", "groups", "totalTime"}
    assert [t["id"] for t in hplc1["tests"]] == ["B3-0", "B1-0", "B2-0"]
    assert hplc1["totalTime"] == pytest.approx(80.0)
    assert hplc1["groups"][0]["memberIds"] == ["B1-0", "B2-0"]
    assert "timeSaved" not in hplc1["tests"][0]
    assert hplc1["tests"][2]["timeSaved"] == pytest.approx(5.0)
    assert snapshot["unassigned"] == []


def test_json_export_round_trips(plan):
    assert json.loads(export_to_json(plan)) == export_plan_to_dict(plan)


def test_summary_lists_instruments(plan):
    summary = generate_plan_summary(plan)
    assert "HPLC 1" in summary
    assert "grp-B1-0" in summary
    assert "(empty)" in summary


def test_valid_plan_has_no_violations(plan):
    assert validate_plan(plan) == []


def test_validation_flags_broken_group(plan):
    plan.schedules["HPLC-1"].tests.reverse()
    plan.schedules["HPLC-1"].tests[0].position_index = 0
    violations = validate_plan(plan)
    assert any("position" in v for v in violations)


def test_validation_flags_wrong_total(plan):
    plan.schedules["HPLC-1"].total_time += 1
    assert any("total" in v for v in validate_plan(plan))


def test_excel_export(plan, tmp_path):
    path = export_plan_to_excel(plan, tmp_path / "out" / "plan.xlsx")

    sheet = openpyxl.load_workbook(path).active
    assert sheet.cell(row=1, column=1).value == "INSTRUMENT"
    assert sheet.cell(row=2, column=3).value == "B3-0"
    assert sheet.max_row == 4


def test_assignment_events_cover_every_test(plan):
    events = assignment_events(plan)
    assigned = [e.test_ids[0] for e in events if e.kind == "ASSIGNED"]
    assert sorted(assigned) == ["B1-0", "B2-0", "B3-0"]
    assert events[0].to_dict()["kind"] == "GROUPED"


def test_publish_continues_after_failing_sink():
    class Broken:
        def publish(self, event):
            raise RuntimeError("down")

    class Recorder:
        def __init__(self):
            self.seen = []

        def publish(self, event):
            self.seen.append(event)

    recorder = Recorder()
    events = [ChangeEvent("MOVED", ["B1-0"]), ChangeEvent("GROUPED", ["B1-0", "B2-0"])]

    warnings = publish_events(events, [Broken(), recorder])

    assert len(warnings) == 2
    assert recorder.seen == events
