# Plan export and validation.
# Version: 1.0.0
# Converts scheduling plans to snapshots, summaries, and Excel worksheets.

import json
from pathlib import Path
from typing import Any

from .grouping import SAVING_EPSILON
from .plan import InstrumentSchedule, ScheduledTest, SchedulingPlan, TestGroup

# Tolerance when comparing summed minutes
TIME_TOLERANCE = 1e-6


def export_plan_to_dict(plan: SchedulingPlan) -> dict[str, Any]:
    """Export a plan as a snapshot for collaborators.

    Layout: `{companyId, locationId, version, instruments: {instrumentId:
    {tests, groups, totalTime}}, unassigned}`.

    Args:
        plan: Plan to export.

    Returns:
        JSON-serializable dictionary.
    """
    return {
        "companyId": plan.company_id,
        "locationId": plan.location_id,
        "version": plan.version,
        "totalTime": plan.total_time,
        "instruments": {
            instrument_id: _export_schedule(schedule)
            for instrument_id, schedule in plan.schedules.items()
        },
        "unassigned": [
            {
                "requestId": entry.request.request_id,
                "batchId": entry.request.batch_id,
                "batchNumber": entry.request.batch_number,
                "testName": entry.request.test_name,
                "priority": entry.request.priority,
                "code": entry.code,
                "reason": entry.reason,
            }
            for entry in plan.unassigned
        ],
    }


def _export_schedule(schedule: InstrumentSchedule) -> dict[str, Any]:
    return {
        "instrumentName": schedule.instrument_name,
        "tests": [_export_test(t) for t in schedule.tests],
        "groups": [_export_group(g) for g in schedule.groups],
        "totalTime": schedule.total_time,
    }


def _export_test(test: ScheduledTest) -> dict[str, Any]:
    data = {
        "id": test.id,
        "batchId": test.request.batch_id,
        "batchNumber": test.request.batch_number,
        "productName": test.request.product_name,
        "testName": test.request.test_name,
        "priority": test.priority,
        "instrumentId": test.instrument_id,
        "positionIndex": test.position_index,
        "executionTime": test.execution_time,
        "isGrouped": test.is_grouped,
        "groupId": test.group_id,
        "groupReason": test.group_reason,
        "state": test.state.value,
    }
    # Standalone tests carry no timeSaved field
    if test.is_grouped:
        data["timeSaved"] = test.time_saved
    return data


def _export_group(group: TestGroup) -> dict[str, Any]:
    column, detector, phases = group.key
    return {
        "groupId": group.group_id,
        "memberIds": list(group.member_ids),
        "columnCode": column,
        "detectorTypeId": detector,
        "mobilePhaseCodes": list(phases),
        "executionTime": group.execution_time,
        "standaloneTime": group.standalone_time,
        "timeSaved": group.time_saved,
        "reason": group.reason,
    }


def export_to_json(plan: SchedulingPlan, pretty: bool = True) -> str:
    """Export a plan snapshot as JSON.

    Args:
        plan: Plan to export.
        pretty: Whether to format with indentation.

    Returns:
        JSON string.
    """
    return json.dumps(export_plan_to_dict(plan), indent=2 if pretty else None)


def generate_plan_summary(plan: SchedulingPlan) -> str:
    """Generate a text summary of a plan.

    Args:
        plan: Plan to summarize.

    Returns:
        Multi-line string with one block per instrument.
    """
    lines = []
    lines.append(f"=== Scheduling Plan {plan.company_id}/{plan.location_id} (v{plan.version}) ===")
    lines.append(f"Total instrument time: {plan.total_time:.1f} min")
    lines.append(f"Time saved by grouping: {sum(g.time_saved for g in plan.all_groups()):.1f} min")
    lines.append("")

    for schedule in plan.schedules.values():
        lines.append(f"--- {schedule.instrument_name or schedule.instrument_id} "
                     f"({schedule.total_time:.1f} min) ---")
        if not schedule.tests:
            lines.append("  (empty)")
        for test in schedule.tests:
            group = f" [{test.group_id}]" if test.is_grouped else ""
            lines.append(
                f"  {test.position_index + 1}. {test.id} {test.request.test_name} "
                f"({test.priority}) {test.execution_time:.1f} min{group}"
            )
        lines.append("")

    if plan.unassigned:
        lines.append("--- Unassigned ---")
        for entry in plan.unassigned:
            lines.append(f"  {entry.request.request_id}: {entry.code} - {entry.reason}")

    return "\n".join(lines)


def validate_plan(plan: SchedulingPlan) -> list[str]:
    """Check a plan's structural invariants.

    Checks:
    1. Positions are 0..n-1 and instrument ids match the schedule
    2. Every instrument can run the detector types placed on it
    3. Group members exist, are contiguous, and number at least two
    4. Groups never report negative savings
    5. Totals equal the sum of execution times
    6. No test appears twice

    Args:
        plan: Plan to validate.

    Returns:
        List of violation messages (empty if valid).
    """
    violations = []
    seen: set[str] = set()

    for instrument_id, schedule in plan.schedules.items():
        instrument = plan.instruments.get(instrument_id)
        for idx, test in enumerate(schedule.tests):
            if test.position_index != idx:
                violations.append(f"{test.id}: position {test.position_index} but at index {idx}")
            if test.instrument_id != instrument_id:
                violations.append(f"{test.id}: instrument {test.instrument_id} but on {instrument_id}")
            if instrument is not None and not instrument.can_run(test.detector_type_id):
                violations.append(f"{test.id}: {instrument_id} cannot run detector {test.detector_type_id}")
            if test.id in seen:
                violations.append(f"{test.id}: scheduled more than once")
            seen.add(test.id)
            if test.is_grouped and schedule.get_group(test.group_id) is None:
                violations.append(f"{test.id}: unknown group {test.group_id}")

        for group in schedule.groups:
            positions = [schedule.index_of(m) for m in group.member_ids]
            if any(p < 0 for p in positions):
                violations.append(f"{group.group_id}: member missing from {instrument_id}")
                continue
            if group.size < 2:
                violations.append(f"{group.group_id}: fewer than two members")
            if positions != list(range(positions[0], positions[0] + len(positions))):
                violations.append(f"{group.group_id}: members are not contiguous")
            if group.time_saved < -SAVING_EPSILON:
                violations.append(f"{group.group_id}: negative time saved {group.time_saved}")

        expected = sum(t.execution_time for t in schedule.tests)
        if abs(expected - schedule.total_time) > TIME_TOLERANCE:
            violations.append(
                f"{instrument_id}: total {schedule.total_time} but tests sum to {expected}"
            )

    for entry in plan.unassigned:
        if entry.request.request_id in seen:
            violations.append(f"{entry.request.request_id}: both scheduled and unassigned")

    return violations


def export_plan_to_excel(plan: SchedulingPlan, output_path: str | Path) -> Path:
    """Write the plan as a worksheet with one row per test.

    Args:
        plan: Plan to export.
        output_path: Path of the .xlsx file.

    Returns:
        Path to the generated file.
    """
    import openpyxl
    from openpyxl.styles import Alignment, Font, PatternFill
    from openpyxl.utils import get_column_letter

    output_path = Path(output_path)
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Instrument Plan"

    headers = [
        "INSTRUMENT", "POSITION", "TEST_ID", "BATCH_NUMBER", "PRODUCT_NAME",
        "TEST_NAME", "PRIORITY", "EXECUTION_TIME", "GROUP_ID", "TIME_SAVED",
        "STATE", "REASON",
    ]
    header_fill = PatternFill(start_color="3498db", end_color="3498db", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF")
    for col_idx, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col_idx, value=header)
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal="center")

    row = 2
    for schedule in plan.schedules.values():
        for test in schedule.tests:
            values = [
                schedule.instrument_name or schedule.instrument_id,
                test.position_index + 1,
                test.id,
                test.request.batch_number,
                test.request.product_name,
                test.request.test_name,
                test.priority,
                round(test.execution_time, 2),
                test.group_id or "",
                round(test.time_saved, 2) if test.time_saved is not None else "",
                test.state.value,
                test.group_reason or "",
            ]
            for col_idx, value in enumerate(values, 1):
                ws.cell(row=row, column=col_idx, value=value)
            row += 1

    for entry in plan.unassigned:
        values = [
            "", "", entry.request.request_id, entry.request.batch_number,
            entry.request.product_name, entry.request.test_name, entry.request.priority,
            "", "", "", entry.code, entry.reason,
        ]
        for col_idx, value in enumerate(values, 1):
            ws.cell(row=row, column=col_idx, value=value)
        row += 1

    for col_idx in range(1, len(headers) + 1):
        ws.column_dimensions[get_column_letter(col_idx)].width = 16

    output_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(output_path)
    return output_path
