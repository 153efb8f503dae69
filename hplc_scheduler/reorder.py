# Manual re-sequencing of scheduled tests.
# Version: 1.0.0
# Moves one test and regroups only the units around its old and new positions.

import copy
import logging
from dataclasses import dataclass, field

from .assigner import bind_group
from .constants import SchedulingConstants
from .errors import IncompatibleInstrument, SchedulingError
from .events import ChangeEvent
from .grouping import SAVING_EPSILON, evaluate_group, grouping_key
from .plan import (
    InstrumentSchedule,
    ScheduledTest,
    SchedulingPlan,
    TestGroup,
    TestState,
)
from .time_calculator import GroupTiming, compute_execution_time

logger = logging.getLogger(__name__)


@dataclass
class MoveResult:
    """Outcome of a manual move.

    Attributes:
        plan: The updated plan (a new object).
        events: Change events describing the move.
    """
    plan: SchedulingPlan
    events: list[ChangeEvent] = field(default_factory=list)


def move(
    plan: SchedulingPlan,
    test_id: str,
    target_instrument_id: str,
    target_index: int,
    constants: SchedulingConstants | None = None
) -> SchedulingPlan:
    """Move a test to a position on an instrument.

    See move_test for the rules.

    Returns:
        The updated plan. The input plan is not modified.
    """
    return move_test(plan, test_id, target_instrument_id, target_index, constants).plan


def move_test(
    plan: SchedulingPlan,
    test_id: str,
    target_instrument_id: str,
    target_index: int,
    constants: SchedulingConstants | None = None
) -> MoveResult:
    """Move a test to a position on an instrument and regroup locally.

    The test leaves its group (dissolving it when fewer than two members
    remain) and is inserted at target_index of the destination, counted
    after removal and clamped to the schedule length. The units directly
    before and after the new position are checked for a shared run; the
    best merge that strictly increases time saved is applied. Tests in
    the hold table may be moved onto an instrument.

    Args:
        plan: Plan to edit; left unchanged.
        test_id: Test to move.
        target_instrument_id: Destination instrument within the same plan.
        target_index: Destination position.
        constants: SchedulingConstants for group limits.

    Returns:
        MoveResult with the new plan and its change events.

    Raises:
        IncompatibleInstrument: If the destination is not in the plan or
            cannot run the test's detector type.
        SchedulingError: If the test is not in the plan.
    """
    constants = constants or SchedulingConstants()

    location = plan.find_test(test_id)
    hold_index = plan.find_unassigned(test_id) if location is None else -1
    if location is None and hold_index < 0:
        raise SchedulingError(f"Test {test_id} is not part of this plan", {"test_id": test_id})

    request = (
        location[0].tests[location[1]].request if location is not None
        else plan.unassigned[hold_index].request
    )
    if target_instrument_id not in plan.schedules:
        raise IncompatibleInstrument(
            test_id, target_instrument_id,
            f"Instrument is not an active instrument of plan {plan.company_id}/{plan.location_id}"
        )
    instrument = plan.instruments.get(target_instrument_id)
    if instrument is not None and not instrument.can_run(request.detector_type_id):
        raise IncompatibleInstrument(
            test_id, target_instrument_id,
            f"Detector type {request.detector_type_id or 'none'} is not supported"
        )

    updated = copy.deepcopy(plan)
    events: list[ChangeEvent] = []
    standalone = compute_execution_time(request.configuration)

    if location is not None:
        source = updated.schedules[location[0].instrument_id]
        old_instrument_id, old_position = source.instrument_id, location[1]
        test = source.tests.pop(old_position)
        old_group_id = test.group_id
        test.clear_group(standalone)
        if old_group_id is not None:
            _refresh_group(source, old_group_id, constants, events)
        source.recalculate()
    else:
        source = None
        old_instrument_id, old_position = None, None
        updated.unassigned.pop(hold_index)
        test = ScheduledTest(
            id=test_id,
            request=request,
            instrument_id=target_instrument_id,
            position_index=0,
            execution_time=standalone,
        )

    destination = updated.schedules[target_instrument_id]
    _insert(destination, test, target_index, constants, events)
    test.advance(TestState.MANUALLY_MOVED)
    destination.recalculate()

    events.insert(0, ChangeEvent(
        kind="MOVED",
        test_ids=[test_id],
        old_instrument_id=old_instrument_id,
        new_instrument_id=target_instrument_id,
        old_position=old_position,
        new_position=test.position_index,
        reason=_move_reason(source, destination),
        details={"executionTime": test.execution_time, "groupId": test.group_id},
    ))
    logger.info(
        "Moved %s from %s[%s] to %s[%d]",
        test_id, old_instrument_id or "hold", old_position, target_instrument_id, test.position_index
    )
    return MoveResult(plan=updated, events=events)


def _move_reason(source: InstrumentSchedule | None, destination: InstrumentSchedule) -> str:
    target = destination.instrument_name or destination.instrument_id
    if source is None:
        return f"Manually scheduled from hold onto {target}"
    if source is destination:
        return f"Manually re-sequenced on {target}"
    return f"Manually moved from {source.instrument_name or source.instrument_id} to {target}"


def _refresh_group(
    schedule: InstrumentSchedule,
    group_id: str,
    constants: SchedulingConstants,
    events: list[ChangeEvent]
) -> None:
    """Recompute a group after one of its members left."""
    group = schedule.get_group(group_id)
    schedule.groups.remove(group)
    members = [t for t in schedule.tests if t.group_id == group_id]
    for member in members:
        member.clear_group(compute_execution_time(member.request.configuration))

    timing = evaluate_group([m.request for m in members], constants) if len(members) > 1 else None
    if timing is None:
        events.append(ChangeEvent(
            kind="GROUP_DISSOLVED",
            test_ids=[m.id for m in members],
            old_instrument_id=schedule.instrument_id,
            new_instrument_id=schedule.instrument_id,
            reason=f"Group {group_id} dissolved: no shared run remains",
            details={"groupId": group_id},
        ))
        return

    new_group = bind_group(members, group.key, timing)
    schedule.groups.append(new_group)
    events.append(ChangeEvent(
        kind="GROUP_UPDATED",
        test_ids=list(new_group.member_ids),
        old_instrument_id=schedule.instrument_id,
        new_instrument_id=schedule.instrument_id,
        reason=new_group.reason,
        details={"groupId": new_group.group_id, "previousGroupId": group_id,
                 "timeSaved": new_group.time_saved},
    ))


def _unit_span(schedule: InstrumentSchedule, index: int) -> tuple[int, int]:
    """First and last position of the unit (group or single test) at index."""
    test = schedule.tests[index]
    if test.group_id is None:
        return (index, index)
    return schedule.group_span(test.group_id)


def _existing_saving(schedule: InstrumentSchedule, span: tuple[int, int] | None) -> float:
    if span is None:
        return 0.0
    group = schedule.get_group(schedule.tests[span[0]].group_id)
    return group.time_saved if group is not None else 0.0


def _insert(
    schedule: InstrumentSchedule,
    test: ScheduledTest,
    target_index: int,
    constants: SchedulingConstants,
    events: list[ChangeEvent]
) -> None:
    """Insert a standalone test and try local regrouping with its neighbours."""
    index = max(0, min(target_index, len(schedule.tests)))
    key = grouping_key(test.request)

    # Position inside an existing group: join it or step past it
    if 0 < index < len(schedule.tests):
        before, after = schedule.tests[index - 1], schedule.tests[index]
        if before.group_id is not None and before.group_id == after.group_id:
            group = schedule.get_group(before.group_id)
            start, end = schedule.group_span(group.group_id)
            members = schedule.tests[start:end + 1]
            members.insert(index - start, test)
            if key == group.key:
                timing = evaluate_group([m.request for m in members], constants)
                if timing is not None and timing.time_saved - group.time_saved > SAVING_EPSILON:
                    _apply_merge(schedule, members, timing, [group], (start, end), events)
                    return
            index = end + 1

    options = []
    prev_span = _unit_span(schedule, index - 1) if index > 0 else None
    next_span = _unit_span(schedule, index) if index < len(schedule.tests) else None
    if key is not None:
        if prev_span is not None and next_span is not None:
            options.append((prev_span, next_span))
        if prev_span is not None:
            options.append((prev_span, None))
        if next_span is not None:
            options.append((None, next_span))

    best = None
    for prev, nxt in options:
        members = (
            (schedule.tests[prev[0]:prev[1] + 1] if prev else [])
            + [test]
            + (schedule.tests[nxt[0]:nxt[1] + 1] if nxt else [])
        )
        if any(grouping_key(m.request) != key for m in members):
            continue
        timing = evaluate_group([m.request for m in members], constants)
        if timing is None:
            continue
        gain = timing.time_saved - _existing_saving(schedule, prev) - _existing_saving(schedule, nxt)
        if gain > SAVING_EPSILON and (best is None or gain > best[0] + SAVING_EPSILON):
            best = (gain, prev, nxt, members, timing)

    if best is None:
        schedule.tests.insert(index, test)
        return

    _, prev, nxt, members, timing = best
    replaced = [
        schedule.get_group(schedule.tests[span[0]].group_id)
        for span in (prev, nxt) if span is not None
    ]
    start = prev[0] if prev else index
    end = nxt[1] if nxt else index - 1
    _apply_merge(schedule, members, timing, [g for g in replaced if g is not None], (start, end), events)


def _apply_merge(
    schedule: InstrumentSchedule,
    members: list[ScheduledTest],
    timing: GroupTiming,
    replaced: list[TestGroup],
    span: tuple[int, int],
    events: list[ChangeEvent]
) -> None:
    """Replace positions span[0]..span[1] with members bound into one run."""
    for group in replaced:
        schedule.groups.remove(group)
    for member in members:
        member.clear_group(compute_execution_time(member.request.configuration))

    new_group = bind_group(members, _key_of(members), timing)
    schedule.tests[span[0]:span[1] + 1] = members
    schedule.groups.append(new_group)
    events.append(ChangeEvent(
        kind="GROUPED",
        test_ids=list(new_group.member_ids),
        new_instrument_id=schedule.instrument_id,
        reason=new_group.reason,
        details={
            "groupId": new_group.group_id,
            "replacedGroupIds": [g.group_id for g in replaced],
            "timeSaved": new_group.time_saved,
        },
    ))


def _key_of(members: list[ScheduledTest]) -> tuple:
    return grouping_key(members[0].request)
