# Instrument assignment for grouped and standalone tests.
# Version: 1.0.0
# Orders units by priority and shortest run, then balances load across instruments.

import logging
from dataclasses import dataclass
from typing import Sequence

from .constants import SchedulingConstants
from .data_loader import TestRequest
from .grouping import CandidateGroup, GroupKey, describe_key, group_id_for
from .plan import (
    EXCEEDS_INSTRUMENT_CAPACITY,
    NO_ELIGIBLE_INSTRUMENT,
    Instrument,
    InstrumentSchedule,
    ScheduledTest,
    SchedulingPlan,
    TestGroup,
    TestState,
    UnassignedTest,
)
from .time_calculator import GroupTiming, compute_execution_time

logger = logging.getLogger(__name__)


@dataclass
class SchedulingUnit:
    """A group or a single request placed on an instrument as one block.

    Attributes:
        requests: Requests in run order.
        group: The shared run, or None for a standalone request.
        execution_time: Minutes the block occupies.
        priority_rank: Rank of the most urgent member (lower first).
        submission_order: Earliest member's submission order.
    """
    requests: list[TestRequest]
    group: CandidateGroup | None
    execution_time: float
    priority_rank: int
    submission_order: int

    @property
    def detector_type_id(self) -> str | None:
        return self.requests[0].detector_type_id

    @property
    def sort_key(self) -> tuple[int, float, int]:
        return (self.priority_rank, self.execution_time, self.submission_order)

    @property
    def label(self) -> str:
        if self.group is not None:
            return self.group.group_id
        return self.requests[0].request_id


def build_units(
    groups: Sequence[CandidateGroup],
    ungrouped: Sequence[TestRequest],
    constants: SchedulingConstants
) -> list[SchedulingUnit]:
    """Create scheduling units sorted by priority, shortest run, submission order.

    Args:
        groups: Shared runs from the grouper.
        ungrouped: Standalone requests.
        constants: SchedulingConstants for priority ranks.

    Returns:
        Units in assignment order.
    """
    units = []
    for group in groups:
        units.append(SchedulingUnit(
            requests=list(group.members),
            group=group,
            execution_time=group.timing.execution_time,
            priority_rank=min(constants.get_priority_rank(m.priority) for m in group.members),
            submission_order=group.submission_order,
        ))
    for request in ungrouped:
        units.append(SchedulingUnit(
            requests=[request],
            group=None,
            execution_time=compute_execution_time(request.configuration),
            priority_rank=constants.get_priority_rank(request.priority),
            submission_order=request.submission_order,
        ))
    units.sort(key=lambda u: u.sort_key)
    return units


def bind_group(
    tests: list[ScheduledTest],
    key: GroupKey,
    timing: GroupTiming
) -> TestGroup:
    """Mark scheduled tests as members of one shared run.

    Sets each member's execution time to its share of the run and its
    time saved to standalone minus share.

    Args:
        tests: Member tests in run order.
        key: Compatibility key of the run.
        timing: GroupTiming for the members in the same order.

    Returns:
        The TestGroup describing the run.
    """
    group_id = group_id_for(tests[0].id)
    reason = describe_key(key)
    for test, share, saved in zip(tests, timing.member_shares, timing.member_savings):
        test.is_grouped = True
        test.group_id = group_id
        test.group_reason = reason
        test.execution_time = share
        test.time_saved = saved
    return TestGroup(
        group_id=group_id,
        member_ids=[t.id for t in tests],
        key=key,
        execution_time=timing.execution_time,
        standalone_time=timing.standalone_time,
        time_saved=timing.time_saved,
        reason=f"{reason}; saved {timing.time_saved:.1f} min by grouping {len(tests)} tests",
    )


def assign(
    groups: Sequence[CandidateGroup],
    ungrouped: Sequence[TestRequest],
    instruments: Sequence[Instrument],
    constants: SchedulingConstants | None = None,
    company_id: str = "",
    location_id: str = ""
) -> SchedulingPlan:
    """Distribute groups and standalone tests across instruments.

    Units are taken in priority order (urgent, high, normal), shortest run
    first within a priority, ties by submission order. Each unit goes to the
    eligible instrument with the lowest current total time; ties go to the
    instrument listed first. A unit no instrument can host is placed in the
    plan's unassigned list.

    Args:
        groups: Shared runs from the grouper.
        ungrouped: Standalone requests from the grouper.
        instruments: Instruments from the registry, in registry order.
        constants: SchedulingConstants for ranks and load limits.
        company_id: Owning company of the plan.
        location_id: Owning location of the plan.

    Returns:
        A new SchedulingPlan.
    """
    constants = constants or SchedulingConstants()

    plan = SchedulingPlan(company_id=company_id, location_id=location_id)
    for instrument in instruments:
        plan.instruments[instrument.instrument_id] = instrument
        if instrument.is_active:
            plan.schedules[instrument.instrument_id] = InstrumentSchedule(
                instrument_id=instrument.instrument_id,
                instrument_name=instrument.name,
            )

    order = {instrument_id: idx for idx, instrument_id in enumerate(plan.schedules)}

    for unit in build_units(groups, ungrouped, constants):
        capable = [
            plan.schedules[iid] for iid in plan.schedules
            if plan.instruments[iid].can_run(unit.detector_type_id)
        ]
        if not capable:
            _hold(plan, unit, NO_ELIGIBLE_INSTRUMENT,
                  f"No instrument with compatible detector ({unit.detector_type_id or 'none'})")
            continue

        eligible = [
            s for s in capable
            if not constants.instrument_load_exceeded(s.total_time + unit.execution_time)
        ]
        if not eligible:
            _hold(plan, unit, EXCEEDS_INSTRUMENT_CAPACITY,
                  f"Exceeds {constants.max_instrument_minutes:g} min instrument limit "
                  f"({unit.execution_time:.1f} min)")
            continue

        target = min(eligible, key=lambda s: (s.total_time, order[s.instrument_id]))
        _place_unit(target, unit)
        logger.debug(
            "Assigned %s (%s, %.1f min) to %s",
            unit.label, unit.requests[0].priority, unit.execution_time, target.instrument_id
        )

    logger.info(
        "Assigned %d tests to %d instruments, %d unassigned",
        len(plan.all_tests()), len(plan.schedules), len(plan.unassigned)
    )
    return plan


def _place_unit(schedule: InstrumentSchedule, unit: SchedulingUnit) -> None:
    """Append a unit to the end of a schedule."""
    tests = [
        ScheduledTest(
            id=request.request_id,
            request=request,
            instrument_id=schedule.instrument_id,
            position_index=len(schedule.tests) + offset,
            execution_time=compute_execution_time(request.configuration),
            state=TestState.ASSIGNED,
        )
        for offset, request in enumerate(unit.requests)
    ]
    if unit.group is not None:
        schedule.groups.append(bind_group(tests, unit.group.key, unit.group.timing))
    for test in tests:
        test.advance(TestState.GROUPED if unit.group is not None else TestState.UNGROUPED)
    schedule.tests.extend(tests)
    schedule.recalculate()
    for test in tests:
        test.advance(TestState.SCHEDULED)


def _hold(plan: SchedulingPlan, unit: SchedulingUnit, code: str, reason: str) -> None:
    """Put every request of a unit in the hold table."""
    for request in unit.requests:
        plan.unassigned.append(UnassignedTest(request=request, code=code, reason=reason))
    logger.warning("Unassigned %s: %s", unit.label, reason)
