# Scheduling plan data structures.
# Version: 1.0.0
# Instruments, scheduled tests, shared-run groups, and per-instrument schedules.

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from .data_loader import TestRequest
from .errors import SchedulingError


# Reason codes for tests left in the hold table
NO_ELIGIBLE_INSTRUMENT = "NO_ELIGIBLE_INSTRUMENT"
EXCEEDS_INSTRUMENT_CAPACITY = "EXCEEDS_INSTRUMENT_CAPACITY"


class TestState(str, Enum):
    """Lifecycle of a scheduled test inside the engine.

    COMPLETED and CANCELLED are set by collaborators outside the engine.
    """
    __test__ = False

    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    GROUPED = "GROUPED"
    UNGROUPED = "UNGROUPED"
    SCHEDULED = "SCHEDULED"
    MANUALLY_MOVED = "MANUALLY_MOVED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


_TERMINAL = {TestState.COMPLETED, TestState.CANCELLED}

# Legal lifecycle steps; held tests go straight from PENDING to MANUALLY_MOVED
TRANSITIONS: dict[TestState, frozenset[TestState]] = {
    TestState.PENDING: frozenset({TestState.ASSIGNED, TestState.MANUALLY_MOVED}),
    TestState.ASSIGNED: frozenset({TestState.GROUPED, TestState.UNGROUPED}),
    TestState.GROUPED: frozenset({TestState.SCHEDULED}),
    TestState.UNGROUPED: frozenset({TestState.SCHEDULED}),
    TestState.SCHEDULED: frozenset({TestState.MANUALLY_MOVED, *_TERMINAL}),
    TestState.MANUALLY_MOVED: frozenset({TestState.MANUALLY_MOVED, *_TERMINAL}),
    TestState.COMPLETED: frozenset(),
    TestState.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class Instrument:
    """An instrument from the instrument registry.

    Attributes:
        instrument_id: Registry identifier.
        name: Display name.
        capable_detector_type_ids: Detector types the instrument supports,
            or None when the instrument is not restricted.
        is_active: Inactive instruments receive no tests.
    """
    instrument_id: str
    name: str = ""
    capable_detector_type_ids: frozenset[str] | None = None
    is_active: bool = True

    def can_run(self, detector_type_id: str | None) -> bool:
        """Check whether a test with this detector type may run here."""
        if self.capable_detector_type_ids is None:
            return True
        return detector_type_id is not None and detector_type_id in self.capable_detector_type_ids


def instruments_from_records(records: Iterable[dict[str, Any]]) -> list[Instrument]:
    """Build instruments from instrument-registry documents.

    Documents carry `_id`, `internalCode` or `hplcName`, `isActive`, and a
    `detector` list of `{_id, detectorType}` entries. An empty detector
    list leaves the instrument unrestricted.

    Args:
        records: Registry documents.

    Returns:
        Instruments in registry order.
    """
    instruments = []
    for record in records:
        instrument_id = str(record.get("_id") or record.get("instrumentId"))
        detectors = record.get("detector", record.get("capableDetectorTypeIds")) or []
        detector_ids: set[str] = set()
        for detector in detectors:
            if not isinstance(detector, dict):
                detector_ids.add(str(detector))
                continue
            # Tests may name a detector by registry id or by type name
            for key in ("_id", "detectorType"):
                if detector.get(key):
                    detector_ids.add(str(detector[key]))
        instruments.append(Instrument(
            instrument_id=instrument_id,
            name=str(record.get("internalCode") or record.get("hplcName") or record.get("name")
                     or f"HPLC-{instrument_id[-4:]}"),
            capable_detector_type_ids=frozenset(detector_ids) or None,
            is_active=bool(record.get("isActive", True)),
        ))
    return instruments


@dataclass
class ScheduledTest:
    """A test request bound to a position in a scheduling plan.

    Attributes:
        id: Test identifier (the request id).
        request: The underlying TestRequest.
        instrument_id: Instrument the test runs on.
        position_index: 0-based position in the instrument schedule.
        execution_time: Minutes this test contributes to the schedule.
        is_grouped: Whether the test shares a run with others.
        group_id: Shared-run identifier, when grouped.
        group_reason: Why the test was merged, when grouped.
        time_saved: Minutes saved by grouping, only when grouped.
        state: Lifecycle state.
    """
    id: str
    request: TestRequest
    instrument_id: str
    position_index: int
    execution_time: float
    is_grouped: bool = False
    group_id: str | None = None
    group_reason: str | None = None
    time_saved: float | None = None
    state: TestState = TestState.PENDING

    @property
    def detector_type_id(self) -> str | None:
        return self.request.detector_type_id

    @property
    def priority(self) -> str:
        return self.request.priority

    def advance(self, state: TestState) -> None:
        """Move to the next lifecycle state.

        Raises:
            SchedulingError: If the step is not allowed from the current state.
        """
        if state not in TRANSITIONS[self.state]:
            raise SchedulingError(
                f"Test {self.id} cannot go from {self.state.value} to {state.value}",
                {"test_id": self.id, "state": self.state.value, "requested": state.value}
            )
        self.state = state

    def clear_group(self, standalone_time: float) -> None:
        """Turn this test back into a standalone run."""
        self.is_grouped = False
        self.group_id = None
        self.group_reason = None
        self.time_saved = None
        self.execution_time = standalone_time


@dataclass
class TestGroup:
    """Two or more tests sharing one instrument run.

    Members share column, detector, and phase slots 0-3. Members are
    referenced by id and listed in run order.

    Attributes:
        group_id: Identifier derived from the lead member.
        member_ids: Member test ids in run order.
        key: (column_code, detector_type_id, phase slots 0-3).
        execution_time: Minutes for the shared run.
        standalone_time: Sum of members' standalone minutes.
        time_saved: standalone_time minus execution_time.
        reason: Human-readable explanation of the merge.
    """
    __test__ = False

    group_id: str
    member_ids: list[str]
    key: tuple
    execution_time: float
    standalone_time: float
    time_saved: float
    reason: str = ""

    @property
    def size(self) -> int:
        return len(self.member_ids)


@dataclass
class UnassignedTest:
    """A test request no instrument could host.

    Attributes:
        request: The request left in the hold table.
        code: Reason code (NO_ELIGIBLE_INSTRUMENT, EXCEEDS_INSTRUMENT_CAPACITY).
        reason: Human-readable explanation.
    """
    request: TestRequest
    code: str
    reason: str


@dataclass
class InstrumentSchedule:
    """One instrument's ordered run plan.

    Attributes:
        instrument_id: Instrument identifier.
        instrument_name: Display name.
        tests: Scheduled tests in run order; group members are contiguous.
        groups: Shared runs on this instrument.
        total_time: Sum of execution times.
    """
    instrument_id: str
    instrument_name: str = ""
    tests: list[ScheduledTest] = field(default_factory=list)
    groups: list[TestGroup] = field(default_factory=list)
    total_time: float = 0.0

    def index_of(self, test_id: str) -> int:
        """Position of a test in this schedule, or -1."""
        for idx, test in enumerate(self.tests):
            if test.id == test_id:
                return idx
        return -1

    def get_test(self, test_id: str) -> ScheduledTest | None:
        idx = self.index_of(test_id)
        return self.tests[idx] if idx >= 0 else None

    def get_group(self, group_id: str | None) -> TestGroup | None:
        if group_id is None:
            return None
        for group in self.groups:
            if group.group_id == group_id:
                return group
        return None

    def group_span(self, group_id: str) -> tuple[int, int]:
        """First and last position of a group's members."""
        positions = [i for i, t in enumerate(self.tests) if t.group_id == group_id]
        return (positions[0], positions[-1])

    def recalculate(self) -> None:
        """Refresh positions and the total time."""
        for idx, test in enumerate(self.tests):
            test.position_index = idx
            test.instrument_id = self.instrument_id
        self.total_time = sum(t.execution_time for t in self.tests)


@dataclass
class SchedulingPlan:
    """All instrument schedules for one company and location.

    Attributes:
        company_id: Owning company.
        location_id: Owning location.
        schedules: Dict of instrument id to InstrumentSchedule, registry order.
        instruments: Dict of instrument id to Instrument.
        unassigned: Tests no instrument could host.
        version: Store version the plan was read at.
    """
    company_id: str = ""
    location_id: str = ""
    schedules: dict[str, InstrumentSchedule] = field(default_factory=dict)
    instruments: dict[str, Instrument] = field(default_factory=dict)
    unassigned: list[UnassignedTest] = field(default_factory=list)
    version: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return (self.company_id, self.location_id)

    @property
    def total_time(self) -> float:
        return sum(s.total_time for s in self.schedules.values())

    def find_test(self, test_id: str) -> tuple[InstrumentSchedule, int] | None:
        """Locate a scheduled test.

        Returns:
            (schedule, position) or None if the test is not on any instrument.
        """
        for schedule in self.schedules.values():
            idx = schedule.index_of(test_id)
            if idx >= 0:
                return schedule, idx
        return None

    def find_unassigned(self, test_id: str) -> int:
        """Position of a test in the hold table, or -1."""
        for idx, entry in enumerate(self.unassigned):
            if entry.request.request_id == test_id:
                return idx
        return -1

    def all_tests(self) -> list[ScheduledTest]:
        return [t for s in self.schedules.values() for t in s.tests]

    def all_groups(self) -> list[TestGroup]:
        return [g for s in self.schedules.values() for g in s.groups]
