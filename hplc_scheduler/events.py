# Change events for the audit log.
# Version: 1.0.0
# Builds change events from scheduling decisions and publishes them to audit sinks.

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Protocol

from .plan import SchedulingPlan

logger = logging.getLogger(__name__)


EventKind = Literal[
    "ASSIGNED",
    "UNASSIGNED",
    "GROUPED",
    "GROUP_UPDATED",
    "GROUP_DISSOLVED",
    "MOVED",
]


@dataclass
class ChangeEvent:
    """One scheduling change, detailed enough for a human-readable audit record.

    Attributes:
        kind: What happened.
        test_ids: Tests affected by the change.
        old_instrument_id: Instrument before the change, if any.
        new_instrument_id: Instrument after the change, if any.
        old_position: Position before the change, if any.
        new_position: Position after the change, if any.
        reason: Human-readable explanation.
        details: Extra context (group id, times, reason codes).
    """
    kind: EventKind
    test_ids: list[str]
    old_instrument_id: str | None = None
    new_instrument_id: str | None = None
    old_position: int | None = None
    new_position: int | None = None
    reason: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "testIds": list(self.test_ids),
            "oldInstrumentId": self.old_instrument_id,
            "newInstrumentId": self.new_instrument_id,
            "oldPosition": self.old_position,
            "newPosition": self.new_position,
            "reason": self.reason,
            "details": dict(self.details),
        }


class AuditSink(Protocol):
    """Receiver of change events, such as an audit-log writer."""

    def publish(self, event: ChangeEvent) -> None:
        ...


@dataclass
class MemoryAuditSink:
    """Audit sink that keeps published events in a list."""
    events: list[ChangeEvent] = field(default_factory=list)

    def publish(self, event: ChangeEvent) -> None:
        self.events.append(event)


def assignment_events(plan: SchedulingPlan) -> list[ChangeEvent]:
    """Describe a freshly assigned plan as change events.

    Args:
        plan: Plan produced by assign.

    Returns:
        ASSIGNED per test, GROUPED per shared run, UNASSIGNED per held test.
    """
    events = []
    for schedule in plan.schedules.values():
        for group in schedule.groups:
            events.append(ChangeEvent(
                kind="GROUPED",
                test_ids=list(group.member_ids),
                new_instrument_id=schedule.instrument_id,
                reason=group.reason,
                details={"groupId": group.group_id, "timeSaved": group.time_saved},
            ))
        for test in schedule.tests:
            events.append(ChangeEvent(
                kind="ASSIGNED",
                test_ids=[test.id],
                new_instrument_id=schedule.instrument_id,
                new_position=test.position_index,
                reason=f"Assigned to {schedule.instrument_name or schedule.instrument_id}",
                details={"executionTime": test.execution_time, "groupId": test.group_id},
            ))
    for entry in plan.unassigned:
        events.append(ChangeEvent(
            kind="UNASSIGNED",
            test_ids=[entry.request.request_id],
            reason=entry.reason,
            details={"code": entry.code},
        ))
    return events


def publish_events(events: Iterable[ChangeEvent], sinks: Iterable[AuditSink]) -> list[str]:
    """Publish events to every sink without letting a sink failure propagate.

    Args:
        events: Events to publish, in order.
        sinks: Audit sinks.

    Returns:
        Warning messages for failed publications.
    """
    warnings = []
    events = list(events)
    for sink in sinks:
        for event in events:
            try:
                sink.publish(event)
            except Exception as e:
                message = f"Audit publish failed for {event.kind} {', '.join(event.test_ids)}: {e}"
                logger.warning(message)
                warnings.append(message)
    return warnings
