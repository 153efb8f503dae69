# Scheduling service facade.
# Version: 1.0.0
# Runs pool, grouping, assignment, storage, and audit publishing as one call.

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .assigner import assign
from .constants import SchedulingConstants
from .data_loader import BatchInputLoad
from .events import AuditSink, ChangeEvent, assignment_events, publish_events
from .grouping import CompatibilityGrouper, GroupingResult
from .plan import Instrument, SchedulingPlan
from .pool import TestCandidatePool, build_candidate_pool
from .reorder import move_test
from .store import PlanStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceResult:
    """Result of a service operation.

    Attributes:
        plan: The stored plan, with its new version.
        events: Change events produced by the operation.
        warnings: Non-fatal problems (audit publishing failures).
        pool: Candidate pool used, for schedule operations.
        grouping: Grouper output, for schedule operations.
    """
    plan: SchedulingPlan
    events: list[ChangeEvent] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    pool: TestCandidatePool | None = None
    grouping: GroupingResult | None = None


class SchedulingService:
    """Entry point for a thin API layer.

    Args:
        store: Plan store; a new in-memory store when omitted.
        constants: Engine settings; defaults when omitted.
        sinks: Audit sinks receiving change events.
    """

    def __init__(
        self,
        store: PlanStore | None = None,
        constants: SchedulingConstants | None = None,
        sinks: Iterable[AuditSink] = ()
    ) -> None:
        self.store = store or PlanStore()
        self.constants = constants or SchedulingConstants()
        self.sinks = list(sinks)

    def schedule(
        self,
        load: BatchInputLoad,
        instruments: Sequence[Instrument],
        company_id: str,
        location_id: str,
        base_version: int = 0
    ) -> ServiceResult:
        """Build a fresh plan from pending batches and store it.

        Replaces the plan stored for the company/location, provided the
        caller saw its latest version.

        Args:
            load: Batches to schedule.
            instruments: Instruments of the location, registry order.
            company_id: Owning company.
            location_id: Owning location.
            base_version: Version the caller last read; 0 when no plan
                has been stored yet.

        Returns:
            ServiceResult with the stored plan and assignment events.

        Raises:
            StaleSchedulingPlan: If the stored plan moved past base_version.
        """
        pool = build_candidate_pool(load, self.constants)
        grouping = CompatibilityGrouper(self.constants).group(pool.requests)
        plan = assign(
            grouping.groups, grouping.ungrouped, instruments, self.constants,
            company_id=company_id, location_id=location_id
        )
        stored = self.store.save(plan, base_version)

        events = assignment_events(stored)
        warnings = publish_events(events, self.sinks)
        logger.info(
            "Scheduled %s/%s version %d: %.1f min total, %.1f min saved",
            company_id, location_id, stored.version, stored.total_time, grouping.total_time_saved
        )
        return ServiceResult(stored, events, warnings, pool=pool, grouping=grouping)

    def move(
        self,
        company_id: str,
        location_id: str,
        test_id: str,
        target_instrument_id: str,
        target_index: int,
        base_version: int
    ) -> ServiceResult:
        """Apply a manual move to the stored plan.

        Args:
            company_id: Owning company.
            location_id: Owning location.
            test_id: Test to move.
            target_instrument_id: Destination instrument.
            target_index: Destination position.
            base_version: Plan version the caller edited.

        Returns:
            ServiceResult with the stored plan and move events.

        Raises:
            StaleSchedulingPlan: If the stored plan changed since base_version.
            IncompatibleInstrument: If the destination cannot host the test.
        """
        current = self.store.get(company_id, location_id)
        result = move_test(current, test_id, target_instrument_id, target_index, self.constants)
        stored = self.store.save(result.plan, base_version)

        warnings = publish_events(result.events, self.sinks)
        return ServiceResult(stored, result.events, warnings)
