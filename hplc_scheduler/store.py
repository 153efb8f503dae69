# Versioned plan storage.
# Version: 1.0.0
# Keeps one plan per company/location and rejects writes based on stale versions.

import copy
import logging

from .errors import SchedulingError, StaleSchedulingPlan
from .plan import SchedulingPlan

logger = logging.getLogger(__name__)


class PlanStore:
    """In-memory store of scheduling plans with optimistic concurrency.

    Each (company_id, location_id) holds one plan and a version that
    increases by one on every accepted write. Plans are copied in and out,
    so callers never share a stored object.
    """

    def __init__(self) -> None:
        self._plans: dict[tuple[str, str], SchedulingPlan] = {}

    def version(self, company_id: str, location_id: str) -> int:
        """Current version for a plan key (0 if nothing is stored)."""
        plan = self._plans.get((company_id, location_id))
        return plan.version if plan is not None else 0

    def get(self, company_id: str, location_id: str) -> SchedulingPlan:
        """Fetch a copy of the stored plan.

        Raises:
            SchedulingError: If no plan is stored for the key.
        """
        plan = self._plans.get((company_id, location_id))
        if plan is None:
            raise SchedulingError(
                f"No scheduling plan for {company_id}/{location_id}",
                {"company_id": company_id, "location_id": location_id}
            )
        return copy.deepcopy(plan)

    def save(self, plan: SchedulingPlan, base_version: int) -> SchedulingPlan:
        """Store a plan if base_version matches the stored version.

        Args:
            plan: Plan to store.
            base_version: Version the caller read before editing (0 for a new key).

        Returns:
            A copy of the stored plan carrying its new version.

        Raises:
            StaleSchedulingPlan: If another write happened since base_version.
        """
        current = self.version(*plan.key)
        if base_version != current:
            raise StaleSchedulingPlan(plan.key, base_version, current)

        stored = copy.deepcopy(plan)
        stored.version = current + 1
        self._plans[plan.key] = stored
        logger.debug("Stored plan %s/%s version %d", plan.company_id, plan.location_id, stored.version)
        return copy.deepcopy(stored)
