# Candidate pool of pending test requests.
# Version: 1.0.0
# Resolves batch tests into TestRequests, rejecting invalid configurations.

import logging
from dataclasses import dataclass, field

from .constants import SchedulingConstants
from .data_loader import BatchInputLoad, TestRequest, _parse_bool, parse_test_configuration
from .errors import InvalidConfiguration

logger = logging.getLogger(__name__)


@dataclass
class SkippedTest:
    """A batch test left out of the pool on purpose.

    Attributes:
        request_id: Identifier the request would have had.
        reason: Why the test is not pending (status or outsourced).
    """
    request_id: str
    reason: str


@dataclass
class TestCandidatePool:
    """Pending test requests ready for grouping and assignment.

    Attributes:
        requests: Valid requests in submission order.
        rejected: Configuration errors for requests excluded from scheduling.
        skipped: Tests that are not pending (already started, outsourced).
    """
    __test__ = False

    requests: list[TestRequest] = field(default_factory=list)
    rejected: list[InvalidConfiguration] = field(default_factory=list)
    skipped: list[SkippedTest] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.requests)

    def __iter__(self):
        return iter(self.requests)

    def get_request(self, request_id: str) -> TestRequest | None:
        for request in self.requests:
            if request.request_id == request_id:
                return request
        return None


def build_candidate_pool(
    load: BatchInputLoad,
    constants: SchedulingConstants | None = None
) -> TestCandidatePool:
    """Build the candidate pool from loaded batches.

    Submission order follows batch order, then test order within a batch.
    A test whose configuration is invalid is excluded and reported in
    `rejected`; it never stops the rest of the pool from being built.

    Args:
        load: Batches to schedule.
        constants: SchedulingConstants for defaults and status filtering.

    Returns:
        TestCandidatePool with requests, rejections, and skipped tests.
    """
    constants = constants or SchedulingConstants()
    pool = TestCandidatePool()

    for batch in load:
        for test_index, test in enumerate(batch.tests):
            request_id = f"{batch.batch_id}-{test_index}"

            status = test.get("testStatus")
            if not constants.is_schedulable_status(status):
                pool.skipped.append(SkippedTest(request_id, f"Status is '{status}'"))
                continue
            if constants.skip_outsourced and _parse_bool(test.get("outsourced"), default=False):
                pool.skipped.append(SkippedTest(request_id, "Outsourced"))
                continue

            try:
                config = parse_test_configuration(test, batch.priority, constants, request_id)
            except InvalidConfiguration as e:
                logger.warning("Rejected test %s: %s", request_id, e)
                pool.rejected.append(e)
                continue

            pool.requests.append(TestRequest(
                request_id=request_id,
                batch_id=batch.batch_id,
                product_id=batch.product_id,
                batch_number=batch.batch_number,
                product_name=batch.product_name,
                product_code=batch.product_code,
                configuration=config,
                submission_order=len(pool.requests),
            ))

    logger.info(
        "Candidate pool: %d pending, %d rejected, %d skipped",
        len(pool.requests), len(pool.rejected), len(pool.skipped)
    )
    return pool
