# HPLC Test Scheduler - Core Package
# Version: 1.0.0

"""
Instrument test scheduling and grouping engine for HPLC/UPLC laboratories.

Assigns pending analytical tests to instruments, merges compatible tests
into shared runs (one calibration/reference set per run), and re-sequences
plans after manual moves. Oversized compatibility classes are partitioned
with the Google OR-Tools CP-SAT solver.
"""

__version__ = "1.0.0"

from .errors import (
    SchedulingError,
    InvalidConfiguration,
    IncompatibleInstrument,
    StaleSchedulingPlan,
    ConfigurationError,
    FileLoadError,
    SolverTimeoutError,
)

from .constants import (
    SchedulingConstants,
    PRIORITIES,
    load_scheduling_constants,
    save_scheduling_constants,
)

from .data_loader import (
    TestConfiguration,
    TestRequest,
    BatchInput,
    BatchInputLoad,
    parse_batch_records,
    load_batch_input,
    parse_test_configuration,
)

from .pool import (
    TestCandidatePool,
    build_candidate_pool,
)

from .time_calculator import (
    TimeBreakdown,
    GroupTiming,
    compute_execution_time,
    explain_execution_time,
    compute_group_time,
)

from .grouping import (
    CandidateGroup,
    GroupingResult,
    CompatibilityGrouper,
)

from .plan import (
    Instrument,
    ScheduledTest,
    TestGroup,
    TestState,
    UnassignedTest,
    InstrumentSchedule,
    SchedulingPlan,
    instruments_from_records,
    NO_ELIGIBLE_INSTRUMENT,
    EXCEEDS_INSTRUMENT_CAPACITY,
)

from .assigner import assign

from .reorder import (
    MoveResult,
    move,
    move_test,
)

from .events import (
    ChangeEvent,
    MemoryAuditSink,
    publish_events,
)

from .store import PlanStore

from .service import (
    SchedulingService,
    ServiceResult,
)

from .plan_export import (
    export_plan_to_dict,
    export_to_json,
    export_plan_to_excel,
    generate_plan_summary,
    validate_plan,
)
