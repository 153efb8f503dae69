# Load and structure scheduler settings from a YAML config file.
# Version: 1.0.0
# Provides priority ranking, grouping limits, and instrument load limits.

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import yaml

from .errors import ConfigurationError, FileLoadError


# Type aliases for clarity
Priority = Literal["urgent", "high", "normal"]

# Valid priorities, most urgent first
PRIORITIES: tuple[Priority, ...] = ("urgent", "high", "normal")

# Injection categories whose calibration/reference injections are shared by a group
SHARED_CATEGORIES: tuple[str, ...] = (
    "standard",
    "blank",
    "system_suitability",
    "sensitivity",
    "placebo",
    "reference1",
    "reference2",
)

# Injection categories that remain per member of a group
MEMBER_CATEGORIES: tuple[str, ...] = ("sample",)

ALL_CATEGORIES: tuple[str, ...] = MEMBER_CATEGORIES + SHARED_CATEGORIES

# Number of mobile-phase slots; 0-3 are phases, 4-5 are washes
MOBILE_PHASE_SLOTS = 6
PHASE_SLOTS = 4

# 72 hours of instrument time; longer loads go to the hold table
DEFAULT_MAX_RUN_MINUTES = 4320.0


@dataclass
class SchedulingConstants:
    """Container for scheduler settings loaded from YAML.

    Attributes:
        priority_ranks: Dict of priority to sort rank (lower runs first).
        max_group_size: Maximum members in one shared run (0 = unlimited).
        max_group_run_minutes: Maximum execution time of a shared run (0 = unlimited).
        max_instrument_minutes: Maximum load per instrument schedule (0 = unlimited).
        solver_timeout_seconds: Time limit for partitioning an oversized class.
        default_bracketing_frequency: Used when a test record omits bracketing.
        default_priority: Used when a batch record omits its priority.
        schedulable_statuses: Test statuses that enter the candidate pool.
        skip_outsourced: Whether outsourced tests are left out of the pool.
    """
    priority_ranks: dict[str, int] = field(
        default_factory=lambda: {"urgent": 0, "high": 1, "normal": 2}
    )
    max_group_size: int = 0
    max_group_run_minutes: float = DEFAULT_MAX_RUN_MINUTES
    max_instrument_minutes: float = DEFAULT_MAX_RUN_MINUTES
    solver_timeout_seconds: float = 10.0
    default_bracketing_frequency: int = 0
    default_priority: Priority = "normal"
    schedulable_statuses: frozenset[str] = frozenset({"not started"})
    skip_outsourced: bool = True

    def get_priority_rank(self, priority: str) -> int:
        """Get the sort rank of a priority.

        Args:
            priority: Priority label (case-insensitive).

        Returns:
            Rank where 0 is scheduled first.

        Raises:
            ConfigurationError: If the priority has no configured rank.
        """
        key = priority.strip().lower()
        if key not in self.priority_ranks:
            raise ConfigurationError(
                "priority_ranks",
                f"Unknown priority '{priority}'. Valid priorities: {', '.join(PRIORITIES)}"
            )
        return self.priority_ranks[key]

    def is_schedulable_status(self, status: str | None) -> bool:
        """Check if a test status allows the test into the candidate pool.

        A missing status is treated as not started.
        """
        if status is None:
            return True
        return status.strip().lower() in self.schedulable_statuses

    def group_size_exceeded(self, size: int) -> bool:
        """Check a group size against max_group_size."""
        return self.max_group_size > 0 and size > self.max_group_size

    def group_time_exceeded(self, minutes: float) -> bool:
        """Check a shared run length against max_group_run_minutes."""
        return self.max_group_run_minutes > 0 and minutes > self.max_group_run_minutes

    def instrument_load_exceeded(self, minutes: float) -> bool:
        """Check an instrument schedule length against max_instrument_minutes."""
        return self.max_instrument_minutes > 0 and minutes > self.max_instrument_minutes


def load_scheduling_constants(yaml_path: str | Path) -> SchedulingConstants:
    """Load scheduler settings from a YAML file.

    Keys that are absent keep their defaults.

    Args:
        yaml_path: Path to the YAML config file.

    Returns:
        SchedulingConstants object with all loaded data.

    Raises:
        FileLoadError: If file cannot be read.
        ConfigurationError: If file format is invalid.
    """
    yaml_path = Path(yaml_path)

    if not yaml_path.exists():
        raise FileLoadError(str(yaml_path), FileNotFoundError(f"Config file not found: {yaml_path}"))

    try:
        with open(yaml_path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise FileLoadError(str(yaml_path), e)

    if not isinstance(data, dict):
        raise ConfigurationError(yaml_path.name, "Top level must be a mapping")

    defaults = SchedulingConstants()

    # Parse priority ranks
    ranks = data.get('priority_ranks', defaults.priority_ranks)
    if not isinstance(ranks, dict):
        raise ConfigurationError(yaml_path.name, "priority_ranks must be a mapping")
    priority_ranks = {str(k).strip().lower(): _as_int(v, f"priority_ranks.{k}", yaml_path) for k, v in ranks.items()}
    missing = [p for p in PRIORITIES if p not in priority_ranks]
    if missing:
        raise ConfigurationError(yaml_path.name, f"priority_ranks missing: {', '.join(missing)}")

    default_priority = str(data.get('default_priority', defaults.default_priority)).strip().lower()
    if default_priority not in PRIORITIES:
        raise ConfigurationError(yaml_path.name, f"default_priority must be one of: {', '.join(PRIORITIES)}")

    statuses = data.get('schedulable_statuses', sorted(defaults.schedulable_statuses))
    if isinstance(statuses, str):
        statuses = [statuses]

    return SchedulingConstants(
        priority_ranks=priority_ranks,
        max_group_size=_as_int(data.get('max_group_size', defaults.max_group_size), 'max_group_size', yaml_path),
        max_group_run_minutes=_as_float(
            data.get('max_group_run_minutes', defaults.max_group_run_minutes),
            'max_group_run_minutes', yaml_path
        ),
        max_instrument_minutes=_as_float(
            data.get('max_instrument_minutes', defaults.max_instrument_minutes),
            'max_instrument_minutes', yaml_path
        ),
        solver_timeout_seconds=_as_float(
            data.get('solver_timeout_seconds', defaults.solver_timeout_seconds),
            'solver_timeout_seconds', yaml_path
        ),
        default_bracketing_frequency=_as_int(
            data.get('default_bracketing_frequency', defaults.default_bracketing_frequency),
            'default_bracketing_frequency', yaml_path
        ),
        default_priority=default_priority,
        schedulable_statuses=frozenset(str(s).strip().lower() for s in statuses),
        skip_outsourced=bool(data.get('skip_outsourced', defaults.skip_outsourced)),
    )


def save_scheduling_constants(constants: SchedulingConstants, yaml_path: str | Path) -> None:
    """Save scheduler settings to a YAML file.

    Args:
        constants: SchedulingConstants object to save.
        yaml_path: Path to save the YAML config file.
    """
    data = {
        'priority_ranks': dict(constants.priority_ranks),
        'max_group_size': constants.max_group_size,
        'max_group_run_minutes': constants.max_group_run_minutes,
        'max_instrument_minutes': constants.max_instrument_minutes,
        'solver_timeout_seconds': constants.solver_timeout_seconds,
        'default_bracketing_frequency': constants.default_bracketing_frequency,
        'default_priority': constants.default_priority,
        'schedulable_statuses': sorted(constants.schedulable_statuses),
        'skip_outsourced': constants.skip_outsourced,
    }

    yaml_path = Path(yaml_path)
    with open(yaml_path, 'w') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)


def _as_int(value, key: str, source: Path) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(source.name, f"{key} must be an integer, got {value!r}")
    if result < 0:
        raise ConfigurationError(source.name, f"{key} must not be negative")
    return result


def _as_float(value, key: str, source: Path) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(source.name, f"{key} must be a number, got {value!r}")
    if result < 0:
        raise ConfigurationError(source.name, f"{key} must not be negative")
    return result
