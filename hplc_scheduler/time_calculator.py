# Execution-time calculations for single tests and shared runs.
# Version: 1.0.0
# Computes injection minutes, bracketing, wash, and time saved by grouping.

import math
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from .constants import ALL_CATEGORIES, MEMBER_CATEGORIES, SHARED_CATEGORIES
from .data_loader import TestConfiguration
from .errors import InvalidConfiguration


# Standard injections added per bracket
BRACKET_PAIR_SIZE = 2


@dataclass
class TimeBreakdown:
    """Itemized execution time for one test.

    Attributes:
        injection_counts: Injection count per category (after overrides).
        category_minutes: Minutes per category.
        bracketing_injections: Extra standard injections added by bracketing.
        bracketing_minutes: Minutes spent on bracketing standards.
        wash_minutes: Wash time, counted once.
        total_minutes: Sum of all of the above.
        formula: Human-readable formula for audit and display.
    """
    injection_counts: dict[str, float] = field(default_factory=dict)
    category_minutes: dict[str, float] = field(default_factory=dict)
    bracketing_injections: int = 0
    bracketing_minutes: float = 0.0
    wash_minutes: float = 0.0
    total_minutes: float = 0.0
    formula: str = ""


@dataclass
class GroupTiming:
    """Timing of a shared instrument run.

    Attributes:
        execution_time: Minutes for the shared run.
        standalone_time: Sum of each member's standalone minutes.
        time_saved: standalone_time minus execution_time.
        shared_minutes: Calibration/reference minutes counted once.
        wash_minutes: Wash minutes counted once.
        member_specific: Member-specific minutes in member order.
        member_standalone: Standalone minutes in member order.
    """
    execution_time: float
    standalone_time: float
    time_saved: float
    shared_minutes: float
    wash_minutes: float
    member_specific: list[float] = field(default_factory=list)
    member_standalone: list[float] = field(default_factory=list)

    @property
    def member_shares(self) -> list[float]:
        """Execution time carried by each member.

        The lead member carries the shared injections and the wash; the
        others carry only their own injections. Shares sum to execution_time.
        """
        shares = list(self.member_specific)
        if shares:
            shares[0] += self.shared_minutes + self.wash_minutes
        return shares

    @property
    def member_savings(self) -> list[float]:
        """Time saved per member (standalone minus share)."""
        return [alone - share for alone, share in zip(self.member_standalone, self.member_shares)]


def bracketing_injections(config: TestConfiguration, sample_count: float | None = None) -> int:
    """Count the standard injections inserted by bracketing.

    One standard-injection pair follows every full block of
    bracketing_frequency sample injections.

    Args:
        config: Test configuration.
        sample_count: Sample injections to bracket, defaults to the configured count.

    Returns:
        Number of extra standard injections.
    """
    samples = config.sample_injection if sample_count is None else sample_count
    if config.bracketing_frequency <= 0 or samples <= 0:
        return 0
    return BRACKET_PAIR_SIZE * int(samples // config.bracketing_frequency)


def explain_execution_time(
    config: TestConfiguration,
    overrides: Mapping[str, float] | None = None
) -> TimeBreakdown:
    """Calculate the itemized standalone execution time of a test.

    Args:
        config: Test configuration.
        overrides: Optional category -> injection count replacements.

    Returns:
        TimeBreakdown with per-category minutes and the total.

    Raises:
        InvalidConfiguration: If the configuration or an override is invalid.
    """
    config.validate()
    counts = _injection_counts(config, overrides)

    breakdown = TimeBreakdown(injection_counts=counts)
    for category in ALL_CATEGORIES:
        breakdown.category_minutes[category] = counts[category] * config.run_time_for(category)

    breakdown.bracketing_injections = bracketing_injections(config, counts["sample"])
    breakdown.bracketing_minutes = breakdown.bracketing_injections * config.run_time_for("standard")
    breakdown.wash_minutes = config.wash_time

    injection_minutes = sum(breakdown.category_minutes.values())
    breakdown.total_minutes = injection_minutes + breakdown.bracketing_minutes + breakdown.wash_minutes
    breakdown.formula = (
        f"Time = sum(Ni x RTi) + bracketing + WT = {injection_minutes:g} + "
        f"{breakdown.bracketing_minutes:g} + {breakdown.wash_minutes:g} = "
        f"{breakdown.total_minutes:g} min"
    )
    return breakdown


def compute_execution_time(
    config: TestConfiguration,
    overrides: Mapping[str, float] | None = None
) -> float:
    """Calculate the standalone execution time of a test in minutes.

    Sum of count x run time for every injection category, plus bracketing
    standards, plus one wash.

    Args:
        config: Test configuration.
        overrides: Optional category -> injection count replacements.

    Returns:
        Execution time in minutes.

    Raises:
        InvalidConfiguration: If the configuration or an override is invalid.
    """
    return explain_execution_time(config, overrides).total_minutes


def member_specific_time(config: TestConfiguration) -> float:
    """Minutes that stay with a test when it joins a shared run.

    Sample injections plus the bracketing standards placed between them.
    """
    minutes = 0.0
    for category in MEMBER_CATEGORIES:
        minutes += config.injection_count(category) * config.run_time_for(category)
    minutes += bracketing_injections(config) * config.run_time_for("standard")
    return minutes


def shared_minutes_by_category(config: TestConfiguration) -> dict[str, float]:
    """Calibration/reference minutes per shared category for a test."""
    return {
        category: config.injection_count(category) * config.run_time_for(category)
        for category in SHARED_CATEGORIES
    }


def compute_group_time(configs: Sequence[TestConfiguration]) -> GroupTiming:
    """Calculate the timing of a shared run for the given members.

    The shared calibration/reference set is counted once: for each shared
    category the run keeps the largest member requirement, so every member's
    method is covered. One wash (the longest) closes the run. Sample
    injections and their bracketing stay per member.

    Args:
        configs: Member configurations in run order.

    Returns:
        GroupTiming for the run.

    Raises:
        InvalidConfiguration: If any member configuration is invalid.
    """
    for config in configs:
        config.validate()

    shared_minutes = 0.0
    if configs:
        per_member = [shared_minutes_by_category(c) for c in configs]
        for category in SHARED_CATEGORIES:
            shared_minutes += max(m[category] for m in per_member)

    wash_minutes = max((c.wash_time for c in configs), default=0.0)
    member_specific = [member_specific_time(c) for c in configs]
    member_standalone = [compute_execution_time(c) for c in configs]

    execution_time = shared_minutes + wash_minutes + sum(member_specific)
    standalone_time = sum(member_standalone)

    return GroupTiming(
        execution_time=execution_time,
        standalone_time=standalone_time,
        time_saved=standalone_time - execution_time,
        shared_minutes=shared_minutes,
        wash_minutes=wash_minutes,
        member_specific=member_specific,
        member_standalone=member_standalone,
    )


def _injection_counts(
    config: TestConfiguration,
    overrides: Mapping[str, float] | None
) -> dict[str, float]:
    counts = {category: config.injection_count(category) for category in ALL_CATEGORIES}
    if not overrides:
        return counts

    for category, value in overrides.items():
        if category not in counts:
            raise InvalidConfiguration(
                "injection_overrides", category,
                f"Unknown injection category. Valid: {', '.join(ALL_CATEGORIES)}"
            )
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise InvalidConfiguration(f"injection_overrides.{category}", value, "Must be a finite number")
        if value < 0:
            raise InvalidConfiguration(f"injection_overrides.{category}", value, "Must not be negative")
        counts[category] = value
    return counts
