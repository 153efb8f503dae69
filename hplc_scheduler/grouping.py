# Compatibility grouping of pending tests into shared instrument runs.
# Version: 1.0.0
# Partitions tests by column/detector/phases and merges them when it saves time.

import logging
from dataclasses import dataclass, field
from typing import Sequence

from ortools.sat.python import cp_model

from .constants import SHARED_CATEGORIES, SchedulingConstants
from .data_loader import TestRequest
from .errors import SolverTimeoutError
from .time_calculator import (
    GroupTiming,
    compute_group_time,
    member_specific_time,
    shared_minutes_by_category,
)

logger = logging.getLogger(__name__)


# (column_code, detector_type_id, phase slots 0-3)
GroupKey = tuple[str, str, tuple[str, ...]]

# Savings at or below this are treated as no saving
SAVING_EPSILON = 1e-9

# CP-SAT works on integers: minutes are scaled to hundredths
MINUTE_SCALE = 100


@dataclass
class CandidateGroup:
    """A set of compatible requests proposed to share one run.

    Attributes:
        members: Requests in run order.
        key: Compatibility key shared by all members.
        timing: Timing of the shared run.
    """
    members: list[TestRequest]
    key: GroupKey
    timing: GroupTiming

    @property
    def group_id(self) -> str:
        return group_id_for(self.members[0].request_id)

    @property
    def reason(self) -> str:
        return describe_key(self.key)

    @property
    def member_ids(self) -> list[str]:
        return [m.request_id for m in self.members]

    @property
    def submission_order(self) -> int:
        return min(m.submission_order for m in self.members)


@dataclass
class GroupingResult:
    """Output of the grouper.

    Attributes:
        groups: Shared runs, ordered by their earliest member.
        ungrouped: Requests left as standalone runs, in submission order.
    """
    groups: list[CandidateGroup] = field(default_factory=list)
    ungrouped: list[TestRequest] = field(default_factory=list)

    @property
    def total_time_saved(self) -> float:
        return sum(g.timing.time_saved for g in self.groups)


def grouping_key(request: TestRequest) -> GroupKey | None:
    """Compatibility key of a request, or None if it can never be grouped.

    Requests without a column or detector, or whose configuration is not
    applicable, have no key.
    """
    config = request.configuration
    if not config.test_applicability:
        return None
    if not config.column_code or not config.detector_type_id:
        return None
    return (config.column_code, config.detector_type_id, config.phase_key)


def describe_key(key: GroupKey) -> str:
    """Human-readable form of a compatibility key for audit and display."""
    column, detector, phases = key
    phase_text = "/".join(p if p else "-" for p in phases)
    return f"Shared run: column={column}, detector={detector}, phases={phase_text}"


def group_id_for(lead_test_id: str) -> str:
    """Group identifier derived from the lead member's id."""
    return f"grp-{lead_test_id}"


def evaluate_group(
    members: Sequence[TestRequest],
    constants: SchedulingConstants
) -> GroupTiming | None:
    """Time a proposed shared run and check it is worth forming.

    Args:
        members: Requests in run order (all with the same key).
        constants: SchedulingConstants with group limits.

    Returns:
        GroupTiming if the run respects the limits and strictly saves time,
        otherwise None.
    """
    if len(members) < 2 or constants.group_size_exceeded(len(members)):
        return None
    timing = compute_group_time([m.configuration for m in members])
    if constants.group_time_exceeded(timing.execution_time):
        return None
    if timing.time_saved <= SAVING_EPSILON:
        return None
    return timing


class CompatibilityGrouper:
    """Decides which pending tests may share one instrument run.

    Tests are partitioned into equivalence classes by grouping_key. A class
    that fits the configured limits becomes a single run when that saves
    time. Larger classes are partitioned with CP-SAT: maximize time saved,
    then fewer groups, then keep members close to their group's first
    member in submission order. Members that add no saving to their run
    stay standalone.
    """

    def __init__(self, constants: SchedulingConstants | None = None) -> None:
        self.constants = constants or SchedulingConstants()

    def group(self, candidates: Sequence[TestRequest]) -> GroupingResult:
        """Group candidate requests.

        Args:
            candidates: Pending requests in submission order.

        Returns:
            GroupingResult with shared runs and standalone requests.
        """
        ordered = sorted(candidates, key=lambda r: r.submission_order)

        classes: dict[GroupKey, list[TestRequest]] = {}
        standalone: list[TestRequest] = []
        for request in ordered:
            key = grouping_key(request)
            if key is None:
                standalone.append(request)
                continue
            classes.setdefault(key, []).append(request)

        result = GroupingResult()
        for key, members in classes.items():
            if len(members) < 2:
                standalone.extend(members)
                continue
            for part in self._partition_class(members):
                part, riders = self._drop_free_riders(part)
                standalone.extend(riders)
                timing = evaluate_group(part, self.constants) if len(part) > 1 else None
                if timing is None:
                    standalone.extend(part)
                    continue
                result.groups.append(CandidateGroup(members=list(part), key=key, timing=timing))
                logger.debug(
                    "Grouped %d tests (%s), saved %.1f min",
                    len(part), ", ".join(m.request_id for m in part), timing.time_saved
                )

        result.groups.sort(key=lambda g: g.submission_order)
        result.ungrouped = sorted(standalone, key=lambda r: r.submission_order)
        logger.info(
            "Grouping: %d shared runs, %d standalone tests, %.1f min saved",
            len(result.groups), len(result.ungrouped), result.total_time_saved
        )
        return result

    def _partition_class(self, members: list[TestRequest]) -> list[list[TestRequest]]:
        """Split one compatibility class into runs.

        Returns:
            List of parts in order of their first member; single-member
            parts stay standalone.
        """
        whole = compute_group_time([m.configuration for m in members])
        within_limits = (
            not self.constants.group_size_exceeded(len(members))
            and not self.constants.group_time_exceeded(whole.execution_time)
        )
        if within_limits:
            # One run over the whole class is never worse than any split
            return [members]

        assignment = self._solve_partition(members)
        if assignment is None:
            return [[m] for m in members]

        parts: dict[int, list[TestRequest]] = {}
        for idx, leader in enumerate(assignment):
            parts.setdefault(leader, []).append(members[idx])
        return [parts[leader] for leader in sorted(parts)]

    def _drop_free_riders(
        self,
        part: list[TestRequest]
    ) -> tuple[list[TestRequest], list[TestRequest]]:
        """Remove members whose presence adds no saving to the run.

        A member rides free when the run without it saves as much as the run
        with it. Such members stay standalone, so a later manual move that
        puts them next to the run does not rejoin it either. Later members
        are checked first, keeping the lead stable.

        Returns:
            (kept members in run order, removed members)
        """
        kept = list(part)
        removed: list[TestRequest] = []
        changed = True
        while changed and len(kept) > 1:
            changed = False
            saving = self._saving(kept)
            for member in reversed(kept):
                rest = [m for m in kept if m is not member]
                if saving - self._saving(rest) <= SAVING_EPSILON:
                    kept = rest
                    removed.append(member)
                    changed = True
                    break
        if len(kept) < 2:
            removed.extend(kept)
            kept = []
        if removed:
            logger.debug(
                "Left %s standalone: no saving added to the shared run",
                ", ".join(m.request_id for m in removed)
            )
        return kept, removed

    def _saving(self, members: list[TestRequest]) -> float:
        timing = evaluate_group(members, self.constants)
        return timing.time_saved if timing is not None else 0.0

    def _solve_partition(self, members: list[TestRequest]) -> list[int] | None:
        """Partition an oversized class with CP-SAT.

        Each member i joins the group led by some member g <= i; a group is
        open only if its leader belongs to it, so every partition has one
        encoding.

        Returns:
            For each member, the index of its group leader, or None if no
            solution was found in time.
        """
        n = len(members)
        configs = [m.configuration for m in members]
        shared = [
            {c: _scaled(v) for c, v in shared_minutes_by_category(cfg).items()}
            for cfg in configs
        ]
        wash = [_scaled(cfg.wash_time) for cfg in configs]
        specific = [_scaled(member_specific_time(cfg)) for cfg in configs]
        horizon = sum(sum(shared[i].values()) + wash[i] + specific[i] for i in range(n)) + 1

        model = cp_model.CpModel()

        x: dict[tuple[int, int], cp_model.IntVar] = {}
        for i in range(n):
            for g in range(i + 1):
                x[i, g] = model.NewBoolVar(f"x_{i}_{g}")
            model.AddExactlyOne([x[i, g] for g in range(i + 1)])
            for g in range(i):
                model.AddImplication(x[i, g], x[g, g])

        group_times = []
        multi_flags = []
        for g in range(n):
            members_of_g = list(range(g, n))
            size = model.NewIntVar(0, n, f"size_{g}")
            model.Add(size == sum(x[i, g] for i in members_of_g))

            multi = model.NewBoolVar(f"multi_{g}")
            model.Add(size >= 2).OnlyEnforceIf(multi)
            model.Add(size <= 1).OnlyEnforceIf(multi.Not())
            multi_flags.append(multi)

            if self.constants.max_group_size > 0:
                model.Add(size <= max(1, self.constants.max_group_size))

            terms = []
            for category in SHARED_CATEGORIES:
                top = max(shared[i][category] for i in members_of_g)
                if top == 0:
                    continue
                m = model.NewIntVar(0, top, f"shared_{g}_{category}")
                for i in members_of_g:
                    if shared[i][category] > 0:
                        model.Add(m >= shared[i][category] * x[i, g])
                terms.append(m)

            top_wash = max(wash[i] for i in members_of_g)
            if top_wash > 0:
                w = model.NewIntVar(0, top_wash, f"wash_{g}")
                for i in members_of_g:
                    if wash[i] > 0:
                        model.Add(w >= wash[i] * x[i, g])
                terms.append(w)

            time_g = model.NewIntVar(0, horizon, f"time_{g}")
            model.Add(time_g == sum(terms) + sum(specific[i] * x[i, g] for i in members_of_g))
            if self.constants.max_group_run_minutes > 0:
                model.Add(
                    time_g <= _scaled(self.constants.max_group_run_minutes)
                ).OnlyEnforceIf(multi)
            group_times.append(time_g)

        # Lexicographic weights: total time, then group count, then order spread
        order_weight = 1
        count_weight = n * n + 1
        time_weight = (n + 1) * count_weight
        model.Minimize(
            time_weight * sum(group_times)
            + count_weight * sum(multi_flags)
            + order_weight * sum((i - g) * x[i, g] for (i, g) in x)
        )

        # All-standalone is always feasible
        for (i, g), var in x.items():
            model.AddHint(var, 1 if i == g else 0)

        solver = cp_model.CpSolver()
        solver.parameters.max_time_in_seconds = self.constants.solver_timeout_seconds
        solver.parameters.num_workers = 1
        solver.parameters.random_seed = 0

        status = solver.Solve(model)
        status_name = solver.StatusName(status)

        if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
            error = SolverTimeoutError(self.constants.solver_timeout_seconds, best_solution_found=False)
            logger.warning("Class of %d tests left ungrouped: %s", n, error)
            return None
        if status == cp_model.FEASIBLE:
            error = SolverTimeoutError(self.constants.solver_timeout_seconds, best_solution_found=True)
            logger.warning("Class of %d tests: %s", n, error)

        logger.debug("Partitioned class of %d tests: %s in %.3fs", n, status_name, solver.WallTime())

        assignment = []
        for i in range(n):
            for g in range(i + 1):
                if solver.BooleanValue(x[i, g]):
                    assignment.append(g)
                    break
        return assignment


def _scaled(minutes: float) -> int:
    return int(round(minutes * MINUTE_SCALE))
