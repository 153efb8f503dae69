# Custom exception hierarchy for the HPLC test scheduler.
# Version: 1.0.0
# Errors raised while building, grouping, assigning and editing scheduling plans.

from pathlib import PurePath
from typing import Any


class SchedulingError(Exception):
    """Root of every error the HPLC scheduler raises.

    Pool building, grouping, assignment, manual moves and plan storage
    all raise subclasses of this, so a caller driving a whole scheduling
    pass can handle them in one place.

    Attributes:
        message: Text shown to the lab user.
        details: Identifiers (test, instrument, plan version) for the logs.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = dict(details) if details else {}
        super().__init__(message)

    def __str__(self) -> str:
        if not self.details:
            return self.message
        context = ", ".join(f"{key}={value}" for key, value in self.details.items())
        return f"{self.message} [{context}]"


class InvalidConfiguration(SchedulingError):
    """Raised when a test configuration cannot be scheduled.

    Covers negative or non-finite injection counts and run times, a
    mobile-phase list that does not have six slots, and an empty first
    phase slot. Raised while the candidate pool is built; the offending
    request is excluded and reported.

    Attributes:
        field: Name of the configuration field that failed validation.
        value: The invalid value that was provided.
        reason: Explanation of why the value is invalid.
        request_id: Optional identifier of the affected test request.
    """

    def __init__(
        self,
        field: str,
        value: Any,
        reason: str,
        request_id: str | None = None
    ) -> None:
        """Initialize the invalid configuration error.

        Args:
            field: Name of the field that failed validation.
            value: The invalid value provided.
            reason: Explanation of why validation failed.
            request_id: Optional test request identifier.
        """
        self.field = field
        self.value = value
        self.reason = reason
        self.request_id = request_id

        details = {"field": field, "value": repr(value)}
        if request_id is not None:
            details["request_id"] = request_id

        location = f" for test {request_id}" if request_id else ""
        message = f"Invalid {field}{location}: {reason}. Got: {repr(value)}"
        super().__init__(message, details)

    def for_request(self, request_id: str) -> "InvalidConfiguration":
        """Return a copy of this error bound to a test request."""
        return InvalidConfiguration(self.field, self.value, self.reason, request_id)


class IncompatibleInstrument(SchedulingError):
    """Raised when a manual move targets an instrument that cannot run the test.

    The destination either lacks the detector the test requires or does
    not belong to the plan being edited. The plan is left unchanged.

    Attributes:
        test_id: Test that was being moved.
        instrument_id: Requested destination instrument.
        reason: Why the instrument cannot host the test.
    """

    def __init__(self, test_id: str, instrument_id: str, reason: str) -> None:
        """Initialize the incompatible instrument error.

        Args:
            test_id: Identifier of the test being moved.
            instrument_id: Identifier of the destination instrument.
            reason: Explanation of the incompatibility.
        """
        self.test_id = test_id
        self.instrument_id = instrument_id
        self.reason = reason

        message = f"Cannot move test {test_id} to instrument {instrument_id}: {reason}"
        super().__init__(message, {"test_id": test_id, "instrument_id": instrument_id})


class StaleSchedulingPlan(SchedulingError):
    """Raised when a plan write is based on an outdated version.

    The caller must re-fetch the stored plan and retry the edit.

    Attributes:
        plan_key: (company_id, location_id) of the plan.
        base_version: Version the caller based its edit on.
        current_version: Version currently stored.
    """

    def __init__(
        self,
        plan_key: tuple[str, str],
        base_version: int,
        current_version: int
    ) -> None:
        """Initialize the stale plan error.

        Args:
            plan_key: (company_id, location_id) tuple.
            base_version: Version supplied by the caller.
            current_version: Version held by the store.
        """
        self.plan_key = plan_key
        self.base_version = base_version
        self.current_version = current_version

        message = (
            f"Scheduling plan for {plan_key[0]}/{plan_key[1]} has changed: "
            f"based on version {base_version}, stored version is {current_version}"
        )
        super().__init__(
            message,
            {"base_version": base_version, "current_version": current_version}
        )


class ConfigurationError(SchedulingError):
    """Raised when scheduler settings in scheduling.yaml cannot be used.

    Examples are a non-numeric group limit, a negative timeout, a
    priority_ranks table missing urgent/high/normal, or a priority name
    that has no rank.

    Attributes:
        config_source: Settings file name or the setting that was looked up.
        issue: What is wrong with it.
    """

    def __init__(self, config_source: str, issue: str) -> None:
        self.config_source = config_source
        self.issue = issue
        super().__init__(
            f"Invalid scheduler settings ({config_source}): {issue}",
            {"source": config_source},
        )


class FileLoadError(SchedulingError):
    """Raised when a settings file or a batch CSV/Excel export cannot be read.

    Attributes:
        filepath: Path that was being read.
        cause: Exception raised by the YAML or spreadsheet reader.
    """

    def __init__(self, filepath: str, cause: Exception) -> None:
        self.filepath = filepath
        self.cause = cause
        cause_type = type(cause).__name__
        super().__init__(
            f"Could not read {PurePath(filepath).name} ({cause_type}): {cause}",
            {"filepath": filepath, "cause_type": cause_type},
        )


class SolverTimeoutError(SchedulingError):
    """CP-SAT ran out of time while splitting an oversized compatibility class.

    The grouper does not raise this; it builds one to describe the outcome
    and logs it as a warning. With best_solution_found the best partition
    found so far is kept and its groups are used. Without it every member
    of the class is scheduled standalone.

    Attributes:
        timeout_seconds: solver_timeout_seconds in effect.
        best_solution_found: Whether a feasible partition was available.
    """

    def __init__(self, timeout_seconds: float, best_solution_found: bool) -> None:
        self.timeout_seconds = timeout_seconds
        self.best_solution_found = best_solution_found
        if best_solution_found:
            outcome = "keeping the best partition found, which may not save the most time"
        else:
            outcome = "no partition found, tests in the class run standalone"
        super().__init__(
            f"Grouping stopped after {timeout_seconds:g}s: {outcome}",
            {"timeout": timeout_seconds, "has_solution": best_solution_found},
        )
