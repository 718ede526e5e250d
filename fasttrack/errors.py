"""Schedule engine error taxonomy.

Structural errors are raised and leave the schedule untouched. Validation
errors are collected per update batch and returned as a list. Feasibility
errors and warnings are reported alongside otherwise valid results.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ErrorCode:
    """Error code constants."""

    # Structural
    CYCLE = "CYCLE"
    DUPLICATE_ID = "DUPLICATE_ID"
    UNKNOWN_ACTIVITY = "UNKNOWN_ACTIVITY"
    DEPENDENT_EXISTS = "DEPENDENT_EXISTS"
    INVALID_LAG = "INVALID_LAG"
    INVALID_ACTIVITY = "INVALID_ACTIVITY"
    STALE_OPPORTUNITY = "STALE_OPPORTUNITY"
    BASELINE_LOCKED = "BASELINE_LOCKED"

    # Validation
    DATE_ORDER = "DATE_ORDER"
    MILESTONE_DATE_MISMATCH = "MILESTONE_DATE_MISMATCH"
    MISSING_REASON = "MISSING_REASON"
    RANGE = "RANGE"
    INCOMPLETE_ACTUALS = "INCOMPLETE_ACTUALS"

    # Feasibility / warnings
    NEGATIVE_FLOAT = "NEGATIVE_FLOAT"
    EARLY_ACTUAL = "EARLY_ACTUAL"
    FUTURE_ACTUAL = "FUTURE_ACTUAL"
    MISSING_ACTUAL_START = "MISSING_ACTUAL_START"

    # Operational
    COMPUTATION_TIMEOUT = "COMPUTATION_TIMEOUT"
    SCHEDULE_BUSY = "SCHEDULE_BUSY"


class ScheduleError(Exception):
    """Base exception for schedule engine errors.

    Attributes:
        code: Error code from ErrorCode constants
        message: Human-readable error message
        activity_id: Activity the error refers to, if any
        details: Additional error context
    """

    category = "structural"
    default_code = "SCHEDULE_ERROR"

    def __init__(
        self,
        message: str,
        activity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.activity_id = activity_id
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a dictionary for UI collaborators."""
        return {
            "code": self.code,
            "category": self.category,
            "message": self.message,
            "activity_id": self.activity_id,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# Structural
# =============================================================================


class CycleError(ScheduleError):
    default_code = ErrorCode.CYCLE

    def __init__(self, message: str, cycle: Optional[List[str]] = None, **kwargs):
        details = {**kwargs.pop("details", {}), "cycle": list(cycle or [])}
        super().__init__(message, details=details, **kwargs)
        self.cycle = list(cycle or [])


class DuplicateIdError(ScheduleError):
    default_code = ErrorCode.DUPLICATE_ID


class UnknownActivityError(ScheduleError):
    default_code = ErrorCode.UNKNOWN_ACTIVITY


class DependentExistsError(ScheduleError):
    default_code = ErrorCode.DEPENDENT_EXISTS


class InvalidLagError(ScheduleError):
    default_code = ErrorCode.INVALID_LAG


class InvalidActivityError(ScheduleError):
    default_code = ErrorCode.INVALID_ACTIVITY


class StaleOpportunityError(ScheduleError):
    """The dependency behind a fast-track opportunity changed since it was proposed."""

    default_code = ErrorCode.STALE_OPPORTUNITY


class BaselineLockedError(ScheduleError):
    default_code = ErrorCode.BASELINE_LOCKED


# =============================================================================
# Validation (fatal to a whole update batch)
# =============================================================================


class ValidationError(ScheduleError):
    category = "validation"
    default_code = "VALIDATION_ERROR"


class DateOrderError(ValidationError):
    default_code = ErrorCode.DATE_ORDER


class MilestoneDateMismatchError(ValidationError):
    default_code = ErrorCode.MILESTONE_DATE_MISMATCH


class MissingReasonError(ValidationError):
    default_code = ErrorCode.MISSING_REASON


class RangeError(ValidationError):
    default_code = ErrorCode.RANGE


class IncompleteActualsError(ValidationError):
    default_code = ErrorCode.INCOMPLETE_ACTUALS


# =============================================================================
# Feasibility and warnings (never raised by the engine)
# =============================================================================


class ScheduleWarning(ScheduleError):
    category = "warning"
    default_code = "SCHEDULE_WARNING"


class NegativeFloatError(ScheduleWarning):
    """Over-constrained schedule: an activity's late start precedes its early start."""

    category = "feasibility"
    default_code = ErrorCode.NEGATIVE_FLOAT


class EarlyActualWarning(ScheduleWarning):
    default_code = ErrorCode.EARLY_ACTUAL


class FutureActualWarning(ScheduleWarning):
    default_code = ErrorCode.FUTURE_ACTUAL


class MissingActualStartWarning(ScheduleWarning):
    default_code = ErrorCode.MISSING_ACTUAL_START


# =============================================================================
# Operational
# =============================================================================


class ComputationTimeoutError(ScheduleError):
    category = "operational"
    default_code = ErrorCode.COMPUTATION_TIMEOUT


class ScheduleBusyError(ScheduleError):
    """The write lock could not be acquired in time; the call is safe to retry."""

    category = "operational"
    default_code = ErrorCode.SCHEDULE_BUSY
