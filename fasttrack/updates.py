from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .errors import (
    DateOrderError,
    DuplicateIdError,
    EarlyActualWarning,
    FutureActualWarning,
    IncompleteActualsError,
    MilestoneDateMismatchError,
    MissingActualStartWarning,
    MissingReasonError,
    RangeError,
    ScheduleError,
    ScheduleWarning,
    UnknownActivityError,
)
from .graph import ScheduleGraph
from .logger import configure_logging
from .models import Activity, ChangeType, CommitResult, CPMResult, UpdateEdit, VarianceRecord

logger = configure_logging(__name__)

DateLike = Union[int, date]


def variance_days(baseline: Optional[DateLike], current: Optional[DateLike]) -> Optional[int]:
    """Signed slip in days; positive means later than baseline."""
    if baseline is None or current is None:
        return None
    if isinstance(baseline, date) and isinstance(current, date):
        return (current - baseline).days
    if isinstance(baseline, date) or isinstance(current, date):
        raise TypeError("Cannot compare a calendar date with a day number.")
    return int(current) - int(baseline)


@dataclass
class _MergedState:
    """What an activity would look like once an edit is applied."""

    actual_start: Optional[int]
    actual_finish: Optional[int]
    percent_complete: int
    delay_reason: Optional[str]
    change_type: ChangeType
    notes: Optional[str]

    @classmethod
    def from_edit(cls, activity: Activity, edit: UpdateEdit) -> "_MergedState":
        start = edit.actual_start if edit.actual_start is not None else activity.actual_start
        finish = edit.actual_finish if edit.actual_finish is not None else activity.actual_finish
        if edit.percent_complete is not None:
            percent = edit.percent_complete
        elif edit.actual_finish is not None:
            percent = 100
        else:
            percent = activity.percent_complete
        return cls(
            actual_start=start,
            actual_finish=finish,
            percent_complete=percent,
            delay_reason=edit.delay_reason if edit.delay_reason else activity.delay_reason,
            change_type=edit.change_type,
            notes=edit.notes if edit.notes is not None else activity.notes,
        )

    def as_fields(self) -> Dict[str, object]:
        return {
            "actual_start": self.actual_start,
            "actual_finish": self.actual_finish,
            "percent_complete": self.percent_complete,
            "delay_reason": self.delay_reason,
            "change_type": self.change_type,
            "notes": self.notes,
        }


class UpdateValidator:
    """
    Validates field-reported updates against an activity's invariants.

    Every edit is checked and every problem collected, so a caller can flag all
    offending rows at once.
    """

    def __init__(self, data_date: int = 0, early_actual_tolerance_days: int = 5):
        self.data_date = data_date
        self.early_actual_tolerance_days = early_actual_tolerance_days

    def validate(
        self, graph: ScheduleGraph, edits: Sequence[UpdateEdit]
    ) -> Tuple[List[ScheduleError], List[ScheduleWarning]]:
        errors: List[ScheduleError] = []
        warnings: List[ScheduleWarning] = []
        seen: Dict[str, int] = {}

        for index, edit in enumerate(edits):
            if edit.activity_id in seen:
                errors.append(
                    DuplicateIdError(
                        f"{edit.activity_id}: more than one edit in the same batch",
                        activity_id=edit.activity_id,
                        details={"rows": [seen[edit.activity_id], index]},
                    )
                )
                continue
            seen[edit.activity_id] = index

            edit_errors, edit_warnings = self.validate_edit(graph, edit)
            errors.extend(edit_errors)
            warnings.extend(edit_warnings)

        return errors, warnings

    def validate_edit(
        self, graph: ScheduleGraph, edit: UpdateEdit
    ) -> Tuple[List[ScheduleError], List[ScheduleWarning]]:
        act_id = edit.activity_id
        activity = graph.activities.get(act_id)
        if activity is None:
            return [UnknownActivityError(f"{act_id}: activity not found", activity_id=act_id)], []

        state = _MergedState.from_edit(activity, edit)
        errors: List[ScheduleError] = []

        # Check date logic
        if state.actual_finish is not None:
            if state.actual_start is None:
                errors.append(
                    DateOrderError(f"{act_id}: Actual finish requires an actual start", activity_id=act_id)
                )
            elif state.actual_start > state.actual_finish:
                errors.append(
                    DateOrderError(
                        f"{act_id}: Start date cannot be after finish date",
                        activity_id=act_id,
                        details={"actual_start": state.actual_start, "actual_finish": state.actual_finish},
                    )
                )

        if (
            activity.is_milestone
            and state.actual_start is not None
            and state.actual_finish is not None
            and state.actual_start != state.actual_finish
        ):
            errors.append(
                MilestoneDateMismatchError(
                    f"{act_id}: Milestone actual start and finish must be the same day", activity_id=act_id
                )
            )

        # Check required fields for delays
        if state.change_type is ChangeType.DELAY and not (state.delay_reason or "").strip():
            errors.append(
                MissingReasonError(f"{act_id}: Delay reason is required for delayed activities", activity_id=act_id)
            )

        if not 0 <= state.percent_complete <= 100:
            errors.append(
                RangeError(
                    f"{act_id}: Percent complete must be between 0 and 100",
                    activity_id=act_id,
                    details={"percent_complete": state.percent_complete},
                )
            )
        elif state.percent_complete == 100 and state.actual_finish is None:
            errors.append(
                IncompleteActualsError(f"{act_id}: 100% complete requires an actual finish", activity_id=act_id)
            )

        return errors, self._warnings_for(activity, state)

    def _warnings_for(self, activity: Activity, state: _MergedState) -> List[ScheduleWarning]:
        act_id = activity.id
        warnings: List[ScheduleWarning] = []

        if activity.baseline_start is not None:
            for label, value in (("start", state.actual_start), ("finish", state.actual_finish)):
                if value is None:
                    continue
                early_by = activity.baseline_start - value
                if early_by > self.early_actual_tolerance_days:
                    warnings.append(
                        EarlyActualWarning(
                            f"{act_id}: Actual {label} is {early_by} days before baseline start",
                            activity_id=act_id,
                            details={"days_early": early_by},
                        )
                    )

        for label, value in (("start", state.actual_start), ("finish", state.actual_finish)):
            if value is not None and value > self.data_date:
                warnings.append(
                    FutureActualWarning(
                        f"{act_id}: Actual {label} ({value}) is after the data date ({self.data_date})",
                        activity_id=act_id,
                    )
                )

        if state.percent_complete > 0 and state.actual_start is None:
            warnings.append(
                MissingActualStartWarning(
                    f"{act_id}: Progress reported without an actual start", activity_id=act_id
                )
            )
        return warnings


class UpdateCommitter:
    """Applies a validated batch to the graph, all or nothing."""

    def __init__(self, validator: UpdateValidator):
        self.validator = validator

    def commit(
        self,
        graph: ScheduleGraph,
        edits: Sequence[UpdateEdit],
        last_result: Optional[CPMResult] = None,
    ) -> CommitResult:
        edits = list(edits)
        errors, warnings = self.validator.validate(graph, edits)
        score = health_score(graph, edits, errors, last_result)

        if errors:
            logger.warning("Update batch rejected: %d errors across %d edits", len(errors), len(edits))
            return CommitResult(
                committed=False,
                errors=errors,
                warnings=warnings,
                health_score=score,
                summary=f"Rejected update for {len(edits)} activities ({len(errors)} errors)",
            )

        # Build every new activity first so nothing is written if one fails
        staged = [
            (edit.activity_id, _MergedState.from_edit(graph.activities[edit.activity_id], edit))
            for edit in edits
        ]
        for act_id, state in staged:
            graph.update_activity_fields(act_id, **state.as_fields())

        committed_ids = [act_id for act_id, _ in staged]
        logger.info("Committed update batch for %d activities", len(committed_ids))
        return CommitResult(
            committed=True,
            errors=[],
            warnings=warnings,
            committed_ids=committed_ids,
            variances=[actual_variance(graph.activities[act_id]) for act_id in committed_ids],
            health_score=score,
            summary=f"Schedule update for {len(committed_ids)} activities",
        )


def actual_variance(activity: Activity) -> VarianceRecord:
    """Variance from reported actuals only."""
    return VarianceRecord(
        activity_id=activity.id,
        baseline_start=activity.baseline_start,
        baseline_finish=activity.baseline_finish,
        start=activity.actual_start,
        finish=activity.actual_finish,
        start_variance=variance_days(activity.baseline_start, activity.actual_start),
        finish_variance=variance_days(activity.baseline_finish, activity.actual_finish),
        is_actual_start=activity.actual_start is not None,
        is_actual_finish=activity.actual_finish is not None,
    )


def variance_report(
    graph: ScheduleGraph, result: CPMResult, activity_ids: Optional[Iterable[str]] = None
) -> List[VarianceRecord]:
    """Baseline vs current-or-actual dates for each activity."""
    ids = list(activity_ids) if activity_ids is not None else list(result.topological_order)
    records: List[VarianceRecord] = []
    for act_id in ids:
        activity = graph.get_activity(act_id)
        dates = result.dates[act_id]
        records.append(
            VarianceRecord(
                activity_id=act_id,
                baseline_start=activity.baseline_start,
                baseline_finish=activity.baseline_finish,
                start=dates.current_start,
                finish=dates.current_finish,
                start_variance=variance_days(activity.baseline_start, dates.current_start),
                finish_variance=variance_days(activity.baseline_finish, dates.current_finish),
                is_actual_start=activity.actual_start is not None,
                is_actual_finish=activity.actual_finish is not None,
            )
        )
    return records


def health_score(
    graph: ScheduleGraph,
    edits: Sequence[UpdateEdit],
    errors: Sequence[ScheduleError],
    last_result: Optional[CPMResult] = None,
) -> int:
    """Update-package health: penalises open work, delays, critical delays and errors."""
    incomplete = 0
    delays = 0
    critical_delays = 0
    for edit in edits:
        activity = graph.activities.get(edit.activity_id)
        if activity is None:
            continue
        state = _MergedState.from_edit(activity, edit)
        if state.percent_complete < 100:
            incomplete += 1
        if state.change_type is ChangeType.DELAY:
            delays += 1
            if last_result is not None and edit.activity_id in last_result.dates:
                if last_result.dates[edit.activity_id].is_critical:
                    critical_delays += 1

    score = 100
    score -= incomplete * 2  # Incomplete activities
    score -= delays * 3  # Schedule deviations
    score -= critical_delays * 10  # Critical path delays
    score -= len(errors) * 5  # Validation errors
    return max(0, min(100, score))
