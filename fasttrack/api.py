"""Public entry points and read-only views for presentation collaborators.

Dashboards and tables call the four operations below and render the pandas
frames; none of them touch the graph directly.
"""

from __future__ import annotations

import re
from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import networkx as nx
import pandas as pd

from .config import FastTrackConfig
from .errors import InvalidActivityError, ScheduleError, ScheduleWarning
from .fast_track import summarize
from .models import (
    Activity,
    ActivityDates,
    ActivityType,
    Dependency,
    FastTrackOpportunity,
    LogicType,
    UpdateEdit,
)
from .schedule import Schedule
from .updates import variance_report

VALID_RELATIONS = {logic.value for logic in LogicType}


# =============================================================================
# Core operations
# =============================================================================


def compute_schedule(schedule: Schedule) -> Tuple[Dict[str, ActivityDates], List[ScheduleWarning]]:
    """Per-activity CPM fields plus feasibility warnings."""
    result = schedule.compute()
    return dict(result.dates), list(result.warnings)


def get_fast_track_opportunities(
    schedule: Schedule,
    config: Optional[FastTrackConfig] = None,
    **options,
) -> List[FastTrackOpportunity]:
    """
    Fresh fast-track candidates for the current schedule.

    ``options`` override individual config fields, e.g.
    ``get_fast_track_opportunities(schedule, float_threshold=5, max_results=3)``.
    """
    if config is None:
        config = FastTrackConfig.from_settings(schedule.settings, **options)
    elif options:
        config = replace(config, **options)
    return schedule.fast_track_opportunities(config)


def validate_and_commit(schedule: Schedule, edits: Sequence[UpdateEdit]) -> Tuple[bool, List[ScheduleError]]:
    """All-or-nothing commit; returns every validation error on rejection."""
    result = schedule.commit_updates(edits)
    return result.committed, list(result.errors)


def implement_fast_track(schedule: Schedule, opportunity: FastTrackOpportunity) -> Tuple[Dependency, bool]:
    """Apply an opportunity as a dependency change and recompute."""
    dependency, _ = schedule.implement_fast_track(opportunity)
    return dependency, True


opportunity_summary = summarize


# =============================================================================
# Tabular views
# =============================================================================


def _calendar(day: Optional[int], start_date: Optional[date]):
    if day is None:
        return pd.NaT
    return pd.Timestamp(start_date) + pd.Timedelta(days=int(day))


def results_dataframe(schedule: Schedule, start_date: Optional[date] = None) -> pd.DataFrame:
    """
    Get calculation results as a pandas DataFrame.

    With ``start_date`` the day numbers are also rendered as calendar dates
    (day 0 == ``start_date``).
    """
    graph, result = schedule.snapshot()
    data = []
    for act_id in sorted(result.dates):
        act = graph.activities[act_id]
        dates = result.dates[act_id]
        row = {
            "ID": act_id,
            "Description": act.description,
            "Type": act.type.value,
            "Duration": act.duration,
            "Progress": act.percent_complete,
            "Crew": act.crew_id or "-",
            "ES": dates.early_start,
            "EF": dates.early_finish,
            "LS": dates.late_start,
            "LF": dates.late_finish,
            "TF": dates.total_float,
            "FF": dates.free_float,
            "Current Start": dates.current_start,
            "Current Finish": dates.current_finish,
            "Critical": "Yes" if dates.is_critical else "No",
        }
        if start_date is not None:
            row["Start Date"] = _calendar(dates.current_start, start_date)
            row["Finish Date"] = _calendar(dates.current_finish, start_date)
        data.append(row)
    return pd.DataFrame(data)


def activities_dataframe(schedule: Schedule) -> pd.DataFrame:
    """Get activities list as a pandas DataFrame, predecessors in ``A:FS:+0`` form."""
    graph, _ = schedule.snapshot()
    data = []
    for act_id in sorted(graph.activities):
        act = graph.activities[act_id]
        preds = sorted(graph.predecessors_of(act_id), key=lambda d: d.predecessor_id)
        data.append(
            {
                "ID": act_id,
                "Description": act.description,
                "Type": act.type.value,
                "Duration": act.duration,
                "Crew": act.crew_id or "",
                "Baseline Start": act.baseline_start,
                "Baseline Finish": act.baseline_finish,
                "Actual Start": act.actual_start,
                "Actual Finish": act.actual_finish,
                "Progress": act.percent_complete,
                "Predecessors": ";".join(str(p) for p in preds),
            }
        )
    return pd.DataFrame(data)


def opportunities_dataframe(opportunities: Iterable[FastTrackOpportunity]) -> pd.DataFrame:
    columns = [
        "Activity", "Activity Name", "Predecessor", "Predecessor Name", "Current Logic",
        "Suggested Logic", "Total Float", "Savings", "Risk", "Confidence",
        "Resource Conflict", "Effort", "Complexity",
    ]
    data = [
        {
            "Activity": o.activity_id,
            "Activity Name": o.activity_name,
            "Predecessor": o.predecessor_id,
            "Predecessor Name": o.predecessor_name,
            "Current Logic": f"{o.current_logic.value}{o.current_lag:+d}",
            "Suggested Logic": f"{o.suggested_logic.value}{o.suggested_lag:+d}",
            "Total Float": o.total_float,
            "Savings": o.potential_savings_days,
            "Risk": o.risk_level.value,
            "Confidence": o.confidence,
            "Resource Conflict": o.resource_conflict,
            "Effort": o.implementation_effort,
            "Complexity": o.complexity,
        }
        for o in opportunities
    ]
    return pd.DataFrame(data, columns=columns)


def variance_dataframe(schedule: Schedule, activity_ids: Optional[Iterable[str]] = None) -> pd.DataFrame:
    """Baseline vs current/actual table; positive variance means late."""
    graph, result = schedule.snapshot()
    records = variance_report(graph, result, activity_ids)
    df = pd.DataFrame(
        [
            {
                "ID": r.activity_id,
                "Baseline Start": r.baseline_start,
                "Baseline Finish": r.baseline_finish,
                "Start": r.start,
                "Finish": r.finish,
                "Start Variance": r.start_variance,
                "Finish Variance": r.finish_variance,
                "Actual Start": r.is_actual_start,
                "Actual Finish": r.is_actual_finish,
            }
            for r in records
        ],
        columns=[
            "ID", "Baseline Start", "Baseline Finish", "Start", "Finish",
            "Start Variance", "Finish Variance", "Actual Start", "Actual Finish",
        ],
    )
    # Nullable ints keep missing baselines as <NA> instead of float NaN
    for col in ("Baseline Start", "Baseline Finish", "Start", "Finish", "Start Variance", "Finish Variance"):
        df[col] = df[col].astype("Int64")
    return df


def activities_in_window(schedule: Schedule, window_start: int, window_end: int) -> List[str]:
    """Look-ahead filter: activities whose current dates touch the window."""
    result = schedule.compute()
    ids = []
    for act_id in result.topological_order:
        d = result.dates[act_id]
        start, end = d.current_start, d.current_finish
        if (
            window_start <= start <= window_end
            or window_start <= end <= window_end
            or (start <= window_start and end >= window_end)
        ):
            ids.append(act_id)
    return ids


def to_networkx(schedule: Schedule) -> nx.DiGraph:
    """Directed graph with CPM node attributes and logic/lag edge attributes."""
    graph, result = schedule.snapshot()
    G = nx.DiGraph()
    for act_id, act in graph.activities.items():
        dates = result.dates[act_id]
        G.add_node(
            act_id,
            description=act.description,
            duration=act.duration,
            es=dates.early_start,
            ef=dates.early_finish,
            ls=dates.late_start,
            lf=dates.late_finish,
            total_float=dates.total_float,
            is_critical=dates.is_critical,
        )
    for dep in graph.dependencies():
        lag_str = f"+{dep.lag}" if dep.lag >= 0 else str(dep.lag)
        G.add_edge(
            dep.predecessor_id,
            dep.successor_id,
            label=f"{dep.logic.value}({lag_str})",
            rel_type=dep.logic.value,
            lag=dep.lag,
        )
    return G


# =============================================================================
# Tabular import
# =============================================================================


def parse_predecessors(predecessors_str: str, activity_id: str) -> List[Dependency]:
    """
    Parse predecessors in format "A:FS:0;B:SS:5;C:FF:-3".

    Raises:
        InvalidActivityError: on a malformed entry
    """
    dependencies: List[Dependency] = []
    if not predecessors_str or not str(predecessors_str).strip():
        return dependencies

    seen = set()
    for pred_def in re.split(r"[;,]", str(predecessors_str)):
        pred_def = pred_def.strip()
        if not pred_def or pred_def in {"-", "—"}:
            continue

        parts = [p.strip() for p in pred_def.split(":")]
        if len(parts) == 1:
            parts += ["FS", "0"]
        elif len(parts) == 2:
            parts.append("0")
        if len(parts) != 3:
            raise InvalidActivityError(
                f"Invalid predecessor format: '{pred_def}'. Use format 'ID:TYPE:LAG' (e.g., 'A:FS:0').",
                activity_id=activity_id,
            )

        pred_id = parts[0].upper()
        rel_type = parts[1].upper()
        try:
            lag = int(parts[2])
        except ValueError:
            raise InvalidActivityError(
                f"Invalid lag value in '{pred_def}'. Lag must be an integer.", activity_id=activity_id
            ) from None

        if rel_type not in VALID_RELATIONS:
            raise InvalidActivityError(
                f"Invalid relationship type '{rel_type}'. Must be one of: FS, SS, FF, SF.",
                activity_id=activity_id,
            )

        if pred_id in seen:
            continue
        seen.add(pred_id)
        dependencies.append(Dependency(pred_id, activity_id, LogicType(rel_type), lag))

    return dependencies


def _optional_int(value) -> Optional[int]:
    if value is None or (not isinstance(value, str) and pd.isna(value)) or value == "":
        return None
    return int(value)


def schedule_from_dataframe(
    df: pd.DataFrame,
    data_date: int = 0,
    project_start: Optional[int] = None,
    project_finish: Optional[int] = None,
    **schedule_kwargs,
) -> Schedule:
    """
    Build a Schedule from a table with ``ID``, ``Description``, ``Duration`` and
    optionally ``Predecessors``, ``Type``, ``Crew``, ``Baseline Start``,
    ``Baseline Finish``.

    Activities are added first and dependencies afterwards, so rows may
    reference activities that appear later in the table.
    """
    missing = [c for c in ("ID", "Description", "Duration") if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    schedule = Schedule(
        data_date=data_date, project_start=project_start, project_finish=project_finish, **schedule_kwargs
    )
    pending: List[Dependency] = []
    for row in df.to_dict(orient="records"):
        act_id = str(row["ID"]).strip().upper()
        type_raw = row.get("Type")
        try:
            act_type = ActivityType(type_raw) if isinstance(type_raw, str) and type_raw else ActivityType.TASK
        except ValueError:
            raise InvalidActivityError(f"Unknown activity type '{type_raw}'.", activity_id=act_id) from None
        crew = row.get("Crew")
        schedule.add_activity(
            Activity(
                id=act_id,
                description=str(row["Description"]),
                duration=int(row["Duration"]),
                type=act_type,
                baseline_start=_optional_int(row.get("Baseline Start")),
                baseline_finish=_optional_int(row.get("Baseline Finish")),
                crew_id=str(crew) if isinstance(crew, str) and crew.strip() else None,
            )
        )
        preds = row.get("Predecessors")
        pending.extend(parse_predecessors(preds if isinstance(preds, str) else "", act_id))

    for dependency in pending:
        schedule.add_dependency(dependency)
    return schedule
