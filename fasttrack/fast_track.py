"""Fast-track (schedule compression) analysis.

Looks for non-critical activities with generous float whose Finish-to-Start
predecessor could be overlapped by converting the link to Start-to-Start,
and scores each candidate. Opportunities are a read-only projection of the
current CPM result; they only reach the schedule through ``implement``.
"""

from __future__ import annotations

import math
from typing import Callable, Dict, List, Optional, Tuple

from .config import FastTrackConfig
from .engine import CPMCalculator, link_slack, link_start
from .errors import StaleOpportunityError
from .graph import ScheduleGraph
from .logger import configure_logging
from .models import (
    Activity,
    ActivityDates,
    CPMResult,
    Dependency,
    FastTrackOpportunity,
    LogicType,
    RiskLevel,
)

logger = configure_logging(__name__)

# Confidence weights: float left untouched, ease of implementation, no crew clash
FLOAT_WEIGHT = 0.5
EFFORT_WEIGHT = 0.3
CONFLICT_WEIGHT = 0.2

RISK_ORDER = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}

SORT_KEYS: Dict[str, Callable[[FastTrackOpportunity], Tuple]] = {
    "savings": lambda o: (-o.potential_savings_days, -o.confidence, o.activity_id, o.predecessor_id),
    "confidence": lambda o: (-o.confidence, -o.potential_savings_days, o.activity_id, o.predecessor_id),
    "float": lambda o: (-o.total_float, -o.potential_savings_days, o.activity_id, o.predecessor_id),
    "risk": lambda o: (RISK_ORDER[o.risk_level], -o.potential_savings_days, o.activity_id, o.predecessor_id),
}


def classify_risk(overlap: int, predecessor_duration: int, resource_conflict: bool) -> RiskLevel:
    if overlap <= 0.25 * predecessor_duration and not resource_conflict:
        return RiskLevel.LOW
    if overlap <= 0.5 * predecessor_duration or resource_conflict:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def estimate_effort(downstream_count: int, resource_conflict: bool) -> int:
    """1-5 scale, growing with the number of activities that would shift."""
    if downstream_count == 0:
        effort = 1
    elif downstream_count <= 2:
        effort = 2
    elif downstream_count <= 5:
        effort = 3
    else:
        effort = 4
    if resource_conflict:
        effort += 1
    return max(1, min(5, effort))


def score_confidence(overlap: int, total_float: int, effort: int, resource_conflict: bool) -> int:
    """
    Heuristic confidence percentage.

    Combines how little of the float the overlap consumes, how easy the change
    is to implement and whether the same crew is double-booked. It is a
    ranking aid, not a calibrated probability.
    """
    float_ratio = min(1.0, overlap / total_float) if total_float > 0 else 1.0
    score = (
        FLOAT_WEIGHT * (1.0 - float_ratio)
        + EFFORT_WEIGHT * (1.0 - (effort - 1) / 4)
        + CONFLICT_WEIGHT * (0.0 if resource_conflict else 1.0)
    )
    return max(0, min(100, int(round(score * 100))))


def complexity_for(effort: int) -> str:
    if effort <= 2:
        return "simple"
    if effort == 3:
        return "moderate"
    return "complex"


class FastTrackAnalyzer:
    """Enumerates and scores FS -> SS overlap candidates."""

    def __init__(self, config: Optional[FastTrackConfig] = None):
        self.config = config or FastTrackConfig()

    def analyze(self, graph: ScheduleGraph, result: CPMResult) -> List[FastTrackOpportunity]:
        config = self.config
        opportunities: List[FastTrackOpportunity] = []

        for act_id in result.topological_order:
            dates = result.dates[act_id]
            activity = graph.activities[act_id]
            if dates.is_critical or dates.total_float <= config.float_threshold:
                continue
            if activity.is_started:
                continue

            downstream = len(graph.descendants(act_id))
            for dep in graph.predecessors_of(act_id):
                if dep.logic is not LogicType.FS:
                    continue
                predecessor = graph.activities[dep.predecessor_id]
                if predecessor.is_complete:
                    continue
                p_dates = result.dates[predecessor.id]
                # Only a driving link moves the successor when it is relaxed
                if link_slack(dep, p_dates.early_start, p_dates.early_finish, dates.early_start, dates.early_finish):
                    continue
                room = dates.early_start - self._start_floor(graph, result, activity, dep)
                opportunity = self._evaluate(activity, predecessor, dep, dates.total_float, downstream, p_dates, room)
                if opportunity is not None:
                    opportunities.append(opportunity)

        if config.risk_level:
            wanted = RiskLevel(config.risk_level)
            opportunities = [o for o in opportunities if o.risk_level is wanted]

        opportunities.sort(key=SORT_KEYS[config.sort_by])
        if config.max_results is not None:
            opportunities = opportunities[: config.max_results]

        logger.info(
            "Fast-track analysis: %d opportunities (threshold=%d days)",
            len(opportunities),
            config.float_threshold,
        )
        return opportunities

    @staticmethod
    def _start_floor(graph: ScheduleGraph, result: CPMResult, activity: Activity, dep: Dependency) -> int:
        """Latest start forced on ``activity`` by everything except ``dep``."""
        floors = [result.data_date]
        if activity.constraint_es is not None:
            floors.append(activity.constraint_es)
        for other in graph.predecessors_of(activity.id):
            if other.predecessor_id == dep.predecessor_id:
                continue
            p = result.dates[other.predecessor_id]
            floors.append(link_start(other, p.early_start, p.early_finish, activity.duration))
        return max(floors)

    def _evaluate(
        self,
        activity: Activity,
        predecessor: Activity,
        dep: Dependency,
        total_float: int,
        downstream: int,
        p_dates: ActivityDates,
        room: int,
    ) -> Optional[FastTrackOpportunity]:
        config = self.config
        # Scheduled span; differs from the planned duration once work is in progress
        span = p_dates.early_finish - p_dates.early_start

        # An SS lag is measured from the predecessor's start: FS+lag == SS+(span+lag)
        equivalent_ss_lag = span + dep.lag
        bounds = [math.floor(span * config.max_overlap_fraction), total_float, room]
        if not config.allow_negative_lag:
            # Dependent work never starts before the predecessor itself
            bounds.append(equivalent_ss_lag)
        overlap = min(bounds)
        if overlap <= 0:
            return None

        conflict = activity.crew_id is not None and activity.crew_id == predecessor.crew_id
        effort = estimate_effort(downstream, conflict)

        return FastTrackOpportunity(
            activity_id=activity.id,
            activity_name=activity.description,
            duration=activity.duration,
            total_float=total_float,
            predecessor_id=predecessor.id,
            predecessor_name=predecessor.description,
            current_logic=dep.logic,
            current_lag=dep.lag,
            suggested_logic=LogicType.SS,
            suggested_lag=equivalent_ss_lag - overlap,
            potential_savings_days=overlap,
            risk_level=classify_risk(overlap, span, conflict),
            confidence=score_confidence(overlap, total_float, effort, conflict),
            resource_conflict=conflict,
            implementation_effort=effort,
            complexity=complexity_for(effort),
            downstream_count=downstream,
        )

    def implement(
        self,
        graph: ScheduleGraph,
        opportunity: FastTrackOpportunity,
        calculator: Optional[CPMCalculator] = None,
    ) -> Tuple[Dependency, Optional[CPMResult]]:
        """
        Apply an opportunity as a dependency update.

        The live dependency must still carry the logic and lag the opportunity
        was computed from. When a calculator is given the schedule is
        recomputed straight away and the new result returned.
        """
        current = graph.get_dependency(opportunity.predecessor_id, opportunity.activity_id)
        if current.logic is not opportunity.current_logic or current.lag != opportunity.current_lag:
            raise StaleOpportunityError(
                f"Dependency {current.predecessor_id} -> {current.successor_id} is now "
                f"{current.logic.value}{current.lag:+d}; opportunity expected "
                f"{opportunity.current_logic.value}{opportunity.current_lag:+d}.",
                activity_id=opportunity.activity_id,
            )

        updated = graph.update_dependency(
            opportunity.predecessor_id,
            opportunity.activity_id,
            logic=opportunity.suggested_logic,
            lag=opportunity.suggested_lag,
        )
        logger.info(
            "Implemented fast-track on %s: %s -> %s (%d days)",
            opportunity.activity_id,
            f"{current.logic.value}{current.lag:+d}",
            f"{updated.logic.value}{updated.lag:+d}",
            opportunity.potential_savings_days,
        )
        result = calculator.compute(graph) if calculator is not None else None
        return updated, result


def summarize(opportunities: List[FastTrackOpportunity]) -> Dict[str, float]:
    """Headline metrics for an opportunity list."""
    count = len(opportunities)
    return {
        "count": count,
        "total_savings_days": sum(o.potential_savings_days for o in opportunities),
        "average_confidence": round(sum(o.confidence for o in opportunities) / count) if count else 0,
        "low_risk_count": sum(1 for o in opportunities if o.risk_level is RiskLevel.LOW),
        "resource_conflicts": sum(1 for o in opportunities if o.resource_conflict),
    }
