from __future__ import annotations

import time
from collections import defaultdict, deque
from typing import Dict, List, Optional, Set

from .errors import ComputationTimeoutError, CycleError, NegativeFloatError
from .graph import ScheduleGraph
from .logger import configure_logging
from .models import ActivityDates, CPMResult, Dependency, LogicType

logger = configure_logging(__name__)


def link_start(dep: Dependency, p_es: int, p_ef: int, duration: int) -> int:
    """Earliest start the link allows its successor."""
    if dep.logic is LogicType.FS:
        return p_ef + dep.lag
    if dep.logic is LogicType.SS:
        return p_es + dep.lag
    if dep.logic is LogicType.FF:
        return p_ef + dep.lag - duration
    return p_es + dep.lag - duration


def link_slack(dep: Dependency, p_es: int, p_ef: int, s_es: int, s_ef: int) -> int:
    """Days the successor sits beyond what the link requires; 0 means driving."""
    if dep.logic is LogicType.FS:
        return s_es - p_ef - dep.lag
    if dep.logic is LogicType.SS:
        return s_es - p_es - dep.lag
    if dep.logic is LogicType.FF:
        return s_ef - p_ef - dep.lag
    return s_ef - p_es - dep.lag


class CPMCalculator:
    """
    Critical Path Method calculator over a ScheduleGraph snapshot.

    Implements standard CPM/PDM logic with all four relationship types and
    positive/negative lags. Actual dates reported from the field pin the
    forward pass. ``compute`` is a pure function of the graph: no state
    survives between calls apart from the configuration.
    """

    def __init__(
        self,
        data_date: int = 0,
        project_start: Optional[int] = None,
        project_finish: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        trace: bool = True,
    ):
        self.data_date = data_date
        self.project_start = project_start
        self.project_finish = project_finish
        self.timeout_seconds = timeout_seconds
        self.trace = trace

    def compute(self, graph: ScheduleGraph) -> CPMResult:
        """
        Perform full CPM calculation.

        Raises:
            CycleError: the network is not a DAG
            ComputationTimeoutError: the calculation exceeded ``timeout_seconds``
        """
        run = _CPMRun(self, graph)
        result = run.execute()
        logger.info(
            "CPM computed for %d activities: finish=%d, critical=%d, warnings=%d",
            len(result.dates),
            result.project_finish,
            len(result.critical_activity_ids),
            len(result.warnings),
        )
        return result


class _CPMRun:
    """State of a single calculation; discarded once the result is built."""

    def __init__(self, calculator: CPMCalculator, graph: ScheduleGraph):
        self.calc = calculator
        self.graph = graph
        self.log: List[str] = []
        self.es: Dict[str, int] = {}
        self.ef: Dict[str, int] = {}
        self.ls: Dict[str, int] = {}
        self.lf: Dict[str, int] = {}
        self.total_float: Dict[str, int] = {}
        self.free_float: Dict[str, int] = {}
        self.project_end: int = 0
        self.deadline = (
            time.monotonic() + calculator.timeout_seconds if calculator.timeout_seconds else None
        )

    def execute(self) -> CPMResult:
        self._log("=" * 70)
        self._log("CPM CALCULATION")
        self._log(f"Data date: {self.calc.data_date}")
        self._log("=" * 70)

        order = self._get_topological_order()
        start = self._default_start()

        if order:
            self._forward_pass(order, start)
            self.project_end = (
                self.calc.project_finish
                if self.calc.project_finish is not None
                else max(self.ef.values())
            )
            self._backward_pass(order)
            self._calculate_floats()
        else:
            self.project_end = self.calc.project_finish if self.calc.project_finish is not None else start

        critical_paths = self._identify_critical_paths()
        warnings = self._feasibility_warnings(order)

        self._log("")
        self._log("=" * 70)
        self._log("CALCULATION COMPLETE")
        self._log(f"Project Finish: {self.project_end}")
        for idx, path in enumerate(critical_paths, start=1):
            self._log(f"  {idx}. {' -> '.join(path)}")
        self._log("=" * 70)

        dates = {}
        for act_id in order:
            act = self.graph.activities[act_id]
            dates[act_id] = ActivityDates(
                activity_id=act_id,
                duration=act.duration,
                early_start=self.es[act_id],
                early_finish=self.ef[act_id],
                late_start=self.ls[act_id],
                late_finish=self.lf[act_id],
                total_float=self.total_float[act_id],
                free_float=self.free_float[act_id],
                is_critical=self.total_float[act_id] == 0,
                current_start=act.actual_start if act.actual_start is not None else self.es[act_id],
                current_finish=act.actual_finish if act.actual_finish is not None else self.ef[act_id],
            )

        return CPMResult(
            dates=dates,
            project_start=start,
            project_finish=self.project_end,
            critical_paths=tuple(tuple(p) for p in critical_paths),
            topological_order=tuple(order),
            warnings=tuple(warnings),
            calculation_log=tuple(self.log),
            graph_version=self.graph.version,
            data_date=self.calc.data_date,
        )

    def _log(self, message: str) -> None:
        if self.calc.trace:
            self.log.append(message)

    def _check_deadline(self) -> None:
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise ComputationTimeoutError(
                f"CPM calculation exceeded {self.calc.timeout_seconds}s "
                f"on {len(self.graph)} activities.",
                details={"activities": len(self.graph)},
            )

    def _default_start(self) -> int:
        if self.calc.project_start is not None:
            return self.calc.project_start
        return self.calc.data_date

    def _get_topological_order(self) -> List[str]:
        """Kahn's algorithm: activities in order, predecessors before successors."""
        in_degree = {act_id: len(self.graph.predecessors_of(act_id)) for act_id in self.graph.activities}
        queue = deque([act_id for act_id, degree in in_degree.items() if degree == 0])
        order: List[str] = []

        while queue:
            node = queue.popleft()
            order.append(node)
            for dep in self.graph.successors_of(node):
                in_degree[dep.successor_id] -= 1
                if in_degree[dep.successor_id] == 0:
                    queue.append(dep.successor_id)

        if len(order) != len(in_degree):
            remaining = sorted(act_id for act_id, degree in in_degree.items() if degree > 0)
            cycle = self.graph.detect_cycle() or remaining
            raise CycleError(f"Circular dependency detected: {' -> '.join(cycle)}", cycle=cycle)
        return order

    def _forward_pass(self, order: List[str], start: int) -> None:
        """
        Forward pass calculation to determine Early Start (ES) and Early Finish (EF).
        """
        self._log("FORWARD PASS (Calculating ES and EF)")
        self._log("-" * 50)
        data_date = self.calc.data_date

        for act_id in order:
            self._check_deadline()
            act = self.graph.activities[act_id]
            preds = self.graph.predecessors_of(act_id)

            if not preds:
                es = start
                self._log(f"\n{act_id} (no predecessors):")
                self._log(f"  ES >= Project Start = {start}")
            else:
                self._log(f"\n{act_id} (predecessors: {', '.join(p.predecessor_id for p in preds)}):")
                candidates = [self._forward_candidate(dep, act.duration) for dep in preds]
                es = max(candidates)

            if act.constraint_es is not None and es < act.constraint_es:
                es = act.constraint_es
                self._log(f"  Start-no-earlier-than constraint -> ES = {es}")

            if act.actual_start is not None:
                es = act.actual_start
                self._log(f"  Pinned to actual start -> ES = {es}")
            elif es < data_date:
                es = data_date
                self._log(f"  Unstarted work cannot begin before the data date -> ES = {es}")

            if act.actual_finish is not None:
                ef = act.actual_finish
                self._log(f"  Pinned to actual finish -> EF = {ef}")
            elif act.actual_start is not None:
                remaining = round(act.duration * (100 - act.percent_complete) / 100)
                ef = max(es, data_date) + remaining
                self._log(
                    f"  In progress ({act.percent_complete}%): EF = max(ES, data date) + remaining "
                    f"= {max(es, data_date)} + {remaining} = {ef}"
                )
            else:
                ef = es + act.duration
                self._log(f"  -> ES = {es}")
                self._log(f"  -> EF = ES + Duration = {es} + {act.duration} = {ef}")

            self.es[act_id] = es
            self.ef[act_id] = ef

        self._log(f"\nProject Finish = max(all EF values) = {max(self.ef.values())}")

    def _forward_candidate(self, dep: Dependency, duration: int) -> int:
        pred_id = dep.predecessor_id
        p_es, p_ef = self.es[pred_id], self.ef[pred_id]
        lag = dep.lag

        value = link_start(dep, p_es, p_ef, duration)
        if dep.logic is LogicType.FS:
            self._log(f"  From {pred_id} (FS, lag={lag}): ES >= EF({pred_id}) + lag = {p_ef} + {lag} = {value}")
        elif dep.logic is LogicType.SS:
            self._log(f"  From {pred_id} (SS, lag={lag}): ES >= ES({pred_id}) + lag = {p_es} + {lag} = {value}")
        elif dep.logic is LogicType.FF:
            self._log(
                f"  From {pred_id} (FF, lag={lag}): ES >= EF({pred_id}) + lag - dur = "
                f"{p_ef} + {lag} - {duration} = {value}"
            )
        else:
            self._log(
                f"  From {pred_id} (SF, lag={lag}): ES >= ES({pred_id}) + lag - dur = "
                f"{p_es} + {lag} - {duration} = {value}"
            )
        return value

    def _backward_pass(self, order: List[str]) -> None:
        """
        Backward pass calculation to determine Late Start (LS) and Late Finish (LF).
        """
        self._log("\n\nBACKWARD PASS (Calculating LS and LF)")
        self._log("-" * 50)

        for act_id in reversed(order):
            self._check_deadline()
            act = self.graph.activities[act_id]
            succs = self.graph.successors_of(act_id)
            # Pinned activities keep their actual span instead of the planned duration
            span = self.ef[act_id] - self.es[act_id]

            lf_candidates: List[int] = [self.project_end]
            ls_candidates: List[int] = []
            if act.constraint_lf is not None:
                lf_candidates.append(act.constraint_lf)

            if not succs:
                self._log(f"\n{act_id} (no successors):")
                self._log(f"  LF <= Project Finish = {self.project_end}")
            else:
                self._log(f"\n{act_id} (successors: {', '.join(s.successor_id for s in succs)}):")

            for dep in succs:
                succ_id, lag = dep.successor_id, dep.lag
                s_ls, s_lf = self.ls[succ_id], self.lf[succ_id]
                if dep.logic is LogicType.FS:
                    lf_candidates.append(s_ls - lag)
                    self._log(f"  To {succ_id} (FS, lag={lag}): LF <= LS({succ_id}) - lag = {s_ls} - {lag} = {s_ls - lag}")
                elif dep.logic is LogicType.SS:
                    ls_candidates.append(s_ls - lag)
                    self._log(f"  To {succ_id} (SS, lag={lag}): LS <= LS({succ_id}) - lag = {s_ls} - {lag} = {s_ls - lag}")
                elif dep.logic is LogicType.FF:
                    lf_candidates.append(s_lf - lag)
                    self._log(f"  To {succ_id} (FF, lag={lag}): LF <= LF({succ_id}) - lag = {s_lf} - {lag} = {s_lf - lag}")
                else:
                    ls_candidates.append(s_lf - lag)
                    self._log(f"  To {succ_id} (SF, lag={lag}): LS <= LF({succ_id}) - lag = {s_lf} - {lag} = {s_lf - lag}")

            lf_ub = min(lf_candidates)
            ls = min(ls_candidates + [lf_ub - span])
            self.ls[act_id] = ls
            self.lf[act_id] = ls + span

            self._log(f"  -> LS = {ls}")
            self._log(f"  -> LF = LS + Duration = {ls} + {span} = {ls + span}")

    def _calculate_floats(self) -> None:
        """
        Calculate Total Float (TF) and Free Float (FF) for all activities.
        """
        self._log("\n\nFLOAT CALCULATIONS")
        self._log("-" * 50)

        for act_id in self.graph.activities:
            es, ef = self.es[act_id], self.ef[act_id]
            self.total_float[act_id] = self.ls[act_id] - es
            self._log(f"\n{act_id}:")
            self._log(f"  Total Float (TF) = LS - ES = {self.ls[act_id]} - {es} = {self.total_float[act_id]}")

            succs = self.graph.successors_of(act_id)
            if not succs:
                self.free_float[act_id] = self.project_end - ef
                self._log(f"  Free Float (FF) = Project Finish - EF = {self.project_end} - {ef} = {self.free_float[act_id]}")
                continue

            ff_candidates = [
                link_slack(dep, es, ef, self.es[dep.successor_id], self.ef[dep.successor_id]) for dep in succs
            ]
            self.free_float[act_id] = min(ff_candidates)
            self._log(f"  -> Free Float (FF) = min(all successor constraints) = {self.free_float[act_id]}")

    def _identify_critical_paths(self) -> List[List[str]]:
        """Identify critical activities and build critical path sequences."""
        self._log("\n\nCRITICAL PATH IDENTIFICATION")
        self._log("-" * 50)

        critical_set = {act_id for act_id, tf in self.total_float.items() if tf == 0}
        for act_id, tf in self.total_float.items():
            self._log(f"{act_id}: TF = {tf} -> {'CRITICAL' if tf == 0 else 'Not critical'}")

        paths = self._build_critical_paths(critical_set)
        if paths:
            self._log(f"\nCritical Paths Found: {len(paths)}")
        else:
            self._log("\nCritical Path: (none)")
        return paths

    def _build_critical_paths(self, critical_set: Set[str]) -> List[List[str]]:
        """Build sequential representations of all critical paths."""
        if not critical_set:
            return []

        successors: Dict[str, List[str]] = defaultdict(list)
        incoming: Dict[str, int] = defaultdict(int)

        for succ_id in critical_set:
            for dep in self.graph.predecessors_of(succ_id):
                if dep.predecessor_id in critical_set and self._is_driving_link(dep):
                    successors[dep.predecessor_id].append(succ_id)
                    incoming[succ_id] += 1

        for pred_id in successors:
            successors[pred_id] = sorted(set(successors[pred_id]), key=lambda x: (self.es[x], x))

        start_nodes = sorted(
            (nid for nid in critical_set if incoming[nid] == 0),
            key=lambda x: (self.es[x], x),
        )

        paths: List[List[str]] = []
        stack = [(start, [start]) for start in reversed(start_nodes)]
        while stack:
            self._check_deadline()
            node, path = stack.pop()
            nexts = successors.get(node)
            if not nexts:
                paths.append(path)
                continue
            for succ in reversed(nexts):
                stack.append((succ, path + [succ]))

        return paths

    def _is_driving_link(self, dep: Dependency) -> bool:
        pred, succ = dep.predecessor_id, dep.successor_id
        return link_slack(dep, self.es[pred], self.ef[pred], self.es[succ], self.ef[succ]) == 0

    def _feasibility_warnings(self, order: List[str]) -> List[NegativeFloatError]:
        warnings: List[NegativeFloatError] = []
        for act_id in order:
            tf = self.total_float[act_id]
            if tf < 0:
                warnings.append(
                    NegativeFloatError(
                        f"Activity '{act_id}' has negative total float ({tf} days).",
                        activity_id=act_id,
                        details={
                            "total_float": tf,
                            "early_start": self.es[act_id],
                            "late_start": self.ls[act_id],
                        },
                    )
                )
        if warnings:
            logger.warning("Schedule is over-constrained: %d activities with negative float", len(warnings))
        return warnings
