import unittest

from fasttrack.config import FastTrackConfig
from fasttrack.engine import CPMCalculator
from fasttrack.errors import StaleOpportunityError
from fasttrack.fast_track import (
    FastTrackAnalyzer,
    classify_risk,
    estimate_effort,
    score_confidence,
    summarize,
)
from fasttrack.graph import ScheduleGraph
from fasttrack.models import Activity, Dependency, LogicType, RiskLevel


def build_network(pred_crew=None, succ_crew=None, lag=0):
    """
    P (10d) --FS--> X (3d), with an unrelated 30 day activity L driving the
    project finish. X carries 17 days of float.
    """
    graph = ScheduleGraph()
    graph.add_activity(Activity("P", "Concrete Slab", 10, crew_id=pred_crew))
    graph.add_activity(Activity("X", "MEP Rough-In", 3, crew_id=succ_crew))
    graph.add_activity(Activity("L", "Long Lead Procurement", 30))
    graph.add_dependency(Dependency("P", "X", LogicType.FS, lag))
    return graph


class TestFastTrackScoring(unittest.TestCase):
    def test_classify_risk(self):
        self.assertEqual(classify_risk(2, 10, False), RiskLevel.LOW)
        self.assertEqual(classify_risk(2, 10, True), RiskLevel.MEDIUM)
        self.assertEqual(classify_risk(5, 10, False), RiskLevel.MEDIUM)
        self.assertEqual(classify_risk(6, 10, False), RiskLevel.HIGH)
        self.assertEqual(classify_risk(6, 10, True), RiskLevel.MEDIUM)

    def test_effort_grows_with_downstream_and_conflict(self):
        efforts = [estimate_effort(n, False) for n in (0, 1, 2, 3, 5, 6, 50)]
        self.assertEqual(efforts, [1, 2, 2, 3, 3, 4, 4])
        self.assertEqual(estimate_effort(50, True), 5)
        self.assertEqual(estimate_effort(0, True), 2)

    def test_confidence_prefers_less_float_consumed(self):
        low = score_confidence(10, 17, 1, False)
        high = score_confidence(2, 17, 1, False)

        self.assertEqual(low, 71)
        self.assertEqual(high, 94)
        self.assertLess(score_confidence(2, 17, 2, True), high)


class TestFastTrackAnalyzer(unittest.TestCase):
    def analyze(self, graph, calculator=None, **config):
        result = (calculator or CPMCalculator()).compute(graph)
        return FastTrackAnalyzer(FastTrackConfig(**config)).analyze(graph, result), result

    def test_full_overlap_candidate(self):
        opportunities, result = self.analyze(build_network())

        self.assertEqual(len(opportunities), 1)
        opp = opportunities[0]
        self.assertEqual((opp.activity_id, opp.predecessor_id), ("X", "P"))
        self.assertEqual(opp.activity_name, "MEP Rough-In")
        self.assertEqual(opp.total_float, 17)
        self.assertEqual(opp.current_logic, LogicType.FS)
        self.assertEqual(opp.suggested_logic, LogicType.SS)
        self.assertEqual(opp.suggested_lag, 0)
        self.assertEqual(opp.potential_savings_days, 10)
        self.assertEqual(opp.risk_level, RiskLevel.HIGH)
        self.assertFalse(opp.resource_conflict)
        self.assertEqual(opp.implementation_effort, 1)
        self.assertEqual(opp.confidence, 71)
        self.assertEqual(opp.complexity, "simple")

    def test_partial_overlap_is_low_risk(self):
        opportunities, _ = self.analyze(build_network(), max_overlap_fraction=0.25)

        opp = opportunities[0]
        self.assertEqual(opp.potential_savings_days, 2)
        self.assertEqual(opp.suggested_lag, 8)
        self.assertEqual(opp.risk_level, RiskLevel.LOW)
        self.assertEqual(opp.confidence, 94)

    def test_shared_crew_is_a_resource_conflict(self):
        opportunities, _ = self.analyze(build_network(pred_crew="C1", succ_crew="C1"))

        opp = opportunities[0]
        self.assertTrue(opp.resource_conflict)
        self.assertEqual(opp.risk_level, RiskLevel.MEDIUM)
        self.assertEqual(opp.implementation_effort, 2)
        self.assertEqual(opp.confidence, 43)

    def test_float_threshold_is_exclusive(self):
        self.assertEqual(self.analyze(build_network(), float_threshold=17)[0], [])
        self.assertEqual(len(self.analyze(build_network(), float_threshold=16)[0]), 1)

    def test_critical_and_unlinked_activities_never_proposed(self):
        graph = build_network()
        graph.add_activity(Activity("D", "Unlinked", 3))

        opportunities, result = self.analyze(graph)

        self.assertGreater(result["D"].total_float, 10)
        self.assertNotIn("D", {o.activity_id for o in opportunities})
        self.assertNotIn("L", {o.activity_id for o in opportunities})

    def test_savings_never_exceed_total_float(self):
        graph = build_network()
        graph.add_activity(Activity("Q", "Long predecessor", 25))
        graph.add_activity(Activity("Y", "Tail", 2))
        graph.add_dependency(Dependency("Q", "Y"))

        opportunities, result = self.analyze(graph, float_threshold=0)

        self.assertTrue(opportunities)
        for opp in opportunities:
            self.assertLessEqual(opp.potential_savings_days, result[opp.activity_id].total_float)

    def test_lead_limits_overlap_unless_negative_lag_allowed(self):
        graph = build_network(lag=-8)
        # Data date well before the project start leaves room for X to move early
        calculator = CPMCalculator(data_date=-20, project_start=0)

        opp = self.analyze(graph, calculator)[0][0]
        self.assertEqual(opp.potential_savings_days, 2)
        self.assertEqual(opp.suggested_lag, 0)

        opp = self.analyze(graph, calculator, allow_negative_lag=True)[0][0]
        self.assertEqual(opp.potential_savings_days, 10)
        self.assertEqual(opp.suggested_lag, -8)

    def test_started_or_completed_work_is_skipped(self):
        graph = build_network()
        graph.update_activity_fields("P", actual_start=0, actual_finish=10, percent_complete=100)
        self.assertEqual(self.analyze(graph)[0], [])

        graph = build_network()
        graph.update_activity_fields("X", actual_start=0)
        self.assertEqual(self.analyze(graph)[0], [])

    def test_downstream_activities_raise_effort(self):
        graph = build_network()
        for act_id in ("Y", "Z"):
            graph.add_activity(Activity(act_id, act_id, 1))
            graph.add_dependency(Dependency("X", act_id))

        opp = self.analyze(graph)[0][0]
        self.assertEqual(opp.downstream_count, 2)
        self.assertEqual(opp.implementation_effort, 2)

    def test_sorting_filtering_and_limits(self):
        graph = build_network()
        graph.add_activity(Activity("P2", "Short predecessor", 4))
        graph.add_activity(Activity("X2", "Short follower", 3))
        graph.add_dependency(Dependency("P2", "X2"))

        by_savings, _ = self.analyze(graph)
        self.assertEqual([o.activity_id for o in by_savings], ["X", "X2"])

        by_float, _ = self.analyze(graph, sort_by="float")
        self.assertEqual([o.activity_id for o in by_float], ["X2", "X"])

        limited, _ = self.analyze(graph, max_results=1)
        self.assertEqual([o.activity_id for o in limited], ["X"])

        self.assertEqual(self.analyze(graph, risk_level="low")[0], [])
        self.assertEqual(len(self.analyze(graph, risk_level="high")[0]), 2)

    def test_invalid_config_rejected(self):
        with self.assertRaises(ValueError):
            FastTrackConfig(sort_by="alphabetical")
        with self.assertRaises(ValueError):
            FastTrackConfig(max_overlap_fraction=0)

    def test_summary(self):
        opportunities, _ = self.analyze(build_network())
        summary = summarize(opportunities)

        self.assertEqual(summary["count"], 1)
        self.assertEqual(summary["total_savings_days"], 10)
        self.assertEqual(summary["average_confidence"], 71)
        self.assertEqual(summary["low_risk_count"], 0)
        self.assertEqual(summarize([])["average_confidence"], 0)


class TestImplementFastTrack(unittest.TestCase):
    def test_implementation_moves_successor_by_applied_reduction(self):
        graph = build_network()
        calculator = CPMCalculator()
        before = calculator.compute(graph)
        opp = FastTrackAnalyzer().analyze(graph, before)[0]

        dependency, after = FastTrackAnalyzer().implement(graph, opp, calculator)

        self.assertEqual((dependency.logic, dependency.lag), (LogicType.SS, 0))
        self.assertEqual(
            before["X"].early_start - after["X"].early_start,
            opp.potential_savings_days,
        )
        self.assertEqual(after["X"].total_float, 27)
        self.assertEqual(after["P"].total_float, 20)
        for dates in after.dates.values():
            self.assertEqual(dates.is_critical, dates.total_float == 0)

    def assert_savings_delivered(self, graph, calculator):
        before = calculator.compute(graph)
        opportunities = FastTrackAnalyzer().analyze(graph, before)
        for opp in opportunities:
            trial = graph.copy()
            _, after = FastTrackAnalyzer().implement(trial, opp, calculator)
            self.assertEqual(
                before[opp.activity_id].early_start - after[opp.activity_id].early_start,
                opp.potential_savings_days,
            )
        return opportunities

    def test_in_progress_predecessor_uses_scheduled_span(self):
        graph = ScheduleGraph()
        graph.add_activity(Activity("P", "Concrete Slab", 10))
        graph.add_activity(Activity("X", "MEP Rough-In", 3))
        graph.add_activity(Activity("L", "Long Lead Procurement", 40))
        graph.add_dependency(Dependency("P", "X"))
        graph.update_activity_fields("P", actual_start=0, percent_complete=50)

        # P finishes at 13; X cannot move before the data date of 8
        opportunities = self.assert_savings_delivered(graph, CPMCalculator(data_date=8))

        self.assertEqual(len(opportunities), 1)
        self.assertEqual(opportunities[0].potential_savings_days, 5)
        self.assertEqual(opportunities[0].suggested_lag, 8)

    def test_non_driving_predecessors_are_not_proposed(self):
        graph = ScheduleGraph()
        for act_id, duration in (("P1", 10), ("P2", 10), ("X", 3), ("L", 40)):
            graph.add_activity(Activity(act_id, act_id, duration))
        graph.add_dependency(Dependency("P1", "X"))
        graph.add_dependency(Dependency("P2", "X"))

        self.assertEqual(self.assert_savings_delivered(graph, CPMCalculator()), [])

        graph.update_activity_fields("P2", duration=6)
        opportunities = self.assert_savings_delivered(graph, CPMCalculator())

        self.assertEqual([(o.predecessor_id, o.potential_savings_days) for o in opportunities], [("P1", 4)])
        self.assertEqual(opportunities[0].suggested_lag, 6)

    def test_stale_opportunity_rejected(self):
        graph = build_network()
        opp = FastTrackAnalyzer().analyze(graph, CPMCalculator().compute(graph))[0]
        graph.update_dependency("P", "X", lag=1)

        with self.assertRaises(StaleOpportunityError):
            FastTrackAnalyzer().implement(graph, opp)
        self.assertEqual(graph.get_dependency("P", "X").logic, LogicType.FS)

    def test_implement_without_calculator_defers_recompute(self):
        graph = build_network()
        opp = FastTrackAnalyzer().analyze(graph, CPMCalculator().compute(graph))[0]
        graph.mark_clean()

        _, result = FastTrackAnalyzer().implement(graph, opp)

        self.assertIsNone(result)
        self.assertTrue(graph.dirty)


if __name__ == "__main__":
    unittest.main()
