import unittest

from fasttrack.errors import (
    CycleError,
    DependentExistsError,
    DuplicateIdError,
    InvalidActivityError,
    InvalidLagError,
    UnknownActivityError,
)
from fasttrack.graph import ScheduleGraph
from fasttrack.models import Activity, ActivityType, Dependency, LogicType


class TestScheduleGraph(unittest.TestCase):
    def setUp(self):
        self.graph = ScheduleGraph()
        for act_id, duration in (("A", 5), ("B", 10), ("C", 5)):
            self.graph.add_activity(Activity(act_id, f"Activity {act_id}", duration))
        self.graph.add_dependency(Dependency("A", "B"))
        self.graph.add_dependency(Dependency("B", "C"))

    def test_ids_are_normalised(self):
        activity = self.graph.add_activity(Activity(" d1 ", "lower case", 1))
        self.assertEqual(activity.id, "D1")
        self.assertIn("D1", self.graph)

    def test_duplicate_activity_rejected(self):
        with self.assertRaises(DuplicateIdError):
            self.graph.add_activity(Activity("A", "again", 1))
        self.assertEqual(len(self.graph), 3)

    def test_invalid_activities_rejected(self):
        bad = [
            Activity("1A", "starts with digit", 1),
            Activity("START", "reserved", 1),
            Activity("NEG", "negative", -1),
            Activity("MS", "milestone", 2, type=ActivityType.MILESTONE),
            Activity("ACT", "finish without start", 2, actual_finish=4),
            Activity("MS2", "milestone spread", 0, type=ActivityType.MILESTONE, actual_start=3, actual_finish=4),
            Activity("DONE", "complete without finish", 2, actual_start=0, percent_complete=100),
        ]
        for activity in bad:
            with self.subTest(activity=activity.id):
                with self.assertRaises(InvalidActivityError):
                    self.graph.add_activity(activity)
        self.assertEqual(len(self.graph), 3)

    def test_unknown_endpoint_rejected(self):
        with self.assertRaises(UnknownActivityError):
            self.graph.add_dependency(Dependency("A", "Z"))

    def test_self_loop_rejected(self):
        with self.assertRaises(CycleError):
            self.graph.add_dependency(Dependency("A", "A"))

    def test_cycle_rejected_and_graph_unchanged(self):
        version = self.graph.version
        count = self.graph.dependency_count

        with self.assertRaises(CycleError) as ctx:
            self.graph.add_dependency(Dependency("C", "A", LogicType.SS, 0))

        self.assertEqual(ctx.exception.cycle, ["A", "B", "C"])
        self.assertEqual(self.graph.dependency_count, count)
        self.assertEqual(self.graph.version, version)
        self.assertIsNone(self.graph.detect_cycle())

        payload = ctx.exception.to_dict()
        self.assertEqual(payload["code"], "CYCLE")
        self.assertEqual(payload["category"], "structural")
        self.assertEqual(payload["activity_id"], "A")
        self.assertEqual(payload["details"], {"cycle": ["A", "B", "C"]})

    def test_duplicate_dependency_rejected(self):
        with self.assertRaises(DuplicateIdError):
            self.graph.add_dependency(Dependency("A", "B", LogicType.SS, 2))
        self.assertEqual(self.graph.get_dependency("A", "B").logic, LogicType.FS)

    def test_impossible_ff_and_sf_lags_rejected(self):
        self.graph.add_activity(Activity("D", "D", 3))

        with self.assertRaises(InvalidLagError):
            self.graph.add_dependency(Dependency("A", "D", LogicType.FF, -6))
        with self.assertRaises(InvalidLagError):
            self.graph.add_dependency(Dependency("A", "D", LogicType.SF, -4))

        self.graph.add_dependency(Dependency("A", "D", LogicType.FF, -5))
        self.assertEqual(self.graph.get_dependency("A", "D").lag, -5)

    def test_duration_change_rechecks_attached_lags(self):
        self.graph.add_activity(Activity("D", "D", 3))
        self.graph.add_dependency(Dependency("B", "D", LogicType.FF, -8))
        self.graph.add_dependency(Dependency("D", "C", LogicType.SF, -3))
        version = self.graph.version

        with self.assertRaises(InvalidLagError):
            self.graph.update_activity_fields("B", duration=2)
        with self.assertRaises(InvalidLagError):
            self.graph.update_activity_fields("C", duration=2)

        self.assertEqual(self.graph.activities["B"].duration, 10)
        self.assertEqual(self.graph.version, version)
        self.graph.update_activity_fields("B", duration=8)

    def test_leads_allowed_on_fs(self):
        self.graph.add_activity(Activity("D", "D", 3))
        self.graph.add_dependency(Dependency("C", "D", LogicType.FS, -20))
        self.assertEqual(self.graph.get_dependency("C", "D").lag, -20)

    def test_update_dependency(self):
        updated = self.graph.update_dependency("A", "B", logic=LogicType.SS, lag=3)

        self.assertEqual(updated.logic, LogicType.SS)
        self.assertEqual(updated.lag, 3)
        self.assertIs(self.graph.predecessors_of("B")[0], updated)
        self.assertIs(self.graph.successors_of("A")[0], updated)

    def test_update_missing_dependency(self):
        with self.assertRaises(UnknownActivityError):
            self.graph.update_dependency("A", "C", lag=1)

    def test_remove_dependency(self):
        self.graph.remove_dependency("B", "C")
        self.assertEqual(self.graph.successors_of("B"), [])
        with self.assertRaises(UnknownActivityError):
            self.graph.remove_dependency("B", "C")

    def test_remove_activity_with_dependents_requires_force(self):
        with self.assertRaises(DependentExistsError):
            self.graph.remove_activity("B")
        self.assertIn("B", self.graph)
        self.assertEqual(self.graph.dependency_count, 2)

        removed = self.graph.remove_activity("B", force=True)

        self.assertEqual(len(removed), 2)
        self.assertNotIn("B", self.graph)
        self.assertEqual(self.graph.dependency_count, 0)
        self.assertEqual(self.graph.successors_of("A"), [])

    def test_remove_sink_takes_its_predecessor_links(self):
        removed = self.graph.remove_activity("C")

        self.assertEqual([str(d) for d in removed], ["B:FS:+0"])
        self.assertEqual(self.graph.successors_of("B"), [])

    def test_mutations_mark_graph_dirty(self):
        self.graph.mark_clean()
        version = self.graph.version

        self.graph.update_activity_fields("A", description="renamed")

        self.assertTrue(self.graph.dirty)
        self.assertEqual(self.graph.version, version + 1)

    def test_activity_id_cannot_change(self):
        with self.assertRaises(InvalidActivityError):
            self.graph.update_activity_fields("A", id="Z")

    def test_descendants(self):
        self.graph.add_activity(Activity("D", "D", 1))
        self.graph.add_dependency(Dependency("A", "D"))

        self.assertEqual(self.graph.descendants("A"), {"B", "C", "D"})
        self.assertEqual(self.graph.descendants("C"), set())

    def test_find_path(self):
        self.assertEqual(self.graph.find_path("A", "C"), ["A", "B", "C"])
        self.assertIsNone(self.graph.find_path("C", "A"))

    def test_copy_is_detached(self):
        clone = self.graph.copy()
        clone.update_activity_fields("A", duration=50)
        clone.remove_dependency("A", "B")

        self.assertEqual(self.graph.activities["A"].duration, 5)
        self.assertTrue(self.graph.has_dependency("A", "B"))
        self.assertEqual(clone.version, self.graph.version + 2)


if __name__ == "__main__":
    unittest.main()
