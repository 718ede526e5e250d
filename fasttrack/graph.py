from __future__ import annotations

import copy
import re
from dataclasses import replace
from typing import Dict, Iterator, List, Optional, Set

from .errors import (
    CycleError,
    DependentExistsError,
    DuplicateIdError,
    InvalidActivityError,
    InvalidLagError,
    UnknownActivityError,
)
from .logger import configure_logging
from .models import Activity, Dependency, LogicType

logger = configure_logging(__name__)

ACTIVITY_ID_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")
RESERVED_IDS = ("START", "FINISH")


class ScheduleGraph:
    """
    Authoritative store of activities and their dependencies.

    Adjacency is indexed both ways so predecessor and successor lookups are
    dictionary hits. Every insert or update of a dependency is checked for
    cycles before anything is written, so a rejected call leaves the graph
    exactly as it was. Mutations bump ``version`` and set ``dirty``; nothing
    is recomputed here.
    """

    def __init__(self) -> None:
        self.activities: Dict[str, Activity] = {}
        self._predecessors: Dict[str, Dict[str, Dependency]] = {}
        self._successors: Dict[str, Dict[str, Dependency]] = {}
        self.version: int = 0
        self.dirty: bool = True

    def __len__(self) -> int:
        return len(self.activities)

    def __contains__(self, activity_id: str) -> bool:
        return activity_id in self.activities

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    def add_activity(self, activity: Activity) -> Activity:
        """
        Add an activity to the graph.

        Raises:
            DuplicateIdError: an activity with the same id exists
            InvalidActivityError: id, duration or actuals are malformed
        """
        self._check_activity(activity)
        if activity.id in self.activities:
            raise DuplicateIdError(f"Activity '{activity.id}' already exists.", activity_id=activity.id)

        self.activities[activity.id] = activity
        self._predecessors[activity.id] = {}
        self._successors[activity.id] = {}
        self._touch()
        logger.debug("Added activity %s (%s, %dd)", activity.id, activity.type.value, activity.duration)
        return activity

    def _check_activity(self, activity: Activity) -> None:
        if not activity.id:
            raise InvalidActivityError("Activity ID cannot be empty.")
        if not ACTIVITY_ID_PATTERN.match(activity.id):
            raise InvalidActivityError(
                "Activity ID must start with a letter and contain only letters, numbers, and underscores.",
                activity_id=activity.id,
            )
        if activity.id in RESERVED_IDS:
            raise InvalidActivityError("Cannot use reserved IDs: START, FINISH.", activity_id=activity.id)
        if activity.duration < 0:
            raise InvalidActivityError("Duration must be non-negative.", activity_id=activity.id)
        if activity.is_milestone and activity.duration != 0:
            raise InvalidActivityError("Milestones must have zero duration.", activity_id=activity.id)
        if not 0 <= activity.percent_complete <= 100:
            raise InvalidActivityError("Percent complete must be between 0 and 100.", activity_id=activity.id)
        if activity.actual_finish is not None:
            if activity.actual_start is None or activity.actual_start > activity.actual_finish:
                raise InvalidActivityError(
                    "Actual finish requires an actual start on or before it.", activity_id=activity.id
                )
        if activity.is_milestone and activity.actual_finish is not None:
            if activity.actual_start != activity.actual_finish:
                raise InvalidActivityError(
                    "Milestone actual start and actual finish must be the same day.", activity_id=activity.id
                )
        if activity.percent_complete == 100 and activity.actual_finish is None:
            raise InvalidActivityError("A 100% complete activity needs an actual finish.", activity_id=activity.id)

    def get_activity(self, activity_id: str) -> Activity:
        try:
            return self.activities[activity_id]
        except KeyError:
            raise UnknownActivityError(f"Activity '{activity_id}' not found.", activity_id=activity_id) from None

    def update_activity_fields(self, activity_id: str, **fields) -> Activity:
        """Replace fields on an activity; the id cannot change."""
        current = self.get_activity(activity_id)
        if "id" in fields and fields["id"] != activity_id:
            raise InvalidActivityError("Activity IDs are stable and cannot be changed.", activity_id=activity_id)
        updated = replace(current, **fields)
        self._check_activity(updated)
        # Attached FF/SF lags are bounded by this activity's duration
        for dep in self._predecessors[activity_id].values():
            self._check_lag(dep, self.activities[dep.predecessor_id], updated)
        for dep in self._successors[activity_id].values():
            self._check_lag(dep, updated, self.activities[dep.successor_id])
        self.activities[activity_id] = updated
        self._touch()
        return self.activities[activity_id]

    def remove_activity(self, activity_id: str, force: bool = False) -> List[Dependency]:
        """
        Remove an activity.

        Without ``force`` the call fails while any activity still depends on
        this one. With ``force`` the dependent links are removed too. The
        activity's own predecessor links always go with it. Returns every
        dependency removed.
        """
        self.get_activity(activity_id)

        dependents = sorted(self._successors[activity_id])
        if dependents and not force:
            raise DependentExistsError(
                f"Cannot remove '{activity_id}': Activity '{dependents[0]}' depends on it.",
                activity_id=activity_id,
                details={"dependents": dependents},
            )

        attached = list(self._predecessors[activity_id].values()) + list(self._successors[activity_id].values())

        for dep in attached:
            self._unlink(dep)
        del self.activities[activity_id]
        del self._predecessors[activity_id]
        del self._successors[activity_id]
        self._touch()
        logger.info("Removed activity %s (%d dependencies cascaded)", activity_id, len(attached))
        return attached

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def add_dependency(self, dependency: Dependency) -> Dependency:
        """
        Add a dependency.

        Raises:
            UnknownActivityError: either endpoint is missing
            DuplicateIdError: the pair is already linked
            CycleError: the link would close a loop
            InvalidLagError: an FF/SF lag makes the relationship impossible
        """
        self._check_dependency(dependency)
        if dependency.predecessor_id in self._predecessors[dependency.successor_id]:
            raise DuplicateIdError(
                f"Dependency {dependency.predecessor_id} -> {dependency.successor_id} already exists.",
                activity_id=dependency.successor_id,
            )
        cycle = self.find_path(dependency.successor_id, dependency.predecessor_id)
        if cycle:
            raise CycleError(
                f"Circular dependency detected: {' -> '.join(cycle + [cycle[0]])}",
                cycle=cycle,
                activity_id=dependency.successor_id,
            )

        self._link(dependency)
        self._touch()
        logger.debug("Added dependency %s -> %s", dependency, dependency.successor_id)
        return dependency

    def update_dependency(
        self,
        predecessor_id: str,
        successor_id: str,
        logic: Optional[LogicType] = None,
        lag: Optional[int] = None,
    ) -> Dependency:
        """Replace the logic and/or lag of an existing dependency."""
        current = self.get_dependency(predecessor_id, successor_id)
        updated = Dependency(
            predecessor_id=current.predecessor_id,
            successor_id=current.successor_id,
            logic=current.logic if logic is None else logic,
            lag=current.lag if lag is None else lag,
        )
        # Endpoints are unchanged, so the topology (and acyclicity) is too.
        self._check_dependency(updated)
        self._link(updated)
        self._touch()
        logger.info("Updated dependency %s -> %s (was %s)", updated, updated.successor_id, current)
        return updated

    def _check_dependency(self, dependency: Dependency) -> None:
        for act_id in (dependency.predecessor_id, dependency.successor_id):
            if act_id not in self.activities:
                raise UnknownActivityError(
                    f"Dependency references undefined activity '{act_id}'.", activity_id=act_id
                )
        if dependency.predecessor_id == dependency.successor_id:
            raise CycleError(
                "An activity cannot be its own predecessor.",
                cycle=[dependency.predecessor_id],
                activity_id=dependency.successor_id,
            )

        self._check_lag(
            dependency, self.activities[dependency.predecessor_id], self.activities[dependency.successor_id]
        )

    @staticmethod
    def _check_lag(dependency: Dependency, predecessor: Activity, successor: Activity) -> None:
        if dependency.logic is LogicType.FF:
            span = predecessor.duration
        elif dependency.logic is LogicType.SF:
            span = successor.duration
        else:
            return
        if dependency.lag < -span:
            raise InvalidLagError(
                f"Lag {dependency.lag} on {dependency.logic.value} link "
                f"{dependency.predecessor_id} -> {dependency.successor_id} exceeds the referenced "
                f"span of {span} days.",
                activity_id=dependency.successor_id,
                details={"lag": dependency.lag, "span": span},
            )

    def get_dependency(self, predecessor_id: str, successor_id: str) -> Dependency:
        try:
            return self._predecessors[successor_id][predecessor_id]
        except KeyError:
            raise UnknownActivityError(
                f"No dependency {predecessor_id} -> {successor_id}.", activity_id=successor_id
            ) from None

    def has_dependency(self, predecessor_id: str, successor_id: str) -> bool:
        return predecessor_id in self._predecessors.get(successor_id, {})

    def remove_dependency(self, predecessor_id: str, successor_id: str) -> Dependency:
        dependency = self.get_dependency(predecessor_id, successor_id)
        self._unlink(dependency)
        self._touch()
        logger.info("Removed dependency %s -> %s", dependency, successor_id)
        return dependency

    def _link(self, dependency: Dependency) -> None:
        self._predecessors[dependency.successor_id][dependency.predecessor_id] = dependency
        self._successors[dependency.predecessor_id][dependency.successor_id] = dependency

    def _unlink(self, dependency: Dependency) -> None:
        self._predecessors[dependency.successor_id].pop(dependency.predecessor_id, None)
        self._successors[dependency.predecessor_id].pop(dependency.successor_id, None)

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def predecessors_of(self, activity_id: str) -> List[Dependency]:
        self.get_activity(activity_id)
        return list(self._predecessors[activity_id].values())

    def successors_of(self, activity_id: str) -> List[Dependency]:
        self.get_activity(activity_id)
        return list(self._successors[activity_id].values())

    def dependencies(self) -> Iterator[Dependency]:
        for preds in self._predecessors.values():
            yield from preds.values()

    @property
    def dependency_count(self) -> int:
        return sum(len(preds) for preds in self._predecessors.values())

    def descendants(self, activity_id: str) -> Set[str]:
        """All activities reachable through successor links."""
        self.get_activity(activity_id)
        seen: Set[str] = set()
        stack = list(self._successors[activity_id])
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            stack.extend(self._successors[node])
        return seen

    def find_path(self, start: str, target: str) -> Optional[List[str]]:
        """
        Return a successor path from ``start`` to ``target`` or None.

        Iterative DFS with white/gray/black colouring; the path is read off the
        gray stack when the target is reached.
        """
        WHITE, GRAY, BLACK = 0, 1, 2
        color = {act_id: WHITE for act_id in self.activities}
        stack = [(start, iter(self._successors[start]))]
        color[start] = GRAY

        if start == target:
            return [start]

        while stack:
            node, children = stack[-1]
            advanced = False
            for child in children:
                if child == target:
                    return [n for n, _ in stack] + [child]
                if color[child] == WHITE:
                    color[child] = GRAY
                    stack.append((child, iter(self._successors[child])))
                    advanced = True
                    break
            if not advanced:
                color[node] = BLACK
                stack.pop()
        return None

    def detect_cycle(self) -> Optional[List[str]]:
        """Detect cycles across the whole network using DFS."""
        WHITE, GRAY, BLACK = 0, 1, 2
        color = {act_id: WHITE for act_id in self.activities}

        for root in self.activities:
            if color[root] != WHITE:
                continue
            stack = [(root, iter(self._successors[root]))]
            color[root] = GRAY
            while stack:
                node, children = stack[-1]
                advanced = False
                for child in children:
                    if color[child] == GRAY:
                        path = [n for n, _ in stack]
                        return path[path.index(child):]
                    if color[child] == WHITE:
                        color[child] = GRAY
                        stack.append((child, iter(self._successors[child])))
                        advanced = True
                        break
                if not advanced:
                    color[node] = BLACK
                    stack.pop()
        return None

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def copy(self) -> "ScheduleGraph":
        """Detached deep copy; readers compute against this."""
        clone = ScheduleGraph()
        clone.activities = {act_id: copy.copy(act) for act_id, act in self.activities.items()}
        clone._predecessors = {act_id: {} for act_id in self.activities}
        clone._successors = {act_id: {} for act_id in self.activities}
        for dependency in self.dependencies():
            clone._link(copy.copy(dependency))
        clone.version = self.version
        clone.dirty = self.dirty
        return clone

    def mark_clean(self) -> None:
        self.dirty = False

    def _touch(self) -> None:
        self.version += 1
        self.dirty = True
