from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Tuple

from .config import EngineSettings, FastTrackConfig, settings as default_settings
from .engine import CPMCalculator
from .errors import BaselineLockedError, InvalidActivityError, ScheduleBusyError
from .fast_track import FastTrackAnalyzer
from .graph import ScheduleGraph
from .logger import configure_logging
from .models import Activity, CommitResult, CPMResult, Dependency, FastTrackOpportunity, UpdateEdit
from .updates import UpdateCommitter, UpdateValidator

logger = configure_logging(__name__)

PROGRESS_FIELDS = ("actual_start", "actual_finish", "percent_complete", "delay_reason", "change_type")
BASELINE_FIELDS = ("baseline_start", "baseline_finish")


class Schedule:
    """
    Aggregate root: the activity graph, the data date and derived CPM state.

    Writers are serialised by a lock. Readers compute against a detached copy
    of the graph and publish the finished result only if no write happened in
    between, so a reader sees either the pre-commit or the post-commit schedule.
    CPM results are never authoritative; they are recomputed on demand.
    """

    def __init__(
        self,
        data_date: int = 0,
        project_start: Optional[int] = None,
        project_finish: Optional[int] = None,
        settings: Optional[EngineSettings] = None,
        graph: Optional[ScheduleGraph] = None,
    ):
        self.settings = settings or default_settings
        self.graph = graph or ScheduleGraph()
        self._data_date = data_date
        self._project_start = project_start
        self._project_finish = project_finish
        self.baselined = False
        self._lock = threading.RLock()
        self._revision = 0
        self._cached: Optional[Tuple[Tuple[int, int], ScheduleGraph, CPMResult]] = None

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.settings.lock_timeout_seconds):
            raise ScheduleBusyError(
                f"Schedule is locked by another writer (waited {self.settings.lock_timeout_seconds}s)."
            )
        try:
            yield
        finally:
            self._lock.release()

    def _state_key(self) -> Tuple[int, int]:
        return self.graph.version, self._revision

    # ------------------------------------------------------------------
    # Schedule-level settings
    # ------------------------------------------------------------------

    @property
    def data_date(self) -> int:
        return self._data_date

    @data_date.setter
    def data_date(self, value: int) -> None:
        with self._exclusive():
            self._data_date = value
            self._revision += 1

    @property
    def project_start(self) -> Optional[int]:
        return self._project_start

    @project_start.setter
    def project_start(self, value: Optional[int]) -> None:
        with self._exclusive():
            self._project_start = value
            self._revision += 1

    @property
    def project_finish(self) -> Optional[int]:
        return self._project_finish

    @project_finish.setter
    def project_finish(self, value: Optional[int]) -> None:
        with self._exclusive():
            self._project_finish = value
            self._revision += 1

    # ------------------------------------------------------------------
    # Graph mutations
    # ------------------------------------------------------------------

    def add_activity(self, activity: Activity) -> Activity:
        with self._exclusive():
            return self.graph.add_activity(activity)

    def add_dependency(self, dependency: Dependency) -> Dependency:
        with self._exclusive():
            return self.graph.add_dependency(dependency)

    def update_dependency(self, predecessor_id: str, successor_id: str, logic=None, lag=None) -> Dependency:
        with self._exclusive():
            return self.graph.update_dependency(predecessor_id, successor_id, logic=logic, lag=lag)

    def remove_dependency(self, predecessor_id: str, successor_id: str) -> Dependency:
        with self._exclusive():
            return self.graph.remove_dependency(predecessor_id, successor_id)

    def remove_activity(self, activity_id: str, force: bool = False) -> List[Dependency]:
        with self._exclusive():
            return self.graph.remove_activity(activity_id, force=force)

    def update_activity(self, activity_id: str, **fields) -> Activity:
        """Edit planning attributes. Progress goes through ``commit_updates``."""
        progress = sorted(set(fields) & set(PROGRESS_FIELDS))
        if progress:
            raise InvalidActivityError(
                f"Progress fields ({', '.join(progress)}) must be submitted as an update batch.",
                activity_id=activity_id,
            )
        with self._exclusive():
            if self.baselined and set(fields) & set(BASELINE_FIELDS):
                raise BaselineLockedError(
                    "Baseline dates are frozen once the schedule is baselined.", activity_id=activity_id
                )
            return self.graph.update_activity_fields(activity_id, **fields)

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def calculator(self) -> CPMCalculator:
        return CPMCalculator(
            data_date=self._data_date,
            project_start=self._project_start,
            project_finish=self._project_finish,
            timeout_seconds=self.settings.compute_timeout_seconds,
        )

    def snapshot(self) -> Tuple[ScheduleGraph, CPMResult]:
        """Graph copy and the CPM result computed from it, recomputing if stale."""
        with self._exclusive():
            cached = self._cached
            key = self._state_key()
            if cached is not None and cached[0] == key:
                return cached[1], cached[2]
            snapshot = self.graph.copy()
            calculator = self.calculator()

        result = calculator.compute(snapshot)

        with self._exclusive():
            if self._state_key() == key:
                self._cached = (key, snapshot, result)
                self.graph.mark_clean()
        return snapshot, result

    def compute(self) -> CPMResult:
        return self.snapshot()[1]

    @property
    def is_stale(self) -> bool:
        cached = self._cached
        return cached is None or cached[0] != self._state_key()

    def fast_track_opportunities(self, config: Optional[FastTrackConfig] = None) -> List[FastTrackOpportunity]:
        snapshot, result = self.snapshot()
        analyzer = FastTrackAnalyzer(config or FastTrackConfig.from_settings(self.settings))
        return analyzer.analyze(snapshot, result)

    def implement_fast_track(self, opportunity: FastTrackOpportunity) -> Tuple[Dependency, CPMResult]:
        analyzer = FastTrackAnalyzer(FastTrackConfig.from_settings(self.settings))
        with self._exclusive():
            dependency, _ = analyzer.implement(self.graph, opportunity)
        return dependency, self.compute()

    # ------------------------------------------------------------------
    # Field updates
    # ------------------------------------------------------------------

    def validator(self) -> UpdateValidator:
        return UpdateValidator(
            data_date=self._data_date,
            early_actual_tolerance_days=self.settings.early_actual_tolerance_days,
        )

    def commit_updates(self, edits: Sequence[UpdateEdit]) -> CommitResult:
        """Validate and apply a batch. CPM is recomputed lazily on the next read."""
        with self._exclusive():
            last_result = self._cached[2] if self._cached is not None else None
            return UpdateCommitter(self.validator()).commit(self.graph, edits, last_result=last_result)

    def capture_baseline(self, force: bool = False) -> None:
        """Freeze current early dates as the baseline."""
        with self._exclusive():
            if self.baselined and not force:
                raise BaselineLockedError("Schedule is already baselined.")
            # Lock is held across the computation
            result = self.compute()
            for act_id, dates in result.dates.items():
                self.graph.update_activity_fields(
                    act_id, baseline_start=dates.early_start, baseline_finish=dates.early_finish
                )
            self.baselined = True
        logger.info("Baseline captured for %d activities", len(result.dates))
