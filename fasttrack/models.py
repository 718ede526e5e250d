from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple


class LogicType(str, Enum):
    FS = "FS"  # Finish-to-Start
    SS = "SS"  # Start-to-Start
    FF = "FF"  # Finish-to-Finish
    SF = "SF"  # Start-to-Finish


class ActivityType(str, Enum):
    TASK = "Task"
    MILESTONE = "Milestone"


class ChangeType(str, Enum):
    NO_CHANGE = "no_change"
    DELAY = "delay"
    RESEQUENCE = "resequence"
    ACCELERATION = "acceleration"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class Dependency:
    """Represents a precedence relationship between two activities."""

    predecessor_id: str
    successor_id: str
    logic: LogicType = LogicType.FS
    lag: int = 0  # Can be positive or negative

    def __post_init__(self) -> None:
        self.predecessor_id = self.predecessor_id.strip().upper()
        self.successor_id = self.successor_id.strip().upper()
        self.logic = LogicType(self.logic)
        self.lag = int(self.lag)

    def __str__(self) -> str:
        lag_str = f"+{self.lag}" if self.lag >= 0 else str(self.lag)
        return f"{self.predecessor_id}:{self.logic.value}:{lag_str}"


@dataclass
class Activity:
    """Represents a project activity with its planned and reported attributes."""

    id: str
    description: str
    duration: int
    type: ActivityType = ActivityType.TASK

    # Baseline (frozen once the schedule is baselined)
    baseline_start: Optional[int] = None
    baseline_finish: Optional[int] = None

    # Field-reported progress
    actual_start: Optional[int] = None
    actual_finish: Optional[int] = None
    percent_complete: int = 0
    delay_reason: Optional[str] = None
    change_type: ChangeType = ChangeType.NO_CHANGE
    notes: Optional[str] = None

    crew_id: Optional[str] = None

    # Date constraints
    constraint_es: Optional[int] = None  # Start no earlier than
    constraint_lf: Optional[int] = None  # Finish no later than

    def __post_init__(self) -> None:
        self.id = self.id.strip().upper()
        self.type = ActivityType(self.type)
        self.change_type = ChangeType(self.change_type)

    @property
    def is_milestone(self) -> bool:
        return self.type is ActivityType.MILESTONE

    @property
    def is_started(self) -> bool:
        return self.actual_start is not None

    @property
    def is_complete(self) -> bool:
        return self.actual_finish is not None


@dataclass(frozen=True)
class ActivityDates:
    """CPM output for a single activity."""

    activity_id: str
    duration: int

    # Forward pass results
    early_start: int  # Early Start
    early_finish: int  # Early Finish

    # Backward pass results
    late_start: int  # Late Start
    late_finish: int  # Late Finish

    total_float: int
    free_float: int
    is_critical: bool

    current_start: int
    current_finish: int


@dataclass(frozen=True)
class CPMResult:
    """Immutable snapshot of one CPM run over a graph version."""

    dates: Mapping[str, ActivityDates]
    project_start: int
    project_finish: int
    critical_paths: Tuple[Tuple[str, ...], ...]
    topological_order: Tuple[str, ...]
    warnings: Tuple = ()
    calculation_log: Tuple[str, ...] = ()
    graph_version: int = 0
    data_date: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "dates", MappingProxyType(dict(self.dates)))

    @property
    def project_duration(self) -> int:
        return self.project_finish - self.project_start

    @property
    def critical_path(self) -> Tuple[str, ...]:
        return self.critical_paths[0] if self.critical_paths else ()

    @property
    def critical_activity_ids(self) -> List[str]:
        return [act_id for act_id in self.topological_order if self.dates[act_id].is_critical]

    def __getitem__(self, activity_id: str) -> ActivityDates:
        return self.dates[activity_id]


@dataclass(frozen=True)
class FastTrackOpportunity:
    """A proposed FS -> SS conversion and its scoring. Never written back directly."""

    activity_id: str
    activity_name: str
    duration: int
    total_float: int
    predecessor_id: str
    predecessor_name: str
    current_logic: LogicType
    current_lag: int
    suggested_logic: LogicType
    suggested_lag: int
    potential_savings_days: int
    risk_level: RiskLevel
    confidence: int  # Percentage, heuristic
    resource_conflict: bool
    implementation_effort: int  # 1-5 scale
    complexity: str  # simple, moderate, complex
    downstream_count: int = 0


@dataclass
class UpdateEdit:
    """A single field-reported change, validated and committed as part of a batch."""

    activity_id: str
    actual_start: Optional[int] = None
    actual_finish: Optional[int] = None
    percent_complete: Optional[int] = None
    delay_reason: Optional[str] = None
    change_type: ChangeType = ChangeType.NO_CHANGE
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        self.activity_id = self.activity_id.strip().upper()
        self.change_type = ChangeType(self.change_type)


@dataclass
class VarianceRecord:
    """Baseline vs current/actual comparison for one activity."""

    activity_id: str
    baseline_start: Optional[int]
    baseline_finish: Optional[int]
    start: Optional[int]
    finish: Optional[int]
    start_variance: Optional[int]
    finish_variance: Optional[int]
    is_actual_start: bool = False
    is_actual_finish: bool = False


@dataclass
class CommitResult:
    """Outcome of a validated update batch."""

    committed: bool
    errors: List = field(default_factory=list)
    warnings: List = field(default_factory=list)
    committed_ids: List[str] = field(default_factory=list)
    variances: List[VarianceRecord] = field(default_factory=list)
    health_score: int = 100
    summary: str = ""

    def __iter__(self):
        # Allows ``committed, errors = result``
        yield self.committed
        yield self.errors
