# timeblock/models.py
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from enum import Enum, IntEnum
from typing import FrozenSet, List, Optional, Tuple
from zoneinfo import ZoneInfo


def new_id() -> str:
    return uuid.uuid4().hex


class Priority(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


# One notch up / down, capped at the ends.
PROMOTE = {
    Priority.LOW: Priority.MEDIUM,
    Priority.MEDIUM: Priority.HIGH,
    Priority.HIGH: Priority.CRITICAL,
    Priority.CRITICAL: Priority.CRITICAL,
}
DEMOTE = {
    Priority.CRITICAL: Priority.HIGH,
    Priority.HIGH: Priority.MEDIUM,
    Priority.MEDIUM: Priority.LOW,
    Priority.LOW: Priority.LOW,
}


class EnergyLevel(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    PEAK = 4

    @property
    def fraction(self) -> float:
        return self.value / 4.0


class BlockKind(str, Enum):
    FOCUS = "focus"
    TASK = "task"
    BREAK = "break"
    MEETING = "meeting"

    @property
    def is_productive(self) -> bool:
        return self in (BlockKind.FOCUS, BlockKind.TASK)


class TaskCategory(str, Enum):
    WORK = "work"
    LEARNING = "learning"
    PERSONAL = "personal"
    HEALTH = "health"
    PRODUCTIVITY = "productivity"
    CAREER = "career"


class GoalCategory(str, Enum):
    PRODUCTIVITY = "productivity"
    LEARNING = "learning"
    HEALTH = "health"
    CAREER = "career"
    PERSONAL = "personal"
    FINANCIAL = "financial"


class ConstraintType(str, Enum):
    MAX_FOCUS_TIME = "maxFocusTime"        # minutes
    MIN_BREAK_TIME = "minBreakTime"        # minutes
    ENERGY_ALIGNMENT = "energyAlignment"   # presence enables it
    DEADLINE_PRIORITY = "deadlinePriority"  # days
    CATEGORY_BALANCE = "categoryBalance"   # percent share
    MAX_WORK_HOURS = "maxWorkHours"        # hours


@dataclass
class PlannerPrefs:
    tz: Optional[str] = None            # None -> naive datetimes
    day_start_hour: int = 8
    day_end_hour: int = 20
    focus_break_buffer: timedelta = timedelta(minutes=15)
    task_break_buffer: timedelta = timedelta(minutes=5)
    focus_break_length: timedelta = timedelta(minutes=10)
    min_focus_duration: timedelta = timedelta(minutes=30)
    dependency_gap: timedelta = timedelta(minutes=5)
    max_daily_focus: timedelta = timedelta(hours=6)
    feedback_retention: int = 100       # most recent records kept
    plan_retention_days: int = 30
    repair_passes: int = 3
    slot_search_cap: int = 24 * 60      # iterations per slot search
    energy_search_radius: int = 3       # hours either side
    overtime_escalation: timedelta = timedelta(hours=1)
    notification_lead: timedelta = timedelta(minutes=5)

    def tzinfo(self):
        return ZoneInfo(self.tz) if self.tz else None

    def window(self, day: date) -> Tuple[datetime, datetime]:
        """Working window for a calendar day."""
        tz = self.tzinfo()
        start = datetime.combine(day, time(self.day_start_hour), tzinfo=tz)
        end = datetime.combine(day, time(self.day_end_hour), tzinfo=tz)
        return start, end


@dataclass
class Task:
    id: str
    title: str
    estimated_duration: timedelta
    priority: Priority = Priority.MEDIUM
    deadline: Optional[datetime] = None
    dependencies: FrozenSet[str] = frozenset()
    preferred_energy: Optional[EnergyLevel] = None
    focus_protected: bool = False
    complexity: float = 0.5
    completed: bool = False
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    goal_alignment: float = 0.5
    description: str = ""
    category: TaskCategory = TaskCategory.WORK
    goal_id: Optional[str] = None
    required_resources: FrozenSet[str] = frozenset()
    overdue: bool = False
    has_resource_conflict: bool = False
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.complexity = max(0.0, min(float(self.complexity), 1.0))
        self.dependencies = frozenset(self.dependencies)
        self.required_resources = frozenset(self.required_resources)

    @property
    def text(self) -> str:
        return f"{self.title} {self.description}".lower()


@dataclass
class TimeBlock:
    start: datetime
    end: datetime
    task_id: Optional[str] = None     # None for meetings and breaks
    kind: BlockKind = BlockKind.TASK
    title: str = ""
    protected: bool = False
    energy_level: EnergyLevel = EnergyLevel.MEDIUM
    break_buffer: timedelta = timedelta(minutes=5)
    productivity_multiplier: float = 1.0
    suggested_duration: Optional[timedelta] = None
    id: str = field(default_factory=new_id)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_fixed(self) -> bool:
        """Externally fixed (calendar) block."""
        return self.task_id is None and self.kind == BlockKind.MEETING

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start

    def moved_to(self, start: datetime) -> "TimeBlock":
        return replace(self, start=start, end=start + self.duration)


@dataclass
class FixedEvent:
    id: str
    label: str
    start: datetime
    end: datetime

    def to_block(self) -> TimeBlock:
        return TimeBlock(
            start=self.start,
            end=self.end,
            kind=BlockKind.MEETING,
            title=self.label,
            protected=True,
            break_buffer=timedelta(minutes=5),
            id=self.id,
        )


@dataclass
class FocusSession:
    start: datetime
    end: datetime
    completed: bool = True


@dataclass
class EnergyPattern:
    hour: int
    energy_level: EnergyLevel = EnergyLevel.MEDIUM
    sample_size: int = 0
    task_completion_rate: float = 0.5
    focus_success_rate: float = 0.5
    last_updated: Optional[datetime] = None

    @property
    def confidence(self) -> float:
        return min(self.sample_size / 50.0, 1.0)


@dataclass
class SchedulingConstraint:
    type: ConstraintType
    value: float
    active: bool = True
    id: str = field(default_factory=new_id)


@dataclass
class SchedulingFeedback:
    task_id: str
    planned_start: datetime
    planned_end: datetime
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    rating: int = 0
    comment: str = ""
    recorded_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)

    @property
    def planned_duration(self) -> timedelta:
        return self.planned_end - self.planned_start

    @property
    def actual_duration(self) -> Optional[timedelta]:
        if self.actual_start is None or self.actual_end is None:
            return None
        return self.actual_end - self.actual_start

    @property
    def accuracy(self) -> float:
        actual = self.actual_duration
        planned = self.planned_duration
        if actual is None or actual <= timedelta(0) or planned <= timedelta(0):
            return 0.0
        return min(planned, actual) / max(planned, actual)


@dataclass
class Goal:
    id: str
    title: str
    description: str = ""
    category: GoalCategory = GoalCategory.PRODUCTIVITY
    target_value: float = 1.0
    current_value: float = 0.0
    deadline: Optional[datetime] = None
    active: bool = True

    @property
    def progress(self) -> float:
        if self.target_value <= 0:
            return 0.0
        return min(self.current_value / self.target_value, 1.0)


@dataclass
class DailyPlan:
    date: date
    blocks: List[TimeBlock] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)
    productivity_score: float = 0.0
    adherence_score: float = 0.0
    warnings: list = field(default_factory=list)
    anomalies: list = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)

    @property
    def completion_rate(self) -> float:
        if not self.tasks:
            return 0.0
        return sum(1 for t in self.tasks if t.completed) / len(self.tasks)

    @property
    def total_scheduled(self) -> timedelta:
        return sum((b.duration for b in self.blocks), timedelta(0))

    @property
    def total_focus(self) -> timedelta:
        return sum((b.duration for b in self.blocks if b.kind == BlockKind.FOCUS), timedelta(0))

    @property
    def total_break(self) -> timedelta:
        return sum((b.duration for b in self.blocks if b.kind == BlockKind.BREAK), timedelta(0))

    def task(self, task_id: str) -> Optional[Task]:
        return next((t for t in self.tasks if t.id == task_id), None)

    def block_for(self, task_id: str) -> Optional[TimeBlock]:
        return next((b for b in self.blocks if b.task_id == task_id), None)

    def update_adherence(self, actual_blocks: List[TimeBlock]) -> None:
        """Compare planned vs actual productive time."""
        planned = sum(
            (b.duration for b in self.blocks if b.kind.is_productive), timedelta(0)
        )
        actual = sum(
            (b.duration for b in actual_blocks if b.kind.is_productive), timedelta(0)
        )
        if planned > timedelta(0):
            self.adherence_score = min(actual / planned, 1.0)
