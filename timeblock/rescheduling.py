# timeblock/rescheduling.py
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .errors import ConstraintUnsatisfiable, InputInvalid
from .metrics import RESCHEDULE_COUNTER
from .models import DailyPlan, Priority, Task, TimeBlock
from .planner import PlannerEngine

logger = logging.getLogger(__name__)

Replanner = Callable[[DailyPlan, Sequence[Task], Optional[datetime]], DailyPlan]


class RescheduleState(str, Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    APPLYING = "applying"


@dataclass
class RescheduleEvent:
    trigger: str               # "overtime" | "priority_change"
    task_id: str
    strategy: str              # "extend_and_shift" | "replan" | "record"
    at: Optional[datetime] = None
    detail: str = ""


@dataclass
class RescheduleResult:
    plan: DailyPlan
    strategy: str
    replanned: bool = False
    events: List[RescheduleEvent] = field(default_factory=list)


class OvertimeStrategy:
    """Extend the overrunning block and push every later movable block back by the same amount."""

    name = "extend_and_shift"

    def apply(self, blocks: Sequence[TimeBlock], task_id: str, extra: timedelta) -> List[TimeBlock]:
        target = next((b for b in blocks if b.task_id == task_id), None)
        if target is None:
            raise InputInvalid(f"no block scheduled for task {task_id}")

        out = []
        for b in blocks:
            if b.id == target.id:
                b = replace(b, end=b.end + extra)
            elif b.start >= target.end and not b.is_fixed:
                b = b.moved_to(b.start + extra)
            out.append(b)
        return sorted(out, key=lambda b: b.start)


class ReschedulingEngine:
    """
    Local repair of a live plan.

    State runs IDLE -> EVALUATING -> APPLYING -> IDLE for every event.
    Results are returned to the caller, who decides whether to persist.
    """

    def __init__(self, engine: PlannerEngine, replanner: Optional[Replanner] = None):
        self.engine = engine
        self.prefs = engine.prefs
        self.replanner = replanner or (lambda plan, tasks, now: engine.replan(plan, tasks, now=now))
        self.overtime_strategy = OvertimeStrategy()
        self.state = RescheduleState.IDLE
        self._history: List[RescheduleEvent] = []

    @property
    def history(self) -> List[RescheduleEvent]:
        return list(self._history)

    def _record(self, event: RescheduleEvent) -> None:
        self._history.append(event)
        RESCHEDULE_COUNTER.labels(trigger=event.trigger, strategy=event.strategy).inc()
        logger.info("reschedule %s for %s via %s", event.trigger, event.task_id, event.strategy)

    def handle_overtime(self, plan: DailyPlan, task_id: str, extra: timedelta,
                        now: Optional[datetime] = None) -> RescheduleResult:
        if extra <= timedelta(0):
            raise InputInvalid("overtime must be positive")

        self.state = RescheduleState.EVALUATING
        try:
            escalate = extra > self.prefs.overtime_escalation
            tasks = [
                replace(t, estimated_duration=t.estimated_duration + extra) if t.id == task_id else t
                for t in plan.tasks
            ]
            self.state = RescheduleState.APPLYING
            if escalate:
                if not any(t.id == task_id for t in tasks):
                    raise InputInvalid(f"unknown task {task_id}")
                new_plan = self.replanner(plan, tasks, now)
                strategy = "replan"
            else:
                blocks = self.overtime_strategy.apply(plan.blocks, task_id, extra)
                blocks = self.engine.placer.resolve_protected_overlaps(
                    blocks, pinned=[b.id for b in plan.blocks if b.is_fixed]
                )
                # shifted blocks may now miss deadlines
                warnings = [w for w in plan.warnings if w.code != ConstraintUnsatisfiable.__name__]
                anomalies = self.engine.flag_anomalies(
                    blocks, tasks, self.prefs.window(plan.date), warnings
                )
                new_plan = replace(plan, blocks=blocks, tasks=tasks, warnings=warnings, anomalies=anomalies,
                                   updated_at=now or plan.updated_at)
                new_plan.productivity_score = self.engine.scorer.score(new_plan)
                strategy = self.overtime_strategy.name

            event = RescheduleEvent("overtime", task_id, strategy, now, f"+{extra}")
            self._record(event)
            return RescheduleResult(new_plan, strategy, replanned=escalate, events=[event])
        finally:
            self.state = RescheduleState.IDLE

    def requires_rescheduling(self, task: Task, new_priority: Priority,
                              now: Optional[datetime] = None) -> bool:
        overdue = task.overdue or (
            now is not None and task.deadline is not None and task.deadline < now
        )
        crosses = (task.priority >= Priority.HIGH) != (new_priority >= Priority.HIGH)
        return (new_priority == Priority.CRITICAL or crosses
                or task.focus_protected or overdue)

    def handle_priority_change(self, plan: DailyPlan, task_id: str, new_priority: Priority,
                               now: Optional[datetime] = None) -> RescheduleResult:
        task = plan.task(task_id)
        if task is None:
            raise InputInvalid(f"unknown task {task_id}")

        self.state = RescheduleState.EVALUATING
        try:
            needed = self.requires_rescheduling(task, new_priority, now)
            tasks = [replace(t, priority=new_priority) if t.id == task_id else t for t in plan.tasks]

            self.state = RescheduleState.APPLYING
            if needed:
                new_plan = self.replanner(plan, tasks, now)
                strategy = "replan"
            else:
                new_plan = replace(plan, tasks=tasks, updated_at=now or plan.updated_at)
                new_plan.productivity_score = self.engine.scorer.score(new_plan)
                strategy = "record"

            event = RescheduleEvent(
                "priority_change", task_id, strategy, now,
                f"{task.priority.name.lower()} -> {Priority(new_priority).name.lower()}",
            )
            self._record(event)
            return RescheduleResult(new_plan, strategy, replanned=needed, events=[event])
        finally:
            self.state = RescheduleState.IDLE
