# timeblock/service.py
import logging
import threading
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from .collaborators import CalendarSource, FocusLockExecutor, LoggingNotifier, NotificationScheduler
from .energy_model import EnergyModel
from .errors import CollaboratorUnavailable, InputInvalid, PlanWarning
from .logging_setup import plan_context
from .metrics import FEEDBACK_COUNTER
from .models import (
    BlockKind,
    DailyPlan,
    FocusSession,
    PlannerPrefs,
    Priority,
    SchedulingFeedback,
    Task,
    TimeBlock,
)
from .planner import PlannerEngine, select_relevant_tasks
from .rescheduling import ReschedulingEngine, RescheduleEvent, RescheduleResult
from .store import PlannerStore

logger = logging.getLogger(__name__)


class PlannerService:
    """
    Wires the planning engine to storage, calendar, notifications and focus lock.

    Mutations of one day's plan are serialized with a per-date lock. Different
    days run concurrently: each call plans against its own copy of the energy
    model, and the shared task list is updated under a separate lock.
    """

    def __init__(self,
                 store: PlannerStore,
                 calendar: Optional[CalendarSource] = None,
                 notifier: Optional[NotificationScheduler] = None,
                 focus_lock: Optional[FocusLockExecutor] = None,
                 prefs: Optional[PlannerPrefs] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.calendar = calendar
        self.notifier = notifier or LoggingNotifier()
        self.focus_lock = focus_lock
        self.prefs = prefs or PlannerPrefs()
        self.clock = clock or (lambda: datetime.now(self.prefs.tzinfo()))

        patterns = self._load_patterns()
        self.energy_model = EnergyModel(patterns) if patterns else EnergyModel()
        self.history: List[RescheduleEvent] = []

        self._locks: Dict[date, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._model_lock = threading.Lock()
        self._tasks_lock = threading.Lock()

    def _load_patterns(self):
        try:
            return self.store.load_energy_patterns()
        except CollaboratorUnavailable as err:
            logger.warning("energy patterns unavailable, using defaults: %s", err)
            return []

    def _lock_for(self, day: date) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(day, threading.Lock())

    def _engine(self) -> PlannerEngine:
        with self._model_lock:
            model = self.energy_model.copy()
        return PlannerEngine(self.prefs, model)

    def _rescheduler(self) -> ReschedulingEngine:
        engine = self._engine()

        def replanner(plan: DailyPlan, tasks: Sequence[Task], now: Optional[datetime]) -> DailyPlan:
            return self._replan(engine, plan, tasks, now)

        return ReschedulingEngine(engine, replanner=replanner)

    def _load(self, what: str, loader: Callable[[], List], warnings: List[PlanWarning]) -> List:
        try:
            return loader()
        except CollaboratorUnavailable as err:
            logger.warning("%s unavailable, planning without them: %s", what, err)
            warnings.append(PlanWarning.from_error(err))
            return []

    def _replan(self, engine: PlannerEngine, plan: DailyPlan, tasks: Sequence[Task],
                now: Optional[datetime]) -> DailyPlan:
        warnings: List[PlanWarning] = []
        fresh = engine.replan(
            plan,
            tasks,
            constraints=self._load("constraints", self.store.load_constraints, warnings),
            feedback=self._load("feedback", self.store.load_feedback, warnings),
            goals=self._load("goals", self.store.load_goals, warnings),
            now=now or self.clock(),
        )
        fresh.warnings = warnings + fresh.warnings
        return fresh

    def _fixed_blocks(self, day: date, warnings: List[PlanWarning]) -> List[TimeBlock]:
        if self.calendar is None:
            return []
        try:
            return self.calendar.fixed_blocks(day)
        except CollaboratorUnavailable as err:
            logger.warning("calendar unavailable for %s: %s", day, err)
            warnings.append(PlanWarning.from_error(err))
            return []

    def _save(self, plan: DailyPlan) -> None:
        try:
            self.store.save_plan(plan)
        except CollaboratorUnavailable as err:
            logger.error("plan for %s not persisted: %s", plan.date, err)
            plan.warnings.append(PlanWarning.from_error(err))

    def _publish(self, plan: DailyPlan) -> None:
        focus = [b for b in plan.blocks if b.kind == BlockKind.FOCUS]
        for b in focus:
            self.notifier.schedule(b.title, b.start, self.prefs.notification_lead)
        if self.focus_lock is not None:
            self.focus_lock.protect(focus)

    def plan_day(self, day: date, tasks: Optional[Sequence[Task]] = None,
                 relevant_only: bool = False) -> DailyPlan:
        with self._lock_for(day), plan_context(day):
            warnings: List[PlanWarning] = []
            if tasks is None:
                tasks = self._load("tasks", self.store.load_tasks, warnings)
            if relevant_only:
                tasks = select_relevant_tasks(tasks, day)

            fixed = self._fixed_blocks(day, warnings)
            plan = self._engine().generate_daily_plan(
                day,
                tasks,
                constraints=self._load("constraints", self.store.load_constraints, warnings),
                fixed_blocks=fixed,
                feedback=self._load("feedback", self.store.load_feedback, warnings),
                goals=self._load("goals", self.store.load_goals, warnings),
                now=self.clock(),
            )
            plan.warnings = warnings + plan.warnings
            self._save(plan)
            self._publish(plan)
            return plan

    def current_plan(self, day: date) -> Optional[DailyPlan]:
        return self.store.load_plan(day)

    def _require_plan(self, day: date) -> DailyPlan:
        plan = self.store.load_plan(day)
        if plan is None:
            raise InputInvalid(f"no plan stored for {day}")
        return plan

    def _update_stored_task(self, task_id: str, **changes) -> None:
        with self._tasks_lock:
            tasks = self.store.load_tasks()
            if any(t.id == task_id for t in tasks):
                self.store.save_tasks([replace(t, **changes) if t.id == task_id else t for t in tasks])

    def complete_task(self, day: date, task_id: str, actual_start: datetime, actual_end: datetime,
                      rating: int, comment: str = "") -> DailyPlan:
        """Record completion: feedback log, energy update, task state, adherence."""
        if actual_end <= actual_start:
            raise InputInvalid("actual end must be after actual start")
        if not 1 <= rating <= 5:
            raise InputInvalid("rating must be between 1 and 5")

        with self._lock_for(day), plan_context(day):
            plan = self._require_plan(day)
            block = plan.block_for(task_id)
            if block is None:
                raise InputInvalid(f"task {task_id} is not scheduled on {day}")

            now = self.clock()
            self.store.append_feedback(SchedulingFeedback(
                task_id=task_id,
                planned_start=block.start,
                planned_end=block.end,
                actual_start=actual_start,
                actual_end=actual_end,
                rating=rating,
                comment=comment,
                recorded_at=now,
            ))
            FEEDBACK_COUNTER.labels(rating=rating).inc()

            with self._model_lock:
                self.energy_model.update_with_sessions([FocusSession(actual_start, actual_end, True)], now=now)
                self.store.save_energy_patterns(self.energy_model.patterns())

            changes = dict(completed=True, actual_start=actual_start, actual_end=actual_end)
            tasks = [replace(t, **changes) if t.id == task_id else t for t in plan.tasks]
            self._update_stored_task(task_id, **changes)

            actual_blocks = [
                TimeBlock(start=t.actual_start, end=t.actual_end, task_id=t.id, kind=BlockKind.TASK)
                for t in tasks if t.completed and t.actual_start and t.actual_end
            ]
            plan = replace(plan, tasks=tasks, updated_at=now)
            plan.update_adherence(actual_blocks)
            plan.productivity_score = self._engine().scorer.score(plan)
            self._save(plan)
            logger.info("task %s completed, adherence %.2f", task_id, plan.adherence_score)
            return plan

    def overtime(self, day: date, task_id: str, extra: timedelta) -> RescheduleResult:
        with self._lock_for(day), plan_context(day):
            plan = self._require_plan(day)
            result = self._rescheduler().handle_overtime(plan, task_id, extra, now=self.clock())
            self.history.extend(result.events)
            self._save(result.plan)
            self._publish(result.plan)
            return result

    def priority_change(self, day: date, task_id: str, new_priority: Priority) -> RescheduleResult:
        with self._lock_for(day), plan_context(day):
            plan = self._require_plan(day)
            result = self._rescheduler().handle_priority_change(plan, task_id, new_priority, now=self.clock())
            self.history.extend(result.events)
            self._update_stored_task(task_id, priority=Priority(new_priority))
            self._save(result.plan)
            if result.replanned:
                self._publish(result.plan)
            return result
