# timeblock/planner.py
import logging
from dataclasses import replace
from datetime import date, datetime, time
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from .anomalies import Anomaly, AnomalyDetector
from .constraints import ConstraintSolver
from .energy_model import EnergyModel
from .energy_optimizer import EnergyOptimizer
from .errors import ConstraintUnsatisfiable, InputInvalid, PlanningError, PlanWarning
from .learning import AdaptiveLearner
from .metrics import ANOMALY_COUNTER, PLAN_GENERATION_SECONDS
from .models import (
    DailyPlan,
    Goal,
    PlannerPrefs,
    Priority,
    SchedulingConstraint,
    SchedulingFeedback,
    Task,
    TimeBlock,
)
from .placer import Placer
from .priority import PriorityResolver
from .scoring import PlanScorer

logger = logging.getLogger(__name__)

PLAN_COLUMNS = ["id", "label", "start", "end", "priority", "kind", "protected"]


def _same_awareness(a: datetime, b: datetime) -> bool:
    return (a.tzinfo is None) == (b.tzinfo is None)


def validate_tasks(tasks: Sequence[Task], reference: datetime,
                   warnings: List[PlanWarning]) -> List[Task]:
    valid = []
    for t in tasks:
        try:
            if t.estimated_duration.total_seconds() <= 0:
                raise InputInvalid(f"task {t.title!r} has non-positive duration")
            if t.deadline is not None and not _same_awareness(t.deadline, reference):
                raise InputInvalid(f"task {t.title!r} deadline timezone does not match the plan")
        except InputInvalid as err:
            logger.warning("dropping task %s: %s", t.id, err)
            warnings.append(PlanWarning.from_error(err, t.id))
            continue
        valid.append(t)
    return valid


def validate_blocks(blocks: Sequence[TimeBlock], reference: datetime,
                    warnings: List[PlanWarning]) -> List[TimeBlock]:
    valid = []
    for b in blocks:
        try:
            if not _same_awareness(b.start, reference) or not _same_awareness(b.end, reference):
                raise InputInvalid(f"block {b.title!r} timezone does not match the plan")
            if b.end <= b.start:
                raise InputInvalid(f"block {b.title!r} ends before it starts")
        except InputInvalid as err:
            logger.warning("dropping block %s: %s", b.id, err)
            warnings.append(PlanWarning.from_error(err, b.id))
            continue
        valid.append(b)
    return valid


def select_relevant_tasks(tasks: Sequence[Task], day: date) -> List[Task]:
    """Open tasks due by the end of `day`, urgent by priority, or focus-protected."""
    relevant = []
    for t in tasks:
        if t.completed:
            continue
        due_today = t.deadline is not None and t.deadline <= datetime.combine(day, time.max, tzinfo=t.deadline.tzinfo)
        if due_today or t.priority >= Priority.HIGH or t.focus_protected:
            relevant.append(t)
    return relevant


def plan_to_frame(plan: DailyPlan) -> pd.DataFrame:
    """One row per block, ordered by start."""
    by_id = {t.id: t for t in plan.tasks}
    rows = []
    for b in sorted(plan.blocks, key=lambda b: b.start):
        task = by_id.get(b.task_id) if b.task_id else None
        rows.append({
            "id": b.task_id or b.id,
            "label": b.title,
            "start": b.start,
            "end": b.end,
            "priority": int(task.priority) if task is not None else None,
            "kind": b.kind.value,
            "protected": b.protected,
        })
    return pd.DataFrame(rows, columns=PLAN_COLUMNS)


class PlannerEngine:
    """
    Daily planning pipeline.

    prioritize -> place -> hard constraints -> energy alignment -> learning
    -> anomaly repair -> protected-overlap repair -> final detection -> score.
    Inputs are never mutated; every stage returns new blocks.
    """

    def __init__(self, prefs: Optional[PlannerPrefs] = None, energy_model: Optional[EnergyModel] = None):
        self.prefs = prefs or PlannerPrefs()
        self.energy_model = energy_model or EnergyModel()
        self.resolver = PriorityResolver()
        self.placer = Placer(self.prefs)
        self.solver = ConstraintSolver(self.prefs)
        self.optimizer = EnergyOptimizer(self.prefs, self.energy_model)
        self.learner = AdaptiveLearner(self.prefs)
        self.detector = AnomalyDetector(self.prefs)
        self.scorer = PlanScorer(self.energy_model)

    def generate_daily_plan(self,
                            day: date,
                            tasks: Sequence[Task],
                            constraints: Sequence[SchedulingConstraint] = (),
                            fixed_blocks: Sequence[TimeBlock] = (),
                            feedback: Sequence[SchedulingFeedback] = (),
                            goals: Sequence[Goal] = (),
                            now: Optional[datetime] = None,
                            start_from: Optional[datetime] = None) -> DailyPlan:
        """
        Build a plan for `day`.

        `start_from` moves the placement cursor forward when it falls inside
        the working window; nothing new is placed before it.
        """
        if isinstance(day, datetime) or not isinstance(day, date):
            raise PlanningError("day must be a datetime.date")
        if self.prefs.repair_passes < 0:
            raise ValueError("repair_passes must be >= 0")

        with PLAN_GENERATION_SECONDS.time():
            warnings: List[PlanWarning] = []
            window = self.prefs.window(day)
            tasks = validate_tasks(tasks, window[0], warnings)
            fixed = validate_blocks(fixed_blocks, window[0], warnings)

            placement = self._placement_window(window, start_from)
            blocks, tasks = self._build(day, tasks, constraints, fixed, feedback, goals, placement)

            anomalies = self.flag_anomalies(blocks, tasks, window, warnings)

            referenced = {b.task_id for b in blocks if b.task_id}
            plan = DailyPlan(
                date=day,
                blocks=blocks,
                tasks=[t for t in tasks if t.id in referenced],
                warnings=warnings,
                anomalies=anomalies,
                created_at=now,
                updated_at=now,
            )
            plan.productivity_score = self.scorer.score(plan, self.energy_model)

        logger.info(
            "plan for %s: %d blocks, %d anomalies, %d warnings, score %.3f",
            day, len(plan.blocks), len(anomalies), len(warnings), plan.productivity_score,
        )
        return plan

    @staticmethod
    def _placement_window(window: Tuple[datetime, datetime],
                          start_from: Optional[datetime]) -> Tuple[datetime, datetime]:
        if start_from is None or not _same_awareness(start_from, window[0]):
            return window
        if window[0] < start_from < window[1]:
            return start_from, window[1]
        return window

    def flag_anomalies(self, blocks: Sequence[TimeBlock], tasks: Sequence[Task],
                       window: Tuple[datetime, datetime], warnings: List[PlanWarning]) -> List[Anomaly]:
        """Detect what is still wrong, count it and append one warning per anomaly."""
        anomalies = self.detector.detect(blocks, tasks, self.energy_model, window)
        for a in anomalies:
            ANOMALY_COUNTER.labels(kind=a.kind.value).inc()
            warnings.append(PlanWarning.from_error(ConstraintUnsatisfiable(a.message), a.task_id))
        return anomalies

    def _build(self, day, tasks, constraints, fixed, feedback, goals,
               window: Tuple[datetime, datetime]) -> Tuple[List[TimeBlock], List[Task]]:
        prioritized = self.resolver.prioritize(tasks, goals, day)
        outcome = self.resolver.apply_constraints(prioritized, constraints, day)
        tasks = outcome.tasks

        blocks = self.placer.place_initial(tasks, fixed, window[0], window[1], outcome.min_break)
        blocks = self.solver.resolve(blocks, tasks, constraints)
        blocks = self.optimizer.align(blocks, tasks, self.energy_model, window[0], window[1])
        blocks = self.learner.apply_learning(blocks, tasks, feedback, day)
        blocks, _ = self.detector.repair(blocks, tasks, self.energy_model, window)
        blocks = self.placer.resolve_protected_overlaps(blocks, pinned=[b.id for b in fixed])
        return sorted(blocks, key=lambda b: b.start), tasks

    def replan(self,
               plan: DailyPlan,
               tasks: Sequence[Task],
               constraints: Sequence[SchedulingConstraint] = (),
               feedback: Sequence[SchedulingFeedback] = (),
               goals: Sequence[Goal] = (),
               now: Optional[datetime] = None) -> DailyPlan:
        """
        Regenerate `plan` for the same day.

        Calendar blocks and blocks of completed tasks are kept exactly where
        they are; everything else is placed again, no earlier than `now`.
        """
        completed = {t.id for t in tasks if t.completed}
        kept = [b for b in plan.blocks if b.is_fixed or (b.task_id in completed)]
        fresh = self.generate_daily_plan(
            plan.date, tasks, constraints, kept, feedback, goals, now=now, start_from=now
        )
        return replace(fresh, id=plan.id, created_at=plan.created_at, updated_at=now or fresh.updated_at,
                       adherence_score=plan.adherence_score)
