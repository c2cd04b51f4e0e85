# timeblock/priority.py
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Sequence

from .models import (
    DEMOTE,
    PROMOTE,
    ConstraintType,
    EnergyLevel,
    Goal,
    GoalCategory,
    Priority,
    SchedulingConstraint,
    Task,
    TaskCategory,
)

logger = logging.getLogger(__name__)

GOAL_KEYWORDS = (
    "learn", "study", "practice", "improve", "develop", "complete", "finish",
    "start", "create", "build", "exercise", "health", "read", "write", "code",
    "design", "plan", "organize", "review",
)

CATEGORY_MATCH = {
    TaskCategory.WORK: {GoalCategory.CAREER, GoalCategory.PRODUCTIVITY},
    TaskCategory.PERSONAL: {GoalCategory.PERSONAL, GoalCategory.PRODUCTIVITY},
    TaskCategory.HEALTH: {GoalCategory.HEALTH},
    TaskCategory.LEARNING: {GoalCategory.LEARNING},
    TaskCategory.PRODUCTIVITY: {GoalCategory.PRODUCTIVITY},
    TaskCategory.CAREER: {GoalCategory.CAREER},
}

PROMOTE_THRESHOLD = 0.8
DEMOTE_THRESHOLD = 0.3
NO_GOALS_ALIGNMENT = 0.5


def day_start(day: date, tzinfo=None) -> datetime:
    return datetime.combine(day, time(0), tzinfo=tzinfo)


def days_until(deadline: datetime, day: date) -> float:
    """Fractional days from the start of `day` to `deadline` (negative when past)."""
    return (deadline - day_start(day, deadline.tzinfo)).total_seconds() / 86400.0


def urgency_bucket(task: Task, day: date) -> float:
    if task.deadline is None:
        return 0.0
    days = days_until(task.deadline, day)
    if days <= 1:
        return 1.0
    if days <= 7:
        return 0.5
    if days <= 30:
        return 0.2
    return 0.0


def goal_urgency(goal: Goal, day: date) -> float:
    urgency = 0.0
    if goal.deadline is not None:
        days = days_until(goal.deadline, day)
        if days <= 7:
            urgency += 0.4
        elif days <= 30:
            urgency += 0.2
    if goal.progress < 0.3:
        urgency += 0.3
    elif goal.progress < 0.6:
        urgency += 0.2
    if goal.category in (GoalCategory.CAREER, GoalCategory.FINANCIAL):
        urgency += 0.2
    return min(urgency, 1.0)


def keyword_overlap(task: Task, goal: Goal) -> float:
    task_text = task.text
    goal_text = f"{goal.title} {goal.description}".lower()
    shared = sum(1 for kw in GOAL_KEYWORDS if kw in task_text and kw in goal_text)
    return min(shared * 0.2, 0.5)


def goal_alignment(task: Task, goals: Sequence[Goal], day: date) -> float:
    """
    Score in [0, 1] of how well a task serves the user's active goals.

    Direct components come from the task's own goal (category, goal
    deadline proximity, progress consistency); the best keyword overlap
    across all active goals is added on top.
    """
    active = [g for g in goals if g.active]
    if not active:
        return NO_GOALS_ALIGNMENT

    score = 0.0
    goal = next((g for g in active if g.id == task.goal_id), None)
    if goal is not None:
        if goal.category in CATEGORY_MATCH.get(task.category, set()):
            score += 0.4
        if goal.deadline is not None:
            days = days_until(goal.deadline, day)
            if 0 <= days <= 30:
                score += 0.3 * (1.0 - days / 30.0)
        if goal.progress < 0.5 and task.priority >= Priority.HIGH:
            score += 0.2
        elif goal.progress > 0.8 and task.priority <= Priority.MEDIUM:
            score += 0.1

    score += max(keyword_overlap(task, g) for g in active)
    return max(0.0, min(score, 1.0))


def escalate_for_deadline(task: Task, day: date) -> Task:
    if task.deadline is None:
        return task
    days = days_until(task.deadline, day)
    priority = task.priority
    if days <= 1:
        priority = Priority.CRITICAL
    elif days <= 3:
        priority = max(priority, Priority.MEDIUM)
    elif days <= 7:
        priority = max(priority, Priority.HIGH)
    return replace(task, priority=Priority(priority), overdue=task.overdue or days < 0)


@dataclass
class ConstraintOutcome:
    tasks: List[Task]
    min_break: Optional[timedelta] = None


class PriorityResolver:
    """Goal- and deadline-driven priority adjustment plus user scheduling constraints."""

    def prioritize(self, tasks: Sequence[Task], goals: Sequence[Goal], day: date) -> List[Task]:
        goals_by_id = {g.id: g for g in goals if g.active}
        adjusted = []
        for task in tasks:
            alignment = goal_alignment(task, goals, day)
            priority = task.priority
            if alignment > PROMOTE_THRESHOLD:
                priority = PROMOTE[priority]
            elif alignment < DEMOTE_THRESHOLD and priority != Priority.CRITICAL:
                priority = DEMOTE[priority]

            updated = escalate_for_deadline(
                replace(task, priority=priority, goal_alignment=alignment), day
            )

            goal = goals_by_id.get(task.goal_id)
            if goal is not None:
                urgency = goal_urgency(goal, day)
                if urgency > 0.9:
                    updated = replace(updated, priority=Priority.CRITICAL)
                elif urgency > 0.7 and updated.priority == Priority.MEDIUM:
                    updated = replace(updated, priority=Priority.HIGH)

            if updated.priority != task.priority:
                logger.debug("task %s priority %s -> %s", task.id, task.priority.name, updated.priority.name)
            adjusted.append(updated)

        def order_score(t: Task) -> float:
            return (0.4 * int(t.priority) + 0.3 * t.goal_alignment
                    + 0.2 * urgency_bucket(t, day) + 0.1 * (1.0 - t.complexity))

        return sorted(adjusted, key=order_score, reverse=True)

    def apply_constraints(self,
                          tasks: Sequence[Task],
                          constraints: Sequence[SchedulingConstraint],
                          day: Optional[date] = None) -> ConstraintOutcome:
        current = list(tasks)
        min_break = None
        for c in constraints:
            if not c.active:
                continue
            if c.type == ConstraintType.MAX_FOCUS_TIME:
                current = self._cap_duration(
                    current, timedelta(minutes=c.value), lambda t: t.focus_protected
                )
            elif c.type == ConstraintType.MAX_WORK_HOURS:
                current = self._cap_duration(current, timedelta(hours=c.value), lambda t: True)
            elif c.type == ConstraintType.MIN_BREAK_TIME:
                work = sum((t.estimated_duration for t in current if not t.completed), timedelta(0))
                spread = work * 0.15 / max(len(current), 1)
                min_break = max(timedelta(minutes=c.value), spread)
            elif c.type == ConstraintType.ENERGY_ALIGNMENT:
                current = [
                    t if t.preferred_energy is not None else replace(
                        t, preferred_energy=EnergyLevel.HIGH if t.complexity > 0.7 else EnergyLevel.MEDIUM
                    )
                    for t in current
                ]
            elif c.type == ConstraintType.DEADLINE_PRIORITY and day is not None:
                current = [self._deadline_bump(t, c.value, day) for t in current]
            elif c.type == ConstraintType.CATEGORY_BALANCE:
                current = self._balance_categories(current, c.value or 25.0)
        current = flag_resource_conflicts(current)
        return ConstraintOutcome(tasks=current, min_break=min_break)

    @staticmethod
    def _cap_duration(tasks: List[Task], limit: timedelta, eligible) -> List[Task]:
        """Shave durations lowest priority first (max 50% each, critical untouched)."""
        total = sum((t.estimated_duration for t in tasks if eligible(t) and not t.completed), timedelta(0))
        excess = total - limit
        if excess <= timedelta(0):
            return tasks

        by_id = {t.id: t for t in tasks}
        candidates = sorted(
            (t for t in tasks if eligible(t) and not t.completed and t.priority != Priority.CRITICAL),
            key=lambda t: int(t.priority),
        )
        for t in candidates:
            if excess <= timedelta(0):
                break
            cut = min(excess, t.estimated_duration * 0.5)
            by_id[t.id] = replace(t, estimated_duration=t.estimated_duration - cut)
            excess -= cut
        if excess > timedelta(0):
            logger.warning("duration cap exceeded by %s after reductions", excess)
        return [by_id[t.id] for t in tasks]

    @staticmethod
    def _deadline_bump(task: Task, within_days: float, day: date) -> Task:
        if task.deadline is None:
            return task
        days = days_until(task.deadline, day)
        if days > within_days:
            return task
        if task.priority == Priority.LOW:
            return replace(task, priority=Priority.MEDIUM)
        if task.priority == Priority.MEDIUM and days <= 3:
            return replace(task, priority=Priority.HIGH)
        return task

    @staticmethod
    def _balance_categories(tasks: List[Task], percent: float) -> List[Task]:
        if not tasks:
            return tasks
        counts = Counter(t.category for t in tasks)
        heavy = {cat for cat, n in counts.items() if n / len(tasks) > percent / 100.0}
        out = []
        for t in tasks:
            if t.category in heavy and t.priority in (Priority.CRITICAL, Priority.HIGH):
                t = replace(t, priority=DEMOTE[t.priority])
            out.append(t)
        return out


def flag_resource_conflicts(tasks: Sequence[Task]) -> List[Task]:
    """Among tasks sharing a resource only the highest-priority one stays unflagged."""
    holders: Dict[str, List[Task]] = defaultdict(list)
    for t in tasks:
        for r in t.required_resources:
            holders[r].append(t)

    conflicted = set()
    for resource, users in holders.items():
        if len(users) < 2:
            continue
        winner = max(users, key=lambda t: int(t.priority))
        conflicted.update(t.id for t in users if t.id != winner.id)
        logger.info("resource %s requested by %d tasks", resource, len(users))

    return [replace(t, has_resource_conflict=True) if t.id in conflicted else t for t in tasks]
