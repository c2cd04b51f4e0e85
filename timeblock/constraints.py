# timeblock/constraints.py
import logging
from dataclasses import replace
from datetime import timedelta
from typing import Dict, List, Optional, Sequence

from .models import BlockKind, ConstraintType, PlannerPrefs, SchedulingConstraint, Task, TimeBlock

logger = logging.getLogger(__name__)

# Upper bound on repeated pass sequences before giving up on a fixed point.
MAX_ROUNDS = 10


def topological_order(tasks: Sequence[Task]) -> List[Task]:
    """
    Dependencies before dependents (Kahn's algorithm, stable on input order).

    Dependencies on ids outside `tasks` are ignored. Tasks caught in a cycle
    are appended at the end in input order.
    """
    by_id = {t.id: t for t in tasks}
    pending = {t.id: {d for d in t.dependencies if d in by_id and d != t.id} for t in tasks}
    ordered: List[Task] = []
    done = set()

    progress = True
    while progress:
        progress = False
        for t in tasks:
            if t.id in done:
                continue
            if pending[t.id] <= done:
                ordered.append(t)
                done.add(t.id)
                progress = True

    if len(ordered) < len(tasks):
        cyclic = [t for t in tasks if t.id not in done]
        logger.warning("dependency cycle among tasks: %s", ", ".join(t.id for t in cyclic))
        ordered.extend(cyclic)
    return ordered


class ConstraintSolver:
    """
    Hard-constraint passes over placed blocks.

    Passes run in fixed order: dependency ordering, deadline compliance,
    focus minimum. The sequence repeats until the blocks stop changing, so
    resolving an already resolved schedule returns it unchanged. Nothing
    raises here; combinations that cannot all hold are left for the
    anomaly detector.
    """

    def __init__(self, prefs: Optional[PlannerPrefs] = None, max_rounds: int = MAX_ROUNDS):
        self.prefs = prefs or PlannerPrefs()
        self.max_rounds = max_rounds

    def resolve(self, blocks: Sequence[TimeBlock], tasks: Sequence[Task],
                constraints: Sequence[SchedulingConstraint] = ()) -> List[TimeBlock]:
        """An active minBreakTime constraint longer than the dependency gap widens it."""
        gap = self.dependency_gap(constraints)
        current = list(blocks)
        for _ in range(self.max_rounds):
            updated = self._run_passes(current, tasks, gap)
            if updated == current:
                return updated
            current = updated
        logger.warning("constraint passes did not settle after %d rounds", self.max_rounds)
        return current

    def dependency_gap(self, constraints: Sequence[SchedulingConstraint] = ()) -> timedelta:
        gap = self.prefs.dependency_gap
        for c in constraints:
            if c.active and c.type == ConstraintType.MIN_BREAK_TIME:
                gap = max(gap, timedelta(minutes=c.value))
        return gap

    def _run_passes(self, blocks: List[TimeBlock], tasks: Sequence[Task], gap: timedelta) -> List[TimeBlock]:
        blocks = self._dependency_pass(blocks, tasks, gap)
        blocks = self._deadline_pass(blocks, tasks)
        blocks = self._focus_minimum_pass(blocks, tasks)
        return blocks

    @staticmethod
    def _index(blocks: List[TimeBlock]) -> Dict[str, int]:
        return {b.task_id: i for i, b in enumerate(blocks) if b.task_id is not None}

    def _dependency_pass(self, blocks: List[TimeBlock], tasks: Sequence[Task],
                         gap: timedelta) -> List[TimeBlock]:
        blocks = list(blocks)
        index = self._index(blocks)
        for task in topological_order(tasks):
            if task.completed or task.id not in index:
                continue
            dep_ends = [blocks[index[d]].end for d in task.dependencies if d in index]
            if not dep_ends:
                continue
            earliest = max(dep_ends) + gap
            i = index[task.id]
            if blocks[i].start < earliest:
                logger.debug("task %s shifted after dependencies to %s", task.id, earliest)
                blocks[i] = blocks[i].moved_to(earliest)
        return blocks

    def _deadline_pass(self, blocks: List[TimeBlock], tasks: Sequence[Task]) -> List[TimeBlock]:
        by_id = {t.id: t for t in tasks}
        out = []
        for b in blocks:
            task = by_id.get(b.task_id) if b.task_id else None
            if task is not None and not task.completed and task.deadline is not None and b.end > task.deadline:
                b = b.moved_to(task.deadline - b.duration)
            out.append(b)
        return out

    def _focus_minimum_pass(self, blocks: List[TimeBlock], tasks: Sequence[Task]) -> List[TimeBlock]:
        completed = {t.id for t in tasks if t.completed}
        minimum = self.prefs.min_focus_duration
        out = []
        for b in blocks:
            if b.kind == BlockKind.FOCUS and b.task_id not in completed and b.duration < minimum:
                b = replace(b, end=b.start + minimum)
            out.append(b)
        return out
