# timeblock/energy_optimizer.py
import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from .energy_model import EnergyModel, energy_match
from .models import PlannerPrefs, SchedulingFeedback, Task, TimeBlock
from .placer import is_free

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.6
CONFIDENCE_THRESHOLD = 0.5
GRID_STEP = timedelta(minutes=15)

# best_start weights
ENERGY_WEIGHT = 0.3
PREFERRED_BONUS = 0.2
PRIORITY_WEIGHT = 0.4
DEADLINE_WEIGHT = 0.2
HISTORY_WEIGHT = 0.1


class EnergyOptimizer:
    """Moves poorly matched, non-protected task blocks to nearby hours with better energy."""

    def __init__(self, prefs: Optional[PlannerPrefs] = None, energy_model: Optional[EnergyModel] = None):
        self.prefs = prefs or PlannerPrefs()
        self.energy_model = energy_model or EnergyModel()

    def align(self,
              blocks: Sequence[TimeBlock],
              tasks: Sequence[Task],
              energy_model: Optional[EnergyModel],
              window_start: datetime,
              window_end: datetime) -> List[TimeBlock]:
        model = energy_model or self.energy_model
        by_id = {t.id: t for t in tasks}
        result = sorted(blocks, key=lambda b: b.start)

        for i, block in enumerate(list(result)):
            task = by_id.get(block.task_id) if block.task_id else None
            if task is None or task.completed or block.protected:
                continue

            required = task.preferred_energy or block.energy_level
            pattern = model.pattern(block.start.hour)
            current = energy_match(required, pattern, task.focus_protected)
            if current >= MATCH_THRESHOLD or pattern.confidence <= CONFIDENCE_THRESHOLD:
                continue

            target = self._best_candidate(block, task, required, current, result, model, window_start, window_end)
            if target is not None:
                logger.info("block %s moved %s -> %s for energy", block.title, block.start, target)
                result[i] = block.moved_to(target)

        return sorted(result, key=lambda b: b.start)

    def _best_candidate(self, block, task, required, current_match, blocks, model, window_start, window_end):
        earliest = self._dependency_gate(task, blocks)
        base = block.start.replace(minute=0, second=0, microsecond=0)
        radius = self.prefs.energy_search_radius

        best, best_match = None, current_match
        offsets = sorted((o for o in range(-radius, radius + 1) if o != 0), key=abs)
        for offset in offsets:
            start = base + timedelta(hours=offset)
            end = start + block.duration
            if start < window_start or end > window_end:
                continue
            if task.deadline is not None and end > task.deadline:
                continue
            if earliest is not None and start < earliest:
                continue
            candidate = model.pattern(start.hour)
            if candidate.confidence <= CONFIDENCE_THRESHOLD:
                continue
            if not is_free(start, end, blocks, ignore_id=block.id):
                continue
            match = energy_match(required, candidate, task.focus_protected)
            if match > best_match:
                best, best_match = start, match
        return best

    def _dependency_gate(self, task: Task, blocks: Sequence[TimeBlock]) -> Optional[datetime]:
        ends = [b.end for b in blocks if b.task_id in task.dependencies]
        if not ends:
            return None
        return max(ends) + self.prefs.dependency_gap

    def best_start(self,
                   task: Task,
                   day: date,
                   blocks: Sequence[TimeBlock] = (),
                   feedback: Sequence[SchedulingFeedback] = (),
                   energy_model: Optional[EnergyModel] = None) -> Tuple[datetime, float]:
        """
        Best start for a task on `day`, scanning the working window in 15-minute steps.

        Returns (start, score). With no free slot the window start is returned
        with a score of 0.
        """
        model = energy_model or self.energy_model
        window_start, window_end = self.prefs.window(day)

        good_by_hour: Dict[int, List[float]] = {}
        for f in feedback:
            if f.rating >= 4:
                good_by_hour.setdefault(f.planned_start.hour, []).append(f.accuracy)

        best, best_score = window_start, 0.0
        candidate = window_start
        while candidate < window_end:
            end = candidate + task.estimated_duration
            if is_free(candidate, end, blocks):
                score = self._slot_score(task, candidate, model, good_by_hour)
                if score > best_score:
                    best, best_score = candidate, score
            candidate += GRID_STEP
        return best, best_score

    @staticmethod
    def _slot_score(task: Task, at: datetime, model: EnergyModel, good_by_hour: Dict[int, List[float]]) -> float:
        pattern = model.pattern(at.hour)
        score = pattern.energy_level.fraction * pattern.confidence * ENERGY_WEIGHT
        if task.preferred_energy is not None and task.preferred_energy == pattern.energy_level:
            score += PREFERRED_BONUS

        score += int(task.priority) / 4.0 * PRIORITY_WEIGHT

        if task.deadline is not None:
            remaining = (task.deadline - at).total_seconds()
            urgency = 1.0 if remaining <= 0 else min(1.0, 7 * 86400 / remaining)
            score += urgency * DEADLINE_WEIGHT

        history = good_by_hour.get(at.hour)
        if history:
            score += sum(history) / len(history) * HISTORY_WEIGHT
        return score
