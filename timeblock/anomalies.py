# timeblock/anomalies.py
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .energy_model import EnergyModel
from .models import EnergyLevel, PlannerPrefs, Task, TimeBlock
from .placer import is_free

logger = logging.getLogger(__name__)

OVERESTIMATE_RATIO = 1.5
UNDERESTIMATE_RATIO = 0.7

Window = Tuple[datetime, datetime]


class AnomalyKind(str, Enum):
    OVERESTIMATION = "overestimation"
    UNDERESTIMATION = "underestimation"
    ENERGY_MISMATCH = "energy_mismatch"
    DEPENDENCY_CONFLICT = "dependency_conflict"
    INFEASIBLE = "infeasible"


@dataclass
class Anomaly:
    kind: AnomalyKind
    block_id: str
    task_id: Optional[str]
    message: str
    suggested_start: Optional[datetime] = None
    suggested_duration: Optional[timedelta] = None


class AnomalyDetector:
    """Read-only checks over a placed schedule, plus a bounded repair loop."""

    def __init__(self, prefs: Optional[PlannerPrefs] = None):
        self.prefs = prefs or PlannerPrefs()

    def expected_duration(self, task: Task) -> timedelta:
        if task.focus_protected:
            return max(task.estimated_duration, self.prefs.min_focus_duration)
        return task.estimated_duration

    def detect(self,
               blocks: Sequence[TimeBlock],
               tasks: Sequence[Task],
               energy_model: EnergyModel,
               window: Optional[Window] = None) -> List[Anomaly]:
        by_id = {t.id: t for t in tasks}
        ends = {b.task_id: b.end for b in blocks if b.task_id is not None}
        found: List[Anomaly] = []

        for block in sorted(blocks, key=lambda b: b.start):
            task = by_id.get(block.task_id) if block.task_id else None
            if task is None or task.completed:
                continue

            expected = self.expected_duration(task)
            if expected > timedelta(0):
                ratio = block.duration / expected
                if ratio > OVERESTIMATE_RATIO:
                    found.append(Anomaly(
                        AnomalyKind.OVERESTIMATION, block.id, task.id,
                        f"{task.title}: block is {ratio:.2f}x the estimate",
                        suggested_duration=expected * 1.2,
                    ))
                elif ratio < UNDERESTIMATE_RATIO:
                    found.append(Anomaly(
                        AnomalyKind.UNDERESTIMATION, block.id, task.id,
                        f"{task.title}: block is {ratio:.2f}x the estimate",
                        suggested_duration=expected * 1.3,
                    ))

            if task.preferred_energy is not None and task.preferred_energy >= EnergyLevel.HIGH \
                    and energy_model.level(block.start.hour) == EnergyLevel.LOW:
                found.append(Anomaly(
                    AnomalyKind.ENERGY_MISMATCH, block.id, task.id,
                    f"{task.title}: needs {task.preferred_energy.name.lower()} energy at a low-energy hour",
                    suggested_start=self._first_high_energy_hour(block, energy_model, window),
                ))

            dep_ends = [ends[d] for d in task.dependencies if d in ends]
            earliest = max(dep_ends) + self.prefs.dependency_gap if dep_ends else None
            if earliest is not None and block.start < earliest:
                found.append(Anomaly(
                    AnomalyKind.DEPENDENCY_CONFLICT, block.id, task.id,
                    f"{task.title}: starts less than {self.prefs.dependency_gap} after its dependencies",
                    suggested_start=earliest,
                ))

            if task.deadline is not None and block.end > task.deadline:
                found.append(Anomaly(
                    AnomalyKind.INFEASIBLE, block.id, task.id,
                    f"{task.title}: ends {block.end} after deadline {task.deadline}",
                ))
            elif window is not None and block.start < window[0]:
                found.append(Anomaly(
                    AnomalyKind.INFEASIBLE, block.id, task.id,
                    f"{task.title}: starts {block.start} before the working window opens at {window[0]}",
                ))

        return found

    def _first_high_energy_hour(self, block: TimeBlock, model: EnergyModel,
                                window: Optional[Window]) -> Optional[datetime]:
        start, end = window if window is not None else self.prefs.window(block.start.date())
        candidate = start.replace(minute=0, second=0, microsecond=0)
        while candidate < end:
            if model.level(candidate.hour) >= EnergyLevel.HIGH:
                return candidate
            candidate += timedelta(hours=1)
        return None

    def repair(self,
               blocks: Sequence[TimeBlock],
               tasks: Sequence[Task],
               energy_model: EnergyModel,
               window: Optional[Window] = None,
               passes: Optional[int] = None) -> Tuple[List[TimeBlock], List[Anomaly]]:
        """
        Apply one correction per anomaly per pass, then re-detect.

        Stops when no repairable anomaly is left, when a pass changes nothing,
        or after `passes` rounds. Returns the blocks and what is still wrong.
        """
        passes = self.prefs.repair_passes if passes is None else passes
        if passes < 0:
            raise ValueError("repair passes must be >= 0")

        current = list(blocks)
        by_id = {t.id: t for t in tasks}
        for n in range(passes):
            anomalies = self.detect(current, tasks, energy_model, window)
            if not any(a.kind in REPAIR_HANDLERS for a in anomalies):
                return current, anomalies

            changed = False
            for anomaly in anomalies:
                handler = REPAIR_HANDLERS.get(anomaly.kind)
                if handler is None:
                    continue
                i = next((k for k, b in enumerate(current) if b.id == anomaly.block_id), None)
                if i is None:
                    continue
                fixed = handler(current[i], anomaly, current, by_id.get(anomaly.task_id), window)
                if fixed is not None and fixed != current[i]:
                    logger.debug("repaired %s on block %s", anomaly.kind.value, current[i].title)
                    current[i] = fixed
                    changed = True
            if not changed:
                break
            logger.debug("repair pass %d applied", n + 1)

        return current, self.detect(current, tasks, energy_model, window)


def _fits(block: TimeBlock, start: datetime, end: datetime, blocks: Sequence[TimeBlock],
          task: Optional[Task], window: Optional[Window]) -> bool:
    if window is not None and (start < window[0] or end > window[1]):
        return False
    if task is not None and task.deadline is not None and end > task.deadline:
        return False
    return is_free(start, end, blocks, ignore_id=block.id)


def _shrink(block, anomaly, blocks, task, window):
    return replace(block, end=block.start + anomaly.suggested_duration)


def _grow(block, anomaly, blocks, task, window):
    end = block.start + anomaly.suggested_duration
    if not is_free(block.start, end, blocks, ignore_id=block.id):
        return None
    return replace(block, end=end)


def _relocate_for_energy(block, anomaly, blocks, task, window):
    if block.protected or anomaly.suggested_start is None:
        return None
    start = anomaly.suggested_start
    end = start + block.duration
    if not _fits(block, start, end, blocks, task, window):
        return None
    return block.moved_to(start)


def _after_dependencies(block, anomaly, blocks, task, window):
    if block.protected or anomaly.suggested_start is None:
        return None
    return block.moved_to(anomaly.suggested_start)


RepairHandler = Callable[[TimeBlock, Anomaly, Sequence[TimeBlock], Optional[Task], Optional[Window]],
                         Optional[TimeBlock]]

# Infeasible blocks have no handler: they are reported, never auto-repaired.
REPAIR_HANDLERS: Dict[AnomalyKind, RepairHandler] = {
    AnomalyKind.OVERESTIMATION: _shrink,
    AnomalyKind.UNDERESTIMATION: _grow,
    AnomalyKind.ENERGY_MISMATCH: _relocate_for_energy,
    AnomalyKind.DEPENDENCY_CONFLICT: _after_dependencies,
}
