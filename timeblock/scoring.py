# timeblock/scoring.py
import logging
from datetime import timedelta
from typing import Optional

import numpy as np

from .energy_model import EnergyModel, energy_match
from .models import DailyPlan

logger = logging.getLogger(__name__)

FOCUS_TARGET_HOURS = 6.0
IDEAL_BREAK_RATIO = 0.175


class PlanScorer:
    """
    Productivity score in [0, 1] for a daily plan.

    0.3 focus time (vs. a 6 h target), 0.2 completion rate, 0.2 energy
    alignment over task blocks, 0.2 mean priority, 0.1 break balance.
    """

    def __init__(self, energy_model: Optional[EnergyModel] = None):
        self.energy_model = energy_model or EnergyModel()

    def score(self, plan: DailyPlan, energy_model: Optional[EnergyModel] = None) -> float:
        if not plan.blocks:
            return 0.0
        model = energy_model or self.energy_model
        by_id = {t.id: t for t in plan.tasks}

        focus_hours = plan.total_focus.total_seconds() / 3600.0
        focus_score = min(focus_hours / FOCUS_TARGET_HOURS, 1.0)

        matches = []
        priorities = []
        for b in plan.blocks:
            task = by_id.get(b.task_id) if b.task_id else None
            if task is None:
                continue
            required = task.preferred_energy or b.energy_level
            matches.append(energy_match(required, model.pattern(b.start.hour)))
            priorities.append(int(task.priority) / 4.0)
        alignment = float(np.mean(matches)) if matches else 0.0
        priority_score = float(np.mean(priorities)) if priorities else 0.0

        work = sum((b.duration for b in plan.blocks if b.kind.is_productive), timedelta(0))
        breaks = plan.total_break
        if work > timedelta(0):
            ratio = breaks / work
            balance = max(0.0, 1.0 - 5.0 * abs(ratio - IDEAL_BREAK_RATIO))
        else:
            balance = 0.0

        raw = (0.3 * focus_score + 0.2 * plan.completion_rate + 0.2 * alignment
               + 0.2 * priority_score + 0.1 * balance)
        return float(np.clip(raw, 0.0, 1.0))
