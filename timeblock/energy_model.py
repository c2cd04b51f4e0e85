# timeblock/energy_model.py
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from .models import EnergyLevel, EnergyPattern, FocusSession

logger = logging.getLogger(__name__)

EMA_ALPHA = 0.1
# Sessions needed before the observed completion rate overrides the seeded level.
LEVEL_MIN_SAMPLES = 10

DEFAULT_LEVELS = {
    7: EnergyLevel.MEDIUM,
    8: EnergyLevel.HIGH,
    9: EnergyLevel.PEAK,
    10: EnergyLevel.PEAK,
    11: EnergyLevel.HIGH,
    14: EnergyLevel.MEDIUM,
    15: EnergyLevel.MEDIUM,
    16: EnergyLevel.LOW,
}


def level_from_rate(rate: float) -> EnergyLevel:
    if rate < 0.35:
        return EnergyLevel.LOW
    if rate < 0.6:
        return EnergyLevel.MEDIUM
    if rate < 0.8:
        return EnergyLevel.HIGH
    return EnergyLevel.PEAK


def energy_match(required: EnergyLevel, pattern: EnergyPattern, focus_protected: bool = False) -> float:
    """
    How well an hour's energy fits a task (0..1).

    Exact level match scores 1.0, otherwise it falls off by a quarter per
    level of difference. Focus work is further scaled by how often focus
    sessions at that hour succeed.
    """
    if required == pattern.energy_level:
        match = 1.0
    else:
        diff = abs(int(required) - int(pattern.energy_level))
        match = max(0.0, 1.0 - diff / 4.0)
    if focus_protected:
        match *= pattern.focus_success_rate
    return match


@dataclass
class SchedulePattern:
    kind: str                 # "morning_peak" | "afternoon_slump"
    hours: Tuple[int, int]    # inclusive
    confidence: float


class EnergyModel:
    """Per-hour energy estimates; pure data + lookup."""

    def __init__(self, patterns: Optional[Iterable[EnergyPattern]] = None):
        self._patterns: Dict[int, EnergyPattern] = {}
        if patterns is None:
            self._seed_defaults()
        else:
            for p in patterns:
                self._patterns[p.hour] = replace(p)
            # missing hours fall back to neutral defaults
            for hour in range(24):
                self._patterns.setdefault(hour, EnergyPattern(hour=hour))

    def _seed_defaults(self) -> None:
        for hour in range(24):
            self._patterns[hour] = EnergyPattern(
                hour=hour, energy_level=DEFAULT_LEVELS.get(hour, EnergyLevel.MEDIUM)
            )

    def pattern(self, hour: int) -> EnergyPattern:
        return self._patterns[hour % 24]

    def level(self, hour: int) -> EnergyLevel:
        return self.pattern(hour).energy_level

    def patterns(self) -> List[EnergyPattern]:
        """Snapshot of all 24 patterns, ordered by hour."""
        return [replace(self._patterns[h]) for h in range(24)]

    def copy(self) -> "EnergyModel":
        return EnergyModel(self.patterns())

    def update_with_sessions(self, sessions: Iterable[FocusSession], now: Optional[datetime] = None) -> None:
        count = 0
        for session in sessions:
            p = self._patterns[session.start.hour]
            outcome = 1.0 if session.completed else 0.0
            p.sample_size += 1
            p.task_completion_rate = EMA_ALPHA * outcome + (1 - EMA_ALPHA) * p.task_completion_rate
            p.focus_success_rate = EMA_ALPHA * outcome + (1 - EMA_ALPHA) * p.focus_success_rate
            if p.sample_size >= LEVEL_MIN_SAMPLES:
                p.energy_level = level_from_rate(p.task_completion_rate)
            p.last_updated = now or session.end
            count += 1
        logger.info("energy patterns updated with %d sessions", count)

    def decay(self, factor: float = 0.9) -> None:
        """Age observations: confidence shrinks, nothing is deleted."""
        if not 0.0 <= factor <= 1.0:
            raise ValueError("decay factor must be within [0, 1]")
        for p in self._patterns.values():
            p.sample_size = int(p.sample_size * factor)

    def to_frame(self) -> pd.DataFrame:
        """One row per hour: hour, level, energy (0..1), confidence, rates."""
        df = pd.DataFrame([{
            "hour": p.hour,
            "level": p.energy_level.name.lower(),
            "energy": p.energy_level.fraction,
            "confidence": p.confidence,
            "completion_rate": p.task_completion_rate,
            "focus_success_rate": p.focus_success_rate,
        } for p in self.patterns()])
        return df

    def peak_hours(self, n: int = 3, start_hour: int = 0, end_hour: int = 24) -> List[int]:
        df = self.to_frame()
        df = df[(df["hour"] >= start_hour) & (df["hour"] < end_hour)]
        df = df.sort_values(["energy", "completion_rate", "hour"], ascending=[False, False, True])
        return [int(h) for h in df["hour"].head(n)]

    def most_productive_hour(self, default: int = 9) -> int:
        """Hour with the highest observed completion rate."""
        df = self.to_frame()
        observed = df[[p.sample_size > 0 for p in self.patterns()]]
        if observed.empty:
            return default
        return int(observed.loc[observed["completion_rate"].idxmax(), "hour"])

    def detect_patterns(self) -> List[SchedulePattern]:
        """Recognise a morning peak (8-11) and an afternoon slump (14-16)."""
        df = self.to_frame()
        found = []

        morning = df[(df["hour"] >= 8) & (df["hour"] <= 11)]["energy"].to_numpy()
        if len(morning) >= 3:
            avg = float(np.mean(morning))
            if avg > 0.6:
                found.append(SchedulePattern("morning_peak", (8, 11), avg))

        afternoon = df[(df["hour"] >= 14) & (df["hour"] <= 16)]["energy"].to_numpy()
        if len(afternoon) >= 2:
            avg = float(np.mean(afternoon))
            if avg < 0.4:
                found.append(SchedulePattern("afternoon_slump", (14, 16), 1.0 - avg))

        return found
