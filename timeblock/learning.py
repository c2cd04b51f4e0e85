# timeblock/learning.py
import logging
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .energy_model import EnergyModel
from .models import BlockKind, PlannerPrefs, Priority, SchedulingFeedback, Task, TimeBlock

logger = logging.getLogger(__name__)

ACCURACY_THRESHOLD = 0.8
EXTENSION_FACTOR = 0.5
PRODUCTIVE_MULTIPLIER = 1.2
TOP_HOURS = 3
SUGGESTION_TOLERANCE = 0.2
BASE_COMPLETION_PROBABILITY = 0.8

SEASONAL_MULTIPLIERS = {
    1: 0.9, 2: 1.0, 3: 1.1, 4: 1.2, 5: 1.1, 6: 1.0,
    7: 0.9, 8: 0.9, 9: 1.1, 10: 1.2, 11: 1.1, 12: 0.8,
}

FEEDBACK_COLUMNS = [
    "id", "task_id", "hour", "weekday", "rating", "accuracy",
    "planned_minutes", "actual_minutes",
]


def feedback_frame(feedback: Iterable[SchedulingFeedback]) -> pd.DataFrame:
    """Flatten feedback records into a frame; actual_minutes is NaN when unknown."""
    rows = []
    for f in feedback:
        actual = f.actual_duration
        rows.append({
            "id": f.id,
            "task_id": f.task_id,
            "hour": f.planned_start.hour,
            "weekday": (f.actual_start or f.planned_start).weekday(),
            "rating": f.rating,
            "accuracy": f.accuracy,
            "planned_minutes": f.planned_duration.total_seconds() / 60.0,
            "actual_minutes": actual.total_seconds() / 60.0 if actual is not None else float("nan"),
        })
    return pd.DataFrame(rows, columns=FEEDBACK_COLUMNS)


def rated(df: pd.DataFrame) -> pd.DataFrame:
    """Records usable for learning: rated and with actual times."""
    return df[(df["rating"] > 0) & df["actual_minutes"].notna()]


class FeedbackLog:
    """Append-only feedback history keeping only the most recent `retention` records."""

    def __init__(self, records: Optional[Iterable[SchedulingFeedback]] = None, retention: int = 100):
        if retention <= 0:
            raise ValueError("retention must be positive")
        self.retention = retention
        self._records: List[SchedulingFeedback] = []
        self.extend(records or [])

    def append(self, record: SchedulingFeedback) -> None:
        self._records.append(record)
        overflow = len(self._records) - self.retention
        if overflow > 0:
            del self._records[:overflow]

    def extend(self, records: Iterable[SchedulingFeedback]) -> None:
        for r in records:
            self.append(r)

    @property
    def records(self) -> List[SchedulingFeedback]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def learning_rate(self) -> float:
        n = len(self._records)
        if n < 10:
            return 0.2
        if n > 50:
            return 0.05
        return 0.1

    def frame(self) -> pd.DataFrame:
        return feedback_frame(self._records)


class AdaptiveLearner:
    """Adjusts placed blocks from historical feedback (durations, buffers, annotations)."""

    def __init__(self, prefs: Optional[PlannerPrefs] = None):
        self.prefs = prefs or PlannerPrefs()

    def apply_learning(self,
                       blocks: Sequence[TimeBlock],
                       tasks: Sequence[Task],
                       feedback: Sequence[SchedulingFeedback],
                       day: Optional[date] = None) -> List[TimeBlock]:
        df = rated(feedback_frame(feedback))
        if df.empty:
            return list(blocks)

        by_id = {t.id: t for t in tasks}
        hourly = df.groupby("hour")["accuracy"].agg(["mean", "count"])
        ratings = df.groupby("hour")["rating"].mean() / 5.0
        top_hours = set(hourly["mean"].sort_values(ascending=False).head(TOP_HOURS).index)
        medians = self._priority_medians(df, by_id)

        if day is not None:
            logger.debug("learning factors for %s: %s", day, self.learning_factors(tasks, feedback, day))

        out = []
        for block in blocks:
            task = by_id.get(block.task_id) if block.task_id else None
            if task is None or task.completed:
                out.append(block)
                continue

            hour = block.start.hour
            changes = {}
            if hour in hourly.index and hourly.at[hour, "count"] >= 1:
                accuracy = float(hourly.at[hour, "mean"])
                if accuracy < ACCURACY_THRESHOLD:
                    seconds = round(block.duration.total_seconds() * (1.0 - accuracy) * EXTENSION_FACTOR)
                    changes["end"] = block.end + timedelta(seconds=seconds)
                    logger.info("block %s extended by %ds (accuracy %.2f)", block.title, seconds, accuracy)

            if hour in ratings.index:
                changes["break_buffer"] = self._buffer_from_rating(block, float(ratings[hour]))

            if hour in top_hours:
                changes["productivity_multiplier"] = PRODUCTIVE_MULTIPLIER

            median = medians.get(task.priority)
            if median is not None:
                estimate = task.estimated_duration
                if estimate > timedelta(0) and abs(median / estimate - 1.0) > SUGGESTION_TOLERANCE:
                    changes["suggested_duration"] = median

            out.append(replace(block, **changes) if changes else block)
        return out

    def _buffer_from_rating(self, block: TimeBlock, productivity: float) -> timedelta:
        if block.kind == BlockKind.FOCUS:
            minutes = 15 if productivity > 0.7 else 10
        else:
            minutes = 5 if productivity > 0.5 else 3
        return timedelta(minutes=minutes)

    @staticmethod
    def _priority_medians(df: pd.DataFrame, by_id: Dict[str, Task]) -> Dict[Priority, timedelta]:
        known = df[df["task_id"].isin(list(by_id))]
        if known.empty:
            return {}
        priorities = known["task_id"].map(lambda tid: int(by_id[tid].priority))
        medians = known.groupby(priorities)["actual_minutes"].median()
        return {Priority(int(p)): timedelta(minutes=float(m)) for p, m in medians.items()}

    def learning_factors(self,
                         tasks: Sequence[Task],
                         feedback: Sequence[SchedulingFeedback],
                         day: date) -> Dict[str, float]:
        df = rated(feedback_frame(feedback))

        same_day = df[df["weekday"] == day.weekday()]
        weekday = float(same_day["accuracy"].mean()) if not same_day.empty else 1.0

        open_tasks = [t for t in tasks if not t.completed] or list(tasks)
        if open_tasks:
            mean_complexity = sum(t.complexity for t in open_tasks) / len(open_tasks)
            share_high = sum(1 for t in open_tasks if t.priority >= Priority.HIGH) / len(open_tasks)
        else:
            mean_complexity, share_high = 0.5, 0.0

        if mean_complexity < 0.3:
            complexity = 1.1
        elif mean_complexity < 0.7:
            complexity = 1.0
        elif mean_complexity < 1.0:
            complexity = 0.9
        else:
            complexity = 0.8

        return {
            "day_of_week": weekday,
            "seasonal": SEASONAL_MULTIPLIERS.get(day.month, 1.0),
            "complexity": complexity,
            "priority_weighting": 1.0 + 0.2 * share_high,
        }

    def predict_completion_probability(self,
                                       task: Task,
                                       at: datetime,
                                       energy_model: EnergyModel,
                                       feedback: Sequence[SchedulingFeedback] = ()) -> float:
        if task.completed:
            return 1.0
        probability = BASE_COMPLETION_PROBABILITY * energy_model.level(at.hour).fraction

        good = [f.accuracy for f in feedback if f.rating >= 4]
        if good:
            probability = probability * 0.7 + (sum(good) / len(good)) * 0.3

        return max(0.0, min(probability, 1.0))
