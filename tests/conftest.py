from datetime import date, datetime, timedelta
from pathlib import Path

import pytest

from timeblock.energy_model import EnergyModel
from timeblock.models import PlannerPrefs, Priority, Task, TimeBlock, BlockKind
from timeblock.planner import PlannerEngine
from timeblock.store import JsonFileStore

DAY = date(2025, 11, 3)  # a Monday


def at(hour: int, minute: int = 0, day: date = DAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute)


def make_task(task_id: str, minutes: int = 60, priority: Priority = Priority.MEDIUM, **kwargs) -> Task:
    return Task(
        id=task_id,
        title=kwargs.pop("title", task_id),
        estimated_duration=timedelta(minutes=minutes),
        priority=priority,
        **kwargs,
    )


def make_block(task_id, start: datetime, minutes: int = 60, **kwargs) -> TimeBlock:
    return TimeBlock(
        start=start,
        end=start + timedelta(minutes=minutes),
        task_id=task_id,
        kind=kwargs.pop("kind", BlockKind.TASK),
        title=kwargs.pop("title", task_id or "block"),
        **kwargs,
    )


@pytest.fixture()
def day() -> date:
    return DAY


@pytest.fixture()
def prefs() -> PlannerPrefs:
    return PlannerPrefs()


@pytest.fixture()
def energy_model() -> EnergyModel:
    return EnergyModel()


@pytest.fixture()
def engine(prefs, energy_model) -> PlannerEngine:
    return PlannerEngine(prefs, energy_model)


@pytest.fixture()
def store(tmp_path: Path) -> JsonFileStore:
    return JsonFileStore(str(tmp_path / "data"))
