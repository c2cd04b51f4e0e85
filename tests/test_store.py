import os
import threading
from datetime import timedelta

import pytest

from conftest import DAY, at, make_block, make_task
from timeblock.anomalies import Anomaly, AnomalyKind
from timeblock.errors import CollaboratorUnavailable, PlanWarning
from timeblock.models import (
    BlockKind,
    ConstraintType,
    DailyPlan,
    EnergyLevel,
    EnergyPattern,
    Goal,
    GoalCategory,
    Priority,
    SchedulingConstraint,
    SchedulingFeedback,
    TaskCategory,
)
from timeblock.store import JsonFileStore


def test_empty_store_loads_defaults(store):
    assert store.load_tasks() == []
    assert store.load_goals() == []
    assert store.load_constraints() == []
    assert store.load_energy_patterns() == []
    assert store.load_feedback() == []
    assert store.load_plan(DAY) is None


def test_collections_persist(store):
    tasks = [make_task(
        "a", 45, Priority.HIGH, deadline=at(17), dependencies={"b"}, preferred_energy=EnergyLevel.PEAK,
        focus_protected=True, category=TaskCategory.LEARNING, goal_id="g", required_resources={"lab"},
    ), make_task("b")]
    goals = [Goal(id="g", title="Learn Rust", category=GoalCategory.LEARNING, deadline=at(20))]
    constraints = [SchedulingConstraint(ConstraintType.MAX_FOCUS_TIME, 240)]
    patterns = [EnergyPattern(hour=9, energy_level=EnergyLevel.PEAK, sample_size=12, last_updated=at(9))]

    store.save_tasks(tasks)
    store.save_goals(goals)
    store.save_constraints(constraints)
    store.save_energy_patterns(patterns)

    assert store.load_tasks() == tasks
    assert store.load_goals() == goals
    assert store.load_constraints() == constraints
    assert store.load_energy_patterns() == patterns


def test_plan_saved_by_date_and_replaced(store):
    plan = DailyPlan(
        date=DAY,
        blocks=[make_block("a", at(9), kind=BlockKind.FOCUS, protected=True,
                           suggested_duration=timedelta(minutes=50))],
        tasks=[make_task("a")],
        productivity_score=0.4,
        warnings=[PlanWarning("InputInvalid", "bad task", "x")],
        anomalies=[Anomaly(AnomalyKind.INFEASIBLE, "blk", "a", "late")],
        created_at=at(7),
    )
    store.save_plan(plan)
    assert store.load_plan(DAY) == plan

    store.save_plan(DailyPlan(date=DAY, id=plan.id, productivity_score=0.9))
    reloaded = store.load_plan(DAY)
    assert reloaded.productivity_score == 0.9
    assert reloaded.blocks == []


def test_plan_retention(tmp_path):
    store = JsonFileStore(str(tmp_path), plan_retention_days=30)
    old = DailyPlan(date=DAY - timedelta(days=31))
    recent = DailyPlan(date=DAY - timedelta(days=10))
    store.save_plan(old)
    store.save_plan(recent)
    store.save_plan(DailyPlan(date=DAY))
    assert store.load_plan(old.date) is None
    assert store.load_plan(recent.date) is not None


def test_feedback_csv_appends_and_trims(tmp_path):
    store = JsonFileStore(str(tmp_path), feedback_retention=3)
    records = [
        SchedulingFeedback(
            task_id=f"t{i}", planned_start=at(9), planned_end=at(10),
            actual_start=at(9), actual_end=at(10, 15), rating=4, comment="fine\nthanks",
        )
        for i in range(5)
    ]
    for r in records:
        store.append_feedback(r)
    loaded = store.load_feedback()
    assert [f.task_id for f in loaded] == ["t2", "t3", "t4"]
    assert loaded[0].comment == "fine thanks"
    assert loaded[0].accuracy == records[2].accuracy
    assert os.path.isfile(tmp_path / "feedback_log.csv")


def test_feedback_without_actuals(store):
    store.append_feedback(SchedulingFeedback(task_id="x", planned_start=at(9), planned_end=at(10)))
    (loaded,) = store.load_feedback()
    assert loaded.actual_start is None
    assert loaded.rating == 0


def test_corrupt_file_raises_collaborator_unavailable(tmp_path):
    store = JsonFileStore(str(tmp_path))
    (tmp_path / "tasks.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(CollaboratorUnavailable):
        store.load_tasks()


def test_concurrent_saves_for_different_days(tmp_path):
    store = JsonFileStore(str(tmp_path))
    days = [DAY + timedelta(days=n) for n in range(6)]
    errors = []

    def save(day):
        try:
            for _ in range(5):
                store.save_plan(DailyPlan(date=day, blocks=[make_block("a", at(9, day=day))]))
                store.append_feedback(
                    SchedulingFeedback(task_id=str(day), planned_start=at(9), planned_end=at(10))
                )
        except CollaboratorUnavailable as err:
            errors.append(err)

    threads = [threading.Thread(target=save, args=(d,)) for d in days]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert all(store.load_plan(d) is not None for d in days)
    assert len(store.load_feedback()) == 30
    assert not [name for name in os.listdir(tmp_path) if name.endswith(".tmp")]


def test_unreadable_rows_raise_collaborator_unavailable(tmp_path):
    store = JsonFileStore(str(tmp_path))
    (tmp_path / "goals.json").write_text('[{"title": "no id"}]', encoding="utf-8")
    with pytest.raises(CollaboratorUnavailable):
        store.load_goals()
