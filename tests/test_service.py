import threading
from datetime import timedelta

import pytest
from prometheus_client import REGISTRY

from conftest import at, make_task
from timeblock.collaborators import LoggingFocusLock, LoggingNotifier, StaticCalendarSource
from timeblock.errors import CollaboratorUnavailable, InputInvalid
from timeblock.models import BlockKind, FixedEvent, Priority
from timeblock.service import PlannerService


class BrokenCalendar:
    def fixed_blocks(self, day):
        raise CollaboratorUnavailable("calendar access denied")


@pytest.fixture()
def notifier():
    return LoggingNotifier()


@pytest.fixture()
def focus_lock():
    return LoggingFocusLock()


@pytest.fixture()
def service(store, prefs, notifier, focus_lock):
    calendar = StaticCalendarSource([FixedEvent("sync", "Sync", at(12), at(12, 30))])
    store.save_tasks([
        make_task("a", priority=Priority.CRITICAL),
        make_task("f", 45, Priority.HIGH, focus_protected=True),
        make_task("later", priority=Priority.LOW),
    ])
    return PlannerService(store, calendar=calendar, notifier=notifier, focus_lock=focus_lock,
                          prefs=prefs, clock=lambda: at(7, 30))


def feedback_count(rating: int) -> float:
    return REGISTRY.get_sample_value("timeblock_feedback_total", {"rating": str(rating)}) or 0.0


def test_plan_day_persists_and_publishes(service, store, notifier, focus_lock, day):
    plan = service.plan_day(day)
    assert store.load_plan(day) == plan
    assert service.current_plan(day) == plan
    assert any(b.is_fixed and b.title == "Sync" for b in plan.blocks)
    assert plan.created_at == at(7, 30)

    focus = [b for b in plan.blocks if b.kind == BlockKind.FOCUS]
    assert len(focus) == 1
    assert notifier.sent == [("f", focus[0].start - timedelta(minutes=5))]
    assert focus_lock.windows == [(focus[0].start, focus[0].end)]


def test_plan_day_relevant_only(service, day):
    plan = service.plan_day(day, relevant_only=True)
    assert {t.id for t in plan.tasks} == {"a", "f"}


def test_calendar_failure_degrades(store, prefs, day):
    store.save_tasks([make_task("a")])
    service = PlannerService(store, calendar=BrokenCalendar(), prefs=prefs, clock=lambda: at(7))
    plan = service.plan_day(day)
    assert plan.block_for("a") is not None
    assert plan.warnings[0].code == "CollaboratorUnavailable"


def test_complete_task_records_feedback_and_energy(service, store, day):
    service.plan_day(day)
    before = feedback_count(4)
    plan = service.complete_task(day, "a", at(8), at(8, 45), rating=4, comment="ok")

    assert plan.task("a").completed
    assert plan.adherence_score == pytest.approx(45 / (60 + 45 + 60))
    assert plan.updated_at == at(7, 30)
    (fb,) = store.load_feedback()
    assert (fb.task_id, fb.planned_start, fb.actual_end, fb.rating) == ("a", at(8), at(8, 45), 4)
    assert store.load_energy_patterns()[8].sample_size == 1
    assert next(t for t in store.load_tasks() if t.id == "a").completed
    assert feedback_count(4) == before + 1


def test_complete_task_validation(service, day):
    with pytest.raises(InputInvalid):
        service.complete_task(day, "a", at(9), at(8), rating=3)
    service.plan_day(day)
    with pytest.raises(InputInvalid):
        service.complete_task(day, "a", at(8), at(9), rating=7)
    with pytest.raises(InputInvalid):
        service.complete_task(day, "ghost", at(8), at(9), rating=3)


def test_overtime_and_priority_change_persist(service, store, day):
    plan = service.plan_day(day)
    later_start = plan.block_for("later").start

    result = service.overtime(day, "a", timedelta(minutes=20))
    assert store.load_plan(day).block_for("later").start == later_start + timedelta(minutes=20)
    assert result.plan == store.load_plan(day)

    result = service.priority_change(day, "later", Priority.MEDIUM)
    assert result.strategy == "record"
    assert store.load_plan(day).task("later").priority == Priority.MEDIUM
    assert next(t for t in store.load_tasks() if t.id == "later").priority == Priority.MEDIUM


def test_mutations_need_a_stored_plan(service, day):
    with pytest.raises(InputInvalid):
        service.overtime(day, "a", timedelta(minutes=5))


def test_concurrent_plans_for_same_day(service, day):
    errors = []

    def run():
        try:
            service.plan_day(day)
        except Exception as err:  # noqa: BLE001
            errors.append(err)

    threads = [threading.Thread(target=run) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    assert service.current_plan(day) is not None
    assert service._lock_for(day) is service._lock_for(day)


def test_unreadable_store_inputs_degrade(service, store, day):
    base = store.base_dir
    with open(f"{base}/goals.json", "w", encoding="utf-8") as f:
        f.write("{not json")
    with open(f"{base}/feedback_log.csv", "w", encoding="utf-8") as f:
        f.write("task_id,planned_start\nx,not-a-date\n")

    plan = service.plan_day(day)
    assert plan.block_for("a") is not None
    unavailable = [w.message for w in plan.warnings if w.code == "CollaboratorUnavailable"]
    assert len(unavailable) == 2
    assert any("goals.json" in m for m in unavailable)
    assert any("feedback_log.csv" in m for m in unavailable)
    assert store.load_plan(day) == plan


def test_replan_with_unreadable_constraints_degrades(service, store, day):
    service.plan_day(day)
    with open(f"{store.base_dir}/constraints.json", "w", encoding="utf-8") as f:
        f.write("[")
    result = service.priority_change(day, "later", Priority.CRITICAL)
    assert result.replanned
    assert [w.code for w in result.plan.warnings].count("CollaboratorUnavailable") == 1


def test_different_days_plan_concurrently(service, store, day):
    days = [day + timedelta(days=n) for n in range(6)]
    service.plan_day(day)
    errors = []

    def run(d):
        try:
            for _ in range(3):
                service.plan_day(d)
        except Exception as err:  # noqa: BLE001
            errors.append(err)

    def complete():
        try:
            service.complete_task(day, "a", at(8), at(8, 50), rating=5)
        except Exception as err:  # noqa: BLE001
            errors.append(err)

    threads = [threading.Thread(target=run, args=(d,)) for d in days[1:]]
    threads.append(threading.Thread(target=complete))
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert all(service.current_plan(d) is not None for d in days)
    assert all(w.code != "CollaboratorUnavailable" for d in days for w in service.current_plan(d).warnings)
    assert service.current_plan(day).task("a").completed
