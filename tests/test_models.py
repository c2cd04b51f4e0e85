from datetime import timedelta

from conftest import at, make_block, make_task
from timeblock.models import (
    DEMOTE,
    PROMOTE,
    BlockKind,
    DailyPlan,
    EnergyLevel,
    EnergyPattern,
    FixedEvent,
    Goal,
    Priority,
    SchedulingFeedback,
)


def test_priority_tables_are_monotonic_and_capped():
    for p in Priority:
        assert PROMOTE[p] >= p
        assert DEMOTE[p] <= p
    assert PROMOTE[Priority.CRITICAL] == Priority.CRITICAL
    assert DEMOTE[Priority.LOW] == Priority.LOW
    assert PROMOTE[Priority.LOW] == Priority.MEDIUM


def test_energy_fraction():
    assert EnergyLevel.LOW.fraction == 0.25
    assert EnergyLevel.PEAK.fraction == 1.0


def test_task_complexity_is_clamped():
    assert make_task("a", complexity=1.7).complexity == 1.0
    assert make_task("b", complexity=-0.2).complexity == 0.0


def test_fixed_event_becomes_protected_meeting(day):
    block = FixedEvent(id="m1", label="Sync", start=at(10), end=at(11)).to_block()
    assert block.kind == BlockKind.MEETING
    assert block.protected
    assert block.is_fixed
    assert block.id == "m1"


def test_pattern_confidence_caps_at_one():
    assert EnergyPattern(hour=9, sample_size=25).confidence == 0.5
    assert EnergyPattern(hour=9, sample_size=500).confidence == 1.0


def test_feedback_accuracy():
    fb = SchedulingFeedback(
        task_id="a", planned_start=at(9), planned_end=at(10),
        actual_start=at(9), actual_end=at(10, 30),
    )
    assert abs(fb.accuracy - 60 / 90) < 1e-9

    unknown = SchedulingFeedback(task_id="a", planned_start=at(9), planned_end=at(10))
    assert unknown.accuracy == 0.0


def test_goal_progress():
    assert Goal(id="g", title="x", target_value=4, current_value=1).progress == 0.25
    assert Goal(id="g", title="x", target_value=4, current_value=9).progress == 1.0
    assert Goal(id="g", title="x", target_value=0).progress == 0.0


def test_plan_totals_and_adherence(day):
    plan = DailyPlan(
        date=day,
        blocks=[
            make_block("a", at(8), 60, kind=BlockKind.FOCUS),
            make_block(None, at(9), 10, kind=BlockKind.BREAK),
            make_block("b", at(10), 60),
        ],
        tasks=[make_task("a", completed=True), make_task("b")],
    )
    assert plan.total_focus == timedelta(hours=1)
    assert plan.total_break == timedelta(minutes=10)
    assert plan.total_scheduled == timedelta(minutes=130)
    assert plan.completion_rate == 0.5

    plan.update_adherence([make_block("a", at(8), 30)])
    assert plan.adherence_score == 0.25

    plan.update_adherence([make_block("a", at(8), 240)])
    assert plan.adherence_score == 1.0
