from conftest import at, make_block, make_task
from timeblock.models import BlockKind, DailyPlan, EnergyLevel, FixedEvent, Priority
from timeblock.scoring import PlanScorer


def test_empty_plan_scores_zero(day):
    assert PlanScorer().score(DailyPlan(date=day)) == 0.0


def test_ideal_plan_scores_one(day):
    plan = DailyPlan(
        date=day,
        blocks=[
            make_block("f", at(9), 360, kind=BlockKind.FOCUS, protected=True),
            make_block(None, at(15), 63, kind=BlockKind.BREAK),
        ],
        tasks=[make_task("f", 360, Priority.CRITICAL, preferred_energy=EnergyLevel.PEAK,
                         focus_protected=True, completed=True)],
    )
    assert PlanScorer().score(plan) == 1.0


def test_meetings_only_plan(day):
    plan = DailyPlan(date=day, blocks=[FixedEvent("m", "Sync", at(10), at(11)).to_block()])
    assert PlanScorer().score(plan) == 0.0


def test_partial_plan_components(day):
    plan = DailyPlan(
        date=day,
        blocks=[make_block("a", at(16), 60)],
        tasks=[make_task("a", priority=Priority.MEDIUM, preferred_energy=EnergyLevel.PEAK)],
    )
    # energy: peak task at a low hour -> 0.25; priority 0.5; no focus, no breaks
    expected = 0.2 * 0.25 + 0.2 * 0.5 + 0.1 * max(0.0, 1 - 5 * 0.175)
    assert abs(PlanScorer().score(plan) - expected) < 1e-9


def test_score_is_bounded(day):
    scorer = PlanScorer()
    for minutes in (5, 60, 600, 1200):
        plan = DailyPlan(
            date=day,
            blocks=[
                make_block("a", at(8), minutes, kind=BlockKind.FOCUS),
                make_block(None, at(8), minutes * 3, kind=BlockKind.BREAK),
            ],
            tasks=[make_task("a", minutes, Priority.CRITICAL, completed=True)],
        )
        assert 0.0 <= scorer.score(plan) <= 1.0
