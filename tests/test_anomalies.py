from datetime import timedelta

import pytest

from conftest import at, make_block, make_task
from timeblock.anomalies import REPAIR_HANDLERS, AnomalyDetector, AnomalyKind
from timeblock.models import BlockKind, EnergyLevel

WINDOW = (at(8), at(20))


def kinds(anomalies):
    return [a.kind for a in anomalies]


def test_duration_anomalies(prefs, energy_model):
    detector = AnomalyDetector(prefs)
    tasks = [make_task("over"), make_task("under"), make_task("ok")]
    blocks = [make_block("over", at(8), 100), make_block("under", at(11), 30), make_block("ok", at(13), 70)]
    found = {a.task_id: a for a in detector.detect(blocks, tasks, energy_model, WINDOW)}
    assert set(found) == {"over", "under"}
    assert found["over"].kind == AnomalyKind.OVERESTIMATION
    assert found["over"].suggested_duration == timedelta(minutes=72)
    assert found["under"].kind == AnomalyKind.UNDERESTIMATION
    assert found["under"].suggested_duration == timedelta(minutes=78)


def test_focus_expectation_uses_minimum(prefs, energy_model):
    tasks = [make_task("f", 20, focus_protected=True)]
    blocks = [make_block("f", at(9), 30, kind=BlockKind.FOCUS, protected=True)]
    assert AnomalyDetector(prefs).detect(blocks, tasks, energy_model, WINDOW) == []


def test_energy_mismatch_suggests_first_high_hour(prefs, energy_model):
    tasks = [make_task("a", preferred_energy=EnergyLevel.HIGH)]
    (anomaly,) = AnomalyDetector(prefs).detect([make_block("a", at(16))], tasks, energy_model, WINDOW)
    assert anomaly.kind == AnomalyKind.ENERGY_MISMATCH
    assert anomaly.suggested_start == at(8)


def test_dependency_conflict(prefs, energy_model):
    tasks = [make_task("a"), make_task("b", dependencies={"a"})]
    blocks = [make_block("a", at(9)), make_block("b", at(9, 30))]
    (anomaly,) = AnomalyDetector(prefs).detect(blocks, tasks, energy_model, WINDOW)
    assert anomaly.kind == AnomalyKind.DEPENDENCY_CONFLICT
    assert anomaly.suggested_start == at(10, 5)


def test_dependent_inside_gap_is_a_conflict(prefs, energy_model):
    detector = AnomalyDetector(prefs)
    tasks = [make_task("a"), make_task("b", dependencies={"a"})]
    early = [make_block("a", at(9)), make_block("b", at(10, 2))]
    (anomaly,) = detector.detect(early, tasks, energy_model, WINDOW)
    assert anomaly.kind == AnomalyKind.DEPENDENCY_CONFLICT
    assert anomaly.suggested_start == at(10, 5)

    on_time = [make_block("a", at(9)), make_block("b", at(10, 5))]
    assert detector.detect(on_time, tasks, energy_model, WINDOW) == []


def test_infeasible_deadline_and_window(prefs, energy_model):
    detector = AnomalyDetector(prefs)
    tasks = [make_task("late", deadline=at(10)), make_task("early")]
    blocks = [make_block("late", at(9, 30)), make_block("early", at(7))]
    found = detector.detect(blocks, tasks, energy_model, WINDOW)
    assert kinds(found) == [AnomalyKind.INFEASIBLE, AnomalyKind.INFEASIBLE]
    # without a window only the deadline miss is visible
    assert len(detector.detect(blocks, tasks, energy_model)) == 1


def test_handler_table_covers_repairable_kinds():
    assert set(REPAIR_HANDLERS) == {
        AnomalyKind.OVERESTIMATION,
        AnomalyKind.UNDERESTIMATION,
        AnomalyKind.ENERGY_MISMATCH,
        AnomalyKind.DEPENDENCY_CONFLICT,
    }


def test_repair_fixes_what_it_can(prefs, energy_model):
    tasks = [
        make_task("over"),
        make_task("tired", preferred_energy=EnergyLevel.HIGH),
        make_task("dep"),
        make_task("after", dependencies={"dep"}),
        make_task("late", deadline=at(19)),
    ]
    blocks = [
        make_block("over", at(11), 100),
        make_block("tired", at(16)),
        make_block("dep", at(13)),
        make_block("after", at(13, 30)),
        make_block("late", at(18, 30)),
    ]
    repaired, remaining = AnomalyDetector(prefs).repair(blocks, tasks, energy_model, WINDOW)
    out = {b.task_id: b for b in repaired}
    assert out["over"].duration == timedelta(minutes=72)
    assert out["tired"].start == at(8)
    assert out["after"].start == at(14, 5)
    assert kinds(remaining) == [AnomalyKind.INFEASIBLE]
    assert remaining[0].task_id == "late"


def test_repair_never_relocates_protected_blocks(prefs, energy_model):
    tasks = [make_task("f", preferred_energy=EnergyLevel.PEAK, focus_protected=True)]
    blocks = [make_block("f", at(16), kind=BlockKind.FOCUS, protected=True)]
    repaired, remaining = AnomalyDetector(prefs).repair(blocks, tasks, energy_model, WINDOW)
    assert repaired == blocks
    assert kinds(remaining) == [AnomalyKind.ENERGY_MISMATCH]


def test_repair_pass_bounds(prefs, energy_model):
    detector = AnomalyDetector(prefs)
    tasks = [make_task("over")]
    blocks = [make_block("over", at(11), 100)]
    with pytest.raises(ValueError):
        detector.repair(blocks, tasks, energy_model, WINDOW, passes=-1)
    untouched, remaining = detector.repair(blocks, tasks, energy_model, WINDOW, passes=0)
    assert untouched == blocks
    assert kinds(remaining) == [AnomalyKind.OVERESTIMATION]
