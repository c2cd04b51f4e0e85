from datetime import timedelta

from conftest import at, make_block, make_task
from timeblock.constraints import ConstraintSolver, topological_order
from timeblock.models import BlockKind, ConstraintType, SchedulingConstraint


def _by_task(blocks):
    return {b.task_id: b for b in blocks}


def test_topological_order_handles_chains_and_cycles():
    tasks = [
        make_task("c", dependencies={"b"}),
        make_task("b", dependencies={"a"}),
        make_task("a"),
    ]
    assert [t.id for t in topological_order(tasks)] == ["a", "b", "c"]

    cyclic = [make_task("x", dependencies={"y"}), make_task("y", dependencies={"x"})]
    assert {t.id for t in topological_order(cyclic)} == {"x", "y"}


def test_dependency_shift_preserves_duration(prefs):
    tasks = [make_task("a"), make_task("b", dependencies={"a"})]
    blocks = [make_block("a", at(8)), make_block("b", at(8, 30), 45)]
    out = _by_task(ConstraintSolver(prefs).resolve(blocks, tasks))
    assert out["b"].start == at(9, 5)
    assert out["b"].duration == timedelta(minutes=45)


def test_dependency_chain_follows_topological_order(prefs):
    tasks = [
        make_task("c", dependencies={"b"}),
        make_task("b", dependencies={"a"}),
        make_task("a"),
    ]
    blocks = [make_block("c", at(8)), make_block("b", at(8)), make_block("a", at(8))]
    out = _by_task(ConstraintSolver(prefs).resolve(blocks, tasks))
    assert out["b"].start == at(9, 5)
    assert out["c"].start == at(10, 10)


def test_deadline_pulls_block_back(prefs):
    tasks = [make_task("a", deadline=at(12))]
    out = ConstraintSolver(prefs).resolve([make_block("a", at(11, 30))], tasks)
    assert (out[0].start, out[0].end) == (at(11), at(12))


def test_short_focus_block_extended(prefs):
    tasks = [make_task("f", minutes=20, focus_protected=True)]
    block = make_block("f", at(9), 20, kind=BlockKind.FOCUS, protected=True)
    out = ConstraintSolver(prefs).resolve([block], tasks)
    assert out[0].start == at(9)
    assert out[0].duration == timedelta(minutes=30)


def test_completed_task_blocks_never_move(prefs):
    tasks = [make_task("a"), make_task("b", dependencies={"a"}, completed=True, deadline=at(8, 30))]
    blocks = [make_block("a", at(8)), make_block("b", at(8, 15))]
    out = _by_task(ConstraintSolver(prefs).resolve(blocks, tasks))
    assert out["b"].start == at(8, 15)


def test_resolve_is_idempotent(prefs):
    tasks = [
        make_task("a", deadline=at(10)),
        make_task("b", dependencies={"a"}),
        make_task("f", minutes=15, focus_protected=True, dependencies={"b"}),
    ]
    blocks = [
        make_block("a", at(9, 30)),
        make_block("b", at(9)),
        make_block("f", at(8), 15, kind=BlockKind.FOCUS, protected=True),
    ]
    solver = ConstraintSolver(prefs)
    once = solver.resolve(blocks, tasks)
    assert solver.resolve(once, tasks) == once


def test_inputs_are_not_mutated(prefs):
    tasks = [make_task("a"), make_task("b", dependencies={"a"})]
    blocks = [make_block("a", at(8)), make_block("b", at(8))]
    ConstraintSolver(prefs).resolve(blocks, tasks)
    assert blocks[1].start == at(8)


def test_min_break_constraint_widens_dependency_gap(prefs):
    tasks = [make_task("a"), make_task("b", dependencies={"a"})]
    blocks = [make_block("a", at(8)), make_block("b", at(9, 5))]
    solver = ConstraintSolver(prefs)

    wide = [SchedulingConstraint(ConstraintType.MIN_BREAK_TIME, 15)]
    assert _by_task(solver.resolve(blocks, tasks, wide))["b"].start == at(9, 15)

    # shorter or inactive breaks keep the default gap
    narrow = [
        SchedulingConstraint(ConstraintType.MIN_BREAK_TIME, 2),
        SchedulingConstraint(ConstraintType.MIN_BREAK_TIME, 30, active=False),
    ]
    assert solver.dependency_gap(narrow) == prefs.dependency_gap
    assert solver.resolve(blocks, tasks, narrow) == blocks
