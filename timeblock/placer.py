# timeblock/placer.py
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from .models import BlockKind, EnergyLevel, PlannerPrefs, Task, TimeBlock

logger = logging.getLogger(__name__)

HOUR_JUMP = timedelta(hours=1)


def placement_order(tasks: Iterable[Task]) -> List[Task]:
    """Priority desc, then earliest deadline (none last), then focus-protected first."""
    def key(t: Task):
        no_deadline = t.deadline is None
        deadline_ts = t.deadline.timestamp() if t.deadline is not None else 0.0
        return (-int(t.priority), no_deadline, deadline_ts, not t.focus_protected)
    return sorted(tasks, key=key)


def find_next_available(start: datetime,
                        duration: timedelta,
                        blocks: Sequence[TimeBlock],
                        cap: int = 24 * 60,
                        ignore_id: Optional[str] = None) -> datetime:
    """
    Earliest start >= `start` where [start, start + duration) is free.

    On overlap the candidate jumps to the end boundary of the conflicting
    blocks; with no boundary ahead it jumps an hour. The loop is capped, so
    a crowded day returns the last candidate instead of spinning.
    """
    candidate = start
    for _ in range(cap):
        end = candidate + duration
        conflicts = [
            b for b in blocks
            if b.id != ignore_id and b.overlaps(candidate, end)
        ]
        if not conflicts:
            return candidate
        boundaries = [b.end for b in conflicts if b.end > candidate]
        candidate = min(boundaries) if boundaries else candidate + HOUR_JUMP
    logger.warning("slot search cap reached at %s", candidate.isoformat())
    return candidate


def is_free(start: datetime, end: datetime, blocks: Sequence[TimeBlock], ignore_id: Optional[str] = None) -> bool:
    return not any(b.id != ignore_id and b.overlaps(start, end) for b in blocks)


class Placer:
    """Greedy initial placement of tasks into the working window."""

    def __init__(self, prefs: Optional[PlannerPrefs] = None):
        self.prefs = prefs or PlannerPrefs()

    def _buffer_for(self, task: Task, min_break: Optional[timedelta]) -> timedelta:
        buffer = self.prefs.focus_break_buffer if task.focus_protected else self.prefs.task_break_buffer
        if min_break is not None and min_break > buffer:
            return min_break
        return buffer

    def place_initial(self,
                      tasks: Sequence[Task],
                      fixed_blocks: Sequence[TimeBlock],
                      window_start: datetime,
                      window_end: datetime,
                      min_break: Optional[timedelta] = None) -> List[TimeBlock]:
        blocks: List[TimeBlock] = list(fixed_blocks)
        cursor = window_start

        for task in placement_order(tasks):
            if task.completed:
                continue

            slot = find_next_available(
                cursor, task.estimated_duration, blocks, cap=self.prefs.slot_search_cap
            )
            block = TimeBlock(
                start=slot,
                end=slot + task.estimated_duration,
                task_id=task.id,
                kind=BlockKind.FOCUS if task.focus_protected else BlockKind.TASK,
                title=task.title,
                protected=task.focus_protected,
                energy_level=task.preferred_energy or EnergyLevel.MEDIUM,
                break_buffer=self._buffer_for(task, min_break),
            )
            blocks.append(block)
            cursor = block.end + block.break_buffer

            if task.focus_protected and cursor < window_end:
                break_end = cursor + self.prefs.focus_break_length
                if is_free(cursor, break_end, blocks):
                    blocks.append(TimeBlock(
                        start=cursor,
                        end=break_end,
                        kind=BlockKind.BREAK,
                        title="Focus Break",
                        protected=False,
                        energy_level=EnergyLevel.LOW,
                        break_buffer=timedelta(0),
                    ))
                    cursor = break_end

        placed = len(blocks) - len(fixed_blocks)
        logger.debug("placed %d blocks around %d fixed blocks", placed, len(fixed_blocks))
        return sorted(blocks, key=lambda b: b.start)

    def resolve_protected_overlaps(self, blocks: Sequence[TimeBlock],
                                   pinned: Iterable[str] = ()) -> List[TimeBlock]:
        """
        Move task-owned protected blocks forward until no two protected blocks overlap.

        Externally fixed blocks (and any block id in `pinned`) never move.
        Task blocks are settled in start order with the same bounded slot
        search used for placement.
        """
        pinned = set(pinned)

        def stays(b: TimeBlock) -> bool:
            return b.task_id is None or b.id in pinned

        settled = [b for b in blocks if b.protected and stays(b)]
        movable = sorted(
            (b for b in blocks if b.protected and not stays(b)),
            key=lambda b: b.start,
        )
        moved = {}
        for block in movable:
            start = find_next_available(
                block.start, block.duration, settled, cap=self.prefs.slot_search_cap
            )
            if start != block.start:
                logger.info("protected block %s moved %s -> %s", block.title, block.start, start)
                block = replace(block, start=start, end=start + block.duration)
                moved[block.id] = block
            settled.append(block)

        if not moved:
            return sorted(blocks, key=lambda b: b.start)
        return sorted((moved.get(b.id, b) for b in blocks), key=lambda b: b.start)
