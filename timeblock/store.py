# timeblock/store.py
import csv
import json
import logging
import os
import tempfile
import threading
from dataclasses import asdict
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol

from .anomalies import Anomaly, AnomalyKind
from .errors import CollaboratorUnavailable, PlanWarning
from .models import (
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
    Task,
    TaskCategory,
    TimeBlock,
)

logger = logging.getLogger(__name__)

FEEDBACK_FIELDS = [
    "id", "task_id", "planned_start", "planned_end", "actual_start", "actual_end",
    "rating", "comment", "recorded_at",
]


class PlannerStore(Protocol):
    def load_tasks(self) -> List[Task]: ...
    def save_tasks(self, tasks: List[Task]) -> None: ...
    def load_goals(self) -> List[Goal]: ...
    def save_goals(self, goals: List[Goal]) -> None: ...
    def load_constraints(self) -> List[SchedulingConstraint]: ...
    def save_constraints(self, constraints: List[SchedulingConstraint]) -> None: ...
    def load_energy_patterns(self) -> List[EnergyPattern]: ...
    def save_energy_patterns(self, patterns: List[EnergyPattern]) -> None: ...
    def load_plan(self, day: date) -> Optional[DailyPlan]: ...
    def save_plan(self, plan: DailyPlan) -> None: ...
    def append_feedback(self, record: SchedulingFeedback) -> None: ...
    def load_feedback(self) -> List[SchedulingFeedback]: ...


# --- (de)serialization -------------------------------------------------------

def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _secs(value: Optional[timedelta]) -> Optional[float]:
    return value.total_seconds() if value is not None else None


def _parse_secs(value: Optional[float]) -> Optional[timedelta]:
    return timedelta(seconds=value) if value is not None else None


def task_to_dict(t: Task) -> Dict[str, Any]:
    return {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "estimated_duration": _secs(t.estimated_duration),
        "priority": int(t.priority),
        "deadline": _dt(t.deadline),
        "dependencies": sorted(t.dependencies),
        "preferred_energy": int(t.preferred_energy) if t.preferred_energy is not None else None,
        "focus_protected": t.focus_protected,
        "complexity": t.complexity,
        "completed": t.completed,
        "actual_start": _dt(t.actual_start),
        "actual_end": _dt(t.actual_end),
        "goal_alignment": t.goal_alignment,
        "category": t.category.value,
        "goal_id": t.goal_id,
        "required_resources": sorted(t.required_resources),
        "overdue": t.overdue,
        "has_resource_conflict": t.has_resource_conflict,
        "created_at": _dt(t.created_at),
    }


def task_from_dict(d: Dict[str, Any]) -> Task:
    return Task(
        id=d["id"],
        title=d["title"],
        description=d.get("description", ""),
        estimated_duration=_parse_secs(d["estimated_duration"]),
        priority=Priority(d.get("priority", 2)),
        deadline=_parse_dt(d.get("deadline")),
        dependencies=frozenset(d.get("dependencies", [])),
        preferred_energy=EnergyLevel(d["preferred_energy"]) if d.get("preferred_energy") else None,
        focus_protected=d.get("focus_protected", False),
        complexity=d.get("complexity", 0.5),
        completed=d.get("completed", False),
        actual_start=_parse_dt(d.get("actual_start")),
        actual_end=_parse_dt(d.get("actual_end")),
        goal_alignment=d.get("goal_alignment", 0.5),
        category=TaskCategory(d.get("category", "work")),
        goal_id=d.get("goal_id"),
        required_resources=frozenset(d.get("required_resources", [])),
        overdue=d.get("overdue", False),
        has_resource_conflict=d.get("has_resource_conflict", False),
        created_at=_parse_dt(d.get("created_at")),
    )


def block_to_dict(b: TimeBlock) -> Dict[str, Any]:
    return {
        "id": b.id,
        "start": _dt(b.start),
        "end": _dt(b.end),
        "task_id": b.task_id,
        "kind": b.kind.value,
        "title": b.title,
        "protected": b.protected,
        "energy_level": int(b.energy_level),
        "break_buffer": _secs(b.break_buffer),
        "productivity_multiplier": b.productivity_multiplier,
        "suggested_duration": _secs(b.suggested_duration),
    }


def block_from_dict(d: Dict[str, Any]) -> TimeBlock:
    return TimeBlock(
        id=d["id"],
        start=_parse_dt(d["start"]),
        end=_parse_dt(d["end"]),
        task_id=d.get("task_id"),
        kind=BlockKind(d.get("kind", "task")),
        title=d.get("title", ""),
        protected=d.get("protected", False),
        energy_level=EnergyLevel(d.get("energy_level", 2)),
        break_buffer=_parse_secs(d.get("break_buffer", 300.0)),
        productivity_multiplier=d.get("productivity_multiplier", 1.0),
        suggested_duration=_parse_secs(d.get("suggested_duration")),
    )


def goal_to_dict(g: Goal) -> Dict[str, Any]:
    d = asdict(g)
    d["category"] = g.category.value
    d["deadline"] = _dt(g.deadline)
    return d


def goal_from_dict(d: Dict[str, Any]) -> Goal:
    d = dict(d)
    d["category"] = GoalCategory(d.get("category", "productivity"))
    d["deadline"] = _parse_dt(d.get("deadline"))
    return Goal(**d)


def constraint_to_dict(c: SchedulingConstraint) -> Dict[str, Any]:
    return {"id": c.id, "type": c.type.value, "value": c.value, "active": c.active}


def constraint_from_dict(d: Dict[str, Any]) -> SchedulingConstraint:
    return SchedulingConstraint(
        id=d["id"], type=ConstraintType(d["type"]), value=d["value"], active=d.get("active", True)
    )


def pattern_to_dict(p: EnergyPattern) -> Dict[str, Any]:
    return {
        "hour": p.hour,
        "energy_level": int(p.energy_level),
        "sample_size": p.sample_size,
        "task_completion_rate": p.task_completion_rate,
        "focus_success_rate": p.focus_success_rate,
        "last_updated": _dt(p.last_updated),
    }


def pattern_from_dict(d: Dict[str, Any]) -> EnergyPattern:
    return EnergyPattern(
        hour=d["hour"],
        energy_level=EnergyLevel(d["energy_level"]),
        sample_size=d.get("sample_size", 0),
        task_completion_rate=d.get("task_completion_rate", 0.5),
        focus_success_rate=d.get("focus_success_rate", 0.5),
        last_updated=_parse_dt(d.get("last_updated")),
    )


def plan_to_dict(plan: DailyPlan) -> Dict[str, Any]:
    return {
        "id": plan.id,
        "date": plan.date.isoformat(),
        "blocks": [block_to_dict(b) for b in plan.blocks],
        "tasks": [task_to_dict(t) for t in plan.tasks],
        "productivity_score": plan.productivity_score,
        "adherence_score": plan.adherence_score,
        "warnings": [asdict(w) for w in plan.warnings],
        "anomalies": [{
            "kind": a.kind.value,
            "block_id": a.block_id,
            "task_id": a.task_id,
            "message": a.message,
            "suggested_start": _dt(a.suggested_start),
            "suggested_duration": _secs(a.suggested_duration),
        } for a in plan.anomalies],
        "created_at": _dt(plan.created_at),
        "updated_at": _dt(plan.updated_at),
    }


def plan_from_dict(d: Dict[str, Any]) -> DailyPlan:
    return DailyPlan(
        id=d["id"],
        date=date.fromisoformat(d["date"]),
        blocks=[block_from_dict(b) for b in d.get("blocks", [])],
        tasks=[task_from_dict(t) for t in d.get("tasks", [])],
        productivity_score=d.get("productivity_score", 0.0),
        adherence_score=d.get("adherence_score", 0.0),
        warnings=[PlanWarning(**w) for w in d.get("warnings", [])],
        anomalies=[Anomaly(
            kind=AnomalyKind(a["kind"]),
            block_id=a["block_id"],
            task_id=a.get("task_id"),
            message=a.get("message", ""),
            suggested_start=_parse_dt(a.get("suggested_start")),
            suggested_duration=_parse_secs(a.get("suggested_duration")),
        ) for a in d.get("anomalies", [])],
        created_at=_parse_dt(d.get("created_at")),
        updated_at=_parse_dt(d.get("updated_at")),
    )


def feedback_to_row(f: SchedulingFeedback) -> Dict[str, Any]:
    return {
        "id": f.id,
        "task_id": f.task_id,
        "planned_start": _dt(f.planned_start),
        "planned_end": _dt(f.planned_end),
        "actual_start": _dt(f.actual_start) or "",
        "actual_end": _dt(f.actual_end) or "",
        "rating": int(f.rating),
        "comment": f.comment.replace("\n", " "),
        "recorded_at": _dt(f.recorded_at) or "",
    }


def feedback_from_row(row: Dict[str, str]) -> SchedulingFeedback:
    return SchedulingFeedback(
        id=row["id"],
        task_id=row["task_id"],
        planned_start=_parse_dt(row["planned_start"]),
        planned_end=_parse_dt(row["planned_end"]),
        actual_start=_parse_dt(row.get("actual_start")),
        actual_end=_parse_dt(row.get("actual_end")),
        rating=int(row.get("rating") or 0),
        comment=row.get("comment", ""),
        recorded_at=_parse_dt(row.get("recorded_at")),
    )


# --- file store --------------------------------------------------------------

class JsonFileStore:
    """
    Plain-file persistence under one directory.

    Collections are JSON documents; daily plans are keyed by ISO date (saving
    the same day again replaces it) and pruned to the retention window; the
    feedback log is an append-only CSV trimmed to the most recent records.
    Every read-modify-write runs under one store lock, and files are replaced
    atomically from uniquely named temp files.
    """

    def __init__(self, base_dir: str, plan_retention_days: int = 30, feedback_retention: int = 100):
        self.base_dir = base_dir
        self.plan_retention_days = plan_retention_days
        self.feedback_retention = feedback_retention
        self._lock = threading.RLock()
        try:
            os.makedirs(base_dir, exist_ok=True)
        except OSError as err:
            raise CollaboratorUnavailable(f"cannot create store directory {base_dir}: {err}") from err

    def _path(self, name: str) -> str:
        return os.path.join(self.base_dir, name)

    def _read_json(self, name: str, default, parse=None):
        path = self._path(name)
        with self._lock:
            if not os.path.isfile(path):
                return default
            try:
                with open(path, "r", encoding="utf-8") as f:
                    payload = json.load(f)
                return parse(payload) if parse is not None else payload
            except (OSError, KeyError, TypeError, ValueError) as err:
                raise CollaboratorUnavailable(f"cannot read {path}: {err}") from err

    def _replace(self, name: str, write, newline=None) -> None:
        path = self._path(name)
        tmp = None
        try:
            with tempfile.NamedTemporaryFile("w", dir=self.base_dir, prefix=name + ".", suffix=".tmp",
                                             delete=False, encoding="utf-8", newline=newline) as f:
                tmp = f.name
                write(f)
            os.replace(tmp, path)
        except OSError as err:
            if tmp is not None and os.path.exists(tmp):
                os.remove(tmp)
            raise CollaboratorUnavailable(f"cannot write {path}: {err}") from err

    def _write_json(self, name: str, payload) -> None:
        with self._lock:
            self._replace(name, lambda f: json.dump(payload, f, indent=2))

    def load_tasks(self) -> List[Task]:
        return self._read_json("tasks.json", [], lambda rows: [task_from_dict(d) for d in rows])

    def save_tasks(self, tasks: List[Task]) -> None:
        self._write_json("tasks.json", [task_to_dict(t) for t in tasks])

    def load_goals(self) -> List[Goal]:
        return self._read_json("goals.json", [], lambda rows: [goal_from_dict(d) for d in rows])

    def save_goals(self, goals: List[Goal]) -> None:
        self._write_json("goals.json", [goal_to_dict(g) for g in goals])

    def load_constraints(self) -> List[SchedulingConstraint]:
        return self._read_json("constraints.json", [], lambda rows: [constraint_from_dict(d) for d in rows])

    def save_constraints(self, constraints: List[SchedulingConstraint]) -> None:
        self._write_json("constraints.json", [constraint_to_dict(c) for c in constraints])

    def load_energy_patterns(self) -> List[EnergyPattern]:
        return self._read_json("energy_patterns.json", [], lambda rows: [pattern_from_dict(d) for d in rows])

    def save_energy_patterns(self, patterns: List[EnergyPattern]) -> None:
        self._write_json("energy_patterns.json", [pattern_to_dict(p) for p in patterns])

    def load_plan(self, day: date) -> Optional[DailyPlan]:
        raw = self._read_json("plans.json", {}).get(day.isoformat())
        if raw is None:
            return None
        try:
            return plan_from_dict(raw)
        except (KeyError, TypeError, ValueError) as err:
            raise CollaboratorUnavailable(f"stored plan for {day} is unreadable: {err}") from err

    def save_plan(self, plan: DailyPlan) -> None:
        with self._lock:
            plans = self._read_json("plans.json", {})
            plans[plan.date.isoformat()] = plan_to_dict(plan)
            cutoff = plan.date - timedelta(days=self.plan_retention_days)
            stale = [k for k in plans if date.fromisoformat(k) < cutoff]
            for k in stale:
                del plans[k]
            if stale:
                logger.info("pruned %d plans older than %s", len(stale), cutoff)
            self._write_json("plans.json", plans)

    def load_feedback(self) -> List[SchedulingFeedback]:
        path = self._path("feedback_log.csv")
        with self._lock:
            if not os.path.isfile(path):
                return []
            try:
                with open(path, "r", newline="", encoding="utf-8") as f:
                    return [feedback_from_row(row) for row in csv.DictReader(f)]
            except (OSError, KeyError, TypeError, ValueError) as err:
                raise CollaboratorUnavailable(f"cannot read {path}: {err}") from err

    def append_feedback(self, record: SchedulingFeedback) -> None:
        path = self._path("feedback_log.csv")
        row = feedback_to_row(record)
        with self._lock:
            file_exists = os.path.isfile(path)
            try:
                with open(path, "a", newline="", encoding="utf-8") as f:
                    writer = csv.DictWriter(f, fieldnames=FEEDBACK_FIELDS)
                    if not file_exists:
                        writer.writeheader()
                    writer.writerow(row)
            except OSError as err:
                raise CollaboratorUnavailable(f"cannot append to {path}: {err}") from err

            records = self.load_feedback()
            if len(records) > self.feedback_retention:
                self._rewrite_feedback(records[-self.feedback_retention:])

    def _rewrite_feedback(self, records: List[SchedulingFeedback]) -> None:
        def write(f):
            writer = csv.DictWriter(f, fieldnames=FEEDBACK_FIELDS)
            writer.writeheader()
            for r in records:
                writer.writerow(feedback_to_row(r))

        with self._lock:
            self._replace("feedback_log.csv", write, newline="")
