# main.py
from datetime import date, datetime, timedelta
from pathlib import Path

import matplotlib.pyplot as plt

from timeblock.collaborators import LoggingFocusLock, StaticCalendarSource
from timeblock.logging_setup import configure_logging
from timeblock.models import (
    ConstraintType,
    EnergyLevel,
    FixedEvent,
    Goal,
    GoalCategory,
    PlannerPrefs,
    Priority,
    SchedulingConstraint,
    Task,
    TaskCategory,
)
from timeblock.planner import plan_to_frame
from timeblock.service import PlannerService
from timeblock.store import JsonFileStore


def main():
    base_dir = Path(".timeblock")
    configure_logging(base_dir)

    day = date(2025, 11, 3)
    prefs = PlannerPrefs(day_start_hour=8, day_end_hour=20)

    store = JsonFileStore(str(base_dir / "data"))
    store.save_goals([
        Goal(
            id="goal-os",
            title="Finish OS course",
            description="study and review every lecture",
            category=GoalCategory.LEARNING,
            target_value=12,
            current_value=3,
            deadline=datetime(2025, 11, 28, 17, 0),
        ),
    ])
    store.save_constraints([
        SchedulingConstraint(ConstraintType.MIN_BREAK_TIME, 5),
        SchedulingConstraint(ConstraintType.ENERGY_ALIGNMENT, 1),
        SchedulingConstraint(ConstraintType.MAX_WORK_HOURS, 8),
    ])

    calendar = StaticCalendarSource([
        FixedEvent(
            id="class-os",
            label="OS Class",
            start=datetime(2025, 11, 3, 12, 50),
            end=datetime(2025, 11, 3, 14, 45),
        ),
        FixedEvent(
            id="team-sync",
            label="Team Sync",
            start=datetime(2025, 11, 3, 18, 30),
            end=datetime(2025, 11, 3, 19, 0),
        ),
    ])

    tasks = [
        Task(
            id="dw1",
            title="Deep Work: Project",
            estimated_duration=timedelta(hours=2),
            priority=Priority.HIGH,
            deadline=datetime(2025, 11, 7, 17, 0),
            focus_protected=True,
            preferred_energy=EnergyLevel.PEAK,
            complexity=0.8,
        ),
        Task(
            id="study1",
            title="Study: OS",
            description="review scheduling lecture",
            estimated_duration=timedelta(hours=1, minutes=30),
            priority=Priority.MEDIUM,
            deadline=datetime(2025, 11, 8, 23, 59),
            category=TaskCategory.LEARNING,
            goal_id="goal-os",
            dependencies=frozenset({"dw1"}),
        ),
        Task(
            id="gym",
            title="Gym",
            estimated_duration=timedelta(hours=1),
            priority=Priority.LOW,
            category=TaskCategory.HEALTH,
        ),
    ]
    store.save_tasks(tasks)

    service = PlannerService(store, calendar=calendar, focus_lock=LoggingFocusLock(), prefs=prefs,
                             clock=lambda: datetime(2025, 11, 3, 7, 30))
    plan = service.plan_day(day)

    print("=== Plan ===")
    print(plan_to_frame(plan))
    print(f"productivity score: {plan.productivity_score:.2f}")
    for w in plan.warnings:
        print(f"warning [{w.code}]: {w.message}")

    result = service.overtime(day, "dw1", timedelta(minutes=30))
    print("=== After 30 min overtime on Deep Work ===")
    print(plan_to_frame(result.plan))

    # Plot energy curve
    energy = service.energy_model.to_frame()
    plt.figure(figsize=(10, 3))
    plt.plot(energy["hour"], energy["energy"])
    plt.title("Hourly Energy")
    plt.xlabel("Hour")
    plt.ylabel("Energy")
    plt.tight_layout()
    plt.show()


if __name__ == "__main__":
    main()
