# timeblock/metrics.py
from prometheus_client import Counter, Summary

PLAN_GENERATION_SECONDS = Summary(
    "timeblock_plan_generation_seconds",
    "Time spent generating a daily plan",
)

FEEDBACK_COUNTER = Counter(
    "timeblock_feedback_total",
    "Count of feedback submissions by rating",
    ["rating"],  # label = rating 1-5
)

ANOMALY_COUNTER = Counter(
    "timeblock_anomalies_total",
    "Unresolved schedule anomalies by kind",
    ["kind"],
)

RESCHEDULE_COUNTER = Counter(
    "timeblock_reschedules_total",
    "Handled reschedule events by trigger and strategy",
    ["trigger", "strategy"],
)
