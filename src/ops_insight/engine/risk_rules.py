"""Compliance, performance and workflow risk rules.

Stateless checks of an activity snapshot against fixed cut points. Each
rule returns at most one ``RiskSignal``; the insight builder turns signals
into insights. The thresholds are business policy and must not drift.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable


# ---------------------------------------------------------------------------
# Policy thresholds
# ---------------------------------------------------------------------------

CRITICAL_OVERDUE_TRAINING = 2       # more than this many overdue courses is critical
LOW_COMPLETION_RATE = 0.7
VERY_LOW_COMPLETION_RATE = 0.5
DURATION_RATIO_LIMIT = 1.5
COMPLETION_BENCHMARK = 0.85


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ActivitySnapshot:
    """Aggregate activity counters for one user."""
    user_id: str
    task_completion_rate: float        # 0.0 - 1.0
    average_task_duration: float       # seconds
    benchmark_task_duration: float     # seconds
    overdue_mandatory_training: int = 0
    failed_audits_count: int = 0


@dataclass
class RiskSignal:
    """A triggered rule, before it is rendered into an insight."""
    rule: str                 # overdue_training / failed_audits / low_completion / slow_tasks
    insight_type: str
    priority: str
    confidence: float
    expires_in_days: int
    subject_id: str
    measurements: dict[str, float] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def check_overdue_training(snapshot: ActivitySnapshot) -> RiskSignal | None:
    """Any overdue mandatory training; critical above two courses."""
    count = snapshot.overdue_mandatory_training
    if count <= 0:
        return None
    return RiskSignal(
        rule="overdue_training",
        insight_type="compliance_alert",
        priority="critical" if count > CRITICAL_OVERDUE_TRAINING else "high",
        confidence=0.95,
        expires_in_days=7,
        subject_id=snapshot.user_id,
        measurements={"overdue_count": float(count)},
    )


def check_failed_audits(snapshot: ActivitySnapshot) -> RiskSignal | None:
    """Any failed audit."""
    count = snapshot.failed_audits_count
    if count <= 0:
        return None
    return RiskSignal(
        rule="failed_audits",
        insight_type="compliance_alert",
        priority="high",
        confidence=0.9,
        expires_in_days=14,
        subject_id=snapshot.user_id,
        measurements={"failed_count": float(count)},
    )


def check_completion_rate(snapshot: ActivitySnapshot) -> RiskSignal | None:
    """Completion rate under 70%; high priority under 50%."""
    rate = snapshot.task_completion_rate
    if rate >= LOW_COMPLETION_RATE:
        return None
    return RiskSignal(
        rule="low_completion",
        insight_type="risk_assessment",
        priority="high" if rate < VERY_LOW_COMPLETION_RATE else "medium",
        confidence=0.85,
        expires_in_days=7,
        subject_id=snapshot.user_id,
        measurements={"completion_rate": rate, "benchmark": COMPLETION_BENCHMARK},
    )


def check_task_duration(snapshot: ActivitySnapshot) -> RiskSignal | None:
    """Average task duration above 1.5x the benchmark.

    Snapshots without a positive benchmark carry no comparison and never fire.
    """
    benchmark = snapshot.benchmark_task_duration
    if benchmark <= 0:
        return None
    average = snapshot.average_task_duration
    if average <= benchmark * DURATION_RATIO_LIMIT:
        return None
    return RiskSignal(
        rule="slow_tasks",
        insight_type="workflow_improvement",
        priority="medium",
        confidence=0.8,
        expires_in_days=14,
        subject_id=snapshot.user_id,
        measurements={
            "average_duration": average,
            "benchmark": benchmark,
            "ratio": average / benchmark,
        },
    )


RULES: tuple[Callable[[ActivitySnapshot], RiskSignal | None], ...] = (
    check_overdue_training,
    check_failed_audits,
    check_completion_rate,
    check_task_duration,
)


def evaluate_rules(snapshot: ActivitySnapshot) -> list[RiskSignal]:
    """Run every rule against one snapshot, in rule order."""
    signals: list[RiskSignal] = []
    for rule in RULES:
        signal = rule(snapshot)
        if signal is not None:
            signals.append(signal)
    return signals
