"""Insight builder — renders raw signals into ``Insight`` records.

Every generator in the engine (similarity hits, forecasts, rule triggers,
task timing, training gaps) funnels through here so titles, actions,
expiry and tags are stamped consistently.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from ops_insight.engine.risk_rules import RiskSignal
from ops_insight.models import ActionRecommendation, Insight, Prediction

# Minimum relevance gate for similarity recommendations.
MIN_SIMILARITY = 0.5
HIGH_SIMILARITY = 0.8


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def _fmt(value) -> str:
    if isinstance(value, float):
        return f"{value:.4f}".rstrip("0").rstrip(".")
    return str(value)


def _data(**values) -> dict[str, str]:
    """Diagnostic map with string-only values."""
    return {key: _fmt(value) for key, value in values.items() if value is not None}


def _plural(count: int) -> str:
    return "" if count == 1 else "s"


# ---------------------------------------------------------------------------
# Document recommendations
# ---------------------------------------------------------------------------

def build_document_recommendation(
    source_id: str,
    source_title: str,
    target_id: str,
    target_title: str,
    similarity: float,
    now: datetime | None = None,
) -> Insight | None:
    """Recommend ``target`` to someone working on ``source``.

    Confidence is the similarity itself; hits under 0.5 are dropped.
    """
    if similarity < MIN_SIMILARITY:
        return None
    now = _now(now)
    confidence = min(1.0, similarity)

    return Insight(
        insight_type="document_recommendation",
        title="Related Document Found",
        description=(
            f"Based on your work with '{source_title}', "
            f"you might find '{target_title}' helpful."
        ),
        confidence=confidence,
        priority="high" if similarity > HIGH_SIMILARITY else "medium",
        category="recommendation",
        target_entity_type="document",
        target_entity_id=target_id,
        actions=[
            ActionRecommendation(
                title="View Document",
                description="Open the recommended document",
                action_type="navigate",
                estimated_impact=confidence,
                estimated_effort="minimal",
                target_url=f"/documents/{target_id}",
                parameters={"document_id": target_id},
            )
        ],
        supporting_data=_data(
            similarity_score=similarity,
            source_document=source_id,
            algorithm="cosine_similarity",
        ),
        created_at=now,
        expires_at=now + timedelta(days=7),
        tags=["document", "recommendation", "similarity"],
    )


# ---------------------------------------------------------------------------
# Risk signals
# ---------------------------------------------------------------------------

_RISK_TEMPLATES: dict[str, dict] = {
    "overdue_training": {
        "title": "Overdue Mandatory Training",
        "description": "You have {count} overdue mandatory training course{s}.",
        "category": "compliance",
        "action": {
            "title": "Complete Training",
            "description": "Access and complete overdue training",
            "action_type": "navigate",
            "estimated_impact": 0.9,
            "estimated_effort": "medium",
            "target_url": "/training",
            "parameters": {},
        },
        "status": {"risk_level": "HIGH"},
        "tags": ["compliance", "training", "overdue"],
    },
    "failed_audits": {
        "title": "Recent Audit Failures",
        "description": "You have {count} failed audit{s} requiring attention.",
        "category": "compliance",
        "action": {
            "title": "Review Failed Audits",
            "description": "Review and address audit failures",
            "action_type": "review",
            "estimated_impact": 0.8,
            "estimated_effort": "medium",
            "target_url": "/audits",
            "parameters": {"filter": "failed"},
        },
        "status": {"compliance_status": "AT_RISK"},
        "tags": ["compliance", "audit", "failed"],
    },
    "low_completion": {
        "title": "Low Task Completion Rate",
        "description": "Your task completion rate of {pct}% is below recommended levels.",
        "category": "performance",
        "action": {
            "title": "Review Task Load",
            "description": "Analyze current task assignments and priorities",
            "action_type": "review",
            "estimated_impact": 0.7,
            "estimated_effort": "low",
            "target_url": "/tasks",
            "parameters": {"view": "assigned"},
        },
        "status": {},
        "tags": ["performance", "tasks", "completion"],
    },
    "slow_tasks": {
        "title": "Task Duration Above Benchmark",
        "description": "Your average task completion time is {over_pct}% above benchmark.",
        "category": "optimization",
        "action": {
            "title": "Analyze Workflow",
            "description": "Review task workflow for optimization opportunities",
            "action_type": "review",
            "estimated_impact": 0.6,
            "estimated_effort": "medium",
            "target_url": "/analytics/workflow",
            "parameters": {},
        },
        "status": {},
        "tags": ["workflow", "optimization", "duration"],
    },
}


def _risk_fields(signal: RiskSignal) -> dict:
    m = signal.measurements
    count = int(m.get("overdue_count", m.get("failed_count", 0)))
    return {
        "count": count,
        "s": _plural(count),
        "pct": int(m.get("completion_rate", 0.0) * 100),
        "over_pct": int((m.get("ratio", 1.0) - 1) * 100),
    }


def build_risk_insight(signal: RiskSignal, now: datetime | None = None) -> Insight:
    """Render a triggered risk rule."""
    template = _RISK_TEMPLATES[signal.rule]
    now = _now(now)

    return Insight(
        insight_type=signal.insight_type,
        title=template["title"],
        description=template["description"].format(**_risk_fields(signal)),
        confidence=signal.confidence,
        priority=signal.priority,
        category=template["category"],
        target_entity_type="user",
        target_entity_id=signal.subject_id,
        actions=[ActionRecommendation(**template["action"])],
        supporting_data={
            **_data(rule=signal.rule, **signal.measurements),
            **template["status"],
        },
        created_at=now,
        expires_at=now + timedelta(days=signal.expires_in_days),
        tags=list(template["tags"]),
    )


# ---------------------------------------------------------------------------
# Predictions
# ---------------------------------------------------------------------------

def build_prediction_insight(prediction: Prediction, now: datetime | None = None) -> Insight:
    """Surface a forecast as an insight.

    Task-completion forecasts become task optimization hints; other
    metrics become performance predictions.
    """
    now = _now(now)

    if prediction.prediction_type == "task_completion":
        return Insight(
            insight_type="task_optimization",
            title="Task Completion Prediction",
            description=(
                "Based on your patterns, we predict you'll complete "
                f"{int(round(prediction.predicted_value * 100))}% of upcoming tasks on time."
            ),
            confidence=prediction.confidence,
            priority="high" if prediction.predicted_value < 0.8 else "medium",
            category="prediction",
            target_entity_type=prediction.entity_type,
            target_entity_id=prediction.entity_id,
            supporting_data=_data(
                completion_rate=prediction.predicted_value,
                timeframe=prediction.timeframe,
                prediction_id=prediction.id,
            ),
            created_at=now,
            expires_at=now + timedelta(days=7),
            tags=["task", "completion", "prediction"],
        )

    label = prediction.prediction_type.replace("_", " ")
    return Insight(
        insight_type="performance_prediction",
        title="Performance Prediction Available",
        description=f"Based on your recent activity, we predict your {label} performance.",
        confidence=prediction.confidence,
        priority="high" if prediction.confidence > 0.8 else "medium",
        category="prediction",
        target_entity_type=prediction.entity_type,
        target_entity_id=prediction.entity_id,
        supporting_data=_data(
            predicted_value=prediction.predicted_value,
            timeframe=prediction.timeframe,
            prediction_type=prediction.prediction_type,
            prediction_id=prediction.id,
        ),
        created_at=now,
        expires_at=now + timedelta(days=30),
        tags=["prediction", "performance"],
    )


# ---------------------------------------------------------------------------
# Task timing and training
# ---------------------------------------------------------------------------

def build_task_timing_insight(
    user_id: str,
    optimal_time: str,
    sample_size: int,
    confidence: float,
    efficiency_improvement: float,
    now: datetime | None = None,
) -> Insight:
    """Suggest scheduling work in the user's most productive hour."""
    now = _now(now)
    return Insight(
        insight_type="task_optimization",
        title="Optimal Task Completion Time Identified",
        description=(
            f"You complete tasks {int(efficiency_improvement * 100)}% faster "
            f"during {optimal_time}."
        ),
        confidence=confidence,
        priority="medium",
        category="productivity",
        target_entity_type="user",
        target_entity_id=user_id,
        actions=[
            ActionRecommendation(
                title="Schedule Tasks Optimally",
                description=f"Focus important tasks during your peak time: {optimal_time}",
                action_type="schedule",
                estimated_impact=efficiency_improvement,
                estimated_effort="minimal",
                target_url="/tasks/schedule",
                parameters={"optimal_time": optimal_time},
            )
        ],
        supporting_data=_data(
            optimal_time=optimal_time,
            efficiency_improvement=efficiency_improvement,
            sample_size=sample_size,
        ),
        created_at=now,
        expires_at=now + timedelta(days=30),
        tags=["task", "optimization", "timing"],
    )


def build_training_insight(
    user_id: str,
    course_id: str,
    course_title: str,
    metric: str,
    severity: float,
    now: datetime | None = None,
) -> Insight:
    """Recommend a course that targets a performance gap."""
    now = _now(now)
    label = metric.replace("_", " ")
    return Insight(
        insight_type="training_recommendation",
        title=f"Training Recommended: {course_title}",
        description=(
            f"Based on your {label} performance, this training could help "
            "improve your results."
        ),
        confidence=0.75,
        priority="high" if severity > 0.5 else "medium",
        category="recommendation",
        target_entity_type="training_course",
        target_entity_id=course_id,
        actions=[
            ActionRecommendation(
                title="Enroll in Training",
                description="Start the recommended training course",
                action_type="navigate",
                estimated_impact=0.7,
                estimated_effort="high",
                target_url=f"/training/{course_id}",
                parameters={"course_id": course_id},
            )
        ],
        supporting_data=_data(
            performance_gap=severity,
            metric=metric,
            course_id=course_id,
            user_id=user_id,
        ),
        created_at=now,
        expires_at=now + timedelta(days=30),
        tags=["training", "recommendation", metric],
    )
