"""Domain types for generated insights, predictions and their feedback trail.

Plain dataclasses with string-valued enumerations (validated against the
tuples below). Persisted shapes live in ``ops_insight.db.models``; the
codec in ``ops_insight.db.codec`` converts between the two.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

INSIGHT_TYPES = (
    "document_recommendation",
    "task_optimization",
    "performance_prediction",
    "risk_assessment",
    "resource_optimization",
    "client_engagement",
    "audit_scheduling",
    "training_recommendation",
    "workflow_improvement",
    "compliance_alert",
)

# Lower rank sorts first.
PRIORITY_RANK: dict[str, int] = {
    "critical": 0,
    "high": 1,
    "medium": 2,
    "low": 3,
    "informational": 4,
}

CATEGORIES = (
    "productivity",
    "compliance",
    "performance",
    "risk",
    "engagement",
    "optimization",
    "prediction",
    "recommendation",
)

ACTION_TYPES = ("navigate", "create", "update", "review", "schedule", "assign", "notify", "archive")

EFFORT_LEVELS = ("minimal", "low", "medium", "high", "planning")

PREDICTION_TYPES = (
    "sales",
    "task_completion",
    "audit_score",
    "client_satisfaction",
    "training_progress",
    "risk_score",
)

TIMEFRAMES = ("daily", "weekly", "monthly", "quarterly", "annual")

INTERACTION_TYPES = (
    "viewed",
    "dismissed",
    "action_taken",
    "feedback_provided",
    "shared",
    "bookmarked",
)


def _check_choice(name: str, value: str, choices) -> None:
    if value not in choices:
        raise ValueError(f"Unknown {name}: {value!r}")


# ---------------------------------------------------------------------------
# Insight and its owned parts
# ---------------------------------------------------------------------------


@dataclass
class ActionRecommendation:
    """A suggested follow-up attached to an insight."""
    title: str
    description: str
    action_type: str
    estimated_impact: float          # 0.0 - 1.0
    estimated_effort: str
    target_url: str | None = None
    parameters: dict[str, str] = field(default_factory=dict)
    is_completed: bool = False
    completed_at: datetime | None = None
    id: str = field(default_factory=_uuid)

    def __post_init__(self) -> None:
        _check_choice("action type", self.action_type, ACTION_TYPES)
        _check_choice("effort level", self.estimated_effort, EFFORT_LEVELS)


@dataclass
class Feedback:
    """A user's verdict on an insight. Replaced as a whole, never patched."""
    rating: int                      # 1-5 stars
    is_helpful: bool
    submitted_by: str
    action_taken: bool = False
    comment: str | None = None
    submitted_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not 1 <= self.rating <= 5:
            raise ValueError(f"Feedback rating must be 1-5, got {self.rating}")


@dataclass
class Insight:
    """A generated recommendation or alert tied to one target entity."""
    insight_type: str
    title: str
    description: str
    confidence: float                # 0.0 - 1.0
    priority: str
    category: str
    target_entity_type: str
    target_entity_id: str
    actions: list[ActionRecommendation] = field(default_factory=list)
    supporting_data: dict[str, str] = field(default_factory=dict)  # diagnostics only
    created_at: datetime = field(default_factory=_utcnow)
    expires_at: datetime | None = None
    is_action_taken: bool = False
    feedback: Feedback | None = None
    tags: list[str] = field(default_factory=list)
    id: str = field(default_factory=_uuid)

    def __post_init__(self) -> None:
        _check_choice("insight type", self.insight_type, INSIGHT_TYPES)
        _check_choice("priority", self.priority, PRIORITY_RANK)
        _check_choice("category", self.category, CATEGORIES)
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Insight confidence must be in [0, 1], got {self.confidence}")

    @property
    def priority_rank(self) -> int:
        return PRIORITY_RANK[self.priority]

    @property
    def target_key(self) -> tuple[str, str]:
        return (self.target_entity_type, self.target_entity_id)

    def is_active(self, now: datetime | None = None) -> bool:
        """False once ``expires_at`` has passed."""
        if self.expires_at is None:
            return True
        return self.expires_at > (now or _utcnow())


# ---------------------------------------------------------------------------
# Predictions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InfluencingFactor:
    """One named driver behind a prediction."""
    factor: str
    impact: float                    # -1.0 - 1.0
    confidence: float
    description: str


@dataclass(frozen=True)
class Prediction:
    """A numeric forecast for one metric of one entity. Never mutated."""
    entity_id: str
    entity_type: str
    prediction_type: str
    predicted_value: float
    confidence: float
    timeframe: str
    factors: tuple[InfluencingFactor, ...] = ()
    created_at: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=_uuid)

    def __post_init__(self) -> None:
        _check_choice("prediction type", self.prediction_type, PREDICTION_TYPES)
        _check_choice("timeframe", self.timeframe, TIMEFRAMES)


# ---------------------------------------------------------------------------
# Feedback trail and training export
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Interaction:
    """Append-only log row of a user touching an insight."""
    insight_id: str
    user_id: str
    interaction_type: str
    timestamp: datetime = field(default_factory=_utcnow)
    duration_seconds: float | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_choice("interaction type", self.interaction_type, INTERACTION_TYPES)


@dataclass
class TrainingDataPoint:
    """Feature row exported for offline model training."""
    entity_type: str
    entity_id: str
    features: dict[str, float]
    target: float
    timestamp: datetime = field(default_factory=_utcnow)
    labels: list[str] = field(default_factory=list)
    id: str = field(default_factory=_uuid)


@dataclass
class AnalyticsSnapshot:
    """Derived period statistics. Recomputed on demand, never stored."""
    period_start: datetime
    period_end: datetime
    total_insights: int = 0
    insights_by_type: dict[str, int] = field(default_factory=dict)
    insights_by_priority: dict[str, int] = field(default_factory=dict)
    average_confidence: float = 0.0
    action_taken_rate: float = 0.0
    feedback_average: float = 0.0
    top_categories: list[str] = field(default_factory=list)
    interaction_counts: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelMetrics:
    """Evaluation scores reported by an offline trainer for one model version."""
    model_name: str
    version: str
    accuracy: float
    precision: float
    recall: float
    f1_score: float
    training_data_size: int
    last_trained_at: datetime
    evaluated_at: datetime = field(default_factory=_utcnow)
    mean_absolute_error: float | None = None
    root_mean_square_error: float | None = None
    id: str = field(default_factory=_uuid)

    def __post_init__(self) -> None:
        for name in ("accuracy", "precision", "recall", "f1_score"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if self.training_data_size < 0:
            raise ValueError(f"training_data_size must be >= 0, got {self.training_data_size}")
