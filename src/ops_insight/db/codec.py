"""Conversion between domain dataclasses and ORM rows.

Decoders never trust stored rows: missing required fields, unknown
enumeration values and malformed JSON raise ``InvalidRecord`` so read
paths can skip the row instead of failing the whole fetch.
"""

from __future__ import annotations

from datetime import datetime

from ops_insight.db.models import (
    InsightRecord,
    InteractionRecord,
    ModelMetricsRecord,
    PredictionRecord,
    TrainingDataRecord,
)
from ops_insight.errors import InvalidRecord
from ops_insight.models import (
    ActionRecommendation,
    Feedback,
    InfluencingFactor,
    Insight,
    Interaction,
    ModelMetrics,
    Prediction,
    TrainingDataPoint,
)

_DECODE_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _require(kind: str, record, *names: str) -> None:
    for name in names:
        if getattr(record, name, None) is None:
            raise InvalidRecord(kind, getattr(record, "id", None), f"missing {name}")


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------

def _encode_action(action: ActionRecommendation) -> dict:
    return {
        "id": action.id,
        "title": action.title,
        "description": action.description,
        "action_type": action.action_type,
        "estimated_impact": action.estimated_impact,
        "estimated_effort": action.estimated_effort,
        "target_url": action.target_url,
        "parameters": dict(action.parameters),
        "is_completed": action.is_completed,
        "completed_at": _iso(action.completed_at),
    }


def _decode_action(data: dict) -> ActionRecommendation:
    return ActionRecommendation(
        id=data["id"],
        title=data["title"],
        description=data.get("description", ""),
        action_type=data["action_type"],
        estimated_impact=float(data.get("estimated_impact", 0.0)),
        estimated_effort=data["estimated_effort"],
        target_url=data.get("target_url"),
        parameters={str(k): str(v) for k, v in (data.get("parameters") or {}).items()},
        is_completed=bool(data.get("is_completed", False)),
        completed_at=_parse_dt(data.get("completed_at")),
    )


def _encode_feedback(feedback: Feedback | None) -> dict | None:
    if feedback is None:
        return None
    return {
        "rating": feedback.rating,
        "is_helpful": feedback.is_helpful,
        "submitted_by": feedback.submitted_by,
        "action_taken": feedback.action_taken,
        "comment": feedback.comment,
        "submitted_at": _iso(feedback.submitted_at),
    }


def _decode_feedback(data: dict | None) -> Feedback | None:
    if not data:
        return None
    feedback = Feedback(
        rating=int(data["rating"]),
        is_helpful=bool(data["is_helpful"]),
        submitted_by=data.get("submitted_by", ""),
        action_taken=bool(data.get("action_taken", False)),
        comment=data.get("comment"),
    )
    submitted_at = _parse_dt(data.get("submitted_at"))
    if submitted_at is not None:
        feedback.submitted_at = submitted_at
    return feedback


def apply_insight(record: InsightRecord, insight: Insight) -> InsightRecord:
    """Copy every insight field onto an existing row."""
    record.id = insight.id
    record.insight_type = insight.insight_type
    record.title = insight.title
    record.description = insight.description
    record.confidence = insight.confidence
    record.priority = insight.priority
    record.priority_rank = insight.priority_rank
    record.category = insight.category
    record.target_entity_type = insight.target_entity_type
    record.target_entity_id = insight.target_entity_id
    record.actions = [_encode_action(a) for a in insight.actions]
    record.supporting_data = dict(insight.supporting_data)
    record.tags = list(insight.tags)
    record.feedback = _encode_feedback(insight.feedback)
    record.is_action_taken = insight.is_action_taken
    record.created_at = insight.created_at
    record.expires_at = insight.expires_at
    return record


def encode_insight(insight: Insight) -> InsightRecord:
    return apply_insight(InsightRecord(), insight)


def decode_insight(record: InsightRecord) -> Insight:
    _require(
        "insight", record,
        "id", "insight_type", "title", "confidence", "priority", "category",
        "target_entity_type", "target_entity_id", "created_at",
    )
    try:
        return Insight(
            id=record.id,
            insight_type=record.insight_type,
            title=record.title,
            description=record.description or "",
            confidence=float(record.confidence),
            priority=record.priority,
            category=record.category,
            target_entity_type=record.target_entity_type,
            target_entity_id=record.target_entity_id,
            actions=[_decode_action(a) for a in (record.actions or [])],
            supporting_data={str(k): str(v) for k, v in (record.supporting_data or {}).items()},
            tags=list(record.tags or []),
            feedback=_decode_feedback(record.feedback),
            is_action_taken=bool(record.is_action_taken),
            created_at=record.created_at,
            expires_at=record.expires_at,
        )
    except _DECODE_ERRORS as exc:
        raise InvalidRecord("insight", record.id, str(exc)) from exc


# ---------------------------------------------------------------------------
# Predictions
# ---------------------------------------------------------------------------

def encode_prediction(prediction: Prediction) -> PredictionRecord:
    return PredictionRecord(
        id=prediction.id,
        entity_id=prediction.entity_id,
        entity_type=prediction.entity_type,
        prediction_type=prediction.prediction_type,
        predicted_value=prediction.predicted_value,
        confidence=prediction.confidence,
        timeframe=prediction.timeframe,
        factors=[
            {
                "factor": f.factor,
                "impact": f.impact,
                "confidence": f.confidence,
                "description": f.description,
            }
            for f in prediction.factors
        ],
        created_at=prediction.created_at,
    )


def decode_prediction(record: PredictionRecord) -> Prediction:
    _require(
        "prediction", record,
        "id", "entity_id", "entity_type", "prediction_type",
        "predicted_value", "confidence", "timeframe", "created_at",
    )
    try:
        return Prediction(
            id=record.id,
            entity_id=record.entity_id,
            entity_type=record.entity_type,
            prediction_type=record.prediction_type,
            predicted_value=float(record.predicted_value),
            confidence=float(record.confidence),
            timeframe=record.timeframe,
            factors=tuple(
                InfluencingFactor(
                    factor=f["factor"],
                    impact=float(f["impact"]),
                    confidence=float(f["confidence"]),
                    description=f.get("description", ""),
                )
                for f in (record.factors or [])
            ),
            created_at=record.created_at,
        )
    except _DECODE_ERRORS as exc:
        raise InvalidRecord("prediction", record.id, str(exc)) from exc


# ---------------------------------------------------------------------------
# Interactions and training rows
# ---------------------------------------------------------------------------

def encode_interaction(interaction: Interaction) -> InteractionRecord:
    return InteractionRecord(
        insight_id=interaction.insight_id,
        user_id=interaction.user_id,
        interaction_type=interaction.interaction_type,
        timestamp=interaction.timestamp,
        duration_seconds=interaction.duration_seconds,
        metadata_=dict(interaction.metadata),
    )


def decode_interaction(record: InteractionRecord) -> Interaction:
    _require("interaction", record, "insight_id", "user_id", "interaction_type", "timestamp")
    try:
        return Interaction(
            insight_id=record.insight_id,
            user_id=record.user_id,
            interaction_type=record.interaction_type,
            timestamp=record.timestamp,
            duration_seconds=record.duration_seconds,
            metadata={str(k): str(v) for k, v in (record.metadata_ or {}).items()},
        )
    except _DECODE_ERRORS as exc:
        raise InvalidRecord("interaction", getattr(record, "id", None), str(exc)) from exc


def encode_training_point(point: TrainingDataPoint) -> TrainingDataRecord:
    return TrainingDataRecord(
        id=point.id,
        entity_type=point.entity_type,
        entity_id=point.entity_id,
        features=dict(point.features),
        target=point.target,
        labels=list(point.labels),
        timestamp=point.timestamp,
    )


def decode_training_point(record: TrainingDataRecord) -> TrainingDataPoint:
    _require("training point", record, "id", "entity_type", "entity_id", "features", "target", "timestamp")
    try:
        return TrainingDataPoint(
            id=record.id,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            features={str(k): float(v) for k, v in record.features.items()},
            target=float(record.target),
            labels=[str(label) for label in (record.labels or [])],
            timestamp=record.timestamp,
        )
    except _DECODE_ERRORS as exc:
        raise InvalidRecord("training point", record.id, str(exc)) from exc


# ---------------------------------------------------------------------------
# Model metrics
# ---------------------------------------------------------------------------

def encode_model_metrics(metrics: ModelMetrics) -> ModelMetricsRecord:
    return ModelMetricsRecord(
        id=metrics.id,
        model_name=metrics.model_name,
        version=metrics.version,
        accuracy=metrics.accuracy,
        precision=metrics.precision,
        recall=metrics.recall,
        f1_score=metrics.f1_score,
        mean_absolute_error=metrics.mean_absolute_error,
        root_mean_square_error=metrics.root_mean_square_error,
        training_data_size=metrics.training_data_size,
        last_trained_at=metrics.last_trained_at,
        evaluated_at=metrics.evaluated_at,
    )


def _optional_float(value) -> float | None:
    return float(value) if value is not None else None


def decode_model_metrics(record: ModelMetricsRecord) -> ModelMetrics:
    _require(
        "model metrics", record,
        "id", "model_name", "version", "accuracy", "precision", "recall",
        "f1_score", "training_data_size", "last_trained_at", "evaluated_at",
    )
    try:
        return ModelMetrics(
            id=record.id,
            model_name=record.model_name,
            version=record.version,
            accuracy=float(record.accuracy),
            precision=float(record.precision),
            recall=float(record.recall),
            f1_score=float(record.f1_score),
            mean_absolute_error=_optional_float(record.mean_absolute_error),
            root_mean_square_error=_optional_float(record.root_mean_square_error),
            training_data_size=int(record.training_data_size),
            last_trained_at=record.last_trained_at,
            evaluated_at=record.evaluated_at,
        )
    except _DECODE_ERRORS as exc:
        raise InvalidRecord("model metrics", record.id, str(exc)) from exc
