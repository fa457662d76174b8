"""ORM models for generated insights, predictions and their feedback trail."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import DeclarativeBase


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class InsightRecord(Base):
    """One generated insight with its actions and feedback inlined."""

    __tablename__ = "ai_insights"

    id = Column(String(36), primary_key=True, default=_uuid)
    insight_type = Column(String(50), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False)
    confidence = Column(Float, nullable=False, default=0.0)
    priority = Column(String(20), nullable=False, index=True)
    priority_rank = Column(Integer, nullable=False)         # 0 = critical ... 4 = informational
    category = Column(String(50), nullable=False, index=True)
    target_entity_type = Column(String(50), nullable=False)
    target_entity_id = Column(String(255), nullable=False)
    actions = Column(JSON, nullable=True)                   # [{id, title, action_type, ...}, ...]
    supporting_data = Column(JSON, nullable=True)           # {str: str}
    tags = Column(JSON, nullable=True)
    feedback = Column(JSON, nullable=True)                  # {rating, is_helpful, ...} or null
    is_action_taken = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)


class PredictionRecord(Base):
    """An immutable forecast. New runs add rows, never update them."""

    __tablename__ = "performance_predictions"

    id = Column(String(36), primary_key=True, default=_uuid)
    entity_id = Column(String(255), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False)
    prediction_type = Column(String(50), nullable=False)
    predicted_value = Column(Float, nullable=False)
    confidence = Column(Float, nullable=False)
    timeframe = Column(String(20), nullable=False)
    factors = Column(JSON, nullable=True)                   # [{factor, impact, confidence, description}, ...]
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class InteractionRecord(Base):
    """Append-only log of users touching insights."""

    __tablename__ = "insight_interactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    insight_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    interaction_type = Column(String(30), nullable=False)   # viewed/dismissed/action_taken/...
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    duration_seconds = Column(Float, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)


class TrainingDataRecord(Base):
    """Exported feature row for offline model training."""

    __tablename__ = "ml_training_data"

    id = Column(String(36), primary_key=True, default=_uuid)
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(255), nullable=False)
    features = Column(JSON, nullable=False)
    target = Column(Float, nullable=False)
    labels = Column(JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())


class ModelMetricsRecord(Base):
    """Evaluation scores of one trained model version."""

    __tablename__ = "ml_model_metrics"

    id = Column(String(36), primary_key=True, default=_uuid)
    model_name = Column(String(100), nullable=False, index=True)
    version = Column(String(50), nullable=False)
    accuracy = Column(Float, nullable=False)
    precision = Column(Float, nullable=False)
    recall = Column(Float, nullable=False)
    f1_score = Column(Float, nullable=False)
    mean_absolute_error = Column(Float, nullable=True)
    root_mean_square_error = Column(Float, nullable=True)
    training_data_size = Column(Integer, nullable=False)
    last_trained_at = Column(DateTime(timezone=True), nullable=False)
    evaluated_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
