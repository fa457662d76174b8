"""Composition root — wires settings, database, embedder, engine and stores."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncEngine

from ops_insight.db.connection import make_engine, make_session_factory
from ops_insight.engine.analytics import build_snapshot, build_training_points
from ops_insight.engine.embeddings import EmbeddingProvider, load_embedder
from ops_insight.engine.forecast import PerformanceSample
from ops_insight.engine.pipeline import BatchRequest, BatchResult, InsightEngine
from ops_insight.errors import CapabilityUnavailable
from ops_insight.models import AnalyticsSnapshot, Insight, ModelMetrics
from ops_insight.store.common import SaveReport
from ops_insight.store.insight_store import InsightStore
from ops_insight.store.interaction_log import InteractionLog
from ops_insight.store.metrics_store import ModelMetricsStore
from ops_insight.store.prediction_store import PredictionStore
from ops_insight.store.training_store import TrainingDataStore

logger = logging.getLogger(__name__)


@dataclass
class StoredBatch:
    result: BatchResult
    insights_report: SaveReport
    predictions_report: SaveReport


class InsightService:
    """Holds the wired components. Build it with ``build_service``."""

    def __init__(
        self,
        engine: InsightEngine,
        insights: InsightStore,
        predictions: PredictionStore,
        interactions: InteractionLog,
        training: TrainingDataStore,
        metrics: ModelMetricsStore,
        db_engine: AsyncEngine | None = None,
        analytics_period_days: int = 30,
    ) -> None:
        self.engine = engine
        self.insights = insights
        self.predictions = predictions
        self.interactions = interactions
        self.training = training
        self.metrics = metrics
        self.db_engine = db_engine
        self.analytics_period_days = analytics_period_days

    async def generate_and_store(self, request: BatchRequest) -> StoredBatch:
        """Run a batch, then persist its insights and predictions per item."""
        result = await self.engine.run_batch(request)
        insights_report = await self.insights.save_many(result.insights)
        predictions_report = await self.predictions.save_many(result.predictions)
        return StoredBatch(result, insights_report, predictions_report)

    async def active_insights(
        self,
        types: list[str] | None = None,
        priorities: list[str] | None = None,
        categories: list[str] | None = None,
        cursor: str | None = None,
    ) -> tuple[list[Insight], str | None]:
        return await self.insights.fetch(
            types=types,
            priorities=priorities,
            categories=categories,
            active_only=True,
            cursor=cursor,
        )

    async def analytics(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> AnalyticsSnapshot:
        """Snapshot for [start, end]; defaults to the trailing analytics period."""
        end = end or datetime.now(timezone.utc)
        start = start or end - timedelta(days=self.analytics_period_days)
        return await build_snapshot(self.insights, self.interactions, start, end)

    async def export_training_data(
        self,
        samples: list[PerformanceSample],
        entity_type: str = "user",
    ) -> SaveReport:
        return await self.training.save_many(build_training_points(samples, entity_type))

    async def record_model_metrics(self, metrics: ModelMetrics) -> ModelMetrics:
        """Store the evaluation scores an offline trainer reports for a model."""
        return await self.metrics.save(metrics)

    async def latest_model_metrics(self, model_name: str) -> ModelMetrics | None:
        return await self.metrics.fetch_latest(model_name)

    async def close(self) -> None:
        if self.db_engine is not None:
            await self.db_engine.dispose()


def _load_embedder(settings) -> EmbeddingProvider | None:
    try:
        return load_embedder(
            provider=settings.embedding_provider,
            gemini_api_key=settings.gemini_api_key,
            openai_api_key=settings.openai_api_key,
            model=settings.embedding_model,
        )
    except CapabilityUnavailable as exc:
        logger.warning("Document recommendations disabled: %s", exc)
        return None


def build_service(settings) -> InsightService:
    """Construct every component from a settings object."""
    db_engine = make_engine(settings.database_url)
    session_factory = make_session_factory(db_engine)

    return InsightService(
        engine=InsightEngine(
            embedder=_load_embedder(settings),
            max_concurrency=settings.batch_concurrency,
        ),
        insights=InsightStore(session_factory, page_size=settings.insight_page_size),
        predictions=PredictionStore(session_factory),
        interactions=InteractionLog(session_factory),
        training=TrainingDataStore(session_factory),
        metrics=ModelMetricsStore(session_factory),
        db_engine=db_engine,
        analytics_period_days=settings.analytics_period_days,
    )
