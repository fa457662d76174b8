"""Model evaluation metrics reported back by offline trainers."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ops_insight.db.codec import decode_model_metrics, encode_model_metrics
from ops_insight.db.models import ModelMetricsRecord
from ops_insight.errors import PersistenceFailure
from ops_insight.models import ModelMetrics
from ops_insight.store.common import decode_rows

logger = logging.getLogger(__name__)

DEFAULT_HISTORY = 20


class ModelMetricsStore:
    """Append-only; each evaluation is a new row."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(self, metrics: ModelMetrics) -> ModelMetrics:
        async with self._session_factory() as session:
            try:
                session.add(encode_model_metrics(metrics))
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure("save_model_metrics", metrics.id, exc) from exc
        logger.info("Saved metrics for model %s v%s", metrics.model_name, metrics.version)
        return metrics

    async def fetch_history(self, model_name: str, limit: int = DEFAULT_HISTORY) -> list[ModelMetrics]:
        """Evaluations of one model, newest first."""
        stmt = (
            select(ModelMetricsRecord)
            .where(ModelMetricsRecord.model_name == model_name)
            .order_by(ModelMetricsRecord.evaluated_at.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            try:
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure("fetch_model_metrics", model_name, exc) from exc
        return decode_rows(rows, decode_model_metrics)

    async def fetch_latest(self, model_name: str) -> ModelMetrics | None:
        history = await self.fetch_history(model_name, limit=1)
        return history[0] if history else None
