"""Prediction persistence. Predictions are append-only."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ops_insight.db.codec import decode_prediction, encode_prediction
from ops_insight.db.models import PredictionRecord
from ops_insight.errors import PersistenceFailure
from ops_insight.models import Prediction
from ops_insight.store.common import SaveReport, decode_rows, save_each

logger = logging.getLogger(__name__)


class PredictionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(self, prediction: Prediction) -> Prediction:
        async with self._session_factory() as session:
            try:
                session.add(encode_prediction(prediction))
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure("save_prediction", prediction.id, exc) from exc
        return prediction

    async def save_many(self, predictions: list[Prediction]) -> SaveReport:
        report = await save_each(predictions, self.save, lambda p: p.id)
        logger.info("Saved %d predictions, %d failed", len(report.saved), len(report.failed))
        return report

    async def fetch_by_entity(
        self,
        entity_id: str,
        entity_type: str,
        prediction_types: list[str] | None = None,
    ) -> list[Prediction]:
        """Predictions for one entity, newest first."""
        stmt = select(PredictionRecord).where(
            PredictionRecord.entity_id == entity_id,
            PredictionRecord.entity_type == entity_type,
        )
        if prediction_types:
            stmt = stmt.where(PredictionRecord.prediction_type.in_(prediction_types))
        stmt = stmt.order_by(PredictionRecord.created_at.desc())

        async with self._session_factory() as session:
            try:
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure("fetch_predictions", entity_id, exc) from exc
        return decode_rows(rows, decode_prediction)
