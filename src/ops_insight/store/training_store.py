"""Training-data export store."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ops_insight.db.codec import decode_training_point, encode_training_point
from ops_insight.db.models import TrainingDataRecord
from ops_insight.errors import PersistenceFailure
from ops_insight.models import TrainingDataPoint
from ops_insight.store.common import SaveReport, decode_rows, save_each

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 1000


class TrainingDataStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(self, point: TrainingDataPoint) -> TrainingDataPoint:
        async with self._session_factory() as session:
            try:
                session.add(encode_training_point(point))
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure("save_training_point", point.id, exc) from exc
        return point

    async def save_many(self, points: list[TrainingDataPoint]) -> SaveReport:
        report = await save_each(points, self.save, lambda p: p.id)
        logger.info("Exported %d training rows, %d failed", len(report.saved), len(report.failed))
        return report

    async def fetch(
        self,
        entity_type: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = DEFAULT_LIMIT,
    ) -> list[TrainingDataPoint]:
        """Newest rows for an entity type, optionally within [start, end]."""
        stmt = select(TrainingDataRecord).where(TrainingDataRecord.entity_type == entity_type)
        if start is not None:
            stmt = stmt.where(TrainingDataRecord.timestamp >= start)
        if end is not None:
            stmt = stmt.where(TrainingDataRecord.timestamp <= end)
        stmt = stmt.order_by(TrainingDataRecord.timestamp.desc()).limit(limit)

        async with self._session_factory() as session:
            try:
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure("fetch_training_data", None, exc) from exc
        return decode_rows(rows, decode_training_point)
