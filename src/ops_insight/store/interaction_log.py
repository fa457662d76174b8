"""Append-only interaction log."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ops_insight.db.codec import decode_interaction, encode_interaction
from ops_insight.db.models import InteractionRecord
from ops_insight.errors import PersistenceFailure
from ops_insight.models import Interaction
from ops_insight.store.common import decode_rows

logger = logging.getLogger(__name__)


class InteractionLog:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(self, interaction: Interaction) -> Interaction:
        async with self._session_factory() as session:
            try:
                session.add(encode_interaction(interaction))
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure("record_interaction", interaction.insight_id, exc) from exc
        logger.debug(
            "Recorded %s on %s by %s",
            interaction.interaction_type, interaction.insight_id, interaction.user_id,
        )
        return interaction

    async def fetch(
        self,
        insight_id: str | None = None,
        user_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Interaction]:
        """Interactions matching every given filter, newest first."""
        stmt = select(InteractionRecord)
        if insight_id is not None:
            stmt = stmt.where(InteractionRecord.insight_id == insight_id)
        if user_id is not None:
            stmt = stmt.where(InteractionRecord.user_id == user_id)
        if start is not None:
            stmt = stmt.where(InteractionRecord.timestamp >= start)
        if end is not None:
            stmt = stmt.where(InteractionRecord.timestamp <= end)
        stmt = stmt.order_by(InteractionRecord.timestamp.desc())

        async with self._session_factory() as session:
            try:
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure("fetch_interactions", insight_id, exc) from exc
        return decode_rows(rows, decode_interaction)
