"""Insight persistence over the ``ai_insights`` table."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ops_insight.db.codec import apply_insight, decode_insight, encode_insight
from ops_insight.db.models import InsightRecord
from ops_insight.errors import InvalidRecord, PersistenceFailure
from ops_insight.models import Insight
from ops_insight.store.common import SaveReport, decode_rows, save_each

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50


def _parse_cursor(cursor: str | None) -> int:
    if cursor is None:
        return 0
    try:
        offset = int(cursor)
    except ValueError:
        raise ValueError(f"Invalid cursor: {cursor!r}") from None
    if offset < 0:
        raise ValueError(f"Invalid cursor: {cursor!r}")
    return offset


class InsightStore:
    """Reads and writes insights. One session per operation."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self._session_factory = session_factory
        self.page_size = page_size

    async def save(self, insight: Insight) -> Insight:
        async with self._session_factory() as session:
            try:
                session.add(encode_insight(insight))
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure("save_insight", insight.id, exc) from exc
        logger.debug("Saved insight %s (%s)", insight.id, insight.insight_type)
        return insight

    async def save_many(self, insights: list[Insight]) -> SaveReport:
        """Save each insight independently; failures are reported, not raised."""
        report = await save_each(insights, self.save, lambda i: i.id)
        logger.info("Saved %d insights, %d failed", len(report.saved), len(report.failed))
        return report

    async def fetch(
        self,
        types: list[str] | None = None,
        priorities: list[str] | None = None,
        categories: list[str] | None = None,
        active_only: bool = True,
        limit: int | None = None,
        cursor: str | None = None,
        now: datetime | None = None,
    ) -> tuple[list[Insight], str | None]:
        """One page of insights, highest priority then newest first.

        Args:
            types: Restrict to these insight types.
            priorities: Restrict to these priorities.
            categories: Restrict to these categories.
            active_only: Exclude insights whose expiry has passed.
            limit: Page size; defaults to the store's page size.
            cursor: Opaque cursor returned by the previous page.

        Returns:
            (items, next_cursor). next_cursor is None on the last page.
        """
        limit = limit or self.page_size
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        offset = _parse_cursor(cursor)

        stmt = select(InsightRecord)
        if types:
            stmt = stmt.where(InsightRecord.insight_type.in_(types))
        if priorities:
            stmt = stmt.where(InsightRecord.priority.in_(priorities))
        if categories:
            stmt = stmt.where(InsightRecord.category.in_(categories))
        if active_only:
            now = now or datetime.now(timezone.utc)
            stmt = stmt.where(or_(InsightRecord.expires_at.is_(None), InsightRecord.expires_at > now))
        stmt = (
            stmt.order_by(
                InsightRecord.priority_rank,
                InsightRecord.created_at.desc(),
                InsightRecord.id,
            )
            .offset(offset)
            .limit(limit + 1)
        )

        async with self._session_factory() as session:
            try:
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure("fetch_insights", None, exc) from exc

        next_cursor = str(offset + limit) if len(rows) > limit else None
        return decode_rows(rows[:limit], decode_insight), next_cursor

    async def fetch_created_between(self, start: datetime, end: datetime) -> list[Insight]:
        """All insights created in [start, end], expired ones included."""
        stmt = (
            select(InsightRecord)
            .where(InsightRecord.created_at >= start, InsightRecord.created_at <= end)
            .order_by(InsightRecord.created_at)
        )
        async with self._session_factory() as session:
            try:
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure("fetch_insights_window", None, exc) from exc
        return decode_rows(rows, decode_insight)

    async def get(self, insight_id: str) -> Insight | None:
        async with self._session_factory() as session:
            try:
                record = await session.get(InsightRecord, insight_id)
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure("get_insight", insight_id, exc) from exc
        if record is None:
            return None
        try:
            return decode_insight(record)
        except InvalidRecord as exc:
            logger.warning("Skipping stored row: %s", exc)
            return None

    async def update(self, insight: Insight) -> Insight:
        """Overwrite a stored insight. Raises KeyError when it does not exist."""
        async with self._session_factory() as session:
            try:
                record = await session.get(InsightRecord, insight.id)
                if record is None:
                    raise KeyError(f"Insight {insight.id} not found")
                apply_insight(record, insight)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure("update_insight", insight.id, exc) from exc
        return insight

    async def delete(self, insight_id: str) -> bool:
        async with self._session_factory() as session:
            try:
                record = await session.get(InsightRecord, insight_id)
                if record is None:
                    return False
                await session.delete(record)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceFailure("delete_insight", insight_id, exc) from exc
        logger.info("Deleted insight %s", insight_id)
        return True
