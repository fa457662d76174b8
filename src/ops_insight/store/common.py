"""Shared pieces of the store implementations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, TypeVar

from ops_insight.errors import InvalidRecord, PersistenceFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class SaveReport:
    """Per-item outcome of a bulk write."""
    saved: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)   # item id -> error

    @property
    def ok(self) -> bool:
        return not self.failed


async def save_each(
    items: Iterable[T],
    save_one: Callable[[T], Awaitable[object]],
    item_id: Callable[[T], str],
) -> SaveReport:
    """Write items one by one so a failure only loses that item."""
    report = SaveReport()
    for item in items:
        key = item_id(item)
        try:
            await save_one(item)
        except PersistenceFailure as exc:
            logger.exception("Failed to persist %s, continuing", key)
            report.failed[key] = str(exc.cause)
            continue
        report.saved.append(key)
    return report


def decode_rows(rows: Iterable[R], decode: Callable[[R], T]) -> list[T]:
    """Decode rows, logging and skipping the malformed ones."""
    items: list[T] = []
    for row in rows:
        try:
            items.append(decode(row))
        except InvalidRecord as exc:
            logger.warning("Skipping stored row: %s", exc)
    return items
