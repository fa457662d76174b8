"""Candidate deduplication and ranking.

Parallel generators can propose the same target more than once (two
recent documents both pointing at a third). Candidates are grouped by
(target_entity_type, target_entity_id); the most confident one survives.
"""

from __future__ import annotations

from ops_insight.models import Insight

MAX_RECOMMENDATIONS = 10


def deduplicate_by_target(candidates: list[Insight]) -> list[Insight]:
    """Keep the highest-confidence candidate per target.

    Ties keep the earlier candidate. Groups come out in first-seen order.
    """
    best: dict[tuple[str, str], Insight] = {}

    for insight in candidates:
        current = best.get(insight.target_key)
        if current is None or insight.confidence > current.confidence:
            best[insight.target_key] = insight

    return list(best.values())


def rank_by_confidence(insights: list[Insight]) -> list[Insight]:
    """Most confident first; stable for equal confidence."""
    return sorted(insights, key=lambda i: -i.confidence)


def rank_by_priority(insights: list[Insight]) -> list[Insight]:
    """Critical first, then by confidence within a priority."""
    return sorted(insights, key=lambda i: (i.priority_rank, -i.confidence))


def dedupe_and_rank(
    candidates: list[Insight],
    limit: int | None = MAX_RECOMMENDATIONS,
) -> list[Insight]:
    """Deduplicate by target, sort by confidence, truncate to ``limit``.

    Args:
        candidates: Insights from all parallel branches of one batch.
        limit: Output cap; None keeps everything.

    Returns:
        At most one insight per target, most confident first.
    """
    ranked = rank_by_confidence(deduplicate_by_target(candidates))
    if limit is None:
        return ranked
    return ranked[:limit]
