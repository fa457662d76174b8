"""Analytics aggregator — period statistics over stored insights.

``compute_analytics`` is pure; ``build_snapshot`` reads the window from
the stores and hands the rows over. Empty windows yield zeros, never NaN.
"""

from __future__ import annotations

import logging
import statistics
from collections import Counter
from datetime import datetime

from ops_insight.engine.forecast import PerformanceSample, extract_features, group_series
from ops_insight.models import AnalyticsSnapshot, Insight, Interaction, TrainingDataPoint

logger = logging.getLogger(__name__)

TOP_CATEGORY_COUNT = 5


def _safe_mean(values: list[float]) -> float:
    return statistics.fmean(values) if values else 0.0


def top_categories(insights: list[Insight], count: int = TOP_CATEGORY_COUNT) -> list[str]:
    """Most frequent categories; ties broken alphabetically."""
    counts = Counter(i.category for i in insights)
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [category for category, _ in ordered[:count]]


def compute_analytics(
    insights: list[Insight],
    interactions: list[Interaction],
    period_start: datetime,
    period_end: datetime,
) -> AnalyticsSnapshot:
    """Aggregate one window of insights and interactions.

    Args:
        insights: Insights created inside the window.
        interactions: Interactions recorded inside the window.
        period_start: Window start (inclusive).
        period_end: Window end (inclusive).

    Returns:
        An AnalyticsSnapshot. Averages over empty sets are 0.0.
    """
    total = len(insights)

    ratings = [float(i.feedback.rating) for i in insights if i.feedback is not None]
    acted = sum(1 for i in insights if i.is_action_taken)

    return AnalyticsSnapshot(
        period_start=period_start,
        period_end=period_end,
        total_insights=total,
        insights_by_type=dict(Counter(i.insight_type for i in insights)),
        insights_by_priority=dict(Counter(i.priority for i in insights)),
        average_confidence=_safe_mean([i.confidence for i in insights]),
        action_taken_rate=acted / total if total else 0.0,
        feedback_average=_safe_mean(ratings),
        top_categories=top_categories(insights),
        interaction_counts=dict(Counter(x.interaction_type for x in interactions)),
    )


async def build_snapshot(insight_store, interaction_log, start: datetime, end: datetime) -> AnalyticsSnapshot:
    """Read the window through the stores and aggregate it."""
    insights = await insight_store.fetch_created_between(start, end)
    interactions = await interaction_log.fetch(start=start, end=end)
    logger.info(
        "Analytics window %s..%s: %d insights, %d interactions",
        start.isoformat(), end.isoformat(), len(insights), len(interactions),
    )
    return compute_analytics(insights, interactions, start, end)


def build_training_points(
    samples: list[PerformanceSample],
    entity_type: str = "user",
) -> list[TrainingDataPoint]:
    """One training row per (entity, metric) series with two or more samples.

    Features describe every sample except the last; the last value is the
    target the features should have predicted.
    """
    points: list[TrainingDataPoint] = []
    for (entity_id, metric), series in group_series(samples).items():
        if len(series) < 2:
            continue
        history = [s.value for s in series[:-1]]
        last = series[-1]
        points.append(TrainingDataPoint(
            entity_type=entity_type,
            entity_id=entity_id,
            features=extract_features(history),
            target=last.value,
            timestamp=last.timestamp,
            labels=[metric],
        ))
    return points
