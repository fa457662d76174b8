"""Statistical forecaster — trend and day-of-week seasonality with volatility-based confidence.

Pure functions over ordered performance samples. For each (entity, metric)
series with enough history, produces one ``Prediction`` with a point
forecast, a volatility-based confidence and the factors behind it.
No DB, async, or embedding dependencies.
"""

from __future__ import annotations

import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone

from ops_insight.errors import InsufficientData
from ops_insight.models import InfluencingFactor, Prediction

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.95
SEASONALITY_FACTOR_THRESHOLD = 0.1


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class PerformanceSample:
    """One observation of a metric for an entity."""
    entity_id: str
    metric: str              # "sales", "task_completion", "audit_score", ...
    value: float
    timestamp: datetime


@dataclass(frozen=True)
class MetricPolicy:
    """How a metric is forecast. Minimums are business policy."""
    metric: str
    prediction_type: str
    min_samples: int
    window: int              # most recent samples considered
    timeframe: str
    bounded: bool            # rate metric, forecast clamped to [0, 1]
    seasonal: bool           # add day-of-week offset to the forecast


METRIC_POLICIES: dict[str, MetricPolicy] = {
    "sales": MetricPolicy(
        metric="sales",
        prediction_type="sales",
        min_samples=7,
        window=30,
        timeframe="weekly",
        bounded=False,
        seasonal=True,
    ),
    "task_completion": MetricPolicy(
        metric="task_completion",
        prediction_type="task_completion",
        min_samples=5,
        window=14,
        timeframe="daily",
        bounded=True,
        seasonal=False,
    ),
    "audit_score": MetricPolicy(
        metric="audit_score",
        prediction_type="audit_score",
        min_samples=3,
        window=10,
        timeframe="monthly",
        bounded=True,
        seasonal=False,
    ),
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _weekday(ts: datetime, reference: datetime) -> int:
    """Weekday of ``ts`` in the reference's timezone when both are aware."""
    if ts.tzinfo is not None and reference.tzinfo is not None:
        ts = ts.astimezone(reference.tzinfo)
    return ts.weekday()


# ---------------------------------------------------------------------------
# Series descriptors
# ---------------------------------------------------------------------------

def calculate_trend(values: list[float]) -> float:
    """Least-squares slope of value against the 1-based sample index."""
    n = len(values)
    if n < 2:
        return 0.0

    xs = range(1, n + 1)
    sum_x = float(sum(xs))
    sum_y = float(sum(values))
    sum_xy = float(sum(x * y for x, y in zip(xs, values)))
    sum_xx = float(sum(x * x for x in xs))

    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


def calculate_seasonality(samples: list[PerformanceSample], now: datetime) -> float:
    """Mean of same-weekday-as-now samples minus the overall mean.

    0.0 when no sample falls on today's weekday.
    """
    if not samples:
        return 0.0

    today = now.weekday()
    same_day = [s.value for s in samples if _weekday(s.timestamp, now) == today]
    if not same_day:
        return 0.0

    return statistics.fmean(same_day) - statistics.fmean(s.value for s in samples)


def calculate_volatility(values: list[float]) -> float:
    """Coefficient of variation (sample stdev / mean).

    0.0 for fewer than two samples or a non-positive mean; never negative.
    """
    if len(values) < 2:
        return 0.0
    mean = statistics.mean(values)
    if mean <= 0:
        return 0.0
    return statistics.stdev(values) / mean


def forecast_confidence(volatility: float) -> float:
    """Inverse-volatility confidence bounded to [0.1, 0.95]."""
    return _clamp(1.0 - volatility, MIN_CONFIDENCE, MAX_CONFIDENCE)


def extract_features(values: list[float]) -> dict[str, float]:
    """Feature vector used for forecasting and training export."""
    if not values:
        return {"trend": 0.0, "volatility": 0.0, "average": 0.0, "recency": 0.0}
    return {
        "trend": calculate_trend(values),
        "volatility": calculate_volatility(values),
        "average": statistics.fmean(values),
        "recency": float(len(values)),
    }


def identify_factors(trend: float, seasonality: float) -> list[InfluencingFactor]:
    """Historical trend always; day-of-week pattern when it is pronounced."""
    if trend > 0:
        trend_desc = "Positive historical trend"
    elif trend < 0:
        trend_desc = "Negative historical trend"
    else:
        trend_desc = "Flat historical trend"

    factors = [
        InfluencingFactor(
            factor="Historical Trend",
            impact=_clamp(trend * 10, -1.0, 1.0),
            confidence=0.7,
            description=trend_desc,
        )
    ]

    if abs(seasonality) > SEASONALITY_FACTOR_THRESHOLD:
        factors.append(InfluencingFactor(
            factor="Day of Week Pattern",
            impact=_clamp(seasonality, -1.0, 1.0),
            confidence=0.6,
            description=(
                "Higher performance on this day" if seasonality > 0
                else "Lower performance on this day"
            ),
        ))

    return factors


# ---------------------------------------------------------------------------
# Forecasting
# ---------------------------------------------------------------------------

def group_series(
    samples: list[PerformanceSample],
) -> dict[tuple[str, str], list[PerformanceSample]]:
    """Group samples by (entity_id, metric), each series in timestamp order."""
    series: dict[tuple[str, str], list[PerformanceSample]] = defaultdict(list)
    for sample in samples:
        series[(sample.entity_id, sample.metric)].append(sample)
    return {key: sorted(points, key=lambda s: s.timestamp) for key, points in series.items()}


def forecast_metric(
    entity_id: str,
    series: list[PerformanceSample],
    policy: MetricPolicy,
    entity_type: str = "user",
    now: datetime | None = None,
) -> Prediction:
    """Forecast the next value of one ordered series.

    Raises InsufficientData when the windowed series is shorter than the
    policy minimum.
    """
    now = now or datetime.now(timezone.utc)
    window = series[-policy.window:]
    if len(window) < policy.min_samples:
        raise InsufficientData(policy.metric, len(window), policy.min_samples)

    values = [s.value for s in window]
    trend = calculate_trend(values)
    volatility = calculate_volatility(values)
    seasonality = calculate_seasonality(window, now)

    if policy.bounded:
        predicted = _clamp(statistics.fmean(values) + trend, 0.0, 1.0)
    else:
        offset = seasonality if policy.seasonal else 0.0
        predicted = max(0.0, values[-1] + trend + offset)

    return Prediction(
        entity_id=entity_id,
        entity_type=entity_type,
        prediction_type=policy.prediction_type,
        predicted_value=predicted,
        confidence=forecast_confidence(volatility),
        timeframe=policy.timeframe,
        factors=tuple(identify_factors(trend, seasonality)),
        created_at=now,
    )


def forecast_series(
    entity_id: str,
    metric: str,
    series: list[PerformanceSample],
    entity_type: str = "user",
    now: datetime | None = None,
) -> Prediction | None:
    """Forecast one series, or None for unknown metrics and short histories."""
    policy = METRIC_POLICIES.get(metric)
    if policy is None:
        return None
    try:
        return forecast_metric(entity_id, series, policy, entity_type=entity_type, now=now)
    except InsufficientData as exc:
        logger.debug("Skipping forecast for %s: %s", entity_id, exc)
        return None


def forecast_all(
    samples: list[PerformanceSample],
    entity_type: str = "user",
    now: datetime | None = None,
) -> list[Prediction]:
    """Forecast every (entity, metric) series that meets its minimum."""
    predictions: list[Prediction] = []
    for (entity_id, metric), series in group_series(samples).items():
        prediction = forecast_series(entity_id, metric, series, entity_type=entity_type, now=now)
        if prediction is not None:
            predictions.append(prediction)
    return predictions
