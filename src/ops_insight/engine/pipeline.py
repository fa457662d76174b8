"""Batch pipeline — parallel fan-out of the generators and the final join.

Each source item (a metric series, an activity snapshot, a recent document)
becomes one branch. Branches run the synchronous computation in worker
threads under a concurrency bound, are all joined, and their failures are
collected instead of aborting the batch. Nothing is persisted here.

Document recommendations take two rounds: every distinct document is
embedded in its own branch, then each recent document is compared
against the shared vectors in its own branch.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from ops_insight.engine import recommender
from ops_insight.engine.embeddings import EmbeddingProvider
from ops_insight.engine.forecast import PerformanceSample, forecast_series, group_series
from ops_insight.engine.insight_builder import build_prediction_insight, build_risk_insight
from ops_insight.engine.ranking import dedupe_and_rank, rank_by_priority
from ops_insight.engine.recommender import Document, TaskRecord, TrainingCourse
from ops_insight.engine.risk_rules import ActivitySnapshot, evaluate_rules
from ops_insight.errors import InsufficientData, InvalidRecord, PersistenceFailure
from ops_insight.models import Insight, Prediction

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5

EMBEDDING_PASS = "document_embedding"
DOCUMENT_PASS = "document_recommendations"

# Checked in order against the lower-cased message; whole words only.
_MESSAGE_PATTERNS = (
    ("rate_limit", re.compile(r"\b(429|quota|rate[ _-]?limit(ed)?|resource_exhausted)\b")),
    ("auth_error", re.compile(r"\b(401|403|unauthori[sz]ed|forbidden|api[ _]key|permission denied)\b")),
    ("timeout", re.compile(r"\b(timeout|timed out)\b")),
    ("parse_error", re.compile(r"\b(json|parse|could not decode)\b")),
    ("network_error", re.compile(r"\b(connection|connect|network|dns|socket)\b")),
)


def _classify_error(exc: BaseException) -> str:
    """Bucket a branch failure for the batch diagnostics."""
    if isinstance(exc, InsufficientData):
        return "insufficient_data"
    if isinstance(exc, InvalidRecord):
        return "invalid_record"
    if isinstance(exc, PersistenceFailure):
        return "persistence_error"
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return "timeout"
    if isinstance(exc, ConnectionError):
        return "network_error"
    msg = str(exc).lower()
    for category, pattern in _MESSAGE_PATTERNS:
        if pattern.search(msg):
            return category
    return "internal_error"


class _PassTracker:
    """Per-pass branch counts for batch diagnostics.

    A pass is "ok" when every branch succeeded, "partial" when some
    failed and "failed" when all of them did.
    """

    def __init__(self) -> None:
        self._results: list[dict] = []

    def record(
        self,
        name: str,
        *,
        branches: int,
        failed: int = 0,
        count: int = 0,
        duration_ms: int = 0,
        error: BaseException | None = None,
    ) -> None:
        if not failed:
            status = "ok"
        elif failed < branches:
            status = "partial"
        else:
            status = "failed"
        entry: dict = {
            "pass": name,
            "status": status,
            "branches": branches,
            "failed_branches": failed,
            "count": count,
            "duration_ms": duration_ms,
        }
        if error is not None:
            entry["error"] = str(error)[:500]
            entry["error_type"] = _classify_error(error)
        self._results.append(entry)

    @property
    def results(self) -> list[dict]:
        return list(self._results)

    @property
    def degraded_count(self) -> int:
        return sum(1 for r in self._results if r["status"] != "ok")


def _elapsed_ms(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)


# ---------------------------------------------------------------------------
# Request / result
# ---------------------------------------------------------------------------

@dataclass
class BatchRequest:
    """Source data for one batch run. Every list may be empty."""
    user_id: str
    recent_documents: list[Document] = field(default_factory=list)   # most recent first
    all_documents: list[Document] = field(default_factory=list)
    samples: list[PerformanceSample] = field(default_factory=list)
    snapshots: list[ActivitySnapshot] = field(default_factory=list)
    tasks: list[TaskRecord] = field(default_factory=list)
    courses: list[TrainingCourse] = field(default_factory=list)
    entity_type: str = "user"
    now: datetime | None = None


@dataclass
class BranchFailure:
    pass_name: str
    branch: str
    error: str
    error_type: str


@dataclass
class BatchResult:
    insights: list[Insight] = field(default_factory=list)        # priority order
    predictions: list[Prediction] = field(default_factory=list)
    failures: list[BranchFailure] = field(default_factory=list)
    diagnostics: list[dict] = field(default_factory=list)


@dataclass
class _Branch:
    pass_name: str
    label: str
    fn: Callable[..., Any]
    args: tuple = ()


@dataclass
class _Outcome:
    branch: _Branch
    value: Any = None
    error: BaseException | None = None
    duration_ms: int = 0


# ---------------------------------------------------------------------------
# Branch bodies (synchronous, run in worker threads)
# ---------------------------------------------------------------------------

def _forecast_one(
    entity_id: str,
    metric: str,
    series: list[PerformanceSample],
    entity_type: str,
    now: datetime,
) -> tuple[Prediction, Insight] | None:
    prediction = forecast_series(entity_id, metric, series, entity_type=entity_type, now=now)
    if prediction is None:
        return None
    return prediction, build_prediction_insight(prediction, now=now)


def _assess_one(snapshot: ActivitySnapshot, now: datetime) -> list[Insight]:
    return [build_risk_insight(signal, now=now) for signal in evaluate_rules(snapshot)]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class InsightEngine:
    """Runs the generators for a batch and merges their output.

    The embedder is shared read-only across branches; ``None`` means the
    embedding capability is unavailable and document recommendations are
    empty.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider | None = None,
        max_concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.embedder = embedder
        self.max_concurrency = max_concurrency

    async def _fan_out(self, branches: list[_Branch]) -> list[_Outcome]:
        """Run every branch under the concurrency bound and join them all."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(branch: _Branch) -> _Outcome:
            async with semaphore:
                t0 = time.monotonic()
                try:
                    value = await asyncio.to_thread(branch.fn, *branch.args)
                except Exception as exc:
                    logger.exception("Branch %s/%s failed, skipping", branch.pass_name, branch.label)
                    return _Outcome(branch, error=exc, duration_ms=_elapsed_ms(t0))
                return _Outcome(branch, value=value, duration_ms=_elapsed_ms(t0))

        results = await asyncio.gather(*(run(b) for b in branches), return_exceptions=True)

        outcomes: list[_Outcome] = []
        for branch, result in zip(branches, results):
            if isinstance(result, BaseException):
                # Cancellation or anything raised outside the worker thread
                logger.error("Branch %s/%s aborted: %s", branch.pass_name, branch.label, result)
                outcomes.append(_Outcome(branch, error=result))
            else:
                outcomes.append(result)
        return outcomes

    # -- Branch builders ----------------------------------------------------

    async def _document_branches(
        self,
        user_id: str,
        recent_documents: list[Document],
        all_documents: list[Document],
        now: datetime,
    ) -> tuple[list[_Branch], list[_Outcome]]:
        """Embed every distinct document, then one comparison branch per source.

        Returns the comparison branches (not yet run) and the outcomes of
        the embedding round.
        """
        if self.embedder is None:
            logger.warning("Embedding capability unavailable; no document recommendations for %s", user_id)
            return [], []
        sources = recommender.source_documents(recent_documents)
        if not sources or not all_documents:
            return [], []

        embed_outcomes = await self._fan_out([
            _Branch(EMBEDDING_PASS, document.id, self.embedder.embed, (recommender.document_text(document),))
            for document in recommender.documents_to_embed(sources, all_documents)
        ])
        vectors: dict[str, list[float] | None] = {
            outcome.branch.label: outcome.value for outcome in embed_outcomes if outcome.error is None
        }

        branches = [
            _Branch(DOCUMENT_PASS, source.id, recommender.find_similar_documents,
                    (source, all_documents, vectors, now))
            for source in sources
        ]
        return branches, embed_outcomes

    def _forecast_branches(self, samples, entity_type, now) -> list[_Branch]:
        return [
            _Branch("forecast", f"{entity_id}:{metric}", _forecast_one,
                    (entity_id, metric, series, entity_type, now))
            for (entity_id, metric), series in group_series(samples).items()
        ]

    def _risk_branches(self, snapshots, now) -> list[_Branch]:
        return [_Branch("risk_assessment", s.user_id, _assess_one, (s, now)) for s in snapshots]

    @staticmethod
    def _collect(outcomes: list[_Outcome]) -> list:
        values = []
        for outcome in outcomes:
            if outcome.error is None and outcome.value is not None:
                values.append(outcome.value)
        return values

    # -- Single-pass entry points ------------------------------------------

    async def recommend_documents(
        self,
        user_id: str,
        recent_documents: list[Document],
        all_documents: list[Document],
        now: datetime | None = None,
    ) -> list[Insight]:
        """Related documents for the user's recent ones, deduplicated and capped."""
        now = now or datetime.now(timezone.utc)
        branches, _ = await self._document_branches(user_id, recent_documents, all_documents, now)
        outcomes = await self._fan_out(branches)
        return dedupe_and_rank([i for batch in self._collect(outcomes) for i in batch])

    async def forecast(
        self,
        samples: list[PerformanceSample],
        entity_type: str = "user",
        now: datetime | None = None,
    ) -> list[Prediction]:
        """One prediction per (entity, metric) series with enough history."""
        now = now or datetime.now(timezone.utc)
        outcomes = await self._fan_out(self._forecast_branches(samples, entity_type, now))
        return [prediction for prediction, _ in self._collect(outcomes)]

    async def assess_risks(
        self,
        snapshots: list[ActivitySnapshot],
        now: datetime | None = None,
    ) -> list[Insight]:
        """Risk insights for every snapshot, highest priority first."""
        now = now or datetime.now(timezone.utc)
        outcomes = await self._fan_out(self._risk_branches(snapshots, now))
        return rank_by_priority([i for batch in self._collect(outcomes) for i in batch])

    async def analyze_task_patterns(
        self,
        user_id: str,
        tasks: list[TaskRecord],
        now: datetime | None = None,
    ) -> list[Insight]:
        outcomes = await self._fan_out([
            _Branch("task_patterns", user_id, recommender.analyze_task_patterns, (user_id, tasks, now))
        ])
        return [i for batch in self._collect(outcomes) for i in batch]

    async def recommend_training(
        self,
        user_id: str,
        samples: list[PerformanceSample],
        courses: list[TrainingCourse],
        now: datetime | None = None,
    ) -> list[Insight]:
        outcomes = await self._fan_out([
            _Branch("training_recommendations", user_id, recommender.recommend_training,
                    (user_id, samples, courses, now))
        ])
        return [i for batch in self._collect(outcomes) for i in batch]

    # -- Full batch -----------------------------------------------------------

    async def run_batch(self, request: BatchRequest) -> BatchResult:
        """Run every generator for one request and merge the results.

        Failed branches are logged, reported in ``failures`` and skipped;
        whatever the other branches produced is still returned.
        """
        now = request.now or datetime.now(timezone.utc)
        tracker = _PassTracker()
        t0 = time.monotonic()

        document_branches, embed_outcomes = await self._document_branches(
            request.user_id, request.recent_documents, request.all_documents, now,
        )
        branches: list[_Branch] = [
            *document_branches,
            *self._forecast_branches(request.samples, request.entity_type, now),
            *self._risk_branches(request.snapshots, now),
            _Branch("task_patterns", request.user_id, recommender.analyze_task_patterns,
                    (request.user_id, request.tasks, now)),
            _Branch("training_recommendations", request.user_id, recommender.recommend_training,
                    (request.user_id, request.samples, request.courses, now)),
        ]
        logger.info("Batch for %s: running %d branches", request.user_id, len(branches))
        outcomes = embed_outcomes + await self._fan_out(branches)

        result = BatchResult()
        document_candidates: list[Insight] = []
        by_pass: dict[str, list[_Outcome]] = {}
        for outcome in outcomes:
            by_pass.setdefault(outcome.branch.pass_name, []).append(outcome)

        for pass_name, pass_outcomes in by_pass.items():
            count = 0
            failed: list[_Outcome] = []
            for outcome in pass_outcomes:
                if outcome.error is not None:
                    failed.append(outcome)
                    result.failures.append(BranchFailure(
                        pass_name=pass_name,
                        branch=outcome.branch.label,
                        error=str(outcome.error),
                        error_type=_classify_error(outcome.error),
                    ))
                    continue
                if outcome.value is None:
                    continue
                if pass_name == EMBEDDING_PASS:
                    count += 1
                elif pass_name == "forecast":
                    prediction, insight = outcome.value
                    result.predictions.append(prediction)
                    result.insights.append(insight)
                    count += 1
                elif pass_name == DOCUMENT_PASS:
                    document_candidates.extend(outcome.value)
                    count += len(outcome.value)
                else:
                    result.insights.extend(outcome.value)
                    count += len(outcome.value)

            tracker.record(
                pass_name,
                branches=len(pass_outcomes),
                failed=len(failed),
                count=count,
                duration_ms=sum(o.duration_ms for o in pass_outcomes),
                error=failed[0].error if failed else None,
            )

        result.insights.extend(dedupe_and_rank(document_candidates))
        result.insights = rank_by_priority(result.insights)
        result.diagnostics = tracker.results
        logger.info(
            "Batch for %s complete: %d insights, %d predictions, %d degraded passes in %dms",
            request.user_id, len(result.insights), len(result.predictions),
            tracker.degraded_count, _elapsed_ms(t0),
        )
        return result
