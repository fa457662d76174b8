"""Tests for the batch pipeline (no DB, no embedding provider)."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from ops_insight.engine import pipeline, recommender
from ops_insight.engine.embeddings import EmbeddingProvider
from ops_insight.engine.forecast import PerformanceSample
from ops_insight.engine.pipeline import (
    BatchRequest,
    InsightEngine,
    _classify_error,
    _PassTracker,
)
from ops_insight.engine.recommender import Document, TaskRecord, TrainingCourse
from ops_insight.engine.risk_rules import ActivitySnapshot
from ops_insight.errors import InsufficientData, PersistenceFailure

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


class _StaticEmbedder(EmbeddingProvider):
    def __init__(self, table):
        self.table = table
        self.calls = []

    def _embed_raw(self, text):
        self.calls.append(text)
        return self.table[text]

    def name(self):
        return "static"


def _make_samples(metric, values, entity_id="u1"):
    return [
        PerformanceSample(entity_id, metric, v, NOW - timedelta(days=len(values) - n))
        for n, v in enumerate(values)
    ]


def _make_snapshot(user_id="u1", **overrides):
    values = dict(
        user_id=user_id,
        task_completion_rate=0.9,
        average_task_duration=100.0,
        benchmark_task_duration=100.0,
    )
    values.update(overrides)
    return ActivitySnapshot(**values)


def _make_request(**overrides):
    values = dict(
        user_id="u1",
        recent_documents=[Document("d1", "Audit Plan", ["audit"])],
        all_documents=[
            Document("d1", "Audit Plan", ["audit"]),
            Document("d2", "Audit Checklist", ["audit"]),
        ],
        samples=_make_samples("audit_score", [0.9, 0.92, 0.94]),
        snapshots=[_make_snapshot(overdue_mandatory_training=3)],
        now=NOW,
    )
    values.update(overrides)
    return BatchRequest(**values)


EMBEDDER = _StaticEmbedder({
    "Audit Plan audit": [1.0, 0.2],
    "Audit Checklist audit": [1.0, 0.3],
})


class TestClassifyError:
    def test_categories(self):
        assert _classify_error(RuntimeError("429 Too Many Requests")) == "rate_limit"
        assert _classify_error(RuntimeError("Rate limit exceeded")) == "rate_limit"
        assert _classify_error(RuntimeError("invalid api_key")) == "auth_error"
        assert _classify_error(TimeoutError()) == "timeout"
        assert _classify_error(ValueError("could not decode payload")) == "parse_error"
        assert _classify_error(OSError("connection refused")) == "network_error"
        assert _classify_error(ConnectionResetError()) == "network_error"
        assert _classify_error(ZeroDivisionError("division by zero")) == "internal_error"

    def test_whole_words_only(self):
        assert _classify_error(RuntimeError("failed to generate embedding")) == "internal_error"
        assert _classify_error(KeyError("author")) == "internal_error"
        assert _classify_error(ValueError("unparseable weekday")) == "internal_error"

    def test_engine_errors(self):
        assert _classify_error(InsufficientData("sales", 3, 7)) == "insufficient_data"
        failure = PersistenceFailure("save_insight", "i1", RuntimeError("connection lost"))
        assert _classify_error(failure) == "persistence_error"


class TestPassTracker:
    def test_status_from_branch_counts(self):
        tracker = _PassTracker()
        tracker.record("forecast", branches=2, count=2, duration_ms=5)
        tracker.record("risk_assessment", branches=3, failed=1, count=1, error=RuntimeError("x" * 600))
        tracker.record("task_patterns", branches=1, failed=1, error=TimeoutError("timed out"))

        ok, partial, failed = tracker.results
        assert ok == {
            "pass": "forecast", "status": "ok", "branches": 2,
            "failed_branches": 0, "count": 2, "duration_ms": 5,
        }
        assert partial["status"] == "partial"
        assert len(partial["error"]) == 500
        assert partial["error_type"] == "internal_error"
        assert failed["status"] == "failed"
        assert failed["error_type"] == "timeout"
        assert tracker.degraded_count == 2


class TestInsightEngine:
    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            InsightEngine(max_concurrency=0)

    @pytest.mark.asyncio
    async def test_run_batch_merges_all_passes(self):
        engine = InsightEngine(embedder=EMBEDDER)
        result = await engine.run_batch(_make_request())

        types = [i.insight_type for i in result.insights]
        assert "document_recommendation" in types
        assert "compliance_alert" in types
        assert "performance_prediction" in types
        assert len(result.predictions) == 1
        assert result.predictions[0].prediction_type == "audit_score"
        assert result.failures == []

        ranks = [i.priority_rank for i in result.insights]
        assert ranks == sorted(ranks)
        assert result.insights[0].priority == "critical"

        passes = {d["pass"]: d for d in result.diagnostics}
        assert set(passes) == {
            "document_embedding", "document_recommendations", "forecast",
            "risk_assessment", "task_patterns", "training_recommendations",
        }
        assert all(d["status"] == "ok" for d in result.diagnostics)
        assert passes["forecast"]["count"] == 1
        assert passes["document_embedding"]["count"] == 2

    @pytest.mark.asyncio
    async def test_batch_stamps_one_timestamp(self):
        result = await InsightEngine(embedder=EMBEDDER).run_batch(_make_request())
        assert {i.created_at for i in result.insights} == {NOW}

    @pytest.mark.asyncio
    async def test_missing_embedder_degrades(self):
        result = await InsightEngine(embedder=None).run_batch(_make_request())
        assert all(i.insight_type != "document_recommendation" for i in result.insights)
        assert result.failures == []
        assert any(i.insight_type == "compliance_alert" for i in result.insights)

    @pytest.mark.asyncio
    async def test_failed_branch_is_isolated(self):
        request = _make_request(snapshots=[_make_snapshot("u1", failed_audits_count=1), _make_snapshot("u2")])
        original = pipeline._assess_one

        def flaky(snapshot, now):
            if snapshot.user_id == "u2":
                raise RuntimeError("connection reset by peer")
            return original(snapshot, now)

        with patch("ops_insight.engine.pipeline._assess_one", side_effect=flaky):
            result = await InsightEngine(embedder=EMBEDDER).run_batch(request)

        assert len(result.failures) == 1
        failure = result.failures[0]
        assert (failure.pass_name, failure.branch) == ("risk_assessment", "u2")
        assert failure.error_type == "network_error"
        assert any(i.insight_type == "compliance_alert" for i in result.insights)
        risk = next(d for d in result.diagnostics if d["pass"] == "risk_assessment")
        assert risk["status"] == "partial"
        assert (risk["branches"], risk["failed_branches"], risk["count"]) == (2, 1, 1)

    @pytest.mark.asyncio
    async def test_empty_request(self):
        result = await InsightEngine().run_batch(BatchRequest(user_id="u1", now=NOW))
        assert result.insights == []
        assert result.predictions == []
        assert result.failures == []


class TestSinglePasses:
    @pytest.mark.asyncio
    async def test_forecast(self):
        samples = _make_samples("sales", [100.0] * 7) + _make_samples("sales", [1.0] * 3, entity_id="u2")
        predictions = await InsightEngine().forecast(samples, now=NOW)
        assert [(p.entity_id, p.prediction_type) for p in predictions] == [("u1", "sales")]

    @pytest.mark.asyncio
    async def test_assess_risks_priority_sorted(self):
        snapshots = [
            _make_snapshot("u1", task_completion_rate=0.6),
            _make_snapshot("u2", overdue_mandatory_training=5),
        ]
        insights = await InsightEngine(max_concurrency=1).assess_risks(snapshots, now=NOW)
        assert [i.priority for i in insights] == ["critical", "medium"]

    @pytest.mark.asyncio
    async def test_recommend_documents(self):
        docs = _make_request().all_documents
        insights = await InsightEngine(embedder=EMBEDDER).recommend_documents("u1", docs[:1], docs, now=NOW)
        assert [i.target_entity_id for i in insights] == ["d2"]

    @pytest.mark.asyncio
    async def test_task_patterns_and_training(self):
        engine = InsightEngine()
        base = datetime(2024, 5, 1, 16, tzinfo=timezone.utc)
        tasks = [TaskRecord(f"t{n}", base, base + timedelta(days=n), ["u1"]) for n in range(10)]
        [timing] = await engine.analyze_task_patterns("u1", tasks, now=NOW)
        assert timing.supporting_data["optimal_time"] == "16:00"

        courses = [TrainingCourse("c1", "Audit fundamentals")]
        [training] = await engine.recommend_training(
            "u1", _make_samples("audit_score", [0.2, 0.3]), courses, now=NOW,
        )
        assert training.target_entity_id == "c1"


class TestDocumentRecommendations:
    TABLE = {
        "Alpha": [1.0, 0.0],
        "Beta": [0.8, 0.6],
        "Target": [1.0, 0.1],
        "Broken": [1.0, None],
    }

    def _library(self):
        recent = [Document("r1", "Alpha"), Document("r2", "Beta")]
        return recent, recent + [Document("t", "Target")]

    @pytest.mark.asyncio
    async def test_no_embedder(self):
        recent, library = self._library()
        assert await InsightEngine(embedder=None).recommend_documents("u1", recent, library, now=NOW) == []

    @pytest.mark.asyncio
    async def test_only_five_sources_embedded(self):
        recent = [Document(f"r{n}", f"Recent {n}") for n in range(7)]
        embedder = _StaticEmbedder({f"Recent {n}": [1.0, float(n)] for n in range(7)})
        engine = InsightEngine(embedder=embedder)

        await engine.recommend_documents("u1", recent, [], now=NOW)
        assert embedder.calls == []

        await engine.recommend_documents("u1", recent, recent[:1], now=NOW)
        assert sorted(embedder.calls) == [f"Recent {n}" for n in range(5)]

    @pytest.mark.asyncio
    async def test_dedup_across_sources(self):
        recent, library = self._library()
        insights = await InsightEngine(embedder=_StaticEmbedder(self.TABLE)).recommend_documents(
            "u1", recent, library, now=NOW,
        )
        targets = [i.target_entity_id for i in insights]
        assert targets.count("t") == 1
        t = next(i for i in insights if i.target_entity_id == "t")
        # Alpha is closer to Target than Beta
        assert t.supporting_data["source_document"] == "r1"
        confidences = [i.confidence for i in insights]
        assert confidences == sorted(confidences, reverse=True)

    @pytest.mark.asyncio
    async def test_all_embeddings_failing_degrades_to_nothing(self):
        recent, library = self._library()
        engine = InsightEngine(embedder=_StaticEmbedder({}))
        assert await engine.recommend_documents("u1", recent, library, now=NOW) == []

    @pytest.mark.asyncio
    async def test_unusable_library_vector_keeps_other_hits(self):
        recent, library = self._library()
        library.append(Document("b", "Broken"))
        result = await InsightEngine(embedder=_StaticEmbedder(self.TABLE)).run_batch(
            BatchRequest(user_id="u1", recent_documents=recent[:1], all_documents=library, now=NOW)
        )
        targets = {i.target_entity_id for i in result.insights if i.insight_type == "document_recommendation"}
        assert targets == {"r2", "t"}
        assert result.failures == []
        embedding = next(d for d in result.diagnostics if d["pass"] == "document_embedding")
        assert (embedding["branches"], embedding["count"]) == (4, 3)

    @pytest.mark.asyncio
    async def test_failing_source_keeps_other_sources(self):
        recent, library = self._library()
        original = recommender.find_similar_documents

        def flaky(source, candidates, vectors, now=None):
            if source.id == "r2":
                raise RuntimeError("similarity lookup failed")
            return original(source, candidates, vectors, now)

        with patch("ops_insight.engine.recommender.find_similar_documents", side_effect=flaky):
            result = await InsightEngine(embedder=_StaticEmbedder(self.TABLE)).run_batch(
                BatchRequest(user_id="u1", recent_documents=recent, all_documents=library, now=NOW)
            )

        targets = {i.target_entity_id for i in result.insights if i.insight_type == "document_recommendation"}
        assert targets == {"r2", "t"}
        assert [(f.pass_name, f.branch) for f in result.failures] == [("document_recommendations", "r2")]
        documents = next(d for d in result.diagnostics if d["pass"] == "document_recommendations")
        assert documents["status"] == "partial"
        assert (documents["branches"], documents["failed_branches"]) == (2, 1)
