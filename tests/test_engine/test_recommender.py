"""Tests for document, task-timing and training recommenders."""

from datetime import datetime, timedelta, timezone

import pytest

from ops_insight.engine.forecast import PerformanceSample
from ops_insight.engine.recommender import (
    Document,
    PerformanceGap,
    TaskRecord,
    TrainingCourse,
    analyze_completion_times,
    analyze_task_patterns,
    document_text,
    documents_to_embed,
    find_relevant_courses,
    find_similar_documents,
    identify_performance_gaps,
    recommend_training,
    source_documents,
)

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

class TestDocumentText:
    def test_title_and_tags(self):
        assert document_text(Document("d1", "Audit Plan", ["audit", "q3"])) == "Audit Plan audit q3"

    def test_no_tags(self):
        assert document_text(Document("d1", "Audit Plan")) == "Audit Plan"


class TestFindSimilarDocuments:
    def _vectors(self):
        return {
            "src": [1.0, 0.0],
            "same": [1.0, 0.0],            # 1.0
            "close": [0.9, 0.1],           # ~0.994
            "mid": [0.6, 0.8],             # 0.6
            "edge_low": [0.49, 0.8717],    # ~0.49
            "far": [0.0, 1.0],             # 0.0
            "missing": None,
        }

    def test_skips_self_and_gate(self):
        docs = [Document(i, i.title()) for i in ("src", "mid", "edge_low", "far", "missing")]
        insights = find_similar_documents(docs[0], docs, self._vectors(), now=NOW)
        assert [i.target_entity_id for i in insights] == ["mid"]
        assert insights[0].confidence == pytest.approx(0.6)

    def test_at_most_three_per_source(self):
        vectors = {"src": [1.0, 0.0], **{f"d{n}": [1.0, n / 10] for n in range(6)}}
        docs = [Document("src", "Src")] + [Document(f"d{n}", f"D{n}") for n in range(6)]
        insights = find_similar_documents(docs[0], docs, vectors, now=NOW)
        assert [i.target_entity_id for i in insights] == ["d0", "d1", "d2"]

    def test_source_without_vector(self):
        vectors = self._vectors()
        vectors["src"] = None
        assert find_similar_documents(Document("src", "Src"), [Document("same", "Same")], vectors) == []


class TestDocumentSelection:
    def test_only_five_sources(self):
        recent = [Document(f"r{n}", f"Recent {n}") for n in range(7)]
        assert [d.id for d in source_documents(recent)] == ["r0", "r1", "r2", "r3", "r4"]

    def test_documents_to_embed_distinct_sources_first(self):
        sources = [Document("a", "A"), Document("b", "B")]
        library = [Document("c", "C"), Document("a", "A"), Document("b", "B"), Document("c", "C")]
        assert [d.id for d in documents_to_embed(sources, library)] == ["a", "b", "c"]


# ---------------------------------------------------------------------------
# Task timing
# ---------------------------------------------------------------------------

def _make_tasks(hours, user_id="u1"):
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    return [
        TaskRecord(
            id=f"t{n}",
            created_at=base,
            completed_at=base + timedelta(days=n, hours=h),
            completed_user_ids=[user_id],
        )
        for n, h in enumerate(hours)
    ]


class TestTaskPatterns:
    def test_most_frequent_hour(self):
        analysis = analyze_completion_times(_make_tasks([9, 14, 14, 10, 14, 9]))
        assert analysis.optimal_time == "14:00"
        assert analysis.confidence == 0.7
        assert analysis.efficiency_improvement == 0.2

    def test_tie_goes_to_earlier_hour(self):
        assert analyze_completion_times(_make_tasks([15, 9, 15, 9])).optimal_time == "9:00"

    def test_falls_back_to_creation_time(self):
        task = TaskRecord("t1", created_at=datetime(2024, 5, 1, 8, tzinfo=timezone.utc))
        assert analyze_completion_times([task]).optimal_time == "8:00"

    def test_no_tasks(self):
        assert analyze_completion_times([]).optimal_time is None

    def test_needs_ten_completed(self):
        assert analyze_task_patterns("u1", _make_tasks([10] * 9), now=NOW) == []
        [insight] = analyze_task_patterns("u1", _make_tasks([10] * 10), now=NOW)
        assert insight.insight_type == "task_optimization"
        assert insight.supporting_data["optimal_time"] == "10:00"

    def test_other_users_tasks_ignored(self):
        tasks = _make_tasks([10] * 6) + _make_tasks([11] * 6, user_id="u2")
        assert analyze_task_patterns("u1", tasks, now=NOW) == []


# ---------------------------------------------------------------------------
# Training
# ---------------------------------------------------------------------------

def _make_samples(metric, values, entity_id="u1"):
    return [
        PerformanceSample(entity_id, metric, v, NOW - timedelta(days=len(values) - n))
        for n, v in enumerate(values)
    ]


COURSES = [
    TrainingCourse("c1", "Consultative Selling", "Grow revenue with better discovery"),
    TrainingCourse("c2", "Customer Retention", ""),
    TrainingCourse("c3", "Advanced Sales Negotiation", ""),
    TrainingCourse("c4", "Time Management Essentials", "Productivity habits"),
    TrainingCourse("c5", "Audit Readiness", "Quality and compliance standards"),
]


class TestPerformanceGaps:
    def test_gap_below_eighty_percent(self):
        gaps = identify_performance_gaps(_make_samples("sales", [500.0, 700.0]))
        assert len(gaps) == 1
        assert gaps[0].current_value == 600.0
        assert gaps[0].target_value == 1000.0
        assert gaps[0].severity == pytest.approx(0.4)

    def test_no_gap_at_eighty_percent(self):
        assert identify_performance_gaps(_make_samples("sales", [800.0])) == []

    def test_unknown_metric_uses_default_benchmark(self):
        [gap] = identify_performance_gaps(_make_samples("training_progress", [0.2]))
        assert gap.target_value == 0.8

    def test_sorted_by_severity(self):
        samples = _make_samples("sales", [700.0]) + _make_samples("audit_score", [0.1])
        assert [g.metric for g in identify_performance_gaps(samples)] == ["audit_score", "sales"]


class TestRelevantCourses:
    def test_keyword_match_case_insensitive(self):
        gap = PerformanceGap("task_completion", 0.4, 0.85, 0.53)
        assert [c.id for c in find_relevant_courses(gap, COURSES)] == ["c4"]

    def test_description_matches(self):
        gap = PerformanceGap("audit_score", 0.3, 0.9, 0.67)
        assert [c.id for c in find_relevant_courses(gap, COURSES)] == ["c5"]


class TestRecommendTraining:
    def test_at_most_two_per_gap(self):
        insights = recommend_training("u1", _make_samples("sales", [100.0, 200.0]), COURSES, now=NOW)
        assert [i.target_entity_id for i in insights] == ["c1", "c2"]
        assert all(i.priority == "high" for i in insights)

    def test_no_courses(self):
        assert recommend_training("u1", _make_samples("sales", [100.0]), [], now=NOW) == []

    def test_no_gap(self):
        assert recommend_training("u1", _make_samples("audit_score", [0.95]), COURSES, now=NOW) == []

    def test_shared_course_collapsed(self):
        course = TrainingCourse("c9", "Customer communication and sales", "")
        samples = _make_samples("sales", [100.0]) + _make_samples("client_satisfaction", [0.1])
        insights = recommend_training("u1", samples, [course], now=NOW)
        assert len(insights) == 1
        assert insights[0].supporting_data["metric"] == "sales"
