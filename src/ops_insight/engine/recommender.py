"""Recommenders — related documents plus task-timing and training heuristics.

Document recommendations embed "title + tags" and compare the user's most
recent documents against the whole library by cosine similarity. The
other two are heuristics over task history and performance samples.
"""

from __future__ import annotations

import statistics
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from ops_insight.engine.embeddings import cosine_similarity
from ops_insight.engine.forecast import PerformanceSample
from ops_insight.engine.insight_builder import (
    MIN_SIMILARITY,
    build_document_recommendation,
    build_task_timing_insight,
    build_training_insight,
)
from ops_insight.engine.ranking import deduplicate_by_target
from ops_insight.models import Insight

MAX_SOURCE_DOCUMENTS = 5     # most recent documents compared per batch
MAX_HITS_PER_SOURCE = 3
MIN_COMPLETED_TASKS = 10
MAX_COURSES_PER_GAP = 2
GAP_RATIO = 0.8              # mean under 80% of benchmark is a gap


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class Document:
    """Read-only view of a document from the document repository."""
    id: str
    title: str
    tags: list[str] = field(default_factory=list)


@dataclass
class TaskRecord:
    """Read-only view of a task from the task repository."""
    id: str
    created_at: datetime
    completed_at: datetime | None = None
    completed_user_ids: list[str] = field(default_factory=list)


@dataclass
class TrainingCourse:
    id: str
    title: str
    description: str = ""


@dataclass
class PerformanceGap:
    """A metric whose average sits well under its benchmark."""
    metric: str
    current_value: float
    target_value: float
    severity: float          # (target - current) / target, >= 0


@dataclass
class CompletionTimeAnalysis:
    optimal_time: str | None
    confidence: float
    efficiency_improvement: float


# ---------------------------------------------------------------------------
# Document similarity
# ---------------------------------------------------------------------------

def document_text(document: Document) -> str:
    """Text that represents a document for embedding."""
    return f"{document.title} {' '.join(document.tags)}".strip()


def source_documents(recent_documents: list[Document]) -> list[Document]:
    """The recent documents compared against the library, most recent first."""
    return recent_documents[:MAX_SOURCE_DOCUMENTS]


def documents_to_embed(sources: list[Document], library: list[Document]) -> list[Document]:
    """Each distinct document once, sources first."""
    seen: set[str] = set()
    documents: list[Document] = []
    for document in sources + library:
        if document.id not in seen:
            seen.add(document.id)
            documents.append(document)
    return documents


def find_similar_documents(
    source: Document,
    candidates: list[Document],
    vectors: dict[str, list[float] | None],
    now: datetime | None = None,
) -> list[Insight]:
    """Top similar documents for one source document.

    The source itself is skipped, as is any document without a vector.
    Hits under the relevance gate never become insights.
    """
    source_vector = vectors.get(source.id)
    if source_vector is None:
        return []

    scored: list[tuple[Document, float]] = []
    for candidate in candidates:
        if candidate.id == source.id:
            continue
        candidate_vector = vectors.get(candidate.id)
        if candidate_vector is None:
            continue
        similarity = cosine_similarity(source_vector, candidate_vector)
        if similarity >= MIN_SIMILARITY:
            scored.append((candidate, similarity))

    scored.sort(key=lambda pair: pair[1], reverse=True)

    insights: list[Insight] = []
    for document, similarity in scored[:MAX_HITS_PER_SOURCE]:
        insight = build_document_recommendation(
            source_id=source.id,
            source_title=source.title,
            target_id=document.id,
            target_title=document.title,
            similarity=similarity,
            now=now,
        )
        if insight is not None:
            insights.append(insight)
    return insights


# ---------------------------------------------------------------------------
# Task timing
# ---------------------------------------------------------------------------

def analyze_completion_times(tasks: list[TaskRecord]) -> CompletionTimeAnalysis:
    """Most frequent completion hour, ties going to the earlier hour."""
    hours = [(task.completed_at or task.created_at).hour for task in tasks]
    if not hours:
        return CompletionTimeAnalysis(optimal_time=None, confidence=0.0, efficiency_improvement=0.0)

    counts = Counter(hours)
    hour = max(counts, key=lambda h: (counts[h], -h))
    return CompletionTimeAnalysis(
        optimal_time=f"{hour}:00",
        confidence=0.7,
        efficiency_improvement=0.2,
    )


def analyze_task_patterns(
    user_id: str,
    tasks: list[TaskRecord],
    now: datetime | None = None,
) -> list[Insight]:
    """Peak-hour suggestion once the user has completed enough tasks."""
    completed = [t for t in tasks if user_id in t.completed_user_ids]
    if len(completed) < MIN_COMPLETED_TASKS:
        return []

    analysis = analyze_completion_times(completed)
    if analysis.optimal_time is None:
        return []

    return [build_task_timing_insight(
        user_id=user_id,
        optimal_time=analysis.optimal_time,
        sample_size=len(completed),
        confidence=analysis.confidence,
        efficiency_improvement=analysis.efficiency_improvement,
        now=now,
    )]


# ---------------------------------------------------------------------------
# Training
# ---------------------------------------------------------------------------

BENCHMARKS: dict[str, float] = {
    "sales": 1000.0,
    "task_completion": 0.85,
    "audit_score": 0.9,
    "client_satisfaction": 0.8,
}
DEFAULT_BENCHMARK = 0.8

TRAINING_KEYWORDS: dict[str, list[str]] = {
    "sales": ["sales", "selling", "customer", "revenue"],
    "task_completion": ["productivity", "time management", "organization"],
    "audit_score": ["compliance", "quality", "audit", "standards"],
    "client_satisfaction": ["customer service", "communication", "relationship"],
}
DEFAULT_KEYWORDS = ["general", "skills", "professional"]


def gap_severity(current: float, target: float) -> float:
    if target <= 0:
        return 0.0
    return max(0.0, (target - current) / target)


def identify_performance_gaps(samples: list[PerformanceSample]) -> list[PerformanceGap]:
    """Metrics averaging under 80% of their benchmark, worst first."""
    by_metric: dict[str, list[float]] = defaultdict(list)
    for sample in samples:
        by_metric[sample.metric].append(sample.value)

    gaps: list[PerformanceGap] = []
    for metric, values in by_metric.items():
        average = statistics.fmean(values)
        benchmark = BENCHMARKS.get(metric, DEFAULT_BENCHMARK)
        if average < benchmark * GAP_RATIO:
            gaps.append(PerformanceGap(
                metric=metric,
                current_value=average,
                target_value=benchmark,
                severity=gap_severity(average, benchmark),
            ))

    return sorted(gaps, key=lambda g: g.severity, reverse=True)


def find_relevant_courses(gap: PerformanceGap, courses: list[TrainingCourse]) -> list[TrainingCourse]:
    """Courses whose title or description mention one of the gap's keywords."""
    keywords = [k.lower() for k in TRAINING_KEYWORDS.get(gap.metric, DEFAULT_KEYWORDS)]
    relevant = []
    for course in courses:
        text = f"{course.title} {course.description}".lower()
        if any(keyword in text for keyword in keywords):
            relevant.append(course)
    return relevant


def recommend_training(
    user_id: str,
    samples: list[PerformanceSample],
    courses: list[TrainingCourse],
    now: datetime | None = None,
) -> list[Insight]:
    """Up to two matching courses per performance gap, one insight per course."""
    if not samples or not courses:
        return []

    recommendations: list[Insight] = []
    for gap in identify_performance_gaps(samples):
        for course in find_relevant_courses(gap, courses)[:MAX_COURSES_PER_GAP]:
            recommendations.append(build_training_insight(
                user_id=user_id,
                course_id=course.id,
                course_title=course.title,
                metric=gap.metric,
                severity=gap.severity,
                now=now,
            ))

    return deduplicate_by_target(recommendations)
