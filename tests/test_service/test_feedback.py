"""Tests for consumer lifecycle operations."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from ops_insight.feedback import dismiss, mark_action_taken, provide_feedback, record_view
from ops_insight.models import ActionRecommendation, Feedback, Insight

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


def _make_insight():
    return Insight(
        insight_type="task_optimization",
        title="Optimal Task Completion Time Identified",
        description="You complete tasks 20% faster during 10:00.",
        confidence=0.7,
        priority="medium",
        category="productivity",
        target_entity_type="user",
        target_entity_id="u1",
        actions=[ActionRecommendation(
            title="Schedule Tasks Optimally",
            description="Focus important tasks during your peak time: 10:00",
            action_type="schedule",
            estimated_impact=0.2,
            estimated_effort="minimal",
        )],
    )


def _make_collaborators():
    store = MagicMock()
    store.update = AsyncMock(side_effect=lambda insight: insight)
    log = MagicMock()
    log.record = AsyncMock(side_effect=lambda interaction: interaction)
    return store, log


class TestMarkActionTaken:
    @pytest.mark.asyncio
    async def test_marks_action_and_logs(self):
        store, log = _make_collaborators()
        insight = _make_insight()
        action_id = insight.actions[0].id

        await mark_action_taken(store, log, insight, action_id, "u1", now=NOW)

        assert insight.is_action_taken is True
        assert insight.actions[0].is_completed is True
        assert insight.actions[0].completed_at == NOW
        store.update.assert_awaited_once_with(insight)
        interaction = log.record.await_args[0][0]
        assert interaction.interaction_type == "action_taken"
        assert interaction.metadata == {"action_id": action_id}

    @pytest.mark.asyncio
    async def test_unknown_action(self):
        store, log = _make_collaborators()
        with pytest.raises(ValueError):
            await mark_action_taken(store, log, _make_insight(), "missing", "u1")
        store.update.assert_not_awaited()
        log.record.assert_not_awaited()


class TestProvideFeedback:
    @pytest.mark.asyncio
    async def test_replaces_whole_value(self):
        store, log = _make_collaborators()
        insight = _make_insight()
        insight.feedback = Feedback(rating=2, is_helpful=False, submitted_by="u1", comment="meh")

        await provide_feedback(store, log, insight, Feedback(rating=5, is_helpful=True, submitted_by="u1"), "u1")

        assert insight.feedback.rating == 5
        assert insight.feedback.comment is None
        interaction = log.record.await_args[0][0]
        assert interaction.interaction_type == "feedback_provided"
        assert interaction.metadata == {"rating": "5", "helpful": "true"}

    @pytest.mark.asyncio
    async def test_rating_validated(self):
        store, log = _make_collaborators()
        feedback = Feedback(rating=3, is_helpful=True, submitted_by="u1")
        feedback.rating = 0
        with pytest.raises(ValueError):
            await provide_feedback(store, log, _make_insight(), feedback, "u1")
        store.update.assert_not_awaited()

    def test_rating_out_of_range_rejected_on_construction(self):
        with pytest.raises(ValueError):
            Feedback(rating=6, is_helpful=True, submitted_by="u1")


class TestViewAndDismiss:
    @pytest.mark.asyncio
    async def test_record_view(self):
        _, log = _make_collaborators()
        interaction = await record_view(log, "i1", "u1", duration_seconds=4.2)
        assert interaction.interaction_type == "viewed"
        assert interaction.duration_seconds == 4.2

    @pytest.mark.asyncio
    async def test_dismiss(self):
        _, log = _make_collaborators()
        interaction = await dismiss(log, "i1", "u1")
        assert interaction.interaction_type == "dismissed"
