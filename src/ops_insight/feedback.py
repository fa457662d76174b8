"""Consumer-side lifecycle operations on stored insights.

The engine never mutates an insight after building it; the consuming
application records what users did with it through these helpers. Each
call persists the insight change first, then appends to the interaction log.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from ops_insight.models import Feedback, Insight, Interaction

logger = logging.getLogger(__name__)


async def mark_action_taken(
    store,
    log,
    insight: Insight,
    action_id: str,
    user_id: str,
    now: datetime | None = None,
) -> Insight:
    """Complete one of the insight's actions and flag the insight as acted on.

    Raises ValueError when ``action_id`` is not one of the insight's actions.
    """
    action = next((a for a in insight.actions if a.id == action_id), None)
    if action is None:
        raise ValueError(f"Insight {insight.id} has no action {action_id!r}")

    now = now or datetime.now(timezone.utc)
    action.is_completed = True
    action.completed_at = now
    insight.is_action_taken = True

    await store.update(insight)
    await log.record(Interaction(
        insight_id=insight.id,
        user_id=user_id,
        interaction_type="action_taken",
        timestamp=now,
        metadata={"action_id": action_id},
    ))
    logger.info("User %s took action %s on insight %s", user_id, action_id, insight.id)
    return insight


async def provide_feedback(
    store,
    log,
    insight: Insight,
    feedback: Feedback,
    user_id: str,
) -> Insight:
    """Replace the insight's feedback as a whole."""
    if not 1 <= feedback.rating <= 5:
        raise ValueError(f"Feedback rating must be 1-5, got {feedback.rating}")

    insight.feedback = feedback
    await store.update(insight)
    await log.record(Interaction(
        insight_id=insight.id,
        user_id=user_id,
        interaction_type="feedback_provided",
        timestamp=feedback.submitted_at,
        metadata={
            "rating": str(feedback.rating),
            "helpful": "true" if feedback.is_helpful else "false",
        },
    ))
    return insight


async def record_view(
    log,
    insight_id: str,
    user_id: str,
    duration_seconds: float | None = None,
) -> Interaction:
    return await log.record(Interaction(
        insight_id=insight_id,
        user_id=user_id,
        interaction_type="viewed",
        duration_seconds=duration_seconds,
    ))


async def dismiss(log, insight_id: str, user_id: str) -> Interaction:
    return await log.record(Interaction(
        insight_id=insight_id,
        user_id=user_id,
        interaction_type="dismissed",
    ))
