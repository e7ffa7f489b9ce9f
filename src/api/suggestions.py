"""Suggestion, feedback and learning endpoints."""

from collections import OrderedDict
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from src.config import get_settings
from src.models.feedback import (
    AdaptiveLearningResult,
    FeedbackAnalytics,
    FeedbackSummary,
)
from src.models.request import ContextRequest, FeedbackRequest
from src.models.response import RefreshResponse, SuggestionListResponse
from src.models.suggestion import RefreshCheck, SuggestionStatus
from src.services.feedback_learning_service import (
    FeedbackLearningService,
    SuggestionNotFoundError,
)
from src.services.pattern_store import PatternStore
from src.services.suggestion_engine import suggestions_from_rows
from src.services.suggestion_session import SuggestionSession

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/users/{user_id}", tags=["Suggestions"])
maintenance_router = APIRouter(prefix="/maintenance", tags=["Maintenance"])


def get_session(user_id: UUID, request: Request) -> SuggestionSession:
    """Get or create the suggestion session for a user.

    Sessions hold refresh state between calls and live on app.state. At most
    max_cached_sessions are kept; the least recently used one is evicted.
    """
    sessions = getattr(request.app.state, "suggestion_sessions", None)
    if sessions is None:
        sessions = OrderedDict()
        request.app.state.suggestion_sessions = sessions

    key = str(user_id)
    if key in sessions:
        sessions.move_to_end(key)
        return sessions[key]

    sessions[key] = SuggestionSession(key)
    while len(sessions) > get_settings().max_cached_sessions:
        evicted, _ = sessions.popitem(last=False)
        logger.info("suggestion_session_evicted", user_id=evicted)
    return sessions[key]


@router.post("/suggestions/generate", response_model=SuggestionListResponse)
async def generate_suggestions(
    user_id: UUID,
    body: ContextRequest,
    mine: bool = Query(True, description="Re-mine patterns from task history first"),
    session: SuggestionSession = Depends(get_session),
) -> dict:
    """Generate a fresh ranked set of suggestions for the user's situation."""
    context = body.to_context(str(user_id))
    suggestions = await session.engine.generate_suggestions(context, mine=mine)
    session.manager.last_context = context
    return {"items": suggestions, "total": len(suggestions)}


@router.get("/suggestions", response_model=SuggestionListResponse)
async def list_active_suggestions(
    user_id: UUID,
    limit: Optional[int] = Query(None, ge=1, le=100),
    session: SuggestionSession = Depends(get_session),
) -> dict:
    """Pending, unexpired suggestions, most confident first."""
    suggestions = await session.engine.get_active_suggestions(str(user_id), limit=limit)
    return {"items": suggestions, "total": len(suggestions)}


@router.post("/suggestions/refresh-check", response_model=RefreshCheck)
async def check_refresh(
    user_id: UUID,
    body: ContextRequest,
    session: SuggestionSession = Depends(get_session),
) -> RefreshCheck:
    """Whether the situation changed enough since the last generation."""
    return session.manager.check_contextual_refresh(body.to_context(str(user_id)))


@router.post("/suggestions/refresh", response_model=RefreshResponse)
async def refresh_suggestions(
    user_id: UUID,
    body: ContextRequest,
    session: SuggestionSession = Depends(get_session),
) -> dict:
    """Regenerate if the context moved, otherwise return the active set."""
    context = body.to_context(str(user_id))
    check = session.manager.check_contextual_refresh(context)
    suggestions = await session.manager.refresh_suggestions(context)
    return {"check": check, "items": suggestions, "total": len(suggestions)}


@router.post("/suggestions/cleanup")
async def cleanup_suggestions(
    user_id: UUID,
    session: SuggestionSession = Depends(get_session),
) -> dict:
    """Dismiss this user's expired or stale pending suggestions."""
    dismissed = await session.manager.cleanup_expired_suggestions(user_id=str(user_id))
    return {"dismissed": dismissed}


@router.post("/suggestions/{suggestion_id}/feedback", status_code=201)
async def submit_feedback(
    user_id: UUID,
    suggestion_id: UUID,
    body: FeedbackRequest,
    session: SuggestionSession = Depends(get_session),
) -> dict:
    """Record the user's reaction to a suggestion."""
    try:
        feedback = await session.feedback.collect_feedback(
            user_id=str(user_id),
            suggestion_id=suggestion_id,
            feedback_type=body.feedback_type,
            reason=body.reason,
            context=body.context,
        )
    except SuggestionNotFoundError:
        raise HTTPException(status_code=404, detail="Suggestion not found")

    return {
        "id": str(feedback.id),
        "suggestion_id": str(feedback.suggestion_id),
        "feedback_type": feedback.feedback_type.value,
        "created_at": feedback.created_at.isoformat(),
    }


@router.get("/feedback/analytics", response_model=FeedbackAnalytics)
async def feedback_analytics(
    user_id: UUID,
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    session: SuggestionSession = Depends(get_session),
) -> FeedbackAnalytics:
    """Acceptance and calibration statistics, optionally within [start, end]."""
    timeframe = None
    if start is not None or end is not None:
        timeframe = (
            start or datetime.fromtimestamp(0, tz=timezone.utc),
            end or datetime.now(timezone.utc),
        )
        if timeframe[0] > timeframe[1]:
            raise HTTPException(status_code=400, detail="start must not be after end")
    return await session.feedback.generate_feedback_analytics(str(user_id), timeframe)


@router.get("/feedback/summary", response_model=FeedbackSummary)
async def feedback_summary(
    user_id: UUID,
    session: SuggestionSession = Depends(get_session),
) -> FeedbackSummary:
    """Acceptance broken down by pattern kind and category over the insight window."""
    return await session.adaptive.get_feedback_analytics(str(user_id))


@router.get("/feedback/insights")
async def learning_insights(
    user_id: UUID,
    session: SuggestionSession = Depends(get_session),
) -> dict:
    """Human-readable observations about what the user responds to."""
    insights = await session.feedback.get_learning_insights(str(user_id))
    return {"insights": insights}


@router.post("/learning/run", response_model=AdaptiveLearningResult)
async def run_learning(
    user_id: UUID,
    session: SuggestionSession = Depends(get_session),
) -> AdaptiveLearningResult:
    """Derive insights from recent feedback and apply them to patterns."""
    return await session.adaptive.run_adaptive_learning(str(user_id))


@router.post("/patterns/mine")
async def mine_patterns(
    user_id: UUID,
    session: SuggestionSession = Depends(get_session),
) -> dict:
    """Re-mine every pattern kind from the user's task history."""
    counts = await session.mine_patterns()
    return {"patterns": counts}


@router.get("/suggestions/history")
async def suggestion_history(
    user_id: UUID,
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    status: Optional[SuggestionStatus] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    session: SuggestionSession = Depends(get_session),
) -> dict:
    """Suggestions in any state created inside [since, until], newest first."""
    filters = {"status": status.value} if status is not None else None
    rows = await session.store.query_range(
        "suggestions", str(user_id), since=since, until=until, filters=filters, limit=limit
    )
    items = suggestions_from_rows(rows)
    return {"items": items, "total": len(items)}


@router.get("/patterns/temporal-distribution")
async def temporal_distribution(
    user_id: UUID,
    session: SuggestionSession = Depends(get_session),
) -> dict:
    """Hourly, weekday and per-category weight maps of temporal patterns."""
    return await session.temporal.get_temporal_distribution(str(user_id))


@router.get("/patterns/sequences")
async def sequence_visualization(
    user_id: UUID,
    session: SuggestionSession = Depends(get_session),
) -> dict:
    """Top workflows, their dependency graph and workflows per category."""
    return await session.sequential.get_sequence_visualization(str(user_id))


@router.get("/patterns/dependencies")
async def task_dependencies(
    user_id: UUID,
    session: SuggestionSession = Depends(get_session),
) -> dict:
    """Tasks that reliably follow other tasks in the recent history."""
    tasks = await session.history.get_completed_tasks(str(user_id))
    dependencies = session.sequential.detect_task_dependencies(tasks)
    return {
        "dependencies": [
            {"prerequisite": d.prerequisite, "dependent": d.dependent, "strength": d.strength}
            for d in dependencies
        ]
    }


@maintenance_router.post("/cleanup")
async def cleanup_all() -> dict:
    """Dismiss expired or stale pending suggestions for every user."""
    dismissed = await PatternStore().mark_expired(datetime.now(timezone.utc))
    return {"dismissed": dismissed}


@maintenance_router.post("/process-feedback")
async def process_feedback_batch(
    limit: Optional[int] = Query(None, ge=1, le=1000),
) -> dict:
    """Learn from feedback rows that were stored but never processed."""
    result = await FeedbackLearningService().process_pending_feedback(limit=limit)
    logger.info("pending_feedback_batch", processed=result.processed, failed=result.failed)
    return result.model_dump()
