from __future__ import annotations

import json as _json

from fastapi import APIRouter, HTTPException
from sse_starlette.sse import EventSourceResponse

from deepest.errors import ConfigurationError, DeepestError
from deepest.models.research import (
    CancelResponse,
    QuestionsRequest,
    QuestionsResponse,
    ResearchRequest,
    ResearchStartResponse,
)
from deepest.services import logger as log_service
from deepest.services import streaming
from deepest.services.sessions import SessionRegistry

router = APIRouter(prefix="/api/research", tags=["research"])

registry = SessionRegistry()


@router.post("/questions", response_model=QuestionsResponse)
async def clarifying_questions(request: QuestionsRequest):
    """Three clarifying questions to ask before starting research on a topic."""
    orchestrator = registry.orchestrator_factory(None)
    try:
        questions = await orchestrator.get_feedback_questions(request.topic)
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=e.message)
    except DeepestError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return QuestionsResponse(questions=questions)


@router.post("", response_model=ResearchStartResponse)
async def start_research(request: ResearchRequest):
    """Start a research session in the background. Returns session_id to use for streaming."""
    session = registry.create(request)
    registry.start(session)
    return ResearchStartResponse(session_id=session.id)


@router.get("/{session_id}/stream")
async def stream_research(session_id: str):
    """SSE endpoint that streams progress, then one terminal event.

    A session has one stream at a time and is forgotten once the terminal
    event has been sent, so a later reconnect gets 404.
    """
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    if session.streaming:
        raise HTTPException(status_code=409, detail="Session is already being streamed")
    events = registry.stream(session)

    async def event_generator():
        try:
            async for event in events:
                yield {
                    "event": event.event.value,
                    "data": _json.dumps(event.data),
                }
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Unhandled error in research stream",
                error=str(e),
                session_id=session_id,
            )
            error_event = streaming.error("Research stream failed unexpectedly.")
            yield {
                "event": error_event.event.value,
                "data": _json.dumps(error_event.data),
            }
        finally:
            await events.aclose()

    return EventSourceResponse(event_generator())


@router.post("/{session_id}/cancel", response_model=CancelResponse)
async def cancel_research(session_id: str):
    """Request cancellation. Repeated calls are harmless."""
    session = registry.cancel(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    status = session.status if session.finished else "cancelling"
    return CancelResponse(session_id=session.id, status=status)
