from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import AsyncGenerator, AsyncIterator, Callable, Optional
from uuid import uuid4

from loguru import logger

from deepest.agents.orchestrator import ResearchOrchestrator
from deepest.config import settings
from deepest.errors import DeepestError, ResearchCancelled
from deepest.models.events import SSEEvent
from deepest.models.research import ProgressUpdate, ResearchRequest
from deepest.services import logger as log_service
from deepest.services import streaming
from deepest.services.progress import ProgressSink
from deepest.services.report_writer import ReportWriter

OrchestratorFactory = Callable[[ProgressSink], ResearchOrchestrator]


def default_orchestrator(progress_sink: ProgressSink) -> ResearchOrchestrator:
    return ResearchOrchestrator(
        progress_sink=progress_sink,
        report_writer=ReportWriter(settings.output_folder),
    )


@dataclass
class ResearchSession:
    """One in-process research run and the event queue its stream drains."""

    id: str
    request: ResearchRequest
    orchestrator: ResearchOrchestrator
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    task: Optional[asyncio.Task] = None
    status: str = "pending"  # pending | running | completed | cancelled | failed
    cancel_requested: bool = False
    terminal: Optional[SSEEvent] = None
    delivered: bool = False
    streaming: bool = False
    finished_at: Optional[float] = None

    @property
    def finished(self) -> bool:
        return self.status in ("completed", "cancelled", "failed")

    def publish(self, event: SSEEvent) -> None:
        if event.is_terminal:
            self.terminal = event
        self.queue.put_nowait(event)

    async def events(self) -> AsyncIterator[SSEEvent]:
        """Yield queued events up to and including the terminal one.

        Once the terminal event has been handed out, later calls yield only it.
        """
        if self.delivered:
            yield self.terminal
            return
        while True:
            event = await self.queue.get()
            self.delivered = event.is_terminal
            yield event
            if self.delivered:
                return


class SessionRegistry:
    """Sessions keyed by id. Each session owns a fresh orchestrator.

    A session is dropped once its stream has delivered the terminal event, or
    ``ttl_seconds`` after it finished when nobody streamed it.
    """

    def __init__(
        self,
        orchestrator_factory: OrchestratorFactory = default_orchestrator,
        *,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.orchestrator_factory = orchestrator_factory
        self.ttl_seconds = settings.session_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._sessions: dict[str, ResearchSession] = {}

    def create(self, request: ResearchRequest) -> ResearchSession:
        self.prune()
        queue: asyncio.Queue = asyncio.Queue()

        def on_progress(update: ProgressUpdate) -> None:
            queue.put_nowait(streaming.progress(update))

        session = ResearchSession(
            id=uuid4().hex,
            request=request,
            orchestrator=self.orchestrator_factory(on_progress),
            queue=queue,
        )
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> ResearchSession | None:
        return self._sessions.get(session_id)

    def start(self, session: ResearchSession) -> asyncio.Task:
        session.status = "running"
        session.task = asyncio.get_running_loop().create_task(self.run(session))
        return session.task

    async def run(self, session: ResearchSession) -> None:
        """Drive the session's orchestrator and publish exactly one terminal event."""
        log_service.log_event(
            event_type="research_started",
            message="Research started",
            session_id=session.id,
            topic=session.request.topic[:100],
        )
        try:
            if session.cancel_requested:
                raise ResearchCancelled()
            data = await session.orchestrator.run(session.request)
        except ResearchCancelled as e:
            session.status = "cancelled"
            session.publish(streaming.cancelled(e.message))
        except DeepestError as e:
            session.status = "failed"
            session.publish(streaming.error(e.message, error_type=type(e).__name__))
        except Exception as e:
            logger.exception(f"Unhandled error in research session {session.id}")
            session.status = "failed"
            session.publish(streaming.error("Research failed unexpectedly.", error_type=type(e).__name__))
        else:
            session.status = "completed"
            session.publish(streaming.research_complete(data, session.orchestrator.last_report_path))
        session.finished_at = self._clock()

        log_service.log_event(
            event_type="research_finished",
            message="Research session finished",
            session_id=session.id,
            status=session.status,
        )

    def cancel(self, session_id: str) -> ResearchSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if not session.finished:
            session.cancel_requested = True
            session.orchestrator.cancel()
        return session

    def active(self) -> list[ResearchSession]:
        return [s for s in self._sessions.values() if not s.finished]

    def stream(self, session: ResearchSession) -> AsyncGenerator[SSEEvent, None]:
        """Claim the single stream of ``session``."""
        session.streaming = True
        return self._stream(session)

    async def _stream(self, session: ResearchSession) -> AsyncGenerator[SSEEvent, None]:
        try:
            async for event in session.events():
                yield event
        finally:
            session.streaming = False
            if session.delivered:
                self.remove(session.id)

    def prune(self) -> int:
        """Drop finished sessions older than the TTL. Returns how many were dropped."""
        cutoff = self._clock() - self.ttl_seconds
        expired = [
            s.id
            for s in self._sessions.values()
            if s.finished_at is not None and s.finished_at <= cutoff and not s.streaming
        ]
        for session_id in expired:
            self.remove(session_id)
        if expired:
            logger.debug(f"Pruned {len(expired)} finished research session(s)")
        return len(expired)

    def remove(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
