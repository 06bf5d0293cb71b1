from __future__ import annotations

from pathlib import Path

from deepest.models.events import EventType, SSEEvent
from deepest.models.research import ProgressUpdate, ResearchData


def progress(update: ProgressUpdate) -> SSEEvent:
    return SSEEvent(event=EventType.PROGRESS, data=update.model_dump())


def research_complete(data: ResearchData, report_path: Path | str | None = None) -> SSEEvent:
    """Emit the finished report and where it was saved, if anywhere."""
    payload = data.model_dump()
    payload["report_path"] = str(report_path) if report_path else None
    return SSEEvent(event=EventType.RESEARCH_COMPLETE, data=payload)


def cancelled(message: str = "Research cancelled by user") -> SSEEvent:
    return SSEEvent(event=EventType.CANCELLED, data={"message": message})


def error(message: str, error_type: str | None = None) -> SSEEvent:
    data = {"message": message}
    if error_type:
        data["error_type"] = error_type
    return SSEEvent(event=EventType.ERROR, data=data)
