from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Phase(str, Enum):
    SECTIONS = "Generating Sections"
    TITLE = "Generating Title"
    INTRODUCTION = "Generating Introduction"
    QUERIES = "Generating Search Queries"
    SEARCH = "Searching Web"
    EXTRACTION = "Extracting Learnings"
    GAPS = "Analyzing Gaps"
    SYNTHESIS = "Synthesizing Sections"
    CONCLUSION = "Generating Conclusion"
    SAVING = "Saving Report"
    COMPLETE = "Complete"


# Overall-percent range (start, end) covered by each phase.
PHASE_WEIGHTS: dict[Phase, tuple[float, float]] = {
    Phase.SECTIONS: (0.0, 15.0),
    Phase.TITLE: (15.0, 25.0),
    Phase.INTRODUCTION: (25.0, 35.0),
    Phase.QUERIES: (35.0, 60.0),
    Phase.SEARCH: (35.0, 60.0),
    Phase.EXTRACTION: (35.0, 60.0),
    Phase.GAPS: (60.0, 80.0),
    Phase.SYNTHESIS: (80.0, 90.0),
    Phase.CONCLUSION: (90.0, 100.0),
    Phase.SAVING: (100.0, 100.0),
    Phase.COMPLETE: (100.0, 100.0),
}

_missing_phases = set(Phase) - set(PHASE_WEIGHTS)
if _missing_phases:
    raise RuntimeError(f"PHASE_WEIGHTS is missing phases: {sorted(p.value for p in _missing_phases)}")


def overall_percent(phase: Phase, current: int, total: int) -> float:
    start, end = PHASE_WEIGHTS[phase]
    fraction = min(max(current / total, 0.0), 1.0) if total > 0 else 0.0
    return round(min(max(start + (end - start) * fraction, 0.0), 100.0), 2)


class EventType(str, Enum):
    PROGRESS = "progress"
    RESEARCH_COMPLETE = "research_complete"
    CANCELLED = "cancelled"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventType.RESEARCH_COMPLETE, EventType.CANCELLED, EventType.ERROR})


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.event in TERMINAL_EVENTS
