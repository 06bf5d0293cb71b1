from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# --- Requests ---


class ResearchAnswer(BaseModel):
    question: str
    answer: str


class ResearchRequest(BaseModel):
    """One research run's input. Frozen once the pipeline starts."""

    model_config = ConfigDict(frozen=True)

    topic: str = Field(min_length=1)
    clarifying_answers: list[ResearchAnswer] = []
    breadth: int = Field(default=5, ge=1, le=10)  # sections and per-phase fan-out
    depth: int = Field(default=3, ge=0, le=10)  # gap rounds per section


class QuestionsRequest(BaseModel):
    topic: str = Field(min_length=1)


# --- Pipeline data ---


@dataclass
class SearchResult:
    title: str
    url: str
    content: Optional[str] = None
    relevance_score: Optional[float] = None

    @property
    def has_content(self) -> bool:
        return bool(self.content and self.content.strip())


@dataclass
class SectionLearnings:
    section: str
    learnings: list[str] = field(default_factory=list)


class SectionContent(BaseModel):
    section: str
    content: str


class ResearchData(BaseModel):
    topic: str
    title: str
    introduction: str
    sections: list[str]
    section_content: list[SectionContent]
    conclusion: str
    depth: int

    @model_validator(mode="after")
    def _one_content_per_section(self) -> "ResearchData":
        if len(self.section_content) != len(self.sections):
            raise ValueError(
                f"expected {len(self.sections)} section content entries, got {len(self.section_content)}"
            )
        for section, content in zip(self.sections, self.section_content):
            if content.section != section:
                raise ValueError(f"section content out of order: {content.section!r} != {section!r}")
        return self


class ProgressUpdate(BaseModel):
    phase: str
    current: int
    total: int
    detail: Optional[str] = None
    overall_percent: float = Field(ge=0, le=100)


# --- Responses ---


class QuestionsResponse(BaseModel):
    questions: list[str]


class ResearchStartResponse(BaseModel):
    session_id: str


class CancelResponse(BaseModel):
    session_id: str
    status: str
