from __future__ import annotations

from typing import Iterable

from deepest.models.research import SectionContent, SectionLearnings


class SectionLearningStore:
    """Per-run accumulator of learnings and synthesized content, keyed by section.

    Learnings are append-only per section and never deduplicated. A repeated
    section label appends to the existing entry. Only the coordinating task
    writes here, after its fan-out group has joined.
    """

    def __init__(self) -> None:
        self._learnings: dict[str, SectionLearnings] = {}
        self._content: dict[str, str] = {}

    def get_or_create(self, section: str) -> SectionLearnings:
        entry = self._learnings.get(section)
        if entry is None:
            entry = SectionLearnings(section=section)
            self._learnings[section] = entry
        return entry

    def append(self, section: str, learnings: Iterable[str]) -> int:
        entry = self.get_or_create(section)
        before = len(entry.learnings)
        entry.learnings.extend(learnings)
        return len(entry.learnings) - before

    def learnings_for(self, section: str) -> list[str]:
        entry = self._learnings.get(section)
        return list(entry.learnings) if entry else []

    def all_learnings(self) -> list[str]:
        merged: list[str] = []
        for entry in self._learnings.values():
            merged.extend(entry.learnings)
        return merged

    def set_content(self, section: str, content: str) -> None:
        if section in self._content:
            raise ValueError(f"Content already synthesized for section: {section}")
        self._content[section] = content

    def section_contents(self, sections: list[str]) -> list[SectionContent]:
        """One entry per planned section, in plan order."""
        missing = [s for s in sections if s not in self._content]
        if missing:
            raise KeyError(f"No synthesized content for sections: {missing}")
        return [SectionContent(section=s, content=self._content[s]) for s in sections]

    def clear(self) -> None:
        self._learnings.clear()
        self._content.clear()

    def is_empty(self) -> bool:
        return not self._learnings and not self._content
