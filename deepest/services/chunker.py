"""Split long source text into bounded chunks along paragraph and sentence boundaries."""
from __future__ import annotations

import re
from typing import Iterator

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def _units(text: str, max_chars: int) -> Iterator[tuple[str, str]]:
    """Yield (unit, separator-before-unit) pairs.

    Paragraphs that fit are single units; oversized paragraphs are broken into
    sentences. Sentences inside one paragraph join with a space, paragraphs with
    a blank line.
    """
    for paragraph in _PARAGRAPH_BREAK.split(text):
        paragraph = paragraph.strip()
        if not paragraph:
            continue
        if len(paragraph) <= max_chars:
            yield paragraph, "\n\n"
            continue
        first = True
        for sentence in _SENTENCE_END.split(paragraph):
            sentence = sentence.strip()
            if not sentence:
                continue
            yield sentence, "\n\n" if first else " "
            first = False


def chunk_text(text: str, max_chars: int) -> Iterator[str]:
    """Yield chunks of at most ``max_chars`` characters.

    A single sentence longer than the budget is emitted whole as its own chunk.
    Text that already fits is returned as one trimmed chunk.
    """
    stripped = text.strip()
    if not stripped:
        return
    if len(stripped) <= max_chars:
        yield stripped
        return

    buffer = ""
    for unit, separator in _units(stripped, max_chars):
        if not buffer:
            buffer = unit
            continue
        candidate = f"{buffer}{separator}{unit}"
        if len(candidate) <= max_chars:
            buffer = candidate
        else:
            yield buffer
            buffer = unit
    if buffer:
        yield buffer
