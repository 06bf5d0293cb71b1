"""Strict parsers for collaborator output (grammar v1).

Normalization is limited to removing one leading ``<think>`` block and one
surrounding Markdown code fence. Anything else that does not match the grammar
raises ``TransientFormatError``.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from deepest.errors import TransientFormatError

_THINK_BLOCK = re.compile(r"^\s*<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_CODE_FENCE = re.compile(r"^```[A-Za-z]*\s*\n?(.*?)\n?```$", re.DOTALL)

MIN_RELEVANCE = 1
MAX_RELEVANCE = 10


@dataclass(frozen=True)
class GradedLearning:
    text: str
    relevance: int


def normalize_output(raw: str) -> str:
    text = _THINK_BLOCK.sub("", raw or "", count=1).strip()
    fenced = _CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1).strip()
    return text


def _load_json_array(raw: str, kind: str) -> list[Any]:
    text = normalize_output(raw)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise TransientFormatError(f"{kind}: output is not valid JSON ({e.msg})", raw_output=raw) from e
    if not isinstance(parsed, list):
        raise TransientFormatError(f"{kind}: expected a JSON array, got {type(parsed).__name__}", raw_output=raw)
    return parsed


def parse_string_list(
    raw: str,
    *,
    kind: str,
    min_items: int = 0,
    max_items: int | None = None,
    exact: int | None = None,
) -> list[str]:
    """Parse a JSON array of non-empty strings.

    ``exact`` and ``min_items`` are rejections; ``max_items`` truncates.
    """
    items = _load_json_array(raw, kind)
    cleaned: list[str] = []
    for item in items:
        if not isinstance(item, str):
            raise TransientFormatError(f"{kind}: array elements must be strings", raw_output=raw)
        value = " ".join(item.split()).strip()
        if not value:
            raise TransientFormatError(f"{kind}: array elements must be non-empty", raw_output=raw)
        cleaned.append(value)

    if exact is not None and len(cleaned) != exact:
        raise TransientFormatError(f"{kind}: expected exactly {exact} items, got {len(cleaned)}", raw_output=raw)
    if len(cleaned) < min_items:
        raise TransientFormatError(f"{kind}: expected at least {min_items} items, got {len(cleaned)}", raw_output=raw)
    if max_items is not None:
        cleaned = cleaned[:max_items]
    return cleaned


def parse_feedback_questions(raw: str) -> list[str]:
    return parse_string_list(raw, kind="feedback", exact=3)


def parse_sections(raw: str, *, max_items: int | None = None) -> list[str]:
    return parse_string_list(raw, kind="sections", min_items=1, max_items=max_items)


def parse_queries(raw: str, *, max_items: int) -> list[str]:
    return parse_string_list(raw, kind="queries", min_items=1, max_items=max_items)


def parse_gaps(raw: str, *, max_items: int = 3) -> list[str]:
    return parse_string_list(raw, kind="gaps", max_items=max_items)


def parse_learnings(raw: str) -> list[GradedLearning]:
    items = _load_json_array(raw, "learnings")
    learnings: list[GradedLearning] = []
    for item in items:
        if not isinstance(item, dict):
            raise TransientFormatError("learnings: array elements must be objects", raw_output=raw)
        text = item.get("learning")
        relevance = item.get("relevance")
        if not isinstance(text, str) or not text.strip():
            raise TransientFormatError("learnings: 'learning' must be a non-empty string", raw_output=raw)
        if isinstance(relevance, bool) or not isinstance(relevance, int):
            raise TransientFormatError("learnings: 'relevance' must be an integer", raw_output=raw)
        if not MIN_RELEVANCE <= relevance <= MAX_RELEVANCE:
            raise TransientFormatError(
                f"learnings: 'relevance' must be between {MIN_RELEVANCE} and {MAX_RELEVANCE}",
                raw_output=raw,
            )
        learnings.append(GradedLearning(text=" ".join(text.split()), relevance=relevance))
    return learnings


def parse_text(raw: str, *, kind: str) -> str:
    text = normalize_output(raw)
    if not text:
        raise TransientFormatError(f"{kind}: output is empty", raw_output=raw)
    return text
