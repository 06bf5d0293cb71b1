"""Shared stubs for pipeline tests."""
import json
import os

# Keep test runs from writing log files.
os.environ.setdefault("LOG_TO_FILE", "false")

import pytest

from deepest.config import Settings
from deepest.models.research import SearchResult

PROMPT_MARKERS = {
    "feedback": "follow-up question generator",
    "sections": "section generator",
    "title": "title generator",
    "introduction": "introduction generator",
    "queries": "SERP query generator",
    "learnings": "learning extractor",
    "gaps": "research gap analyst",
    "synthesis": "one section of the report",
    "conclusion": "the report title and the learnings",
}


def prompt_kind(user_prompt: str) -> str:
    for kind, marker in PROMPT_MARKERS.items():
        if marker in user_prompt:
            return kind
    raise AssertionError(f"Unrecognized prompt: {user_prompt[:80]}")


def prompt_input(user_prompt: str) -> dict:
    start = user_prompt.index("<input>") + len("<input>")
    end = user_prompt.index("</input>", start)
    return json.loads(user_prompt[start:end])


class ScriptedLLM:
    """Text-generation stub answering each prompt kind from a script.

    Script values are strings or callables taking the parsed ``<input>`` payload.
    """

    name = "stub-llm"
    model = "stub-model"

    def __init__(self, script: dict):
        self.script = script
        self.calls: list[tuple[str, str]] = []

    def count(self, kind: str) -> int:
        return sum(1 for k, _ in self.calls if k == kind)

    async def complete(self, user_prompt, system_prompt, *, max_output_tokens=None, temperature=None):
        kind = prompt_kind(user_prompt)
        self.calls.append((kind, user_prompt))
        reply = self.script[kind]
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            payload = prompt_input(user_prompt) if kind != "feedback" else {}
            return reply(payload)
        return reply

    async def list_models(self):
        return [self.model]

    async def test_connection(self):
        return True


class StubSearch:
    """Search stub returning one content-bearing result per query."""

    name = "stub-search"

    def __init__(self, content="Solar panels convert sunlight into electricity.", on_search=None):
        self.content = content
        self.on_search = on_search
        self.queries: list[str] = []

    async def search(self, query, max_results):
        self.queries.append(query)
        if self.on_search is not None:
            self.on_search(query)
        slug = query.replace(" ", "-").lower()
        return [
            SearchResult(
                title=f"Result for {query}",
                url=f"https://example.com/{slug}",
                content=self.content,
                relevance_score=0.9,
            )
        ]

    async def test_connection(self):
        return True


def solar_script(**overrides) -> dict:
    script = {
        "feedback": '["Why solar?", "Which region?", "What budget?"]',
        "sections": '["Overview", "Costs"]',
        "title": "Solar Energy: Overview and Costs",
        "introduction": "Solar energy is growing quickly.",
        "queries": lambda payload: json.dumps([f"{payload['section']} q1", f"{payload['section']} q2"]),
        "learnings": '[{"learning": "Panels convert sunlight to power", "relevance": 8}]',
        "gaps": "[]",
        "synthesis": lambda payload: f"Body of {payload['section']}.",
        "conclusion": "Solar is worth it.",
    }
    script.update(overrides)
    return script


async def no_sleep(_seconds):
    return None


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        retry_max=1,
        retry_delay_seconds=0,
        section_batch_size=2,
        results_per_query=2,
        learnings_per_source=5,
        output_folder=str(tmp_path / "reports"),
        log_to_file=False,
    )
