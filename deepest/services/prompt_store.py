"""Prompt catalog for the research collaborators.

The catalog lives in ``prompts/prompts.json``. Each area (``sections``,
``queries``, ...) holds a ``user`` template and a ``system`` entry that names
the shared system prompt to pair it with. Templates use ``string.Template``
placeholders so JSON braces in examples need no escaping.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Any

GRAMMAR_VERSION = 1
PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"

# (mtime_ns, catalog) of the last successful load
_cached: tuple[int, dict[str, Any]] | None = None


@dataclass(frozen=True)
class PromptPair:
    system: str
    user: str


def load_catalog() -> dict[str, Any]:
    """Return the parsed catalog, reloading it when the file changes on disk."""
    global _cached
    stamp = PROMPTS_PATH.stat().st_mtime_ns
    if _cached is not None and _cached[0] == stamp:
        return _cached[1]

    catalog = json.loads(PROMPTS_PATH.read_text(encoding="utf-8"))
    if not isinstance(catalog, dict):
        raise ValueError(f"{PROMPTS_PATH.name} must hold a JSON object")
    version = catalog.get("grammar_version")
    if version != GRAMMAR_VERSION:
        raise ValueError(
            f"{PROMPTS_PATH.name} declares grammar_version {version!r}, expected {GRAMMAR_VERSION}"
        )
    _cached = (stamp, catalog)
    return catalog


def _lookup(key: str) -> str:
    node: Any = load_catalog()
    for part in key.split("."):
        try:
            node = node[part]
        except (KeyError, TypeError):
            raise KeyError(f"Unknown prompt: {key}") from None
    if not isinstance(node, str):
        raise TypeError(f"Prompt '{key}' is not a template string")
    return node


def render_prompt(key: str, **values: Any) -> str:
    template = Template(_lookup(key))
    try:
        return template.substitute(values)
    except KeyError as exc:
        raise KeyError(f"Prompt '{key}' needs a value for '{exc.args[0]}'") from exc


def build_request(area: str, **values: Any) -> PromptPair:
    """Render the system and user prompts for one collaborator call."""
    system_key = _lookup(f"{area}.system")
    return PromptPair(system=render_prompt(system_key), user=render_prompt(f"{area}.user", **values))


def clear_prompt_cache() -> None:
    global _cached
    _cached = None
