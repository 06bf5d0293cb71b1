from __future__ import annotations

import re
from pathlib import Path

from loguru import logger

from deepest.errors import PersistenceError
from deepest.models.research import ResearchData

_UNSAFE_CHARS = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"[\s_-]+")


def slugify(value: str, *, max_length: int = 80) -> str:
    slug = _UNSAFE_CHARS.sub("", value).strip().lower()
    slug = _WHITESPACE.sub("-", slug).strip("-")
    return slug[:max_length].rstrip("-") or "research-report"


def render_markdown(data: ResearchData) -> str:
    parts = [f"# {data.title}", "## Introduction", data.introduction.strip()]
    for entry in data.section_content:
        parts.append(f"## {entry.section}")
        parts.append(entry.content.strip())
    parts.append("## Conclusion")
    parts.append(data.conclusion.strip())
    return "\n\n".join(parts) + "\n"


class ReportWriter:
    """Write finished reports as Markdown files under ``output_folder``."""

    def __init__(self, output_folder: str | Path):
        self.output_folder = Path(output_folder)

    def _target_path(self, title: str) -> Path:
        stem = slugify(title)
        path = self.output_folder / f"{stem}.md"
        counter = 1
        while path.exists():
            path = self.output_folder / f"{stem}-{counter}.md"
            counter += 1
        return path

    def write(self, data: ResearchData) -> Path:
        try:
            self.output_folder.mkdir(parents=True, exist_ok=True)
            path = self._target_path(data.title)
            # "x" mode: never overwrite a report written in the meantime.
            with open(path, "x", encoding="utf-8") as handle:
                handle.write(render_markdown(data))
        except OSError as e:
            raise PersistenceError(
                f"Failed to write report to {self.output_folder}: {e}",
                details={"output_folder": str(self.output_folder)},
            ) from e
        logger.info(f"Report written to {path}")
        return path
