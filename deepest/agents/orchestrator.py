from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar
from uuid import uuid4

from loguru import logger

from deepest.config import Settings, settings
from deepest.errors import (
    NON_RETRYABLE_ERRORS,
    ExtractionFailure,
    PersistenceError,
    ProviderError,
    ResearchCancelled,
    SectionError,
    TransientFormatError,
)
from deepest.llm_client import TextGenerationProvider, create_llm_provider
from deepest.models.events import Phase
from deepest.models.research import ResearchData, ResearchRequest, SearchResult
from deepest.services import logger as log_service
from deepest.services import output_parser
from deepest.services.cancellation import CancellationToken
from deepest.services.chunker import chunk_text
from deepest.services.learning_store import SectionLearningStore
from deepest.services.progress import ProgressReporter, ProgressSink
from deepest.services.prompt_store import build_request, render_prompt
from deepest.services.rate_limiter import LimiterRegistry, RateLimiter, shared_limiters
from deepest.services.report_writer import ReportWriter
from deepest.services.retry import RAISE, with_retries
from deepest.tools.search_provider import WebSearchProvider, create_search_provider

T = TypeVar("T")

STAND_IN_CONCLUSION = "A conclusion could not be generated for this report."


@dataclass
class SectionResearch:
    """Learnings gathered by one section task, merged by the coordinator."""

    section: str
    learnings: list[str] = field(default_factory=list)
    gap_rounds: int = 0


def select_top_results(result_groups: list[list[SearchResult]], *, per_query: int) -> list[SearchResult]:
    """Flatten per-query results and keep the best ``per_query * len(groups)`` with content.

    Ranked by relevance score when every candidate has one, otherwise by content
    length. Duplicate URLs keep their best-ranked entry.
    """
    candidates = [r for group in result_groups for r in group if r.has_content]
    if candidates and all(r.relevance_score is not None for r in candidates):
        ranked = sorted(candidates, key=lambda r: r.relevance_score, reverse=True)
    else:
        ranked = sorted(candidates, key=lambda r: len(r.content or ""), reverse=True)

    selected: list[SearchResult] = []
    seen_urls: set[str] = set()
    limit = max(per_query, 1) * len(result_groups)
    for result in ranked:
        key = result.url.strip().lower()
        if key and key in seen_urls:
            continue
        if key:
            seen_urls.add(key)
        selected.append(result)
        if len(selected) >= limit:
            break
    return selected


def with_citation(learning: str, url: str) -> str:
    if "[source:" in learning.lower():
        return learning
    return f"{learning} [source: {url}]"


class ResearchOrchestrator:
    """Runs one research request end to end.

    Flow:
      1. Plan sections from the topic and clarifying answers
      2. Generate title, then introduction
      3. Research sections in bounded batches: queries, parallel searches,
         chunked learning extraction, then up to ``depth`` gap rounds each
      4. Synthesize every section in parallel
      5. Generate the conclusion (stand-in text on failure)
      6. Assemble ``ResearchData`` and hand it to the report writer

    Every outbound call goes through the process-wide limiter for its provider
    and the retry policy. ``cancel()`` is cooperative: it is honoured at the
    next phase, loop or call boundary and surfaces as ``ResearchCancelled``.
    """

    def __init__(
        self,
        *,
        llm: TextGenerationProvider | None = None,
        search: WebSearchProvider | None = None,
        progress_sink: ProgressSink | None = None,
        report_writer: ReportWriter | None = None,
        config: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        limiters: LimiterRegistry | None = None,
    ):
        self.config = config or settings
        self.progress = ProgressReporter(progress_sink)
        self.report_writer = report_writer
        self._sleep = sleep
        self._llm = llm
        self._search = search
        self.limiters = limiters or shared_limiters

        self.store = SectionLearningStore()
        self.current_topic: str | None = None
        self.run_id: str | None = None
        self.last_report_path: Path | None = None
        self._token: CancellationToken | None = None

    # --- Collaborators ---

    def _limiter_for(self, provider: Any) -> RateLimiter:
        name = str(getattr(provider, "name", "") or "")
        return self.limiters.limiter_for(name, self.config.rate_limit_for(name))

    def _llm_provider(self) -> tuple[TextGenerationProvider, RateLimiter]:
        if self._llm is None:
            self._llm = create_llm_provider(self.config)
        return self._llm, self._limiter_for(self._llm)

    def _search_provider(self) -> tuple[WebSearchProvider, RateLimiter]:
        if self._search is None:
            self._search = create_search_provider(self.config)
        return self._search, self._limiter_for(self._search)

    # --- Run state ---

    @property
    def is_running(self) -> bool:
        return self._token is not None

    def cancel(self) -> None:
        """Request cancellation of the in-flight run. Idempotent, no-op when idle."""
        if self._token is None or self._token.cancelled:
            return
        log_service.log_event(
            event_type="research_cancel_requested",
            message="Cancellation requested",
            run_id=self.run_id,
        )
        self._token.cancel()

    def _check_cancelled(self) -> None:
        if self._token is not None:
            self._token.raise_if_cancelled()

    def _reset_state(self) -> None:
        self.store.clear()
        self.current_topic = None
        self.run_id = None
        self._token = None

    @staticmethod
    def _raise_first_failure(results: list[Any]) -> None:
        failures = [r for r in results if isinstance(r, BaseException)]
        if not failures:
            return
        for failure in failures:
            if isinstance(failure, ResearchCancelled):
                raise failure
        raise failures[0]

    # --- Collaborator calls ---

    async def _with_retries(self, operation: Callable[[], Awaitable[T]], *, label: str, fallback: Any = RAISE) -> T:
        return await with_retries(
            operation,
            max_retries=self.config.retry_max,
            delay=self.config.retry_delay_seconds,
            fallback=fallback,
            label=label,
            before_attempt=self._check_cancelled,
            sleep=self._sleep,
        )

    async def _complete(self, area: str, **values: Any) -> str:
        provider, limiter = self._llm_provider()
        prompts = build_request(area, **values)
        self._check_cancelled()
        await limiter.wait_for_next()
        self._check_cancelled()
        return await provider.complete(
            prompts.user,
            prompts.system,
            max_output_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
        )

    async def _generate(
        self,
        area: str,
        parse: Callable[[str], T],
        *,
        label: str,
        fallback: Any = RAISE,
        **values: Any,
    ) -> T:
        """Request, parse and validate one collaborator output, retrying on failure."""

        async def attempt() -> T:
            raw = await self._complete(area, **values)
            return parse(raw)

        return await self._with_retries(attempt, label=label, fallback=fallback)

    async def _search_once(self, query: str, max_results: int) -> list[SearchResult]:
        provider, limiter = self._search_provider()

        async def attempt() -> list[SearchResult]:
            self._check_cancelled()
            await limiter.wait_for_next()
            self._check_cancelled()
            return await provider.search(query, max_results)

        try:
            return await self._with_retries(attempt, label=f"search '{query[:60]}'")
        except NON_RETRYABLE_ERRORS:
            raise
        except Exception as e:
            log_service.log_event(
                event_type="search_failed",
                message="Search failed after retries, continuing without its results",
                query=query,
                error=str(e),
            )
            return []

    # --- Planning ---

    async def get_feedback_questions(self, topic: str) -> list[str]:
        """Three clarifying questions about the user's goals for ``topic``."""
        return await self._generate(
            "feedback",
            output_parser.parse_feedback_questions,
            label="feedback questions",
            topic=topic,
        )

    async def generate_sections(self, request: ResearchRequest) -> list[str]:
        payload = {
            "topic": request.topic,
            "feedback": [answer.model_dump() for answer in request.clarifying_answers],
        }
        return await self._generate(
            "sections",
            output_parser.parse_sections,
            label="section planning",
            input=json.dumps(payload, ensure_ascii=False),
            min_sections=request.breadth,
            max_sections=request.breadth + 2,
        )

    async def generate_title(self, topic: str, sections: list[str]) -> str:
        return await self._generate(
            "title",
            lambda raw: output_parser.parse_text(raw, kind="title"),
            label="title",
            input=json.dumps({"topic": topic, "sections": sections}, ensure_ascii=False),
        )

    async def generate_introduction(self, topic: str, sections: list[str]) -> str:
        return await self._generate(
            "introduction",
            lambda raw: output_parser.parse_text(raw, kind="introduction"),
            label="introduction",
            input=json.dumps({"topic": topic, "sections": sections}, ensure_ascii=False),
        )

    async def generate_queries(
        self,
        topic: str,
        section: str,
        breadth: int,
        *,
        gaps: list[str] | None = None,
    ) -> list[str]:
        gap_instruction = ""
        payload: dict[str, Any] = {"topic": topic, "section": section, "breadth": breadth}
        if gaps:
            gap_instruction = render_prompt("queries.gap_instruction", gaps=json.dumps(gaps, ensure_ascii=False))
            payload["gaps"] = gaps
        return await self._generate(
            "queries",
            lambda raw: output_parser.parse_queries(raw, max_items=breadth),
            label=f"queries for '{section}'" + (" (gaps)" if gaps else ""),
            input=json.dumps(payload, ensure_ascii=False),
            breadth=breadth,
            gap_instruction=gap_instruction,
        )

    async def identify_gaps(self, topic: str, section: str, learnings: list[str]) -> list[str]:
        """Knowledge gaps in ``learnings``. Empty when none remain or analysis fails."""
        max_gaps = self.config.max_gaps
        payload = {"topic": topic, "section": section, "learnings": learnings}
        return await self._generate(
            "gaps",
            lambda raw: output_parser.parse_gaps(raw, max_items=max_gaps),
            label=f"gap analysis for '{section}'",
            fallback=[],
            input=json.dumps(payload, ensure_ascii=False),
            max_gaps=max_gaps,
        )

    # --- Extraction ---

    async def _extract_chunk(self, section: str, url: str, chunk: str) -> list[output_parser.GradedLearning]:
        payload = {"section": section, "url": url, "text": chunk}
        try:
            return await self._generate(
                "learnings",
                output_parser.parse_learnings,
                label=f"learning extraction from {url}",
                input=json.dumps(payload, ensure_ascii=False),
                url=url,
            )
        except NON_RETRYABLE_ERRORS:
            raise
        except Exception as e:
            raise ExtractionFailure(f"Learning extraction failed for {url}: {e}", url=url) from e

    async def extract_learnings(self, section: str, result: SearchResult) -> list[str]:
        """Top-graded learnings from one source, each carrying its citation."""
        graded: list[output_parser.GradedLearning] = []
        for chunk in chunk_text(result.content or "", self.config.chunk_char_budget):
            self._check_cancelled()
            try:
                graded.extend(await self._extract_chunk(section, result.url, chunk))
            except ExtractionFailure as e:
                log_service.log_event(
                    event_type="extraction_failure",
                    message=e.message,
                    section=section,
                    url=e.url,
                )

        top = sorted(graded, key=lambda g: g.relevance, reverse=True)[: self.config.learnings_per_source]
        logger.debug(f"Kept {len(top)}/{len(graded)} learnings from {result.url} for '{section}'")
        return [with_citation(g.text, result.url) for g in top]

    async def _gather_learnings(
        self,
        request: ResearchRequest,
        section: str,
        queries: list[str],
        *,
        position: int,
        total: int,
    ) -> list[str]:
        """Search all ``queries`` concurrently, then extract from the best sources concurrently."""
        self._check_cancelled()
        completed = 0

        async def run_search(query: str) -> list[SearchResult]:
            nonlocal completed
            results = await self._search_once(query, request.breadth)
            completed += 1
            self.progress.emit(
                Phase.SEARCH,
                position,
                total,
                detail=f"Researching: {section} ({completed}/{len(queries)} searches)",
            )
            return results

        searched = await asyncio.gather(*(run_search(q) for q in queries), return_exceptions=True)
        self._raise_first_failure(searched)

        selected = select_top_results(searched, per_query=self.config.results_per_query)
        self._check_cancelled()
        self.progress.emit(
            Phase.EXTRACTION,
            position,
            total,
            detail=f"Learning from: {section} ({len(selected)} sources)",
        )
        extracted = await asyncio.gather(
            *(self.extract_learnings(section, result) for result in selected),
            return_exceptions=True,
        )
        self._raise_first_failure(extracted)
        return [learning for batch in extracted for learning in batch]

    # --- Per-section research ---

    async def _research_section(
        self,
        request: ResearchRequest,
        section: str,
        *,
        position: int,
        total: int,
    ) -> SectionResearch:
        self._check_cancelled()
        outcome = SectionResearch(section=section)
        prior = self.store.learnings_for(section)

        self.progress.emit(Phase.QUERIES, position, total, detail=f"For section: {section}")
        queries = await self.generate_queries(request.topic, section, request.breadth)
        logger.debug(f"Queries for section '{section}': {queries}")
        self.progress.emit(Phase.QUERIES, position + 1, total, detail=f"{len(queries)} queries for: {section}")

        outcome.learnings.extend(
            await self._gather_learnings(request, section, queries, position=position, total=total)
        )

        for round_number in range(1, request.depth + 1):
            self._check_cancelled()
            gaps = await self.identify_gaps(request.topic, section, prior + outcome.learnings)
            if not gaps:
                logger.info(f"No gaps left for '{section}' after {outcome.gap_rounds} round(s)")
                break
            try:
                gap_queries = await self.generate_queries(request.topic, section, request.breadth, gaps=gaps)
            except (TransientFormatError, ProviderError) as e:
                log_service.log_event(
                    event_type="gap_round_skipped",
                    message="Gap query generation failed, ending gap rounds",
                    section=section,
                    error=str(e),
                )
                break
            outcome.learnings.extend(
                await self._gather_learnings(request, section, gap_queries, position=position, total=total)
            )
            outcome.gap_rounds += 1
            self.progress.emit(
                Phase.GAPS,
                round_number,
                request.depth,
                detail=f"{section}: gap round {round_number}/{request.depth}",
            )

        if not outcome.learnings and not prior:
            raise SectionError(section=section)
        return outcome

    async def _research_sections(self, request: ResearchRequest, sections: list[str]) -> None:
        batch_size = max(self.config.section_batch_size, 1)
        total = len(sections)
        for start in range(0, total, batch_size):
            self._check_cancelled()
            batch = sections[start : start + batch_size]
            results = await asyncio.gather(
                *(
                    self._research_section(request, section, position=start + offset, total=total)
                    for offset, section in enumerate(batch)
                ),
                return_exceptions=True,
            )
            self._raise_first_failure(results)
            for outcome in results:
                self.store.append(outcome.section, outcome.learnings)
                log_service.log_research_step(
                    self.run_id or "",
                    "section_research",
                    "completed",
                    {
                        "section": outcome.section,
                        "learnings": len(outcome.learnings),
                        "gap_rounds": outcome.gap_rounds,
                    },
                )

    # --- Synthesis ---

    async def _synthesize_sections(self, topic: str, sections: list[str]) -> None:
        unique = list(dict.fromkeys(sections))
        self._check_cancelled()
        self.progress.emit(Phase.SYNTHESIS, 0, len(unique))
        completed = 0

        async def synthesize(section: str) -> str:
            nonlocal completed
            payload = {"topic": topic, "section": section, "learnings": self.store.learnings_for(section)}
            content = await self._generate(
                "synthesis",
                lambda raw: output_parser.parse_text(raw, kind="synthesis"),
                label=f"synthesis of '{section}'",
                input=json.dumps(payload, ensure_ascii=False),
            )
            completed += 1
            self.progress.emit(Phase.SYNTHESIS, completed, len(unique), detail=f"Synthesized: {section}")
            return content

        results = await asyncio.gather(*(synthesize(s) for s in unique), return_exceptions=True)
        self._raise_first_failure(results)
        for section, content in zip(unique, results):
            self.store.set_content(section, content)

    async def _generate_conclusion(self, topic: str, title: str) -> str:
        self._check_cancelled()
        self.progress.emit(Phase.CONCLUSION, 0, 1)
        payload = {"topic": topic, "title": title, "learnings": self.store.all_learnings()}
        try:
            conclusion = await self._generate(
                "conclusion",
                lambda raw: output_parser.parse_text(raw, kind="conclusion"),
                label="conclusion",
                input=json.dumps(payload, ensure_ascii=False),
            )
        except NON_RETRYABLE_ERRORS:
            raise
        except Exception as e:
            log_service.log_event(
                event_type="conclusion_fallback",
                message="Conclusion generation failed, using stand-in text",
                error=str(e),
            )
            conclusion = STAND_IN_CONCLUSION
        self.progress.emit(Phase.CONCLUSION, 1, 1)
        return conclusion

    # --- Finalize ---

    def _persist(self, data: ResearchData) -> None:
        if self.report_writer is None:
            return
        self.progress.emit(Phase.SAVING, 0, 1)
        try:
            self.last_report_path = self.report_writer.write(data)
        except PersistenceError as e:
            logger.warning(f"Research finished but the report was not saved: {e.message}")
            self.progress.emit(Phase.SAVING, 1, 1, detail="Report could not be saved")
            return
        self.progress.emit(Phase.SAVING, 1, 1, detail=f"Saved to {self.last_report_path}")

    async def _pipeline(self, request: ResearchRequest) -> ResearchData:
        self._check_cancelled()
        self.progress.emit(Phase.SECTIONS, 0, 1)
        sections = await self.generate_sections(request)
        self.progress.emit(Phase.SECTIONS, 1, 1, detail=f"{len(sections)} sections")
        log_service.log_research_step(self.run_id or "", "sections", "completed", {"sections": sections})

        self._check_cancelled()
        self.progress.emit(Phase.TITLE, 0, 1)
        title = await self.generate_title(request.topic, sections)
        self.progress.emit(Phase.TITLE, 1, 1)

        self._check_cancelled()
        self.progress.emit(Phase.INTRODUCTION, 0, 1)
        introduction = await self.generate_introduction(request.topic, sections)
        self.progress.emit(Phase.INTRODUCTION, 1, 1)

        await self._research_sections(request, sections)
        await self._synthesize_sections(request.topic, sections)
        conclusion = await self._generate_conclusion(request.topic, title)

        self._check_cancelled()
        data = ResearchData(
            topic=request.topic,
            title=title,
            introduction=introduction,
            sections=sections,
            section_content=self.store.section_contents(sections),
            conclusion=conclusion,
            depth=request.depth,
        )
        self._persist(data)
        self._check_cancelled()
        self.progress.emit(Phase.COMPLETE, 1, 1)
        return data

    async def run(self, request: ResearchRequest) -> ResearchData:
        """Execute the full pipeline for ``request``.

        Returns complete ``ResearchData`` or raises: ``ResearchCancelled`` after
        ``cancel()``, otherwise the typed error that aborted the run. In-memory
        run state is cleared on every outcome.
        """
        if self.is_running:
            raise RuntimeError("A research run is already in progress")

        token = CancellationToken()
        self._token = token
        self.store = SectionLearningStore()
        self.current_topic = request.topic
        self.run_id = uuid4().hex[:12]
        self.last_report_path = None
        run_id = self.run_id
        started_at = time.monotonic()
        log_service.log_research_step(
            run_id,
            "research",
            "started",
            {"topic": request.topic, "breadth": request.breadth, "depth": request.depth},
        )

        try:
            data = await self._pipeline(request)
        except ResearchCancelled:
            log_service.log_research_step(run_id, "research", "cancelled")
            raise
        except Exception as e:
            if token.cancelled:
                log_service.log_research_step(run_id, "research", "cancelled", {"error": str(e)})
                raise ResearchCancelled() from e
            log_service.log_research_step(
                run_id,
                "research",
                "failed",
                {"error": str(e), "error_type": type(e).__name__},
            )
            raise
        finally:
            self._reset_state()

        log_service.log_research_step(
            run_id,
            "research",
            "completed",
            {"sections": len(data.sections), "runtime_ms": int((time.monotonic() - started_at) * 1000)},
        )
        return data
