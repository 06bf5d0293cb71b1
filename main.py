"""Deepest - Iterative Research Report Generator

Simple CLI for running research on a topic.
"""

import argparse
import asyncio
import signal
import sys

from deepest.agents.orchestrator import ResearchOrchestrator
from deepest.config import settings
from deepest.errors import ConfigurationError, DeepestError, ResearchCancelled
from deepest.llm_client import create_llm_provider
from deepest.models.research import ProgressUpdate, ResearchAnswer, ResearchRequest
from deepest.services.report_writer import ReportWriter
from deepest.tools.search_provider import create_search_provider


def print_progress(update: ProgressUpdate) -> None:
    line = f"[{update.overall_percent:5.1f}%] {update.phase}"
    if update.detail:
        line += f" - {update.detail}"
    print(line, flush=True)


def collect_answers(questions: list[str], provided: list[str]) -> list[ResearchAnswer]:
    """Pair questions with answers given on the command line, asking for the rest."""
    answers = []
    for i, question in enumerate(questions):
        if i < len(provided):
            answer = provided[i]
            print(f"  Q: {question}\n  A: {answer}")
        else:
            answer = input(f"  {question}\n  > ").strip()
        answers.append(ResearchAnswer(question=question, answer=answer))
    return answers


async def run_research(topic: str, breadth: int, depth: int, provided_answers: list[str]) -> int:
    """Run research on the given topic. Returns the process exit code."""
    print(f"Research topic: {topic}")
    print("-" * 50)

    orchestrator = ResearchOrchestrator(
        progress_sink=print_progress,
        report_writer=ReportWriter(settings.output_folder),
    )

    try:
        questions = await orchestrator.get_feedback_questions(topic)
    except DeepestError as e:
        print(f"\n[!] Could not generate clarifying questions: {e.message}")
        return 1

    print("\n[?] A few questions first:")
    answers = collect_answers(questions, provided_answers)
    request = ResearchRequest(topic=topic, clarifying_answers=answers, breadth=breadth, depth=depth)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        handles_sigint = True
    except NotImplementedError:
        handles_sigint = False

    print()
    try:
        data = await orchestrator.run(request)
    except ResearchCancelled:
        print("\n[x] Research cancelled.")
        return 130
    except DeepestError as e:
        print(f"\n[!] Research failed: {e.message}")
        return 1
    finally:
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)

    print(f"\n[*] Research Complete: {data.title}")
    print(f"   Sections: {len(data.sections)}")
    if orchestrator.last_report_path:
        print(f"   Saved to: {orchestrator.last_report_path}")
    return 0


async def check_connections() -> int:
    """Test connectivity of the configured LLM and search providers."""
    exit_code = 0
    for label, factory in (("LLM", create_llm_provider), ("Search", create_search_provider)):
        try:
            provider = factory(settings)
            ok = await provider.test_connection()
        except ConfigurationError as e:
            print(f"[!] {label}: {e.message}")
            exit_code = 1
            continue
        print(f"[{'+' if ok else '!'}] {label} ({provider.name}): {'ok' if ok else 'unreachable'}")
        if not ok:
            exit_code = 1
    return exit_code


async def list_models() -> int:
    try:
        models = await create_llm_provider(settings).list_models()
    except DeepestError as e:
        print(f"[!] Could not list models: {e.message}")
        return 1
    for model in models:
        print(model)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Deepest Iterative Research Tool")
    parser.add_argument("topic", nargs="?", help="Research topic")
    parser.add_argument("--breadth", "-b", type=int, default=settings.breadth, help="Sections and queries per phase (1-10)")
    parser.add_argument("--depth", "-d", type=int, default=settings.depth, help="Gap-filling rounds per section (0-10)")
    parser.add_argument(
        "--answer",
        "-a",
        action="append",
        default=[],
        help="Answer to a clarifying question, in order (repeatable)",
    )
    parser.add_argument("--check", action="store_true", help="Test provider connections and exit")
    parser.add_argument("--list-models", action="store_true", help="List models offered by the LLM provider and exit")

    args = parser.parse_args()

    if args.check:
        sys.exit(asyncio.run(check_connections()))
    if args.list_models:
        sys.exit(asyncio.run(list_models()))
    if not args.topic:
        parser.error("a research topic is required")
    if not 1 <= args.breadth <= 10:
        parser.error("--breadth must be between 1 and 10")
    if not 0 <= args.depth <= 10:
        parser.error("--depth must be between 0 and 10")

    sys.exit(asyncio.run(run_research(args.topic, args.breadth, args.depth, args.answer)))


if __name__ == "__main__":
    main()
