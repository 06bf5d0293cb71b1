"""Loguru setup and structured log helpers for research runs."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from deepest.config import Settings, settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

# Framework/network loggers kept at NOISY_LOG_LEVEL
NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "openai._base_client",
    "asyncio",
)


def configure_logging(config: Settings = settings) -> None:
    """Install the console (and optional daily file) handlers described by ``config``."""
    logger.remove()
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level="DEBUG" if config.debug_mode else config.app_log_level.upper(),
        colorize=True,
    )

    if config.log_to_file:
        log_dir = Path(config.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "deepest_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="00:00",
            retention="7 days",
            compression="zip",
        )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(config.noisy_log_level.upper())


configure_logging()


def _record(kind: str, payload: dict[str, Any], *, failed: bool = False) -> None:
    entry = {"timestamp": datetime.now(timezone.utc).isoformat(), **payload}
    if failed:
        logger.error(f"{kind}_FAILED: {entry}")
    else:
        logger.info(f"{kind}: {entry}")


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Log a text-generation call with its token usage."""
    _record(
        "LLM_CALL",
        {
            "provider": caller,
            "model": model,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
            "duration_ms": duration_ms,
            "status": status,
            "error": error,
        },
        failed=error is not None,
    )


def log_search_call(
    provider: str,
    query: str,
    results_count: int = 0,
    duration_ms: int = 0,
    error: Optional[str] = None,
) -> None:
    _record(
        "SEARCH_CALL",
        {
            "provider": provider,
            "query": query[:120],
            "results_count": results_count,
            "duration_ms": duration_ms,
            "error": error,
        },
        failed=error is not None,
    )


def log_research_step(
    run_id: str,
    step_type: str,
    status: str,
    data: Optional[dict] = None,
) -> None:
    """Log a pipeline step transition (started, completed, cancelled, failed)."""
    _record(
        "RESEARCH_STEP",
        {"run_id": run_id, "step_type": step_type, "status": status, "data": data},
        failed=status == "failed",
    )


def log_event(event_type: str, message: str, **kwargs: Any) -> None:
    _record("EVENT", {"event_type": event_type, "message": message, **kwargs})
