"""Text-generation providers and the provider registry.

OpenRouter and LM Studio both speak the OpenAI chat-completions protocol, so a
single ``AsyncOpenAI``-backed provider serves both; the registry only differs in
how each one is configured.
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Any, Callable, Protocol

import openai

from deepest.config import Settings, settings
from deepest.errors import ConfigurationError, ProviderError
from deepest.services import logger as log_service

DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class TextGenerationProvider(Protocol):
    name: str
    model: str

    async def complete(
        self,
        user_prompt: str,
        system_prompt: str,
        *,
        max_output_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str: ...

    async def list_models(self) -> list[str]: ...

    async def test_connection(self) -> bool: ...


class OpenAICompatibleProvider:
    """Chat-completions provider for any OpenAI-compatible endpoint."""

    def __init__(
        self,
        *,
        name: str,
        model: str,
        api_key: str,
        base_url: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        default_headers: dict[str, str] | None = None,
        client: Any | None = None,
    ):
        self.name = name
        self.model = model
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.default_headers = default_headers or {}
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                default_headers=self.default_headers or None,
            )
        return self._client

    def _translate_error(self, error: Exception) -> Exception:
        # Timeouts subclass APIConnectionError but are worth retrying.
        if isinstance(error, openai.APITimeoutError):
            return ProviderError(f"{self.name} request timed out: {error}")
        if isinstance(
            error,
            (
                openai.APIConnectionError,
                openai.AuthenticationError,
                openai.PermissionDeniedError,
                openai.NotFoundError,
            ),
        ):
            return ConfigurationError(
                f"{self.name} is unreachable or misconfigured: {error}",
                details={"provider": self.name, "base_url": self.base_url},
            )
        return ProviderError(f"{self.name} request failed: {error}", details={"provider": self.name})

    async def complete(
        self,
        user_prompt: str,
        system_prompt: str,
        *,
        max_output_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        t0 = time.monotonic()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=max_output_tokens or self.max_tokens,
                temperature=self.temperature if temperature is None else temperature,
            )
        except openai.OpenAIError as e:
            log_service.log_llm_call(
                model=self.model,
                caller=self.name,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e),
            )
            raise self._translate_error(e) from e

        usage = getattr(response, "usage", None)
        log_service.log_llm_call(
            model=self.model,
            caller=self.name,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )

        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        return getattr(choices[0].message, "content", None) or ""

    async def list_models(self) -> list[str]:
        try:
            page = await self.client.models.list()
        except openai.OpenAIError as e:
            raise self._translate_error(e) from e
        return [model.id for model in getattr(page, "data", [])]

    async def test_connection(self) -> bool:
        try:
            return len(await self.list_models()) > 0
        except Exception as e:
            log_service.log_event(
                event_type="connection_test_failed",
                message=f"{self.name} connection test failed",
                error=str(e),
            )
            return False


class LLMProviderName(str, Enum):
    OPENROUTER = "openrouter"
    LMSTUDIO = "lmstudio"


def _openrouter(config: Settings) -> OpenAICompatibleProvider:
    if not config.openrouter_api_key:
        raise ConfigurationError("OPENROUTER_API_KEY is not configured")
    if not config.openrouter_model:
        raise ConfigurationError("OPENROUTER_MODEL is not configured")
    return OpenAICompatibleProvider(
        name=LLMProviderName.OPENROUTER.value,
        model=config.openrouter_model,
        api_key=config.openrouter_api_key,
        base_url=config.openrouter_base_url.strip() or DEFAULT_OPENROUTER_BASE_URL,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
        default_headers={"X-Title": "Deepest"},
    )


def _lmstudio(config: Settings) -> OpenAICompatibleProvider:
    if not config.lmstudio_url.strip():
        raise ConfigurationError("LMSTUDIO_URL is not configured")
    if not config.lmstudio_model:
        raise ConfigurationError("LMSTUDIO_MODEL is not configured")
    return OpenAICompatibleProvider(
        name=LLMProviderName.LMSTUDIO.value,
        model=config.lmstudio_model,
        # LM Studio ignores the key but the SDK requires one.
        api_key="lm-studio",
        base_url=f"{config.lmstudio_url.strip().rstrip('/')}/v1",
        max_tokens=config.max_tokens,
        temperature=config.temperature,
    )


LLM_PROVIDERS: dict[LLMProviderName, Callable[[Settings], TextGenerationProvider]] = {
    LLMProviderName.OPENROUTER: _openrouter,
    LLMProviderName.LMSTUDIO: _lmstudio,
}


def create_llm_provider(config: Settings | None = None) -> TextGenerationProvider:
    """Build the configured text-generation provider or raise ``ConfigurationError``."""
    config = config or settings
    raw_name = str(config.llm_provider or "").lower().strip()
    try:
        name = LLMProviderName(raw_name)
    except ValueError:
        raise ConfigurationError(f"Unsupported LLM_PROVIDER: {config.llm_provider!r}") from None
    return LLM_PROVIDERS[name](config)
