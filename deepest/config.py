from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Provider selection
    llm_provider: str = "openrouter"  # openrouter | lmstudio
    search_provider: str = "tavily"  # tavily | brave

    # OpenRouter
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: str = ""

    # LM Studio (self-hosted, OpenAI-compatible)
    lmstudio_url: str = "http://localhost:1234"
    lmstudio_model: str = ""

    # Web search
    tavily_api_key: str = ""
    brave_api_key: str = ""

    # Generation
    max_tokens: int = 1000
    temperature: float = 0.7

    # Requests per minute, 0 = unlimited
    openrouter_rate_limit: int = 5
    lmstudio_rate_limit: int = 0
    tavily_rate_limit: int = 5
    brave_rate_limit: int = 5

    # Research defaults
    breadth: int = 5
    depth: int = 3
    section_batch_size: int = 2
    results_per_query: int = 2
    learnings_per_source: int = 5
    max_gaps: int = 3
    chunk_token_allowance: int = 1000
    chars_per_token: int = 4
    retry_max: int = 1
    retry_delay_seconds: float = 1.0

    # Output
    output_folder: str = "Deepest Reports"

    # API
    cors_origins: str = "http://localhost:3000"
    # Finished sessions nobody streamed are dropped after this many seconds
    session_ttl_seconds: int = 900

    # App
    debug_mode: bool = False
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"
    log_to_file: bool = True

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def rate_limit_for(self, provider_name: str) -> int:
        value = getattr(self, f"{provider_name.lower().strip()}_rate_limit", 0)
        return max(int(value), 0)

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    @property
    def chunk_char_budget(self) -> int:
        return max(self.chunk_token_allowance * self.chars_per_token, 1)


settings = Settings()
