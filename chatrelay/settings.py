from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Read from OS env and optional .env file in project root.
    _project_root = Path(__file__).parent.parent

    model_config = SettingsConfigDict(
        env_file=str(_project_root / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Redis connection string
    redis_url: str = Field(
        "redis://localhost:6379/0",
        alias="REDIS_URL",
        description="Redis connection URL, e.g. 'redis://redis:6379/0'",
    )

    # Upstream completion API
    upstream_base_url: str = Field(
        "https://api.openai.com/v1",
        alias="UPSTREAM_BASE_URL",
        description="Base URL of the OpenAI-style completion API",
    )
    upstream_credentials: str = Field(
        "",
        alias="UPSTREAM_CREDENTIALS",
        description="Comma separated list of upstream API tokens; one session per token",
    )
    upstream_timeout: float = Field(
        600.0,
        alias="UPSTREAM_TIMEOUT",
        description="Timeout (seconds) for upstream HTTP calls",
        gt=0,
    )
    completion_model: str = Field(
        "gpt-3.5-turbo-instruct",
        alias="COMPLETION_MODEL",
        description="Model used for completions, search queries and suggestions",
    )
    completion_temperature: float = Field(
        0.7,
        alias="COMPLETION_TEMPERATURE",
        ge=0.0,
        le=2.0,
    )

    # Prompt budget
    max_prompt_tokens: int = Field(
        900,
        alias="MAX_PROMPT_TOKENS",
        description="Base token budget for an assembled prompt",
        ge=1,
    )
    search_context_slack_tokens: int = Field(
        50,
        alias="SEARCH_CONTEXT_SLACK_TOKENS",
        description="Extra tokens granted on top of the measured search context",
        ge=0,
    )
    min_reply_tokens: int = Field(
        150,
        alias="MIN_REPLY_TOKENS",
        description="Smallest max_tokens value requested from the upstream API",
        ge=1,
    )
    max_prompt_chars: int = Field(
        2000,
        alias="MAX_PROMPT_CHARS",
        description="Hard limit on the raw user prompt length, in characters",
        ge=1,
    )

    # Conversation lifecycle
    conversation_reset_seconds: float = Field(
        6 * 60 * 60,
        alias="CONVERSATION_RESET_SECONDS",
        description="Idle time after which a conversation is reset",
        gt=0,
    )
    conversation_cooldown_seconds: float = Field(
        20.0,
        alias="CONVERSATION_COOLDOWN_SECONDS",
        description="Throttle window armed after each successful generation",
        ge=0,
    )
    generation_max_tries: int = Field(
        10,
        alias="GENERATION_MAX_TRIES",
        description="Maximum generation attempts per request",
        ge=1,
    )
    generation_retry_delay_seconds: float = Field(
        5.0,
        alias="GENERATION_RETRY_DELAY_SECONDS",
        description="Fixed backoff between transient generation failures",
        ge=0,
    )
    collect_messages: bool = Field(
        False,
        alias="COLLECT_MESSAGES",
        description="Store an anonymized copy of each interaction in the messages table",
    )

    # Optional sub-services
    search_enabled: bool = Field(False, alias="SEARCH_ENABLED")
    search_url: str = Field(
        "https://ddg-webapp-aagd.vercel.app/search",
        alias="SEARCH_URL",
        description="JSON search endpoint returning [{title, href, body}]",
    )
    moderation_enabled: bool = Field(False, alias="MODERATION_ENABLED")

    # HTTP server
    host: str = Field("0.0.0.0", alias="RELAY_HOST")
    port: int = Field(8000, alias="RELAY_PORT")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_timezone: str | None = Field(
        default=None,
        alias="LOG_TIMEZONE",
        description="IANA timezone used for log timestamps; defaults to the system timezone",
    )
    log_dir: str = Field("logs", alias="LOG_DIR")

    @property
    def credentials(self) -> list[str]:
        return [token.strip() for token in self.upstream_credentials.split(",") if token.strip()]


settings = Settings()
