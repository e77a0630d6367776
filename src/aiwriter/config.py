"""Unified configuration: LLM endpoint, image search, token budget, app paths.

All settings are loaded from environment (with optional .env). Used by the
orchestrator composition root and the CLI.
"""

from pathlib import Path
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _require_url(v: str | None, name: str) -> str | None:
    if v is None:
        return v
    parsed = urlparse(v)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"{name} must be a valid URL with scheme and netloc")
    return v


class LlmConfig(BaseSettings):
    """LLM chat endpoint configuration

    All LLM settings (model, temperature, max_tokens, timeout, api_base, api_key)
    are read from environment with prefix LLM_. The default points at the
    OpenAI-compatible LongCat endpoint; any LiteLLM model string works.
    """

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    model: str = Field(
        default="openai/LongCat-Flash-Chat",
        description="LiteLLM model string (e.g. openai/gpt-4o-mini, openai/LongCat-Flash-Chat).",
    )
    api_base: str | None = Field(
        default="https://api.longcat.chat/openai/v1",
        description="OpenAI-compatible API base URL.",
    )
    api_key: SecretStr | None = Field(
        default=None,
        description="Bearer token; else from provider env vars.",
    )
    temperature: float = Field(
        default=0.5, ge=0.0, le=2.0, description="Sampling temperature."
    )
    max_tokens: int = Field(
        default=4096, gt=0, description="Completion token ceiling per call."
    )
    timeout: float = Field(
        default=60.0, gt=0, description="Request timeout in seconds."
    )
    retry_backoff: float = Field(
        default=0.5,
        ge=0.0,
        description="Base delay in seconds before the single retry of a rate-limited or timed-out call.",
    )
    chunk_chars: int = Field(
        default=8000,
        gt=0,
        description="Maximum characters of uploaded content per call; longer uploads are sent in parts.",
    )

    @field_validator("api_base")
    @classmethod
    def _validate_api_base(cls, v: str | None) -> str | None:
        return _require_url(v, "api_base")


class ImageSearchConfig(BaseSettings):
    """Stock photo search (Pexels-compatible). Loaded from env with prefix PEXELS_."""

    model_config = SettingsConfigDict(
        env_prefix="PEXELS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    base_url: str = Field(
        default="https://api.pexels.com/v1", description="Image search API base URL."
    )
    api_key: SecretStr | None = Field(
        default=None, description="API key sent in the Authorization header."
    )
    orientation: str = Field(default="landscape")
    max_concurrency: int = Field(
        default=4, ge=1, le=6, description="Simultaneous lookups per generation."
    )
    request_timeout: float = Field(
        default=10.0, gt=0, description="Timeout for a single lookup in seconds."
    )
    stage_timeout: float = Field(
        default=30.0, gt=0, description="Wall-clock bound for the whole enrichment stage."
    )
    max_keywords: int = Field(
        default=10, ge=0, description="Maximum distinct keywords looked up per generation."
    )

    @field_validator("base_url")
    @classmethod
    def _validate_base_url(cls, v: str) -> str:
        return _require_url(v, "base_url").rstrip("/")


class BudgetConfig(BaseSettings):
    """Daily token allowance. Loaded from env with prefix BUDGET_."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    daily_limit: int = Field(default=5000, ge=0)
    bonus: int = Field(
        default=500, ge=0, description="Headroom so an in-flight generation can finish."
    )
    estimated_cost: int = Field(
        default=2038,
        ge=0,
        description="Pre-flight estimate: system prompt tokens plus 40% of max_tokens.",
    )
    timezone: str = Field(default="UTC", description="IANA zone used for the day key.")
    day_boundary_hour: int = Field(
        default=0, ge=0, le=23, description="Local hour at which the ledger rolls over."
    )

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v!r}") from e
        return v


class AppConfig(BaseSettings):
    """Paths and log level for the CLI. Loaded from env with prefix AIWRITER_."""

    model_config = SettingsConfigDict(
        env_prefix="AIWRITER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    data_dir: Path = Field(
        default=Path("./.aiwriter"),
        description="Directory holding the ledger/history store and generation logs.",
    )
    output_dir: Path = Field(
        default=Path("./output"), description="Directory for exported artifacts."
    )
    log_level: str = Field(default="INFO")

    @field_validator("data_dir", "output_dir", mode="after")
    @classmethod
    def resolve_path(cls, v: Path) -> Path:
        """Resolve to absolute for deterministic behavior."""
        return v.resolve()
