"""Application configuration helpers."""

from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_DATABASE_PATH = PROJECT_ROOT / "data" / "tasknotes.db"


class AppConfig(BaseModel):
    """Runtime configuration loaded from environment variables."""

    model_config = ConfigDict(frozen=True)

    database_path: Path = Field(..., description="SQLite file holding conversations, notes and tasks")
    jwt_secret_key: Optional[str] = Field(
        default=None,
        description="HMAC secret for JWT signing (required for JWT/HTTP auth)",
    )
    enable_local_mode: bool = Field(
        default=True,
        description="Allow local-dev token bypass when running locally",
    )
    local_dev_token: Optional[str] = Field(
        default="local-dev-token",
        description="Static token accepted in local mode for development",
    )
    llm_api_key: Optional[str] = Field(None, description="API key for the chat completions provider")
    llm_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of an OpenAI-compatible chat completions API",
    )
    llm_timeout_seconds: float = Field(60.0, gt=0, description="Timeout for one model call")
    firecrawl_api_key: Optional[str] = Field(None, description="Firecrawl API key (web_scraper)")
    firecrawl_base_url: str = Field(default="https://api.firecrawl.dev")
    mistral_api_key: Optional[str] = Field(None, description="Mistral API key (pdf_scraper)")
    mistral_base_url: str = Field(default="https://api.mistral.ai")
    tool_timeout_seconds: float = Field(
        30.0, gt=0, description="Upper bound for a single tool invocation"
    )
    max_tool_rounds: int = Field(
        10, ge=1, le=50, description="Model/tool round trips allowed in one turn"
    )
    history_limit: int = Field(
        40, ge=1, le=500, description="Persisted messages replayed to the model per turn"
    )
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"]
    )
    log_level: str = Field(default="INFO")

    @field_validator("database_path", mode="before")
    @classmethod
    def _normalize_database_path(cls, value: str | Path | None) -> Path:
        if value is None or value == "":
            raise ValueError("DATABASE_PATH is required")
        path = value if isinstance(value, Path) else Path(value)
        return path.expanduser().resolve()

    @field_validator("jwt_secret_key", mode="before")
    @classmethod
    def _ensure_secret(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            raise ValueError(
                "JWT_SECRET_KEY cannot be empty; unset the variable to disable JWT auth in local mode"
            )
        if len(cleaned) < 16:
            raise ValueError("JWT_SECRET_KEY must be at least 16 characters")
        return cleaned

    @field_validator("llm_base_url", "firecrawl_base_url", "mistral_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported LOG_LEVEL: {value}")
        return level


def _read_env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(key, default)


def _read_flag(key: str, default: str) -> bool:
    return (_read_env(key, default) or default).lower() not in {"0", "false", "no"}


def _read_list(key: str) -> Optional[List[str]]:
    raw = _read_env(key)
    if raw is None:
        return None
    return [item.strip() for item in raw.split(",") if item.strip()]


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load and cache application configuration."""
    values = {
        "database_path": _read_env("DATABASE_PATH", str(DEFAULT_DATABASE_PATH)),
        "jwt_secret_key": _read_env("JWT_SECRET_KEY"),
        "enable_local_mode": _read_flag("ENABLE_LOCAL_MODE", "true"),
        "local_dev_token": _read_env("LOCAL_DEV_TOKEN", "local-dev-token"),
        "llm_api_key": _read_env("LLM_API_KEY"),
        "llm_base_url": _read_env("LLM_BASE_URL", "https://api.openai.com/v1"),
        "llm_timeout_seconds": _read_env("LLM_TIMEOUT_SECONDS", "60"),
        "firecrawl_api_key": _read_env("FIRECRAWL_API_KEY"),
        "firecrawl_base_url": _read_env("FIRECRAWL_BASE_URL", "https://api.firecrawl.dev"),
        "mistral_api_key": _read_env("MISTRAL_API_KEY"),
        "mistral_base_url": _read_env("MISTRAL_BASE_URL", "https://api.mistral.ai"),
        "tool_timeout_seconds": _read_env("TOOL_TIMEOUT_SECONDS", "30"),
        "max_tool_rounds": _read_env("MAX_TOOL_ROUNDS", "10"),
        "history_limit": _read_env("HISTORY_LIMIT", "40"),
        "log_level": _read_env("LOG_LEVEL", "INFO"),
    }
    cors_origins = _read_list("CORS_ORIGINS")
    if cors_origins is not None:
        values["cors_origins"] = cors_origins

    config = AppConfig(**values)
    # Ensure the database directory exists for downstream services.
    config.database_path.parent.mkdir(parents=True, exist_ok=True)
    return config


def reload_config() -> AppConfig:
    """Clear cached config (useful for tests) and reload."""
    get_config.cache_clear()
    return get_config()


__all__ = ["AppConfig", "get_config", "reload_config", "PROJECT_ROOT", "DEFAULT_DATABASE_PATH"]
