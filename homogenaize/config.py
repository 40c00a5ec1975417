"""Configuration for homogenaize."""

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Library settings, read from ``HOMOGENAIZE_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HOMOGENAIZE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Logging
    log_level: str = "info"
    json_logs: bool = True

    # HTTP
    request_timeout_seconds: float = 60.0

    # OpenAI settings
    openai_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("HOMOGENAIZE_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    openai_base_url: str = "https://api.openai.com/v1"

    # Anthropic settings
    anthropic_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("HOMOGENAIZE_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    )
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    anthropic_version: str = "2023-06-01"
    anthropic_default_max_tokens: int = 4096

    # Gemini settings
    gemini_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("HOMOGENAIZE_GEMINI_API_KEY", "GEMINI_API_KEY"),
    )
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()
