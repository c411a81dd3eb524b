"""
Configuration settings for the knowledge trainer.

Uses Pydantic Settings for environment variable management with .env file support.
Every field can be overridden with a KT_-prefixed environment variable.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from knowledge_trainer.db import DEFAULT_DB_PATH


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="KT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Storage
    # ========================================
    db_path: str = Field(default=DEFAULT_DB_PATH, description="SQLite database file")

    # ========================================
    # Content generation
    # ========================================
    api_url: str = Field(
        default="https://kt-proxy.vercel.app/api/openai",
        description="Chat-completions compatible endpoint (proxy holds the key)",
    )
    model: str = Field(default="gpt-4.1-mini")
    request_timeout: float = Field(default=120.0, description="Seconds per generation request")
    retry_delay: float = Field(default=1.0, description="Delay before the single retry on 5xx/network errors")
    rate_limit_delay: float = Field(default=2.0, description="Delay before the single retry on HTTP 429")
    learning_depth: Literal["casual", "standard", "deep"] = Field(default="standard")

    # ========================================
    # Session
    # ========================================
    max_questions: int = Field(default=10, ge=1, description="Answered questions per session")
    batch_size: int = Field(default=10, ge=1)
    prefetch_threshold: int = Field(default=5, ge=0, description="Top up the queue at or below this size")
    prefetch_pacing: float = Field(default=0.5, ge=0, description="Seconds between successful background fetches")
    prefetch_max_failures: int = Field(default=3, ge=1)

    # ========================================
    # Logging
    # ========================================
    log_level: str = Field(default="WARNING")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
