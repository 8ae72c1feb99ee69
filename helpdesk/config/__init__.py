"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from typing import List, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Redis (task queue, shared rate limits) ==========
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL used by the arq queue and the redis rate limit store"
    )

    # ========== OpenAI ==========
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_base_url: Optional[str] = Field(default=None, description="Custom OpenAI endpoint")
    openai_request_timeout: float = Field(
        default=30.0,
        description="Seconds to wait for a completion",
        gt=0
    )
    openai_classify_enabled: bool = Field(
        default=True,
        description="Disable to return placeholder classifications without calling OpenAI"
    )
    mock_llm: bool = Field(
        default=False,
        description="Use mock LLM responses for testing (no API calls)"
    )

    # ========== LLM Settings ==========
    llm_model: str = Field(default="gpt-3.5-turbo", description="Chat model used for classification")
    llm_temperature: float = Field(
        default=0.1,
        description="Sampling temperature for classification",
        ge=0.0,
        le=1.0
    )
    llm_max_tokens: int = Field(
        default=200,
        description="Max tokens for a classification answer",
        ge=1,
        le=4000
    )

    # ========== Rate Limiting ==========
    rate_limit_per_minute: int = Field(
        default=30,
        description="Max classification dispatches per window",
        ge=1
    )
    rate_limit_decay_minutes: int = Field(
        default=1,
        description="Length of the fixed rate limit window in minutes",
        ge=1
    )
    rate_limit_max_backoff_minutes: int = Field(
        default=60,
        description="Cap for the advisory exponential backoff",
        ge=1
    )
    rate_limit_store: str = Field(
        default="memory",
        description="Counter backend: memory (single process) or redis (shared)"
    )

    # ========== Classification job ==========
    classification_job_tries: int = Field(default=3, description="Attempts per classification job", ge=1)
    classification_job_backoff: Tuple[int, ...] = Field(
        default=(1, 5, 10),
        description="Seconds to wait before each retry"
    )
    classification_job_timeout: int = Field(
        default=120,
        description="Seconds a single attempt may run",
        ge=1
    )

    # ========== Bulk classification defaults ==========
    bulk_batch_size: int = Field(default=10, description="Tickets per batch", ge=1)
    bulk_delay_seconds: int = Field(default=1, description="Pause between batches", ge=0)

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "testing", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("rate_limit_store")
    @classmethod
    def validate_rate_limit_store(cls, v: str) -> str:
        """Only the in-process and redis counters exist."""
        v = v.lower().strip()
        if v not in {"memory", "redis"}:
            raise ValueError("rate_limit_store must be 'memory' or 'redis'")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketCategory(str, Enum):
    """Categories a ticket can be classified into."""
    TECHNICAL = "technical"
    BILLING = "billing"
    ACCOUNT = "account"
    FEATURE_REQUEST = "feature_request"
    BUG_REPORT = "bug_report"
    GENERAL = "general"


class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


CATEGORY_LABELS = {
    TicketCategory.TECHNICAL: "Technical Support",
    TicketCategory.BILLING: "Billing & Payment",
    TicketCategory.ACCOUNT: "Account Management",
    TicketCategory.FEATURE_REQUEST: "Feature Request",
    TicketCategory.BUG_REPORT: "Bug Report",
    TicketCategory.GENERAL: "General Inquiry",
}

# ========== Lists for validation ==========

VALID_CATEGORIES = [category.value for category in TicketCategory]

# Tickets below this confidence are picked up again by bulk classification
LOW_CONFIDENCE_THRESHOLD = 0.5

CLASSIFICATION_TASK = "classify_ticket"
