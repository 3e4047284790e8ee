"""
Centralized configuration with validation.

Uses pydantic-settings to load and validate all environment variables at startup.
Fail fast with clear error messages if a threshold or default is malformed.
"""

from functools import lru_cache
from typing import ClassVar

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = Field(
        default="sqlite:///./prunarr.db",
        description="SQLAlchemy connection URL for the media item store",
    )

    # Application
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment: development, staging, production",
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Root log level (DEBUG, INFO, WARNING, ERROR)",
    )
    LOG_JSON: bool = Field(
        default=True,
        description="Emit single-line JSON logs. Disable for human-readable local output.",
    )

    # Rules engine
    DEFAULT_GRACE_PERIOD_DAYS: int = Field(
        default=7,
        ge=0,
        description="Grace period applied when a rule or request doesn't specify one",
    )
    DEFAULT_DELETION_ACTION: str = Field(
        default="unmonitor_and_delete",
        description="Deletion action applied when a rule or request doesn't specify one",
    )
    DEFAULT_CONDITION_LOGIC: str = Field(
        default="AND",
        description="Logic used for rules whose stored conditions don't carry one (AND, OR)",
    )
    ENABLE_DRY_RUN: bool = Field(
        default=False,
        description="Evaluate rules without queueing matched items",
    )
    MAX_ITEMS_PER_RUN: int = Field(
        default=1000,
        ge=1,
        description="Maximum media items loaded per evaluation run",
    )

    # Protection
    PROTECT_RECENTLY_ADDED: bool = True
    RECENTLY_ADDED_DAYS: int = Field(default=30, ge=0)
    PROTECT_RECENTLY_WATCHED: bool = True
    RECENTLY_WATCHED_DAYS: int = Field(default=7, ge=0)
    PROTECT_IN_PROGRESS: bool = True
    PROTECTED_GENRES: str = Field(
        default="",
        description="Comma-separated genres that are never auto-deleted",
    )
    PROTECTED_TAGS: str = Field(
        default="",
        description="Comma-separated tags that are never auto-deleted",
    )
    PROTECTED_RATING: float | None = Field(
        default=8.0,
        description="Items rated at or above this are protected. Unset to disable.",
    )

    # Queue processing
    DELETION_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for one item's deletion during a sweep",
    )
    ARR_CALL_TIMEOUT_SECONDS: float = Field(
        default=60.0,
        gt=0,
        description="Upper bound for a single Sonarr/Radarr call (one file deletion, one unmonitor)",
    )
    PROGRESS_BUFFER_SIZE: int = Field(
        default=100,
        ge=1,
        description="Maximum buffered progress events for an immediate deletion stream",
    )

    VALID_DELETION_ACTIONS: ClassVar[set[str]] = {
        "unmonitor_only",
        "delete_files_only",
        "unmonitor_and_delete",
        "full_removal",
    }

    @field_validator("DEFAULT_DELETION_ACTION")
    @classmethod
    def validate_deletion_action(cls, v: str) -> str:
        if v not in cls.VALID_DELETION_ACTIONS:
            raise ValueError(
                f"DEFAULT_DELETION_ACTION must be one of {sorted(cls.VALID_DELETION_ACTIONS)}, got '{v}'"
            )
        return v

    @field_validator("DEFAULT_CONDITION_LOGIC")
    @classmethod
    def validate_logic(cls, v: str) -> str:
        upper = v.upper()
        if upper not in ("AND", "OR"):
            raise ValueError(f"DEFAULT_CONDITION_LOGIC must be AND or OR, got '{v}'")
        return upper

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


def split_csv(value: str) -> list[str]:
    """Split a comma-separated setting into trimmed, non-empty entries."""
    return [part.strip() for part in value.split(",") if part.strip()]


def rules_config_from_settings(settings: Settings):
    """Build the rules engine defaults from settings."""
    from prunarr.services.retention.types import DeletionAction, LogicOperator, RulesConfig

    return RulesConfig(
        default_grace_period_days=settings.DEFAULT_GRACE_PERIOD_DAYS,
        default_deletion_action=DeletionAction(settings.DEFAULT_DELETION_ACTION),
        default_condition_logic=LogicOperator(settings.DEFAULT_CONDITION_LOGIC),
        enable_dry_run=settings.ENABLE_DRY_RUN,
        max_items_per_run=settings.MAX_ITEMS_PER_RUN,
    )


def protection_config_from_settings(settings: Settings):
    """Build the protection thresholds from settings."""
    from prunarr.services.retention.types import ProtectionConfig

    return ProtectionConfig(
        protect_recently_added=settings.PROTECT_RECENTLY_ADDED,
        recently_added_days=settings.RECENTLY_ADDED_DAYS,
        protect_recently_watched=settings.PROTECT_RECENTLY_WATCHED,
        recently_watched_days=settings.RECENTLY_WATCHED_DAYS,
        protect_in_progress=settings.PROTECT_IN_PROGRESS,
        protected_genres=split_csv(settings.PROTECTED_GENRES),
        protected_tags=split_csv(settings.PROTECTED_TAGS),
        protected_rating=settings.PROTECTED_RATING,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings. Call at startup to validate config."""
    return Settings()
