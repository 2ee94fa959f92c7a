"""
Configuration Management for the Transaction Graph

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All tunable thresholds live here, not in the algorithms.
Operators adjust sensitivity (adjacency window, bucket cap, insight
thresholds) through the environment without code changes.

Components receive their settings object explicitly and only fall back
to get_settings() when the caller passes nothing.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GraphBuilderSettings(BaseSettings):
    """Graph builder tuning: edge weights, bucket cap, persistence batching."""

    model_config = SettingsConfigDict(
        env_prefix="GRAPH_",
        extra="ignore"
    )

    # Temporal adjacency
    adjacency_window_hours: float = Field(
        default=24.0,
        gt=0,
        description="Maximum gap between consecutive transactions for a followed_by edge"
    )
    followed_by_min_strength: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Floor applied to the decayed followed_by strength"
    )

    # Same-day co-occurrence
    same_day_strength: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Strength of a same_day edge"
    )
    same_day_same_category_strength: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Strength of a same_day_same_category edge"
    )
    day_bucket_cap: int = Field(
        default=200,
        ge=2,
        description="Largest day bucket that is enumerated pairwise in full"
    )
    bucket_overflow: Literal["sample", "skip"] = Field(
        default="sample",
        description="What to do with a day bucket above the cap"
    )
    reference_timezone: str = Field(
        default="UTC",
        description="IANA timezone used to cut transactions into calendar days"
    )

    # Input window
    history_months: int = Field(
        default=6,
        ge=1,
        le=120,
        description="How many trailing months of transactions feed one build"
    )

    # Persistence
    batch_size: int = Field(
        default=100,
        ge=1,
        le=5000,
        description="Relations written per insert batch"
    )
    batch_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per insert batch before it is counted as failed"
    )
    batch_retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Base of the exponential back-off between batch attempts"
    )
    build_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Deadline for one complete rebuild"
    )
    raise_on_partial: bool = Field(
        default=False,
        description="Raise PersistenceFailure when some batches failed"
    )

    @field_validator('reference_timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject timezone names zoneinfo cannot resolve."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.reference_timezone)


class PatternSettings(BaseSettings):
    """Pattern analyzer and recommendation thresholds."""

    model_config = SettingsConfigDict(
        env_prefix="PATTERN_",
        extra="ignore"
    )

    min_occurrences: int = Field(
        default=2,
        ge=1,
        description="Relation types seen fewer times than this are not reported"
    )
    sequential_min_strength: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="followed_by strength counted as high-confidence"
    )
    sequential_burst_min_count: int = Field(
        default=3,
        ge=1,
        description="followed_by relations needed for a burst insight"
    )
    same_day_insight_min_count: int = Field(
        default=5,
        ge=1,
        description="same_day relations needed for the same-day purchases insight"
    )
    category_cluster_min_count: int = Field(
        default=3,
        ge=1,
        description="same_day_same_category relations needed for a clustering insight"
    )
    same_day_volume_threshold: int = Field(
        default=20,
        ge=0,
        description="same_day count above which list-based shopping is suggested"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    transactions_sheet_name: str = Field(
        default="Transactions",
        description="Name of the sheet holding transactions"
    )
    relations_sheet_name: str = Field(
        default="TransactionRelations",
        description="Name of the sheet holding graph relations"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for structured logs"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def graph(self) -> GraphBuilderSettings:
        return GraphBuilderSettings()

    @property
    def patterns(self) -> PatternSettings:
        return PatternSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings(settings: Optional[Settings] = None) -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with a
    "<name>_error" entry for each failure. Useful for startup checks.
    """
    results = {}
    settings = settings or get_settings()

    for name in ("graph", "patterns", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
