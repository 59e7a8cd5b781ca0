"""Application configuration using pydantic-settings."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFLICT_POLICIES = {"drop_silently", "raise_visible_warning", "overwrite"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite:///./ledger.db"

    # Pending -> posted reconciliation
    STALE_PENDING_DAYS: int = 8
    PENDING_DATE_WINDOW_DAYS: int = 8
    FUZZY_DATE_WINDOW_DAYS: int = 3
    FUZZY_AMOUNT_TOLERANCE: float = 0.25
    RECONCILE_TIMEOUT_SECONDS: float | None = None

    # Holding imports: what to do when another provider owns the composite row
    HOLDING_CONFLICT_POLICY: str = "drop_silently"

    # Activity detection: how far back to look for transactions to match
    ACTIVITY_LOOKBACK_DAYS: int = 30

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    @field_validator("HOLDING_CONFLICT_POLICY", mode="before")
    @classmethod
    def validate_conflict_policy(cls, v: str) -> str:
        """Normalize HOLDING_CONFLICT_POLICY to one of the known policy names."""
        normalized = str(v).strip().lower()
        if normalized not in CONFLICT_POLICIES:
            raise ValueError(
                f"HOLDING_CONFLICT_POLICY must be one of {CONFLICT_POLICIES}, got {v!r}"
            )
        return normalized

    @field_validator("FUZZY_AMOUNT_TOLERANCE")
    @classmethod
    def validate_tolerance(cls, v: float) -> float:
        if v < 0:
            raise ValueError("FUZZY_AMOUNT_TOLERANCE must be >= 0")
        return v

    @field_validator(
        "STALE_PENDING_DAYS",
        "PENDING_DATE_WINDOW_DAYS",
        "FUZZY_DATE_WINDOW_DAYS",
        "ACTIVITY_LOOKBACK_DAYS",
    )
    @classmethod
    def validate_day_counts(cls, v: int) -> int:
        if v < 0:
            raise ValueError("day windows must be >= 0")
        return v


settings = Settings()
