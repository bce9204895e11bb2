"""
Configuration Management for FinTrack Core

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Cache lifetimes, alert thresholds and the civil calendar offset are
business constants that must agree across every tab of a session, so
they are validated once at startup instead of being scattered as literals.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheSettings(BaseSettings):
    """Cache Store lifetimes and persistence keys."""

    model_config = SettingsConfigDict(
        env_prefix="FINTRACK_CACHE_",
        extra="ignore"
    )

    default_ttl_seconds: float = Field(
        default=5 * 60,
        gt=0,
        description="TTL used when a caller does not pass one"
    )
    budgets_ttl_seconds: float = Field(
        default=24 * 60 * 60,
        gt=0,
        description="How long budget lists stay usable"
    )
    budgets_stale_seconds: float = Field(
        default=12 * 60 * 60,
        gt=0,
        description="Age after which budget lists are refreshed in background"
    )
    transactions_ttl_seconds: float = Field(
        default=5 * 60,
        gt=0,
        description="How long per-budget transaction lists stay usable"
    )
    storage_prefix: str = Field(
        default="bofin_cache_",
        description="Prefix of persisted cache entries"
    )


class SyncSettings(BaseSettings):
    """Cross-tab broadcast configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINTRACK_SYNC_",
        extra="ignore"
    )

    channel_name: str = Field(
        default="bofin_cache_sync",
        description="Broadcast channel shared by all tabs"
    )
    storage_key_prefix: str = Field(
        default="bofin_sync_",
        description="Prefix of the transient keys used by the storage fallback"
    )
    cleanup_delay_seconds: float = Field(
        default=0.1,
        ge=0.0,
        le=5.0,
        description="Delay before a fallback message key is removed"
    )


class AlertSettings(BaseSettings):
    """Budget alert thresholds and deduplication window."""

    model_config = SettingsConfigDict(
        env_prefix="FINTRACK_ALERTS_",
        extra="ignore"
    )

    thresholds: str = Field(
        default="80,90,100,110,120",
        description="Comma-separated usage percentages that trigger alerts"
    )
    window_hours: float = Field(
        default=24,
        gt=0,
        description="How long a sent alert suppresses a repeat"
    )
    storage_key: str = Field(
        default="bofin_budget_alerts_sent",
        description="Storage key holding the sent-alert list"
    )

    @field_validator('thresholds')
    @classmethod
    def validate_thresholds(cls, v: str) -> str:
        """Thresholds must be positive integers in ascending order."""
        try:
            values = [int(part.strip()) for part in v.split(",") if part.strip()]
        except ValueError:
            raise ValueError(f"Alert thresholds must be integers: {v}")
        if not values:
            raise ValueError("At least one alert threshold is required")
        if values != sorted(set(values)) or values[0] <= 0:
            raise ValueError(f"Alert thresholds must be positive and ascending: {v}")
        return v

    @property
    def thresholds_list(self) -> list[int]:
        """Get thresholds as an ascending list."""
        return [int(part.strip()) for part in self.thresholds.split(",") if part.strip()]


class CalendarSettings(BaseSettings):
    """Fixed civil calendar used for budget periods."""

    model_config = SettingsConfigDict(
        env_prefix="FINTRACK_CALENDAR_",
        extra="ignore"
    )

    utc_offset_hours: int = Field(
        default=7,
        ge=-12,
        le=14,
        description="Offset of the civil calendar from UTC"
    )
    currency_symbol: str = Field(
        default="₫",
        description="Symbol appended to formatted amounts"
    )


class SessionSettings(BaseSettings):
    """Signed-in user lookup."""

    model_config = SettingsConfigDict(
        env_prefix="FINTRACK_SESSION_",
        extra="ignore"
    )

    user_cache_ttl_seconds: float = Field(
        default=5 * 60,
        gt=0,
        description="How long the signed-in user is remembered"
    )
    max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Extra attempts when the user lookup fails"
    )
    retry_delay_seconds: float = Field(
        default=0.1,
        ge=0.0,
        description="Base delay between user lookup attempts"
    )


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

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Unsupported log level: {v}. Allowed: {sorted(allowed)}")
        return v.upper()


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

    @property
    def cache(self) -> CacheSettings:
        return CacheSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def alerts(self) -> AlertSettings:
        return AlertSettings()

    @property
    def calendar(self) -> CalendarSettings:
        return CalendarSettings()

    @property
    def session(self) -> SessionSettings:
        return SessionSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("cache", "sync", "alerts", "calendar", "session", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
