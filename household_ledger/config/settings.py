"""
Configuration Management for Household Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All tunables of the engine live here (storage locations,
backup cadence, debounce delay, event bus limits, logging).
Ledger instances take an explicit LedgerSettings so that several ledgers
(e.g. in tests) never share configuration through global state.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """
    Main ledger settings.
    
    Loads configuration from LEDGER_* environment variables and .env file.
    """
    
    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    # Storage locations
    data_dir: Path = Field(
        default=Path("ledger_data"),
        description="Directory holding the structured store and flat fallback"
    )
    database_filename: str = Field(
        default="ledger.sqlite3",
        description="File name of the structured (SQLite) store"
    )
    flat_store_dirname: str = Field(
        default="flat",
        description="Sub-directory of data_dir used by the flat fallback store"
    )
    prefer_structured_store: bool = Field(
        default=True,
        description="Try the structured store first; False goes straight to the flat store"
    )
    
    # Backups
    auto_backup_interval: int = Field(
        default=100,
        ge=1,
        description="Create a backup every N-th transaction"
    )
    max_backups: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Number of most recent backups to keep"
    )
    
    # Settings persistence
    settings_debounce_seconds: float = Field(
        default=0.5,
        ge=0.0,
        le=60.0,
        description="Delay used to coalesce rapid filter/category edits into one write"
    )
    
    # Event bus
    max_handlers_per_topic: int = Field(
        default=10,
        ge=0,
        description="Subscriber count per topic above which a warning is logged"
    )
    
    # Structured store open retries
    open_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts to open the structured store before falling back"
    )
    open_retry_max_wait: float = Field(
        default=2.0,
        ge=0.0,
        description="Upper bound (seconds) of the exponential wait between open attempts"
    )
    
    # Logging
    log_level: str = Field(
        default="INFO",
        description="Log level for the package loggers"
    )
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON (False renders for the console)"
    )
    
    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise and check the log level name."""
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level
    
    @property
    def database_path(self) -> Path:
        """Full path of the structured store database file."""
        return self.data_dir / self.database_filename
    
    @property
    def flat_store_path(self) -> Path:
        """Full path of the flat store directory."""
        return self.data_dir / self.flat_store_dirname


@lru_cache()
def get_settings() -> LedgerSettings:
    """
    Get ledger settings (cached).
    
    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return LedgerSettings()
