"""Application configuration from environment variables and .env file."""

import logging
from typing import Optional

from pydantic import ConfigDict
from pydantic_settings import BaseSettings
from sqlalchemy.engine import make_url

logger = logging.getLogger(__name__)


class ChamaSettings(BaseSettings):
    """Ledger configuration loaded from environment variables.

    Pydantic automatically loads values from:
    1. OS environment variables (at instantiation time)
    2. .env file in the working directory

    Instantiate through get_settings() so the environment is read once,
    after load_dotenv() has run in the entry point.
    """

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = "sqlite:///./chama.db"
    log_level: str = "INFO"
    log_file: str = "logs/server.log"

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 8000

    # Optimistic-lock retry policy for payment recording and adjustments
    max_conflict_retries: int = 5
    conflict_backoff_ms: int = 20

    # Seconds a SQLite writer waits for the database lock
    sqlite_busy_timeout: float = 30.0

    def validate_settings(self) -> None:
        """Validate configuration values that pydantic cannot express."""
        if not self.database_url:
            raise ValueError("DATABASE_URL must not be empty")
        if self.max_conflict_retries < 1:
            raise ValueError("MAX_CONFLICT_RETRIES must be at least 1")
        if self.conflict_backoff_ms < 0:
            raise ValueError("CONFLICT_BACKOFF_MS must not be negative")


_settings_instance: Optional[ChamaSettings] = None


def get_settings() -> ChamaSettings:
    """Get or create the settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = ChamaSettings()
        _settings_instance.validate_settings()
        logger.debug(
            "Loaded settings: database_url=%s",
            make_url(_settings_instance.database_url).render_as_string(hide_password=True),
        )
    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings_instance
    _settings_instance = None


__all__ = ["ChamaSettings", "get_settings", "reset_settings"]
