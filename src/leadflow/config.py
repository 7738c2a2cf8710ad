"""Lead automation service configuration module.

This module provides centralized configuration management for the automation
worker, loading settings from environment variables with validation.

Configuration is loaded from:
1. .env file (if present)
2. Environment variables

All API keys and secrets should be provided via environment variables,
never hardcoded.

Usage:
    >>> from leadflow.config import config
    >>> print(config.MAX_CONCURRENT_LEADS)
    5
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


class Config:
    """Application configuration loaded from environment variables.

    Covers credentials for the scraping and LLM services, the database
    connection, webhook authentication and the pipeline tuning knobs
    (concurrency, retry budget, queue sizing).

    Attributes:
        OPENAI_API_KEY: API key for chat completions (extraction, briefings, emails).
        FIRECRAWL_API_KEY: Firecrawl API key for website scraping.
        DATABASE_URL: Database connection string.
        WEBHOOK_SECRET: Shared bearer token expected on webhook calls.
        LLM_MAX_CONCURRENT: Completions in flight at once across the process.
        LLM_MIN_DELAY_MS: Minimum spacing between completion request starts.
        MAX_CONCURRENT_LEADS: Parallel leads in the enrichment stages.
        STAGE_MAX_RETRIES: Retry budget per stage call.
        STAGE_RETRY_DELAY_SECONDS: Fixed delay between stage attempts.
    """

    def __init__(self) -> None:
        """Initialize configuration by loading from environment variables."""
        self.logger = logging.getLogger(__name__)

        # Application environment
        self.APP_ENV = self._get_optional("APP_ENV", "dev")
        self.DEBUG = self._get_bool("DEBUG")
        self.LOG_LEVEL = self._get_optional("LOG_LEVEL", "INFO")
        self.LOG_FORMAT = self._get_optional(
            "LOG_FORMAT", "text" if self.is_development() else "json"
        )

        # API Server Configuration
        self.API_HOST = self._get_optional("API_HOST", "0.0.0.0")
        self.PORT = int(self._get_optional("PORT", "8080"))
        self.WEBHOOK_SECRET = self._get_optional("WEBHOOK_SECRET")

        # Database Configuration
        self.DATABASE_URL = self._get_optional("DATABASE_URL")
        self.DATABASE_POOL_SIZE = int(self._get_optional("DATABASE_POOL_SIZE", "5"))
        self.DATABASE_MAX_OVERFLOW = int(
            self._get_optional("DATABASE_MAX_OVERFLOW", "10")
        )
        self.DATABASE_ECHO = self._get_bool("DATABASE_ECHO")

        # Firecrawl Configuration
        self.FIRECRAWL_API_KEY = self._get_optional("FIRECRAWL_API_KEY")
        self.FIRECRAWL_API_URL = self._get_optional("FIRECRAWL_API_URL")
        self.FIRECRAWL_TIMEOUT_SECONDS = float(
            self._get_optional("FIRECRAWL_TIMEOUT_SECONDS", "45")
        )

        # OpenAI Configuration
        self.OPENAI_API_KEY = self._get_optional("OPENAI_API_KEY")
        self.OPENAI_BASE_URL = self._get_optional("OPENAI_BASE_URL")
        self.OPENAI_MODEL = self._get_optional("OPENAI_MODEL", "gpt-4o-mini")
        self.OPENAI_FALLBACK_MODEL = self._get_optional(
            "OPENAI_FALLBACK_MODEL", "gpt-4o"
        )
        self.EXTRACTION_TIMEOUT_SECONDS = float(
            self._get_optional("EXTRACTION_TIMEOUT_SECONDS", "30")
        )
        self.BRIEFING_TIMEOUT_SECONDS = float(
            self._get_optional("BRIEFING_TIMEOUT_SECONDS", "90")
        )
        self.EMAIL_TIMEOUT_SECONDS = float(
            self._get_optional("EMAIL_TIMEOUT_SECONDS", "45")
        )
        self.LLM_MAX_CONCURRENT = int(self._get_optional("LLM_MAX_CONCURRENT", "5"))
        self.LLM_MIN_DELAY_MS = int(self._get_optional("LLM_MIN_DELAY_MS", "100"))

        # Pipeline Configuration
        self.MAX_CONCURRENT_LEADS = int(
            self._get_optional("MAX_CONCURRENT_LEADS", "5")
        )
        self.STAGE_MAX_RETRIES = int(self._get_optional("STAGE_MAX_RETRIES", "2"))
        self.STAGE_RETRY_DELAY_SECONDS = float(
            self._get_optional("STAGE_RETRY_DELAY_SECONDS", "5.0")
        )

        # Task Queue Configuration
        self.TASK_QUEUE_SIZE = int(self._get_optional("TASK_QUEUE_SIZE", "100"))
        self.TASK_QUEUE_WORKERS = int(self._get_optional("TASK_QUEUE_WORKERS", "2"))

    def _get_optional(self, name: str, default: str = "") -> str:
        """Get an optional configuration value from environment variables."""
        if name in os.environ:
            return os.environ[name]
        return default

    def _get_bool(self, name: str) -> bool:
        """Return True if the variable is set to 'true' or '1'."""
        return name in os.environ and os.environ[name].lower() in ["true", "1"]

    def validate_for_database(self) -> None:
        """Validate configuration required for database operations.

        Raises:
            ConfigError: If DATABASE_URL is missing.
        """
        if not self.DATABASE_URL:
            raise ConfigError("DATABASE_URL is required for database operations")

    def validate_for_scraping(self) -> None:
        """Validate configuration required for website scraping.

        Raises:
            ConfigError: If FIRECRAWL_API_KEY is missing.
        """
        if not self.FIRECRAWL_API_KEY:
            raise ConfigError("FIRECRAWL_API_KEY is required for web scraping")

    def validate_for_generation(self) -> None:
        """Validate configuration required for LLM extraction and generation.

        Raises:
            ConfigError: If OPENAI_API_KEY is missing.
        """
        if not self.OPENAI_API_KEY:
            raise ConfigError(
                "OPENAI_API_KEY is required for extraction, briefings and emails"
            )

    def validate_for_webhooks(self) -> None:
        """Validate configuration required for authenticated webhooks.

        Raises:
            ConfigError: If WEBHOOK_SECRET is missing.
        """
        if not self.WEBHOOK_SECRET:
            raise ConfigError("WEBHOOK_SECRET is required for webhook authentication")

    def get_database_connection_args(self) -> dict:
        """Get connection pool arguments for SQLAlchemy."""
        return {
            "pool_size": self.DATABASE_POOL_SIZE,
            "max_overflow": self.DATABASE_MAX_OVERFLOW,
            "pool_pre_ping": True,
        }

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.APP_ENV.lower() in ["prod", "production"]

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.APP_ENV.lower() in ["dev", "development"]


# Create global singleton instance
config = Config()
