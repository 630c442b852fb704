"""Application configuration and logging setup."""

import logging

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.utils.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Settings loaded from the environment or a local .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Providers
    tavily_api_key: str = ""
    tavily_base_url: str = "https://api.tavily.com"
    dataforseo_login: str = ""
    dataforseo_password: str = ""
    dataforseo_base_url: str = "https://api.dataforseo.com/v3"
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    tavily_cost_per_search: float = Field(default=0.005, ge=0)
    dataforseo_cost_per_request: float = Field(default=0.01, ge=0)

    # Persistent store
    supabase_url: str = ""
    supabase_key: str = ""

    # Queue / admission control
    max_concurrent_generations: int = Field(default=50, ge=1)
    stale_processing_seconds: int = Field(default=3600, ge=1)
    queue_poll_interval_seconds: float = Field(default=5.0, gt=0)
    queue_sweep_interval_seconds: float = Field(default=300.0, gt=0)

    # Section research
    research_max_concurrent: int = Field(default=3, ge=1)
    research_max_retries: int = Field(default=3, ge=1)
    research_backoff_multiplier: float = Field(default=2.0, gt=0)
    research_max_delay_seconds: float = Field(default=10.0, gt=0)
    research_max_sources: int = Field(default=20, ge=1)
    default_citation_style: str = "apa"

    # Caching
    cache_max_size: int = Field(default=1000, ge=1)
    cache_default_ttl_seconds: float = Field(default=1800.0, gt=0)
    cache_cleanup_interval_seconds: float = Field(default=300.0, gt=0)
    section_research_ttl_seconds: float = Field(default=86400.0, gt=0)

    # Batch research
    max_sources_per_section: int = Field(default=8, ge=1)
    batch_research_ttl_seconds: float = Field(default=1800.0, gt=0)

    log_level: str = "INFO"

    def require_tavily_key(self) -> str:
        """Return the Tavily API key or raise ConfigurationError."""
        if not self.tavily_api_key:
            raise ConfigurationError("TAVILY_API_KEY not set")
        return self.tavily_api_key

    def require_dataforseo_credentials(self) -> tuple[str, str]:
        """Return the DataForSEO login and password or raise ConfigurationError."""
        if not (self.dataforseo_login and self.dataforseo_password):
            raise ConfigurationError("DATAFORSEO_LOGIN and DATAFORSEO_PASSWORD must be set")
        return self.dataforseo_login, self.dataforseo_password

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def configure_logging(level: str | None = None) -> None:
    """Configure structlog for console output.

    Args:
        level: Log level name; defaults to settings.log_level.
    """
    level_name = (level or settings.log_level).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        raise ConfigurationError(f"Unknown log level: {level_name}")

    logging.basicConfig(format="%(message)s", level=numeric_level)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )


settings = Settings()
