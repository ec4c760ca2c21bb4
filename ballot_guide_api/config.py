"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic import PostgresDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Settings
    app_name: str = "Ballot Guide API"
    app_version: str = "0.1.0"
    app_description: str = "Personalized primary ballot guides with streaming generation"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./ballot_guide.db"
    create_tables: bool = True

    @field_validator("database_url", mode="before")
    @classmethod
    def validate_database_url(cls, v: str | PostgresDsn) -> str:
        """Ensure database URL is a string for SQLAlchemy."""
        if isinstance(v, str):
            return v
        return str(v)

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8080"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    # Election
    ballot_cache_max_age: int = 300

    # Guide generation
    guide_max_concurrency: int = 4
    guide_persist_on_disconnect: bool = True
    guide_cache_ttl: int = 3600  # seconds; 0 disables the cache
    default_reading_level: int = 3

    # Recommendation generator (external)
    generator_url: str = "http://localhost:8787"
    generator_timeout: float = 60.0
    generator_max_attempts: int = 3
    generator_default_model: str = "standard"

    # District lookup (external, optional)
    district_lookup_url: str | None = None
    district_lookup_timeout: float = 5.0

    # Source classification
    registrar_domains: list[str] = ["sos.state.tx.us", "sos.texas.gov", ".tx.us"]
    reference_domains: list[str] = [
        "ballotpedia.org",
        "votesmart.org",
        "vote411.org",
        "lwv.org",
        "texastribune.org",
        "apnews.com",
        "reuters.com",
    ]

    # Analytics
    analytics_events: list[str] = [
        "interview_start",
        "interview_complete",
        "tone_select",
        "guide_start",
        "guide_complete",
        "guide_error",
        "override_set",
        "override_undo",
        "override_feedback",
        "cheatsheet_print",
        "lang_toggle",
        "party_switch",
        "i_voted",
        "share_app",
        "page_view",
    ]

    # Rate Limiting
    rate_limit_enabled: bool = True
    rate_limit_default: str = "100/minute"  # General endpoints
    rate_limit_guide: str = "10/minute"     # Guide generation endpoints
    rate_limit_events: str = "100/minute"   # Analytics intake


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
