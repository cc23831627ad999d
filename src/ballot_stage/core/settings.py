"""Application settings and configuration.

This module defines all configuration options for the Ballot Stage vote engine.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Ballot Stage", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database configuration
    database_url: str = Field(default="sqlite:///./ballot.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Redis configuration for vote tallies and locks
    redis_enabled: bool = Field(default=True, alias="REDIS_ENABLED")
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    redis_socket_timeout_seconds: float = Field(
        default=5.0, alias="REDIS_SOCKET_TIMEOUT_SECONDS"
    )
    local_fallback_max_entries: int = Field(
        default=10_000, alias="LOCAL_FALLBACK_MAX_ENTRIES"
    )

    # Circuit breakers guarding the durable store and the cache
    db_breaker_failure_threshold: int = Field(
        default=5, alias="DB_BREAKER_FAILURE_THRESHOLD"
    )
    db_breaker_recovery_seconds: float = Field(
        default=30.0, alias="DB_BREAKER_RECOVERY_SECONDS"
    )
    cache_breaker_failure_threshold: int = Field(
        default=3, alias="CACHE_BREAKER_FAILURE_THRESHOLD"
    )
    cache_breaker_recovery_seconds: float = Field(
        default=15.0, alias="CACHE_BREAKER_RECOVERY_SECONDS"
    )

    # Vote submission retry policy
    vote_submit_max_attempts: int = Field(default=3, alias="VOTE_SUBMIT_MAX_ATTEMPTS")
    vote_submit_backoff_base_seconds: float = Field(
        default=0.2, alias="VOTE_SUBMIT_BACKOFF_BASE_SECONDS"
    )
    store_unavailable_retry_after_seconds: int = Field(
        default=30, alias="STORE_UNAVAILABLE_RETRY_AFTER_SECONDS"
    )
    submission_failed_retry_after_seconds: int = Field(
        default=60, alias="SUBMISSION_FAILED_RETRY_AFTER_SECONDS"
    )
    counts_unavailable_retry_after_seconds: int = Field(
        default=30, alias="COUNTS_UNAVAILABLE_RETRY_AFTER_SECONDS"
    )

    # Cached tally maintenance after a successful vote
    tally_update_max_attempts: int = Field(default=3, alias="TALLY_UPDATE_MAX_ATTEMPTS")
    tally_update_backoff_base_seconds: float = Field(
        default=0.1, alias="TALLY_UPDATE_BACKOFF_BASE_SECONDS"
    )
    tally_update_workers: int = Field(default=4, alias="TALLY_UPDATE_WORKERS")
    tally_cache_ttl_seconds: int = Field(default=3600, alias="TALLY_CACHE_TTL_SECONDS")

    # Per-(award, nominee) lock leases; keep the TTL in seconds, not minutes
    vote_lock_ttl_seconds: int = Field(default=10, alias="VOTE_LOCK_TTL_SECONDS")
    lock_retry_delay_seconds: float = Field(default=0.1, alias="LOCK_RETRY_DELAY_SECONDS")
    lock_max_attempts: int = Field(default=50, alias="LOCK_MAX_ATTEMPTS")

    # Periodic cache/database consistency sweep
    cache_sync_enabled: bool = Field(default=True, alias="CACHE_SYNC_ENABLED")
    cache_sync_interval_seconds: float = Field(
        default=300.0, alias="CACHE_SYNC_INTERVAL_SECONDS"
    )
    cache_sync_auto_fix: bool = Field(default=True, alias="CACHE_SYNC_AUTO_FIX")

    # Administrator bias limits
    bias_max_abs_amount: int = Field(default=10_000, alias="BIAS_MAX_ABS_AMOUNT")
    bias_reason_max_length: int = Field(default=500, alias="BIAS_REASON_MAX_LENGTH")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()
