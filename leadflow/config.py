from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Postgres (control schema + one schema per tenant)
    DATABASE_URL: str = "postgresql://localhost:5432/leadflow"

    # Redis (OAuth state handles)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Bearer tokens issued by the login service
    JWT_SECRET: str | None = None
    JWT_ALGORITHM: str = "HS256"

    # Google OAuth settings (per-agent calendar connection)
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None
    GOOGLE_REDIRECT_URI: str | None = None
    OAUTH_STATE_TTL_SECONDS: int = 900  # 15 minutes
    # Prefix for post-consent redirects (empty = same origin as the API)
    APP_BASE_URL: str = ""

    ENCRYPTION_KEY: str | None = None

    # =================================================================
    # SCHEDULER SETTINGS - static defaults, overridable per tenant
    # =================================================================
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_INTERVAL_MINUTES: int = 30
    ASSIGNMENT_TIMEZONE: str = "Asia/Kolkata"
    DEFAULT_WINDOW_START_HOUR: int = 9  # 9 AM
    DEFAULT_WINDOW_END_HOUR: int = 18  # 6 PM (exclusive)
    DEFAULT_STALE_HEARTBEAT_MINUTES: int = 30
    DEFAULT_INACTIVITY_MINUTES: int = 30
    MAX_LEADS_PER_AGENT: int = 4
    TENANT_PASS_TIMEOUT_SECONDS: float = 120.0

    TOKEN_REFRESH_BUFFER_MINUTES: int = 5
    MEETINGS_TIMEZONE: str = "Asia/Kolkata"

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def google_redirect_uri(self) -> str:
        """Get Google OAuth redirect URI with fallback."""
        if self.GOOGLE_REDIRECT_URI:
            return self.GOOGLE_REDIRECT_URI
        # Default for local development
        return "http://localhost:8000/calendar/callback"

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 1,
                    "max_size": 5,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
