"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.03.00"

    # Database
    DATABASE_URL: str

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""  # Secret for /internal/scheduled/* endpoints

    # Token Encryption (OAuth access/refresh tokens at rest)
    FERNET_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    FERNET_KEY_PREVIOUS: str = ""  # Set during rotation, clear once tokens are re-encrypted

    # Google Calendar OAuth + API
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
    GOOGLE_CALENDAR_API_BASE: str = "https://www.googleapis.com/calendar/v3"
    GOOGLE_API_TIMEOUT_SECONDS: float = 10.0
    GOOGLE_INITIAL_SYNC_DAYS: int = 90  # Window fetched when a channel has no sync token
    GOOGLE_WATCH_TTL_DAYS: int = 7  # Google caps watch channels at ~7 days
    GOOGLE_PUSHED_EVENT_SUMMARY: str = "Appointment"  # Only label sent for pushed appointments
    GOOGLE_PUSH_MAX_RETRIES: int = 5  # Failed pushes beyond this are left for manual resync

    # Public base URL the provider posts push notifications to
    PUBLIC_WEBHOOK_BASE_URL: str = "http://localhost:8000"

    # Calendar query defaults
    CALENDAR_DEFAULT_TIMEZONE: str = "America/New_York"
    CALENDAR_LOOKBACK_DAYS: int = 30
    CALENDAR_LOOKAHEAD_MONTHS: int = 7

    # Materialized vs virtual occurrence match window
    RECONCILE_TOLERANCE_SECONDS: int = 60

    # Occurrence materialization (horizon extension)
    MATERIALIZE_HORIZON_DAYS: int = 90
    MATERIALIZE_MAX_OCCURRENCES: int = 200
    MATERIALIZE_BATCH_SIZE: int = 10

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def google_webhook_url(self) -> str:
        """Push notification address registered with Google watch channels."""
        return f"{self.PUBLIC_WEBHOOK_BASE_URL.rstrip('/')}/webhooks/google-calendar"


settings = Settings()
