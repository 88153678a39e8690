"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # Redis (booking locks, rate limit storage). Empty or "memory://" disables.
    REDIS_URL: str = ""
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 2.0

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Tracing (OpenTelemetry, optional)
    OTEL_ENABLED: bool = False
    OTEL_EXPORTER_OTLP_ENDPOINT: str = ""
    OTEL_EXPORTER_OTLP_HEADERS: str = ""  # key=value,key2=value2
    OTEL_SERVICE_NAME: str = "salon-scheduler"
    OTEL_SAMPLE_RATE: float = 0.1

    # Rate Limiting (requests per minute)
    RATE_LIMIT_API: int = 60  # General API
    RATE_LIMIT_BOOKING: int = 20  # Booking and series creation

    # Scheduling
    SLOT_GRANULARITY_MINUTES: int = 15
    SERIES_SEARCH_WINDOW_DAYS: int = 14
    MAX_AVAILABILITY_RANGE_DAYS: int = 62
    SLOT_HOLD_MINUTES: int = 5  # checkout hold before a slot is released again

    # Per-staff booking locks
    BOOKING_LOCK_TIMEOUT_SECONDS: float = 5.0  # how long to wait for the lock
    BOOKING_LOCK_TTL_SECONDS: int = 30  # Redis lock expiry

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def is_dev(self) -> bool:
        return self.ENV == "dev"


settings = Settings()
