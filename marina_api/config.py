from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./marina.db",
        alias="DATABASE_URL"
    )

    # Security - used to verify bearer tokens issued by the auth service
    secret_key: str = Field(default="dev-secret-key-at-least-32-characters-long-for-development", alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", alias="ALGORITHM")

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173,capacitor://localhost,http://localhost",
        alias="ALLOWED_ORIGINS"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # ==============================================
    # Booking provider (system of record)
    # ==============================================
    provider_base_url: str = Field(
        default="https://www.marinapark.ro/wp-json/wpbc-custom/v1",
        alias="PROVIDER_BASE_URL"
    )
    provider_create_path: str = Field(default="/create-booking", alias="PROVIDER_CREATE_PATH")

    # Shared secret for signing outbound requests (empty = unsigned)
    provider_signing_secret: str = Field(default="", alias="PROVIDER_SIGNING_SECRET")

    # Hard wall-clock timeout for the create-booking call
    provider_timeout_seconds: float = Field(default=15.0, alias="PROVIDER_TIMEOUT_SECONDS")

    # Inbound status webhooks from the provider
    provider_webhook_secret: str = Field(default="", alias="PROVIDER_WEBHOOK_SECRET")
    provider_webhook_replay_window_seconds: int = Field(default=300, alias="PROVIDER_WEBHOOK_REPLAY_WINDOW")

    # Check-in / check-out times forwarded to the provider
    check_in_time: str = Field(default="15:00", alias="CHECK_IN_TIME")
    check_out_time: str = Field(default="12:00", alias="CHECK_OUT_TIME")
    currency: str = Field(default="RON", alias="CURRENCY")

    # ==============================================
    # Human verification (reCAPTCHA v3)
    # ==============================================
    recaptcha_secret: str = Field(default="", alias="RECAPTCHA_SECRET")
    recaptcha_verify_url: str = Field(
        default="https://www.google.com/recaptcha/api/siteverify",
        alias="RECAPTCHA_VERIFY_URL"
    )
    recaptcha_min_score: float = Field(default=0.5, alias="RECAPTCHA_MIN_SCORE")
    recaptcha_timeout_seconds: float = Field(default=5.0, alias="RECAPTCHA_TIMEOUT_SECONDS")

    # ==============================================
    # Holds
    # ==============================================
    hold_ttl_seconds: int = Field(default=120, alias="HOLD_TTL_SECONDS")
    hold_retention_days: int = Field(default=7, alias="HOLD_RETENTION_DAYS")

    # ==============================================
    # Abuse rate limits: "<max_attempts>/<window_seconds>"
    # ==============================================
    rate_limit_user: str = Field(default="10/3600", alias="RATE_LIMIT_USER")
    rate_limit_ip: str = Field(default="20/3600", alias="RATE_LIMIT_IP")
    rate_limit_email: str = Field(default="5/3600", alias="RATE_LIMIT_EMAIL")
    rate_limit_device: str = Field(default="10/3600", alias="RATE_LIMIT_DEVICE")
    rate_limit_slot: str = Field(default="6/600", alias="RATE_LIMIT_SLOT")

    # ==============================================
    # Background sweeps
    # ==============================================
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")
    hold_expiry_interval_minutes: int = Field(default=10, alias="HOLD_EXPIRY_INTERVAL_MINUTES")
    reconcile_interval_minutes: int = Field(default=5, alias="RECONCILE_INTERVAL_MINUTES")
    hold_purge_interval_minutes: int = Field(default=60, alias="HOLD_PURGE_INTERVAL_MINUTES")
    reconcile_max_retries: int = Field(default=5, alias="RECONCILE_MAX_RETRIES")
    reconcile_batch_size: int = Field(default=50, alias="RECONCILE_BATCH_SIZE")
    gc_batch_size: int = Field(default=200, alias="GC_BATCH_SIZE")
    gc_max_pages: int = Field(default=10, alias="GC_MAX_PAGES")

    # Transactions
    transaction_max_attempts: int = Field(default=5, alias="TRANSACTION_MAX_ATTEMPTS")

    @field_validator('secret_key')
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        """Validate SECRET_KEY is strong enough"""
        if not v:
            raise ValueError("SECRET_KEY is required and cannot be empty")
        if len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return v

    @field_validator(
        'rate_limit_user', 'rate_limit_ip', 'rate_limit_email',
        'rate_limit_device', 'rate_limit_slot'
    )
    @classmethod
    def validate_rate_budget(cls, v: str) -> str:
        """Budgets are written as "<max_attempts>/<window_seconds>" """
        parse_budget(v)
        return v

    @model_validator(mode="after")
    def validate_hold_outlives_provider_call(self) -> "Settings":
        """A hold must not lapse while the provider call it covers is in flight"""
        if self.hold_ttl_seconds <= self.provider_timeout_seconds:
            raise ValueError(
                f"HOLD_TTL_SECONDS ({self.hold_ttl_seconds}) must be greater than "
                f"PROVIDER_TIMEOUT_SECONDS ({self.provider_timeout_seconds})"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def provider_create_url(self) -> str:
        return f"{self.provider_base_url.rstrip('/')}{self.provider_create_path}"

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        if not self.allowed_origins:
            return ["http://localhost:5173"]

        seen = set()
        unique_origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in seen:
                seen.add(origin)
                unique_origins.append(origin)

        return unique_origins if unique_origins else ["http://localhost:5173"]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


def parse_budget(value: str) -> tuple:
    """Parse "10/3600" into (10, 3600)."""
    try:
        max_attempts, window = value.split("/", 1)
        max_attempts, window = int(max_attempts), int(window)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid rate limit budget: {value!r}")
    if max_attempts < 1 or window < 1:
        raise ValueError(f"Invalid rate limit budget: {value!r}")
    return max_attempts, window


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
