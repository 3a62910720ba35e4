"""Application configuration."""

from datetime import time
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_hhmm(value: str) -> time:
    """Parse an ``HH:MM`` string into a time of day."""
    hours, _, minutes = value.partition(":")
    if len(hours) != 2 or len(minutes) != 2 or not (hours + minutes).isdigit():
        raise ValueError(f"Expected HH:MM, got {value!r}")
    return time(hour=int(hours), minute=int(minutes))


def _csv_set(raw: str) -> frozenset[str]:
    return frozenset(item.strip() for item in raw.split(",") if item.strip())


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="Reminder Service", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8080, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Redis (health checks and the arq job queue)
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")

    # Ingress auth
    service_token: str = Field(..., alias="SERVICE_TOKEN")

    # Quiet hours, patient-local
    quiet_hours_start: str = Field(default="10:00", alias="QUIET_HOURS_START")
    quiet_hours_end: str = Field(default="19:00", alias="QUIET_HOURS_END")

    # Delivery
    delivery_max_attempts: int = Field(default=6, ge=1, alias="DELIVERY_MAX_ATTEMPTS")
    delivery_backoff_base_seconds: float = Field(
        default=60.0, gt=0, alias="DELIVERY_BACKOFF_BASE_SECONDS"
    )
    early_fire_tolerance_seconds: int = Field(
        default=300, ge=0, alias="EARLY_FIRE_TOLERANCE_SECONDS"
    )
    email_worker_concurrency: int = Field(default=10, ge=1, alias="EMAIL_WORKER_CONCURRENCY")
    sms_worker_concurrency: int = Field(default=5, ge=1, alias="SMS_WORKER_CONCURRENCY")
    # Per adapter call; must stay below ARQ_JOB_TIMEOUT
    delivery_send_timeout_seconds: float = Field(
        default=60.0, gt=0, alias="DELIVERY_SEND_TIMEOUT_SECONDS"
    )
    arq_job_timeout: int = Field(default=120, alias="ARQ_JOB_TIMEOUT")
    # Applies to finished arq jobs; failed ones stay inspectable for this long
    arq_keep_result: int = Field(default=86400, alias="ARQ_KEEP_RESULT")
    worker_metrics_port: int = Field(default=8091, alias="WORKER_METRICS_PORT")

    # SMTP
    smtp_host: str = Field(default="localhost", alias="SMTP_HOST")
    smtp_port: int = Field(default=1025, alias="SMTP_PORT")
    smtp_user: str | None = Field(default=None, alias="SMTP_USER")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(default=False, alias="SMTP_USE_TLS")
    smtp_timeout_seconds: float = Field(default=30.0, alias="SMTP_TIMEOUT_SECONDS")
    from_email: str = Field(default="reminder@example.test", alias="FROM_EMAIL")

    # SMS
    sms_provider: str = Field(default="stub", alias="SMS_PROVIDER")
    twilio_account_sid: str | None = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str | None = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_from_phone: str | None = Field(default=None, alias="TWILIO_FROM_PHONE")
    twilio_api_base_url: str = Field(
        default="https://api.twilio.com", alias="TWILIO_API_BASE_URL"
    )
    twilio_timeout_seconds: float = Field(default=10.0, alias="TWILIO_TIMEOUT_SECONDS")

    # Development overrides: recipients (email or E.164 phone) forced to fail
    dev_force_permanent_recipients_str: str = Field(
        default="", alias="DEV_FORCE_PERMANENT_RECIPIENTS"
    )
    dev_force_transient_recipients_str: str = Field(
        default="", alias="DEV_FORCE_TRANSIENT_RECIPIENTS"
    )

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def validate_hhmm(cls, v: str) -> str:
        """Reject quiet-hour bounds that are not HH:MM."""
        parse_hhmm(v)
        return v

    @field_validator("sms_provider")
    @classmethod
    def validate_sms_provider(cls, v: str) -> str:
        """Only the stub and Twilio providers exist."""
        normalized = v.strip().lower()
        if normalized not in {"stub", "twilio"}:
            raise ValueError("SMS_PROVIDER must be 'stub' or 'twilio'")
        return normalized

    @model_validator(mode="after")
    def validate_windows(self) -> "Settings":
        """Quiet-hours start must precede the end; sends must finish inside a job."""
        if parse_hhmm(self.quiet_hours_start) >= parse_hhmm(self.quiet_hours_end):
            raise ValueError("QUIET_HOURS_START must be earlier than QUIET_HOURS_END")
        if self.delivery_send_timeout_seconds >= self.arq_job_timeout:
            raise ValueError("DELIVERY_SEND_TIMEOUT_SECONDS must be less than ARQ_JOB_TIMEOUT")
        return self

    @property
    def quiet_start(self) -> time:
        """Quiet-hours window start as a time of day."""
        return parse_hhmm(self.quiet_hours_start)

    @property
    def quiet_end(self) -> time:
        """Quiet-hours window end as a time of day."""
        return parse_hhmm(self.quiet_hours_end)

    @property
    def dev_force_permanent_recipients(self) -> frozenset[str]:
        return _csv_set(self.dev_force_permanent_recipients_str)

    @property
    def dev_force_transient_recipients(self) -> frozenset[str]:
        return _csv_set(self.dev_force_transient_recipients_str)

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
