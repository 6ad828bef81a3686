from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except Exception:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")
    auth_token_max_age_seconds: int = Field(default=7 * 24 * 3600, alias="AUTH_TOKEN_MAX_AGE_SECONDS")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="sms_ledger", alias="MONGODB_DB_NAME")

    # Redis (arq)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    # SMS pricing and wallet thresholds
    sms_segment_length: int = Field(default=160, alias="SMS_SEGMENT_LENGTH")
    sms_max_recipients: int = Field(default=1000, alias="SMS_MAX_RECIPIENTS")
    sms_low_balance_threshold: int = Field(default=20, alias="SMS_LOW_BALANCE_THRESHOLD")
    sms_low_balance_notify_interval_hours: int = Field(default=24, alias="SMS_LOW_BALANCE_NOTIFY_INTERVAL_HOURS")
    admin_pool_default_low_threshold: int = Field(default=1000, alias="ADMIN_POOL_DEFAULT_LOW_THRESHOLD")

    # In-flight pool reservations older than this are settled by the recovery job
    ledger_recovery_grace_seconds: int = Field(default=120, alias="LEDGER_RECOVERY_GRACE_SECONDS")

    # SMS transport
    sms_transport: str = Field(default="log", alias="SMS_TRANSPORT")
    sms_transport_timeout_seconds: float = Field(default=10.0, alias="SMS_TRANSPORT_TIMEOUT_SECONDS")
    twilio_account_sid: str = Field(default="", alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str = Field(default="", alias="TWILIO_AUTH_TOKEN")
    twilio_from_number: str = Field(default="", alias="TWILIO_FROM_NUMBER")


@lru_cache
def get_settings() -> Settings:
    return Settings()
