from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Real Estate Marketplace Identity Service"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"
    device_id_header: str = "X-Device-Id"

    # ─────────── DATABASE ───────────
    database_url: str = "sqlite:///./identity.db"

    # ─────────── JWT / AUTH ───────────
    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_access_token_minutes: int = 1440  # 24 hours

    # ─────────── PHONE ───────────
    home_country_code: str = "91"
    national_number_length: int = 10
    min_phone_digits: int = 7

    # ─────────── OTP ───────────
    otp_length: int = 6
    otp_ttl_seconds: int = 300
    otp_resend_cooldown_seconds: int = 60
    otp_max_attempts: int = 5
    otp_hash_secret: str = "change-me-too"
    otp_delivery_retries: int = 1
    otp_store: str = "memory"  # memory | sql

    # ─────────── PROFILE BACKEND ───────────
    backend_retry_backoff_seconds: float = 0.5

    # ─────────── SMS GATEWAY ───────────
    # empty url => log-only gateway (local development)
    sms_gateway_url: str = ""
    sms_gateway_api_key: str = ""
    sms_sender_id: str = "REALTY"
    sms_timeout_seconds: float = 5.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
