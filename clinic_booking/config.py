# clinic_booking/config.py
import os
from pydantic_settings import BaseSettings
from pydantic import Field
from pydantic_settings import SettingsConfigDict
from typing import List
from functools import lru_cache
from urllib.parse import urlsplit


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Application Settings
    APP_NAME: str = "Clinic Booking API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    DOCS_ENABLED: bool = True

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = int(os.environ.get("PORT", 8000))

    # Database Settings
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "sqlite:///./clinic_booking.db")

    # Security Settings
    SECRET_KEY: str = Field(default="change-me-in-prod", alias="JWT_SECRET_KEY")
    ALGORITHM: str = "HS256"

    # CORS Settings
    ALLOWED_ORIGINS: str = os.environ.get("ALLOWED_ORIGINS", "*")

    # Middleware settings
    GZIP_MIN_SIZE: int = 500
    MAX_REQUEST_SIZE: int = 1024 * 1024  # 1MB, webhook envelopes are small

    # Public URL the payment processor calls back into (webhooks) and redirects to
    PUBLIC_BASE_URL: str = os.environ.get("PUBLIC_BASE_URL", "http://localhost:8000")
    # Origins the public retry endpoint may redirect to; empty means PUBLIC_BASE_URL only
    ALLOWED_REDIRECT_ORIGINS: str = os.environ.get("ALLOWED_REDIRECT_ORIGINS", "")

    # Stripe Settings
    STRIPE_TIMEOUT_SECONDS: float = 10.0
    STRIPE_MAX_NETWORK_RETRIES: int = 0
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    CHECKOUT_SESSION_TTL_HOURS: int = 24

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    def _split_csv(self, value: str) -> List[str]:
        if value is None:
            return []
        value = value.strip()
        if value == "":
            return []
        return [item.strip() for item in value.split(",")]

    @property
    def allowed_origins_list(self) -> List[str]:
        return self._split_csv(self.ALLOWED_ORIGINS)

    @property
    def allowed_redirect_origins(self) -> List[str]:
        origins = self._split_csv(self.ALLOWED_REDIRECT_ORIGINS)
        if origins:
            return [o.rstrip("/").lower() for o in origins]
        base = urlsplit(self.PUBLIC_BASE_URL)
        return [f"{base.scheme}://{base.netloc}".lower()]


@lru_cache()
def get_settings() -> Settings:
    s = Settings()
    cors_env = os.environ.get("CORS_ORIGINS")
    if cors_env:
        s.ALLOWED_ORIGINS = cors_env
    return s


settings: Settings = get_settings()
