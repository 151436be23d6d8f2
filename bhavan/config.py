from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./bhavan.db"

    # Database Connection Pool Settings (ignored for SQLite)
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # Operator bearer tokens
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # App Settings
    APP_NAME: str = "Bhavan.ai Services"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "https://bhavan.ai",
        "https://www.bhavan.ai",
    ]

    # Email
    EMAIL_PROVIDER: str = "smtp"  # smtp | resend
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = ""  # Defaults to SMTP_USER
    SMTP_FROM_NAME: str = "Bhavan.ai"
    RESEND_API_KEY: str = ""
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_MAX_ATTEMPTS: int = 3
    ADMIN_EMAIL: str = "admin@bhavan.ai"

    # Frontend URL for email links
    FRONTEND_URL: str = "https://bhavan.ai"

    # Encryption of stored gateway secrets
    ENCRYPTION_SECRET: Optional[str] = None
    ENCRYPTION_SALT: str = "bhavan_gateway_salt"

    # Razorpay
    RAZORPAY_API_URL: str = "https://api.razorpay.com"  # SDK appends /v1
    RAZORPAY_TIMEOUT: int = 15  # Seconds

    # Payment gateway fallback when no configuration row is active
    PAYMENT_GATEWAY_PROVIDER: Optional[str] = None
    PAYMENT_GATEWAY_API_KEY: Optional[str] = None
    PAYMENT_GATEWAY_API_SECRET: Optional[str] = None
    PAYMENT_GATEWAY_WEBHOOK_SECRET: Optional[str] = None
    PAYMENT_GATEWAY_MODE: str = "test"

    # Retry policy
    RETRY_MAX_ATTEMPTS: int = 3
    DB_RETRY_BASE_DELAY_MS: int = 500
    NETWORK_RETRY_BASE_DELAY_MS: int = 1000
    RETRY_MAX_DELAY_MS: int = 10000
    RETRY_EXPONENTIAL_BASE: float = 2

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
