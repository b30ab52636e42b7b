from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from typing import List, Optional
from urllib.parse import urlparse


PLACEHOLDER_SECRETS = ("your-secret-key-here", "change-me", "changeme")


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "Budget Tracker API"
    APP_NAME: str = "Budget Tracker"
    API_VERSION: str = "1.0.0"
    API_V1_STR: str = "/api"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Tokens
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_SECONDS: int = 15 * 60
    REFRESH_TOKEN_EXPIRE_SECONDS: int = 7 * 24 * 60 * 60

    # Revocation ledger
    BLACKLIST_RETENTION_DAYS: int = 8
    LOGOUT_TIMESTAMP_RETENTION_DAYS: int = 30

    # Passwords
    BCRYPT_ROUNDS: int = 12
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60

    # Cookies
    COOKIE_SAMESITE: str = "lax"
    COOKIE_SECURE: Optional[bool] = None
    COOKIE_DOMAIN: Optional[str] = None

    # Rate limiting (window in seconds, ceiling per window)
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_MAX_REQUESTS: int = 1000
    RATE_LIMIT_AUTH_WINDOW_SECONDS: int = 15 * 60
    RATE_LIMIT_AUTH_MAX_REQUESTS: int = 10
    RATE_LIMIT_STRICT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_STRICT_MAX_REQUESTS: int = 20
    RATE_LIMIT_USER_AGENT_LENGTH: int = 50
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS: int = 60

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # Email
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    EMAILS_FROM_EMAIL: str = ""
    EMAILS_FROM_NAME: str = "Budget Tracker"

    # Environment
    ENVIRONMENT: str = "development"

    DEBUG: bool = False
    LOG_LEVEL: Optional[str] = None

    # Frontend (used for links in emails)
    FRONTEND_URL: str = "http://localhost:5173"

    # Monitoring (Optional - Add to .env for production)
    SENTRY_DSN: str = ""

    # Celery & Redis (Task Queue)
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("COOKIE_SAMESITE")
    @classmethod
    def normalize_samesite(cls, value: str) -> str:
        normalized = value.lower().strip()
        if normalized not in {"lax", "strict", "none"}:
            raise ValueError("COOKIE_SAMESITE must be one of: lax, strict, none")
        return normalized

    @field_validator("SECRET_KEY")
    @classmethod
    def validate_secret_length(cls, value: str) -> str:
        if len(value.strip()) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return value

    @model_validator(mode="after")
    def validate_production_settings(self):
        if self.ENVIRONMENT == "production":
            normalized_secret = self.SECRET_KEY.strip().lower()
            if any(placeholder in normalized_secret for placeholder in PLACEHOLDER_SECRETS):
                raise ValueError("SECRET_KEY must not use placeholders in production")
            if self.COOKIE_SAMESITE == "none" and self.COOKIE_SECURE is False:
                raise ValueError("COOKIE_SAMESITE=none requires secure cookies in production")
        if self.REFRESH_TOKEN_EXPIRE_SECONDS <= self.ACCESS_TOKEN_EXPIRE_SECONDS:
            raise ValueError("REFRESH_TOKEN_EXPIRE_SECONDS must exceed ACCESS_TOKEN_EXPIRE_SECONDS")
        if self.BLACKLIST_RETENTION_DAYS * 86400 <= self.REFRESH_TOKEN_EXPIRE_SECONDS:
            raise ValueError("BLACKLIST_RETENTION_DAYS must outlive the refresh token lifetime")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def cookie_secure(self) -> bool:
        if self.COOKIE_SECURE is None:
            return self.is_production
        return self.COOKIE_SECURE

    @property
    def cookie_domain(self) -> Optional[str]:
        if not self.COOKIE_DOMAIN:
            return None
        # Accept either a bare host or a full origin URL.
        if "://" in self.COOKIE_DOMAIN:
            return urlparse(self.COOKIE_DOMAIN).hostname
        return self.COOKIE_DOMAIN

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
