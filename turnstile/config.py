"""
Application configuration management
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Turnstile"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"
    DEBUG: bool = False  # Default to production-safe
    API_PREFIX: str = "/api/v1"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./turnstile.db"

    @field_validator('DATABASE_URL')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if v.startswith('postgresql://'):
            v = v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 40
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ECHO: bool = False

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # Seat locking
    SEAT_LOCK_BACKEND: str = "local"  # local | redis
    SEAT_LOCK_TTL_SECONDS: int = 30
    SEAT_LOCK_TIMEOUT_SECONDS: float = 10.0

    @field_validator('SEAT_LOCK_BACKEND', 'ARTIFACT_BACKEND')
    @classmethod
    def validate_backend(cls, v: str, info) -> str:
        allowed = {"SEAT_LOCK_BACKEND": ("local", "redis"), "ARTIFACT_BACKEND": ("local", "s3")}
        v = v.lower()
        if v not in allowed[info.field_name]:
            raise ValueError(f"{info.field_name} must be one of {allowed[info.field_name]}")
        return v

    # Ticket payload encryption
    TICKET_SECRET_KEY: Optional[str] = None  # 64 hex characters (AES-256)
    ALLOW_INSECURE_TICKET_KEY: bool = False  # Permit the fallback key outside production
    TICKET_INVALID_MESSAGE: str = "Invalid QR code. Please contact the event organizer."

    # QR rendering
    QR_BOX_SIZE: int = 10
    QR_BORDER: int = 4

    # Artifact storage
    ARTIFACT_BACKEND: str = "local"  # local | s3
    ARTIFACT_LOCAL_DIR: str = "artifacts"
    ARTIFACT_BASE_URL: str = "http://localhost:8000/artifacts"
    S3_BUCKET: str = ""
    S3_REGION: str = "us-east-1"
    S3_PUBLIC_BASE_URL: Optional[str] = None

    # Issuance
    ISSUANCE_TIMEOUT_SECONDS: float = 15.0
    ISSUANCE_UPLOAD_ATTEMPTS: int = 3

    # Reservation
    MAX_SEATS_PER_RESERVATION: int = 10
    PAYMENT_HOLD_MINUTES: int = 7  # Unpaid reservations release their seats after this
    HOLD_SWEEP_INTERVAL_SECONDS: int = 60  # 0 disables the background sweep

    # Payment processor callback
    PAYMENT_CALLBACK_SECRET: Optional[str] = None  # HMAC-SHA256 key shared with the processor

    # Monitoring
    PROMETHEUS_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

    @property
    def is_testing(self) -> bool:
        return self.APP_ENV == "testing"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


# Create global settings instance
settings = Settings()
