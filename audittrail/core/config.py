from typing import List, Union
from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    # Application
    APP_NAME: str = "AuditTrail"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./audittrail.db"

    # Security
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    BACKEND_CORS_ORIGINS: List[Union[str, AnyHttpUrl]] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Audit trail
    AUDIT_DEDUP_TOLERANCE_SECONDS: float = 5.0  # Legacy/centralized pairs closer than this are one action
    AUDIT_LEGACY_LOG_CAPACITY: int = 100  # Oldest embedded records are evicted beyond this
    AUDIT_HISTORY_MAX_RESULTS: int = 200
    AUDIT_DEFAULT_DAYS_WINDOW: str = "30"
    AUDIT_REQUIRE_AUTHORITATIVE_WRITE: bool = False  # Abort privileged actions when the central write fails
    AUDIT_BLOG_CONTENT_SNAPSHOT_CHARS: int = 500

    # Monitoring
    SLOW_REQUEST_THRESHOLD_MS: float = 1000.0  # Log requests slower than this (milliseconds)
    ENABLE_STRUCTURED_LOGGING: bool = True  # Use JSON structured logging

    @property
    def default_days_window(self) -> int:
        """Default history window in days, falling back to 30 on a bad value."""
        try:
            return int(self.AUDIT_DEFAULT_DAYS_WINDOW)
        except ValueError:
            return 30


settings = Settings()
