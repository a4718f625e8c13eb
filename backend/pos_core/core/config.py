"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "change-me-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - async driver URL (sqlite+aiosqlite for dev, postgresql+asyncpg in production)
    database_url: str = "sqlite+aiosqlite:///./data/pos.db"
    db_pool_size: int = 20
    db_max_overflow: int = 40

    # Security
    secret_key: str = DEFAULT_SECRET_KEY
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 240  # 4 hours

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # ==========================================================================
    # Orders
    # ==========================================================================
    tax_rate_percent: float = 10.0
    order_number_prefix: str = "ORD"
    # "counter" reserves numbers through a per-day counter row,
    # "count" derives them from the number of orders already created today.
    order_number_strategy: Literal["count", "counter"] = "counter"

    # ==========================================================================
    # Real-time subscribers
    # ==========================================================================
    ws_max_connections: int = 1000
    ws_max_message_size: int = 65536  # 64KB
    ws_send_timeout_seconds: float = 5.0
    shutdown_grace_seconds: float = 10.0

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if v == DEFAULT_SECRET_KEY:
            import warnings
            warnings.warn(
                "Using default SECRET_KEY is insecure! Set SECRET_KEY environment variable.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @field_validator("tax_rate_percent")
    @classmethod
    def validate_tax_rate(cls, v: float) -> float:
        if v < 0 or v > 100:
            raise ValueError(f"tax_rate_percent must be between 0 and 100, got {v}")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Refuse to run in production mode with an insecure secret."""
        if not self.debug:
            if self.secret_key == DEFAULT_SECRET_KEY:
                raise ValueError(
                    "FATAL: Cannot start in production mode with default SECRET_KEY. "
                    "Set a secure SECRET_KEY environment variable (minimum 32 characters)."
                )
            if len(self.secret_key) < 32:
                raise ValueError(
                    f"FATAL: SECRET_KEY must be at least 32 characters in production mode "
                    f"(current length: {len(self.secret_key)})."
                )
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
