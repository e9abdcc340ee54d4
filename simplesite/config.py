"""Application configuration."""
from functools import lru_cache
from urllib.parse import urlparse

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from SIMPLESITE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="simplesite_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "simplesite"
    debug: bool = False
    log_level: str = "INFO"
    base_url: str = "http://localhost:8000"

    # Database
    database_url: str = "sqlite:///./simplesite.db"
    transaction_timeout: float | None = None

    # Key-value store
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = ""

    # Session
    session_cookie_name: str = "session"
    session_cookie_secure: bool = True

    # Mail
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from: str = "noreply@localhost"
    smtp_starttls: bool = True

    # Breached password lookups
    pwned_passwords_enabled: bool = True
    pwned_passwords_url: str = "https://api.pwnedpasswords.com/range/"

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, value: str) -> str:
        """Verification links are built from this, so it must be absolute."""
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("BASE_URL must be an absolute http(s) URL.")
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("transaction_timeout")
    @classmethod
    def validate_transaction_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("TRANSACTION_TIMEOUT must be positive.")
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
