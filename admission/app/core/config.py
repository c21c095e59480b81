import json
import re
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    if raw == "*":
        return ["*"]

    # Prefer JSON, but tolerate comma/space separated values.
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]

    parts = [p for p in re.split(r"[,\s]+", raw) if p]
    if "*" in parts:
        return ["*"]
    return list(dict.fromkeys(parts))


class Settings(BaseSettings):
    """Service settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Shared counter store (Redis)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0
    redis_max_connections: int = 50

    # Explicit REDIS_URL (takes priority over redis_* settings)
    redis_url_override: str = Field(default="", validation_alias="REDIS_URL")

    @property
    def redis_url(self) -> str:
        """Build the store connection URL.

        Priority:
        1. redis_url_override (from REDIS_URL env var or .env file)
        2. Built from redis_* settings
        """
        if self.redis_url_override:
            return self.redis_url_override
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # Per-call bound on every store primitive, in seconds
    store_timeout_seconds: float = 3.0

    # Rate limiting
    rate_limit_key_prefix: str = "ratelimit"
    trust_forwarded_for: bool = False  # Opt in only behind a proxy that overwrites X-Forwarded-For

    # Admin API
    admin_token: str = ""

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # CORS settings
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator("redis_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate the store port is a usable TCP port."""
        if not 0 < v < 65536:
            raise ValueError("redis_port must be between 1 and 65535")
        return v

    @field_validator("redis_db")
    @classmethod
    def validate_db(cls, v: int) -> int:
        if v < 0:
            raise ValueError("redis_db must not be negative")
        return v

    @field_validator("redis_max_connections")
    @classmethod
    def validate_pool_size_positive(cls, v: int) -> int:
        """Validate pool size is positive."""
        if v < 1:
            raise ValueError("redis_max_connections must be at least 1")
        return v

    @field_validator("store_timeout_seconds")
    @classmethod
    def validate_store_timeout(cls, v: float) -> float:
        """Validate store timeout is positive and bounded."""
        if v <= 0:
            raise ValueError("store_timeout_seconds must be positive")
        if v > 30:
            raise ValueError("store_timeout_seconds should not exceed 30 seconds")
        return v

    @field_validator("rate_limit_key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        v = v.strip().rstrip(":")
        if not v:
            raise ValueError("rate_limit_key_prefix must not be empty")
        if any(ch in v for ch in "*?[]{}"):
            raise ValueError("rate_limit_key_prefix must not contain glob or hash-tag characters")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
