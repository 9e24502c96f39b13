from __future__ import annotations

import sys
from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_DEFAULT_JWT_SECRET = "change-me-in-production-use-long-random-string"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TASKBOARD_")

    # Database
    database_url: str = "sqlite:///./taskboard.db"
    log_sql: bool = False

    # Server
    environment: str = "development"
    log_level: str = "info"
    log_format: str = "json"  # json | text
    allow_cors_origins: List[str] = ["*"]

    # Auth
    jwt_secret: str = _DEFAULT_JWT_SECRET
    jwt_expire_minutes: int = 15
    refresh_token_days: int = 7
    registration_enabled: bool = True
    login_rate_limit: str = "10/minute"

    # Invites
    invite_expire_days: int = 7
    guest_access_days: int = 30

    # Real-time stream
    heartbeat_interval_seconds: float = 30.0
    stream_queue_size: int = 256
    stream_write_timeout_seconds: float = 10.0
    max_subscribers_per_tenant: int = 10_000  # 0 = unbounded
    stream_visibility_filter: bool = False

    # Development data
    seed_demo_tenant: bool = True

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str, info) -> str:
        """Refuse to start in production with the default JWT secret."""
        env = info.data.get("environment", "development")
        if env != "development" and v == _DEFAULT_JWT_SECRET:
            print(
                "\n🚨 FATAL: TASKBOARD_JWT_SECRET is set to the default value.\n"
                "   Set TASKBOARD_JWT_SECRET to a strong random string before "
                "running in production.\n",
                file=sys.stderr,
            )
            raise ValueError(
                "JWT secret must be changed from default in non-development environments. "
                "Set TASKBOARD_JWT_SECRET env var."
            )
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Module-level singleton for convenience
settings = get_settings()
