from __future__ import annotations

import sys
from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings


_DEFAULT_JWT_SECRET = "change-me-in-production-use-long-random-string"


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./sentinel.db"
    log_sql: bool = False

    # Server
    environment: str = "development"
    log_level: str = "info"
    log_format: str = "json"
    allow_cors_origins: List[str] = ["*"]

    # Auth
    jwt_secret: str = _DEFAULT_JWT_SECRET
    jwt_expire_minutes: int = 480  # 8 hours

    # Rate limiting
    login_rate_limit: str = "5/minute"
    relay_rate_limit: str = "120/minute"

    # Executor
    executor_identity: str = "sentinel-executor"
    agent_signer_address: str = ""  # registered agent key; empty = paused
    bootstrap_policies_path: str = ""

    # Deadline windows (seconds). The signer enforces the proposal window at
    # creation; the executor re-checks with the smaller verify minimum because
    # a proposal ages while in transit.
    proposal_min_window_seconds: int = 60
    proposal_max_window_seconds: int = 24 * 60 * 60
    verify_min_window_seconds: int = 1
    default_deadline_offset_seconds: int = 3600

    # Agent side
    agent_private_key: str = ""
    relayer_url: str = "http://localhost:8000"
    relayer_api_key: str = ""

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str, info) -> str:
        """Refuse to start in production with the default JWT secret."""
        env = info.data.get("environment", "development")
        if env != "development" and v == _DEFAULT_JWT_SECRET:
            print(
                "\nFATAL: SENTINEL_JWT_SECRET is set to the default value.\n"
                "   Set SENTINEL_JWT_SECRET to a strong random string before "
                "running in production.\n",
                file=sys.stderr,
            )
            raise ValueError(
                "JWT secret must be changed from default in non-development environments. "
                "Set SENTINEL_JWT_SECRET env var."
            )
        return v

    class Config:
        env_prefix = "SENTINEL_"


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Module-level singleton for convenience
settings = get_settings()
