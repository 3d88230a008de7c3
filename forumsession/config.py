from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from forumsession.logging import get_logger

logger = get_logger(__name__)


class StorageBackend(str, Enum):
    """Where the shared per-origin key/value store lives."""

    MEMORY = "memory"
    REDIS = "redis"


class AppEnv(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the session subsystem and its cookie endpoint."""

    api_base_url: str = env_field("http://localhost:8000/api", "API_BASE_URL")
    server_api_url: str | None = env_field(
        None,
        "SERVER_API_URL",
        description="Backend base URL used by the server renderer; falls back to API_BASE_URL",
    )
    session_endpoint: str = env_field(
        "http://localhost:3000/api/auth/session",
        "SESSION_ENDPOINT",
        description="Same-origin endpoint that mirrors the token into a cookie",
    )
    app_env: AppEnv = env_field(AppEnv.DEVELOPMENT, "APP_ENV")
    auth_cookie_name: str = env_field("auth_token", "AUTH_COOKIE_NAME")
    auth_cookie_max_age: int = env_field(
        60 * 60 * 24 * 30,
        "AUTH_COOKIE_MAX_AGE",
        description="Mirror cookie lifetime in seconds",
    )
    storage_backend: StorageBackend = env_field(StorageBackend.MEMORY, "STORAGE_BACKEND")
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    storage_namespace: str = env_field("forumsession", "STORAGE_NAMESPACE")
    http_timeout_seconds: float = env_field(15.0, "HTTP_TIMEOUT_SECONDS")
    revalidate_stored_session: bool = env_field(
        False,
        "REVALIDATE_STORED_SESSION",
        description="Refresh a stored user snapshot against /auth/me after bootstrap",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("storage_backend")
    @classmethod
    def _validate_storage_backend(cls, value: StorageBackend) -> StorageBackend:
        return StorageBackend(value)

    @field_validator("app_env")
    @classmethod
    def _validate_app_env(cls, value: AppEnv) -> AppEnv:
        return AppEnv(value)

    @field_validator("api_base_url", "server_api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.rstrip("/")

    @field_validator("auth_cookie_max_age")
    @classmethod
    def _validate_cookie_max_age(cls, value: int) -> int:
        if value < 0:
            logger.warning("auth_cookie_max_age_negative", value=value)
            return 0
        return value

    @property
    def is_production(self) -> bool:
        return self.app_env == AppEnv.PRODUCTION

    @property
    def server_api_base(self) -> str:
        return self.server_api_url or self.api_base_url


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
