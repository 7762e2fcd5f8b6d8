"""
Configuration and startup security checks for the campus dashboard backend.

Why: Settings come from the environment (and an optional `.env`) and are
validated once. A single guard prevents accidental insecure production
deployments without burdening local development.

Permissions: The caller needs no special privileges. The guard reads settings
and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Backend settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    campus_env: str = Field(default="dev", alias="CAMPUS_ENV")

    # Supabase
    supabase_url: str = Field(default="http://localhost:54321", alias="SUPABASE_URL")
    supabase_anon_key: str = Field(default="", alias="SUPABASE_ANON_KEY")
    supabase_service_role_key: str = Field(default="", alias="SUPABASE_SERVICE_ROLE_KEY")

    # Pending role intents
    intents_backend: Literal["memory", "file", "db"] = Field(default="file", alias="INTENTS_BACKEND")
    intents_file: str = Field(default=".campus/pending_intents.json", alias="INTENTS_FILE")
    database_url: str = Field(default="", alias="DATABASE_URL")

    # Profile materialization backoff
    materialization_attempts: int = Field(default=5, ge=1, alias="MATERIALIZATION_ATTEMPTS")
    materialization_initial_delay: float = Field(default=0.5, ge=0, alias="MATERIALIZATION_INITIAL_DELAY")
    materialization_max_delay: float = Field(default=8.0, ge=0, alias="MATERIALIZATION_MAX_DELAY")

    # Sessions & cookies
    session_cookie_name: str = Field(default="campus_session", alias="SESSION_COOKIE_NAME")
    session_ttl_seconds: int = Field(default=3600, gt=0, alias="SESSION_TTL_SECONDS")
    cookie_secure: bool = Field(default=True, alias="COOKIE_SECURE")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO", alias="LOG_LEVEL")
    log_format: Literal["console", "json"] = Field(default="console", alias="LOG_FORMAT")

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @field_validator("campus_env", mode="before")
    @classmethod
    def _lower_env(cls, v: object) -> object:
        return v.strip().lower() if isinstance(v, str) else v

    @property
    def is_prod_like(self) -> bool:
        return _is_prod_like(self.campus_env)


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


@lru_cache
def get_settings() -> Settings:
    return Settings()


def ensure_secure_config_on_startup(settings: Settings | None = None) -> None:
    """Fail fast on insecure production configuration.

    Checks (prod-like environments only):
    - Supabase service role key must be set and not a dummy placeholder; the
      privileged role strategy and the update-role route depend on it.
    - SUPABASE_URL must use https.
    - Pending intents must be stored durably and shared across workers, so
      only `db` is accepted (`memory` dies with the process, `file` is only
      guarded by an in-process lock).
    - The `db` intents backend needs DATABASE_URL without `sslmode=disable`.
    """
    settings = settings or get_settings()
    if not settings.is_prod_like:
        return  # dev/test remain permissive

    srole = (settings.supabase_service_role_key or "").strip()
    if not srole or srole.upper() == "DUMMY_DO_NOT_USE":
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a dummy placeholder in production."
        )

    if not settings.supabase_url.strip().lower().startswith("https://"):
        raise SystemExit("Refusing to start: SUPABASE_URL must use https in production.")

    if settings.intents_backend == "memory":
        raise SystemExit(
            "Refusing to start: INTENTS_BACKEND=memory loses pending role intents on restart."
        )

    if settings.intents_backend == "file":
        raise SystemExit(
            "Refusing to start: INTENTS_BACKEND=file is not safe with multiple workers. Use INTENTS_BACKEND=db."
        )

    if settings.intents_backend == "db":
        if not settings.database_url:
            raise SystemExit("Refusing to start: INTENTS_BACKEND=db requires DATABASE_URL.")
        if "sslmode=disable" in settings.database_url:
            raise SystemExit(
                "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require."
            )
