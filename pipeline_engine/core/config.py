"""Configuration module for the pipeline automation engine."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import urlparse

from dotenv import load_dotenv

from pipeline_engine.core.exceptions import ConfigurationError

load_dotenv()


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Runtime configuration with validation."""

    APP_NAME: str
    APP_VERSION: str
    ENV: str
    DEBUG: bool
    DATABASE_URL: str
    DB_CONNECTIVITY_REQUIRED: bool
    AUTOMATION_MAX_WORKERS: int
    AUTOMATION_ACTION_TIMEOUT_SECONDS: float
    DEFAULT_TASK_DUE_DAYS: int
    RECENT_EVENTS_LIMIT: int
    ENTRY_MUTATION_RETRIES: int
    ENTRY_LOCK_STRIPES: int
    SLA_SWEEP_INTERVAL_SECONDS: int
    SLA_SWEEP_BATCH_SIZE: int
    SLA_ESCALATION_RECIPIENT: str
    REDIS_URL: str
    CELERY_BROKER_URL: str
    CELERY_RESULT_BACKEND: str
    LOG_LEVEL: str
    LOG_FILE: str

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"


def _build_config(env: str | None = None) -> Config:
    resolved_env = (env or os.getenv("ENV", "development")).strip().lower()
    debug = _as_bool(os.getenv("DEBUG"), default=False)

    config = Config(
        APP_NAME="pipeline-engine",
        APP_VERSION=os.getenv("APP_VERSION", "1.0.0"),
        ENV=resolved_env,
        DEBUG=debug if resolved_env != "production" else False,
        DATABASE_URL=os.getenv("DATABASE_URL", "sqlite:///./pipeline_engine.db"),
        DB_CONNECTIVITY_REQUIRED=_as_bool(
            os.getenv("DB_CONNECTIVITY_REQUIRED"), default=(resolved_env == "production")
        ),
        AUTOMATION_MAX_WORKERS=int(os.getenv("AUTOMATION_MAX_WORKERS", "4")),
        AUTOMATION_ACTION_TIMEOUT_SECONDS=float(os.getenv("AUTOMATION_ACTION_TIMEOUT_SECONDS", "5")),
        DEFAULT_TASK_DUE_DAYS=int(os.getenv("DEFAULT_TASK_DUE_DAYS", "7")),
        RECENT_EVENTS_LIMIT=int(os.getenv("RECENT_EVENTS_LIMIT", "10")),
        ENTRY_MUTATION_RETRIES=int(os.getenv("ENTRY_MUTATION_RETRIES", "3")),
        ENTRY_LOCK_STRIPES=int(os.getenv("ENTRY_LOCK_STRIPES", "1024")),
        SLA_SWEEP_INTERVAL_SECONDS=int(os.getenv("SLA_SWEEP_INTERVAL_SECONDS", "300")),
        SLA_SWEEP_BATCH_SIZE=int(os.getenv("SLA_SWEEP_BATCH_SIZE", "500")),
        SLA_ESCALATION_RECIPIENT=os.getenv("SLA_ESCALATION_RECIPIENT", "pipeline-operations"),
        REDIS_URL=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        CELERY_BROKER_URL=os.getenv("CELERY_BROKER_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0")),
        CELERY_RESULT_BACKEND=os.getenv("CELERY_RESULT_BACKEND", os.getenv("REDIS_URL", "redis://localhost:6379/0")),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
        LOG_FILE=os.getenv("LOG_FILE", ""),
    )
    _validate_config(config)
    return config


def _validate_database_url(database_url: str) -> None:
    parsed = urlparse(database_url)
    if parsed.scheme not in {"sqlite", "postgresql", "postgresql+psycopg2"}:
        raise ConfigurationError(
            "DATABASE_URL must use sqlite:// or postgresql:// style URL."
        )
    if parsed.scheme.startswith("postgresql") and not parsed.hostname:
        raise ConfigurationError("PostgreSQL DATABASE_URL is missing hostname.")


def _validate_config(config: Config) -> None:
    _validate_database_url(config.DATABASE_URL)

    if config.AUTOMATION_MAX_WORKERS < 1:
        raise ConfigurationError("AUTOMATION_MAX_WORKERS must be >= 1.")
    if config.AUTOMATION_ACTION_TIMEOUT_SECONDS <= 0:
        raise ConfigurationError("AUTOMATION_ACTION_TIMEOUT_SECONDS must be > 0.")
    if config.DEFAULT_TASK_DUE_DAYS < 0:
        raise ConfigurationError("DEFAULT_TASK_DUE_DAYS must be >= 0.")
    if not 1 <= config.RECENT_EVENTS_LIMIT <= 100:
        raise ConfigurationError("RECENT_EVENTS_LIMIT must be between 1 and 100.")
    if config.ENTRY_MUTATION_RETRIES < 0:
        raise ConfigurationError("ENTRY_MUTATION_RETRIES must be >= 0.")
    if config.ENTRY_LOCK_STRIPES < 1:
        raise ConfigurationError("ENTRY_LOCK_STRIPES must be >= 1.")
    if config.SLA_SWEEP_INTERVAL_SECONDS < 1:
        raise ConfigurationError("SLA_SWEEP_INTERVAL_SECONDS must be >= 1.")
    if config.SLA_SWEEP_BATCH_SIZE < 1:
        raise ConfigurationError("SLA_SWEEP_BATCH_SIZE must be >= 1.")
    if config.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigurationError("LOG_LEVEL must be one of DEBUG/INFO/WARNING/ERROR/CRITICAL.")
    if config.is_production and "change_me" in config.DATABASE_URL.lower():
        raise ConfigurationError("Production DATABASE_URL uses placeholder credentials.")


@lru_cache(maxsize=8)
def get_config(env: str | None = None) -> Config:
    """Get validated configuration for the requested environment."""
    return _build_config(env)
