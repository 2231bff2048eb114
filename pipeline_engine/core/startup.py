"""Process bootstrap for engine hosts and Celery workers."""

from __future__ import annotations

import logging

from sqlalchemy import inspect

import pipeline_engine.models  # noqa: F401  (registers every table on Base.metadata)
from pipeline_engine.core.config import get_config
from pipeline_engine.core.logging_config import configure_logging
from pipeline_engine.database.db import get_active_database_url, get_engine, verify_database_connection
from pipeline_engine.models.base import Base

logger = logging.getLogger(__name__)


def validate_startup_config() -> bool:
    """Check connectivity and deployment settings; returns whether the database answered."""
    config = get_config()
    database_ok = verify_database_connection()
    if not database_ok and config.DB_CONNECTIVITY_REQUIRED:
        raise RuntimeError("Database connectivity check failed.")
    if not database_ok:
        logger.warning(
            "startup.database.connectivity_optional_failed",
            extra={"event": "startup.database.connectivity_optional_failed"},
        )

    active_database_url = get_active_database_url()
    if config.is_production and active_database_url.startswith("sqlite"):
        logger.warning(
            "startup.production.sqlite_detected",
            extra={"event": "startup.production.sqlite_detected"},
        )

    logger.info(
        "startup.config.validated",
        extra={
            "event": "startup.config.validated",
            "env": config.ENV,
            "database_url_scheme": active_database_url.split("://", 1)[0],
            "automation_max_workers": config.AUTOMATION_MAX_WORKERS,
            "entry_lock_stripes": config.ENTRY_LOCK_STRIPES,
        },
    )
    return database_ok


def ensure_schema() -> list[str]:
    """Create any missing engine tables and return their names."""
    engine = get_engine()
    present = set(inspect(engine).get_table_names())
    Base.metadata.create_all(bind=engine, checkfirst=True)
    created = sorted(name for name in Base.metadata.tables if name not in present)
    if created:
        logger.info("startup.schema.created", extra={"event": "startup.schema.created", "tables": created})
    return created


def bootstrap(create_schema: bool | None = None) -> None:
    """Configure logging, validate settings and, outside production, create missing tables.

    Production schemas are owned by the Alembic migrations under ``migrations/versions``.
    """
    configure_logging()
    database_ok = validate_startup_config()
    if create_schema is None:
        create_schema = not get_config().is_production
    if create_schema and database_ok:
        ensure_schema()
