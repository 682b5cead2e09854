"""Database engine and session factory construction."""

import logging
from pathlib import Path
from typing import Callable

from alembic import command
from alembic.config import Config
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from config import DatabaseConfig, settings
from models import Base

logger = logging.getLogger(__name__)

_ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def build_engine(config: DatabaseConfig | None = None) -> Engine:
    """Create a SQLAlchemy engine for the configured database URL."""
    resolved = config or settings.database
    connect_args: dict[str, object] = {}
    if resolved.url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(
        resolved.url,
        echo=resolved.echo,
        pool_pre_ping=True,
        connect_args=connect_args,
    )
    return engine


def build_session_factory(engine: Engine) -> Callable[[], Session]:
    """Return a session factory bound to the engine."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create any missing tables directly from model metadata."""
    Base.metadata.create_all(engine)
    logger.info("Database tables ensured")


def run_migrations(database_url: str | None = None) -> None:
    """Apply Alembic migrations up to head."""
    alembic_cfg = Config(str(_ALEMBIC_INI))
    alembic_cfg.attributes["configure_logger"] = False
    alembic_cfg.set_main_option("sqlalchemy.url", database_url or settings.database.url)
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations applied")


def check_connection(engine: Engine) -> bool:
    """Check if database connection is working."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
