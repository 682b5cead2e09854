"""Infrastructure services for PawDose."""

from services.database import (
    build_engine,
    build_session_factory,
    check_connection,
    init_db,
    run_migrations,
)

__all__ = [
    "build_engine",
    "build_session_factory",
    "check_connection",
    "init_db",
    "run_migrations",
]
