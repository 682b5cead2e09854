"""FastAPI application factory and uvicorn entrypoint."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from time import perf_counter
from typing import Callable
from uuid import uuid4

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from api.routes import router
from config import Settings, settings as default_settings
from instances.errors import InstanceServiceError
from instances.generator import InstanceGenerator
from instances.history import ConfirmationHistoryRepository
from instances.reconciler import OfflineReconciler
from instances.repository import DailyInstanceRepository
from instances.transition_service import InstanceTransitionService
from catalog.repository import CatalogRepository
from log_config import REQUEST_ID, configure_logging, log_context
from services.database import build_engine, build_session_factory, run_migrations

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    "validation_error": 422,
    "not_found": 404,
    "instance_expired": 409,
    "already_confirmed": 409,
}


def create_app(
    session_factory: Callable[[], Session],
    settings: Settings | None = None,
    *,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    """Create the API app with engine services bound to ``app.state``."""
    resolved = settings or default_settings
    app = FastAPI(title=resolved.api.title, version="0.1.0")

    generator = InstanceGenerator(session_factory)
    transitions = InstanceTransitionService(session_factory)
    catalog = CatalogRepository(session_factory)
    history = ConfirmationHistoryRepository(session_factory)
    app.state.settings = resolved
    app.state.session_factory = session_factory
    app.state.clock = clock or (lambda: datetime.now(timezone.utc))
    app.state.generator = generator
    app.state.transitions = transitions
    app.state.catalog = catalog
    app.state.history = history
    app.state.instances = DailyInstanceRepository(session_factory)
    app.state.reconciler = OfflineReconciler(
        session_factory,
        generator=generator,
        transitions=transitions,
        catalog=catalog,
        history=history,
        clock=app.state.clock,
    )

    app.add_exception_handler(InstanceServiceError, _handle_service_error)
    app.middleware("http")(_log_requests)
    app.include_router(router)
    return app


async def _handle_service_error(request: Request, exc: InstanceServiceError) -> JSONResponse:
    """Map engine errors onto HTTP status codes."""
    status_code = _ERROR_STATUS.get(exc.code, 400)
    logger.info(
        "Request rejected: code=%s status=%s message=%s",
        exc.code,
        status_code,
        exc.message,
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": exc.code, "message": exc.message, "details": exc.details}},
    )


async def _log_requests(request: Request, call_next):
    """Bind request context and log one completion line per request."""
    request_id = request.headers.get("x-request-id") or uuid4().hex
    context = {
        REQUEST_ID: request_id,
        "method": request.method,
        "path": request.url.path,
    }
    with log_context(context):
        started = perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Request failed")
            raise
        duration_ms = (perf_counter() - started) * 1000
        logger.info(
            "Request completed: status=%s duration_ms=%.1f",
            response.status_code,
            duration_ms,
        )
    response.headers["X-Request-ID"] = request_id
    return response


def run_app(
    app: FastAPI,
    *,
    host: str = "127.0.0.1",
    port: int = 3000,
    log_level: str = "info",
) -> None:
    """Run the API through uvicorn."""
    uvicorn.run(app, host=host, port=port, log_level=log_level)


def main() -> None:
    """Configure logging, migrate the database, and serve the API."""
    configure_logging(
        level=default_settings.log_level,
        json_output=default_settings.log_json,
        service="pawdose",
    )
    run_migrations()
    engine = build_engine(default_settings.database)
    app = create_app(build_session_factory(engine), default_settings)
    logger.info(
        "Starting API: host=%s port=%s",
        default_settings.api.host,
        default_settings.api.port,
    )
    run_app(
        app,
        host=default_settings.api.host,
        port=default_settings.api.port,
        log_level=default_settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
