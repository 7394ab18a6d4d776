"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from patchtester.api.fetch import router as fetch_router
from patchtester.api.health import router as health_router
from patchtester.api.pulls import router as pulls_router
from patchtester.api.tests import router as tests_router
from patchtester.config import Settings
from patchtester.database import create_engine
from patchtester.exceptions import ErrorKind, PatchTesterError, RateLimitExceeded
from patchtester.filesystem.backup_store import FileBackupStore
from patchtester.filesystem.media_version import MediaVersionFile
from patchtester.filesystem.working_tree import WorkingTree
from patchtester.github.client import GitHubClient
from patchtester.models.base import Base

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.RATE_LIMIT_EXCEEDED: 429,
    ErrorKind.REMOTE_UNAVAILABLE: 502,
    ErrorKind.REPO_GONE: 410,
    ErrorKind.CONFLICT: 409,
    ErrorKind.APPLIED_PATCHES_EXIST: 409,
    ErrorKind.MISSING_LOCAL_FILE: 422,
    ErrorKind.UNSUPPORTED_ENCODING: 422,
    ErrorKind.TEST_NOT_FOUND: 404,
    ErrorKind.FILESYSTEM_IO: 500,
    ErrorKind.DATABASE_IO: 500,
}


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)


def error_body(exc: PatchTesterError) -> dict[str, Any]:
    """JSON body returned for a failed core operation."""
    body: dict[str, Any] = {
        "detail": exc.message,
        "kind": exc.kind.value,
        "safe_to_retry": exc.safe_to_retry,
    }
    if isinstance(exc, RateLimitExceeded):
        body["reset_at"] = exc.reset_at
    return body


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime()
    _configure_logging(settings.debug)
    logger.info(
        "Starting PatchTester for %s/%s (debug=%s)",
        settings.github_user,
        settings.github_repo,
        settings.debug,
    )

    db_url = settings.database_url
    if db_url.startswith("sqlite"):
        db_path = db_url.split("///", 1)[-1] if "///" in db_url else None
        if db_path:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    backup_store = FileBackupStore(settings.backups_dir)
    try:
        backup_store.ensure_dir()
    except Exception as exc:
        logger.critical(
            "Failed to initialize backups directory at %s: %s.", settings.backups_dir, exc
        )
        raise
    app.state.backup_store = backup_store

    app.state.working_tree = WorkingTree(
        root=settings.working_tree, dev_marker=settings.dev_marker
    )
    app.state.media_version = MediaVersionFile(settings.media_version_file)

    github = GitHubClient.from_settings(settings)
    app.state.github = github

    yield

    try:
        await github.aclose()
    except Exception as exc:
        logger.error("Error during GitHub client shutdown: %s", exc, exc_info=True)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("PatchTester stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="PatchTester",
        description="Apply GitHub pull requests to a live site and revert them",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings

    app.include_router(health_router)
    app.include_router(fetch_router)
    app.include_router(pulls_router)
    app.include_router(tests_router)

    # Global exception handlers

    @app.exception_handler(PatchTesterError)
    async def patchtester_error_handler(request: Request, exc: PatchTesterError) -> JSONResponse:
        status_code = ERROR_STATUS.get(exc.kind, 500)
        if status_code >= 500:
            logger.error(
                "%s in %s %s: %s",
                type(exc).__name__,
                request.method,
                request.url.path,
                exc,
                exc_info=exc,
            )
        else:
            logger.warning(
                "%s in %s %s: %s", type(exc).__name__, request.method, request.url.path, exc
            )
        return JSONResponse(status_code=status_code, content=error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Storage operation failed"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "patchtester.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
