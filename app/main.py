"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.db import close_db, open_db
from app.secret_store import SqliteSecretStore
from app.services import build_services
from core.errors import (
    DecodeFailure,
    EmptyResult,
    InvalidIdentifier,
    NotFound,
    SessionInProgress,
    TransferError,
    Unauthorized,
)

logger = logging.getLogger(__name__)

# First match wins, so subclasses come before their parents.
_STATUS_BY_ERROR = (
    (SessionInProgress, 409),
    (Unauthorized, 401),
    (InvalidIdentifier, 400),
    (NotFound, 404),
    (EmptyResult, 422),
    (DecodeFailure, 502),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    db = await open_db(settings.db_abs_path)
    services = build_services(settings, SqliteSecretStore(db, settings.secret_key))
    await services.spotify_auth.load()
    app.state.services = services
    logger.info("DB ready at %s, history in %s", settings.db_abs_path, services.history.directory)
    yield
    await services.aclose()
    await close_db(db)
    logger.info("Shut down")


app = FastAPI(
    title="playlist-transfer",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(TransferError)
async def transfer_error_handler(request: Request, exc: TransferError):
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 502)
    return JSONResponse(
        status_code=status,
        content={"detail": str(exc), "error": type(exc).__name__, "service": exc.service},
    )


# Routers
from app.auth import router as auth_router  # noqa: E402
from app.routes_export import router as export_router  # noqa: E402
from app.routes_history import router as history_router  # noqa: E402
from app.routes_import import router as import_router  # noqa: E402

app.include_router(auth_router)
app.include_router(import_router)
app.include_router(history_router)
app.include_router(export_router)


@app.get("/health")
async def health():
    """Simple health-check endpoint."""
    return JSONResponse({"status": "ok", "version": app.version})
