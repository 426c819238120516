"""
seedkeeper.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn seedkeeper.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from seedkeeper.api.deps import get_engine  # noqa: E402
from seedkeeper.api.routes.presence import router as presence_router  # noqa: E402
from seedkeeper.api.routes.seeding import router as seeding_router  # noqa: E402
from seedkeeper.errors import (  # noqa: E402
    ConflictError,
    DependencyFailure,
    InvalidStateError,
    NotFoundError,
    SeedingError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# One HTTP status per error class; anything unlisted is a 500
_ERROR_STATUS: dict[type[SeedingError], int] = {
    ValidationError: 400,
    ConflictError: 409,
    InvalidStateError: 409,
    NotFoundError: 404,
    DependencyFailure: 502,
}


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine."""
    engine = get_engine()
    logger.info("Seedkeeper API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Seedkeeper API shutting down")


app = FastAPI(
    title="Seedkeeper API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SeedingError)
async def seeding_error_handler(request: Request, exc: SeedingError) -> JSONResponse:
    status_code = 500
    for cls in type(exc).__mro__:
        if cls in _ERROR_STATUS:
            status_code = _ERROR_STATUS[cls]
            break
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# Mount routers
app.include_router(seeding_router, prefix="/api")
app.include_router(presence_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
