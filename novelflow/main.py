"""FastAPI application entry point."""

import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from novelflow.db.database import DEFAULT_DATABASE_PATH, close_database, init_database
from novelflow.db.errors import (
    ConstraintViolationError,
    NotFoundError,
    SerializationError,
    StoreBusyError,
    StoreError,
)

# Configure logging
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)

_STATUS_CODES: dict[type[StoreError], int] = {
    NotFoundError: 404,
    ConstraintViolationError: 409,
    SerializationError: 422,
    StoreBusyError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown."""
    # Startup; an InitializationError aborts it
    db_path = os.getenv("DATABASE_PATH", DEFAULT_DATABASE_PATH)
    await init_database(db_path)
    logger.info(f"Store ready at {db_path}")

    yield

    # Shutdown
    await close_database()


app = FastAPI(
    title="Novelflow Store",
    description="Local store for projects, writing workflows, settings and run history",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware - allow any localhost port for the desktop frontend
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://localhost(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """Translate store errors into HTTP responses."""
    status_code = next(
        (code for error_type, code in _STATUS_CODES.items() if isinstance(exc, error_type)),
        500,
    )
    if status_code == 500:
        logger.error(f"Unhandled store error on {request.url.path}: {exc}")

    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=status_code, content={"detail": str(exc)}, headers=headers)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Import and include routers after app is created to avoid circular imports
from novelflow.api import config, executions, projects, settings, workflows  # noqa: E402

app.include_router(projects.router, prefix="/api/v1", tags=["projects"])
app.include_router(workflows.router, prefix="/api/v1", tags=["workflows"])
app.include_router(settings.router, prefix="/api/v1", tags=["settings"])
app.include_router(executions.router, prefix="/api/v1", tags=["executions"])
app.include_router(config.router, prefix="/api/v1", tags=["config"])
