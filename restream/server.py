"""FastAPI server for the restream manager."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import router as api_router
from .errors import RestreamError
from .models.dto import ErrorResponse
from .services.stream_service import get_stream_service

logger = logging.getLogger(__name__)

# error_code -> HTTP status
ERROR_STATUS_CODES = {
    "not_found": 404,
    "already_running": 409,
    "duplicate_key": 409,
    "process_error": 502,
    "persistence_error": 500,
    "not_initialized": 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for app startup/shutdown."""
    yield

    # ffmpeg must not outlive the server
    await asyncio.to_thread(get_stream_service().shutdown)


app = FastAPI(
    title="Restream Manager API",
    description="Loop local videos into RTMP live streams with scheduled stops",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)


@app.exception_handler(RestreamError)
async def restream_error_handler(request: Request, exc: RestreamError):
    """Render classified errors as {detail, error_code}."""
    status_code = ERROR_STATUS_CODES.get(exc.error_code, 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    body = ErrorResponse(detail=str(exc), error_code=exc.error_code)
    return JSONResponse(status_code=status_code, content=body.model_dump())


app.include_router(api_router, prefix="/api")


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}
