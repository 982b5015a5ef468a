"""FastAPI application entry point for vidpress."""

import asyncio
import logging
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import settings
from .dependencies import get_orchestrator, shutdown_orchestrator
from .errors import CapacityError, NotFoundError, ValidationError, VidpressError
from .routes import api_router
from .services import JobOrchestrator

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger("vidpress")

# Create FastAPI app
app = FastAPI(
    title="vidpress API",
    description="Download and compress videos with yt-dlp and ffmpeg",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router)


_ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    CapacityError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@app.exception_handler(VidpressError)
async def vidpress_error_handler(request: Request, exc: VidpressError):
    """Map domain errors to HTTP responses with a client-safe message."""
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    """Last resort: log and answer 500 rather than dropping the connection."""
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict):
    exc = context.get("exception")
    logger.error(f"Unhandled error in background task: {context.get('message')}", exc_info=exc)


@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logger.info(f"Starting vidpress API v{__version__}")
    logger.info(f"Input directory: {settings.input_dir}")
    logger.info(f"Output directory: {settings.output_dir}")
    logger.info(f"Workers: {settings.max_concurrent_jobs}, retention: {settings.retention_minutes}min")

    # Ensure storage directories exist
    settings.input_dir.mkdir(parents=True, exist_ok=True)
    settings.output_dir.mkdir(parents=True, exist_ok=True)

    # Background task failures are logged, never fatal
    asyncio.get_running_loop().set_exception_handler(_log_loop_exception)


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown."""
    logger.info("Shutting down vidpress API")
    await shutdown_orchestrator()


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "vidpress API",
        "version": __version__,
        "status": "operational",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Liveness check for monitoring."""
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/api/health")
async def tool_health(orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    """Check that the downloader and transcoder are installed and runnable."""
    report = await orchestrator.health_probe()
    status_code = status.HTTP_200_OK if report.status == "ok" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=report.model_dump())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "vidpress.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
