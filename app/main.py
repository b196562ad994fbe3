"""
Main FastAPI application for the XQuery backend.
Handles CORS, request logging middleware, lifespan events, and router registration.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import close_db, init_db
from app.routers import chats, files, health
from app.services.assistant import AssistantService
from app.services.storage import StorageError, get_storage_service

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup / shutdown helpers
# ---------------------------------------------------------------------------

async def _check_database() -> bool:
    """Initialise DB tables and verify the connection.  Returns True on success."""
    try:
        await init_db()
        logger.info("✓ Database connection OK")
        return True
    except Exception as exc:
        logger.error("✗ Database connection failed: %s", exc)
        raise


async def _check_storage() -> bool:
    """
    Make sure the documents bucket exists.
    Never raises; storage problems are logged and surface on first use.
    """
    if not settings.SUPABASE_SERVICE_KEY:
        logger.warning("⚠ SUPABASE_SERVICE_KEY not set: file storage will not be available")
        return False
    try:
        created = await get_storage_service().ensure_bucket_exists()
    except StorageError as exc:
        logger.error("✗ Storage bucket check failed: %s", exc)
        return False
    if created:
        logger.info("✓ Created storage bucket '%s'", settings.DOCUMENTS_BUCKET)
    else:
        logger.info("✓ Storage bucket '%s' exists", settings.DOCUMENTS_BUCKET)
    return True


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting XQuery backend …")
    logger.info("=" * 60)

    # 1. Database (required; raises on failure)
    await _check_database()

    # 2. Storage bucket (optional; logs warnings but continues)
    await _check_storage()

    # 3. OpenAI key (optional; chat endpoints fail until it is set)
    if AssistantService.is_configured():
        logger.info("✓ OpenAI configured (assistant model: %s)", settings.OPENAI_ASSISTANT_MODEL)
    else:
        logger.warning("⚠ OPENAI_API_KEY not set. OpenAI features will not be available.")

    logger.info("=" * 60)
    logger.info("  XQuery backend ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("  Health     : http://%s:%d/api/health", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield  # ← server is running

    logger.info("Shutting down XQuery backend …")
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="XQuery API",
    description=(
        "**XQuery**: chat with your documents.\n\n"
        "Upload files, sync them to an OpenAI assistant, and ask questions "
        "answered by retrieval over the document.\n\n"
        "Key endpoints:\n"
        "- `POST /api/files/upload-url` - register a file and get a signed upload URL\n"
        "- `POST /api/files/{id}/confirm` - confirm the upload finished\n"
        "- `POST /api/chats/` - start a chat about a file\n"
        "- `POST /api/chats/stream` - ask a question, answer streamed over SSE\n"
        "- `GET  /api/chats/search` - search a file's chats\n"
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.

    For the SSE endpoint the time covers only the headers, not the stream.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip noisy health-check polling from the frontend
    if request.url.path not in ("/api/health/", "/api/health", "/"):
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "path": str(request.url.path),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router, prefix="/api/health", tags=["Health"])
app.include_router(files.router,  prefix="/api/files",  tags=["Files"])
app.include_router(chats.router,  prefix="/api/chats",  tags=["Chats"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root, returns basic service info."""
    return {
        "name": "XQuery API",
        "version": "0.1.0",
        "description": "Document Chat Backend",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "files": "/api/files/",
            "chats": "/api/chats/",
            "stream": "/api/chats/stream",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
