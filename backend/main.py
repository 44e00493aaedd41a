import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from api.routes import generate
from config import AppMode, StorageBackendName, get_settings, validate_generation_settings
from middleware.security import SecurityHeadersMiddleware
from schemas.common import HealthResponse
from services.error_sanitizer import sanitize_public_error_message
from services.errors import GenerationError

APP_VERSION = "1.0.0"

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Silence noisy loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("botocore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events - startup and shutdown"""

    logger.info(f"Starting Renoview in {settings.APP_MODE.value} mode...")

    # Missing credentials or an inconsistent time budget stop the service here
    # rather than failing every request later.
    pipeline_config = validate_generation_settings(settings)
    logger.info(
        "Generation budget: attempt=%ss x2, backoff=%ss, fetch=%ss, publish=%ss, deadline=%ss",
        pipeline_config.attempt_timeout,
        pipeline_config.retry_backoff,
        pipeline_config.fetch_timeout,
        pipeline_config.publish_timeout,
        pipeline_config.deadline,
    )
    logger.info(f"Storage backend: {settings.STORAGE_BACKEND.value}")

    yield

    logger.info("Shutting down Renoview...")


app = FastAPI(
    title="Renoview",
    description="Photorealistic window frame and door renovation previews",
    version=APP_VERSION,
    lifespan=lifespan,
    debug=settings.DEBUG,
)

MAX_ERROR_STRING_CHARS = 400
MAX_ERROR_CONTAINER_ITEMS = 50
MAX_ERROR_DEPTH = 8


def _truncate_string(value: str, max_chars: int = MAX_ERROR_STRING_CHARS) -> str:
    if len(value) <= max_chars:
        return value
    return f"{value[:max_chars]}…(truncated)"


def _sanitize_for_json(value: Any, *, _depth: int = 0) -> Any:
    """
    Make sure error payloads are always UTF-8 encodable.

    RequestValidationError details can include user-provided strings (a whole
    data URL, for instance), so large reflected inputs are truncated too.
    """
    if _depth > MAX_ERROR_DEPTH:
        return "<max depth reached>"
    if value is None:
        return None
    if isinstance(value, (int, float, bool)):
        return value
    if isinstance(value, str):
        safe = value.encode("utf-8", errors="replace").decode("utf-8", errors="replace")
        return _truncate_string(safe)
    if isinstance(value, bytes):
        return _truncate_string(value.decode("utf-8", errors="replace"))
    if isinstance(value, (list, tuple, set)):
        items = list(value)
        out = [_sanitize_for_json(v, _depth=_depth + 1) for v in items[:MAX_ERROR_CONTAINER_ITEMS]]
        if len(items) > MAX_ERROR_CONTAINER_ITEMS:
            out.append(f"... ({len(items) - MAX_ERROR_CONTAINER_ITEMS} more items truncated)")
        return out
    if isinstance(value, dict):
        items = list(value.items())
        out: dict[str, Any] = {}
        for k, v in items[:MAX_ERROR_CONTAINER_ITEMS]:
            out[str(_sanitize_for_json(k, _depth=_depth + 1))] = _sanitize_for_json(v, _depth=_depth + 1)
        return out
    try:
        return _sanitize_for_json(str(value), _depth=_depth + 1)
    except Exception:
        return "<unserializable>"


@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    message = (
        sanitize_public_error_message(
            exc.message,
            fallback="Generation failed",
            secrets=(settings.OPENAI_API_KEY, settings.BLOB_READ_WRITE_TOKEN),
        )
        or "Generation failed"
    )
    if exc.status_code >= 500:
        logger.warning("Request failed (%s, %s): %s", exc.kind, exc.status_code, message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message, "kind": exc.kind},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Invalid request",
            "kind": "input",
            "detail": _sanitize_for_json(exc.errors()),
        },
    )


# Middlewares (order matters - first added = last executed)
app.add_middleware(
    SecurityHeadersMiddleware, is_production=settings.APP_MODE == AppMode.PROD
)

# Request logging (development only)
if settings.APP_MODE == AppMode.DEV:
    from middleware.logging import RequestLoggingMiddleware, configure_request_logging
    configure_request_logging(settings.LOG_LEVEL)
    app.add_middleware(RequestLoggingMiddleware)

# CORS middleware - must be last (first to process incoming requests)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

# Static files for generated images (local storage only)
if settings.STORAGE_BACKEND == StorageBackendName.LOCAL:
    storage_dir = Path(settings.LOCAL_STORAGE_DIR)
    storage_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/storage", StaticFiles(directory=str(storage_dir)), name="storage")

# API Routes - versioned under /api/v1/
api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(generate.router)
app.include_router(api_v1_router)

# The web client posts to /api/generate-sync
api_compat_router = APIRouter(prefix="/api")
api_compat_router.include_router(generate.router)
app.include_router(api_compat_router)


@app.get("/")
async def root():
    """API root"""
    return {
        "name": "Renoview API",
        "version": APP_VERSION,
        "docs": "/docs",
    }


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    return HealthResponse(
        mode=settings.APP_MODE.value,
        storage_backend=settings.STORAGE_BACKEND.value,
        upstream_configured=bool(settings.OPENAI_API_KEY),
        storage_configured=settings.storage_credential_present,
        version=APP_VERSION,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=(settings.APP_MODE == AppMode.DEV),
    )
