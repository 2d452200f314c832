"""
Storefront Media Ingestion - Main Application

Admin-facing FastAPI service that pulls product images from remote URLs
into storage and purges them again. Wires together:
- versioned routers under /api/v1/
- structlog request logging with a per-request id
- Prometheus request metrics
- the MediaPipelineError exception handlers
"""

import os
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from storefront_media.api.v1 import api_v1_router
from storefront_media.core.config import settings
from storefront_media.core.exceptions import register_exception_handlers
from storefront_media.core.logging import LogContext, get_logger, setup_logging
from storefront_media.core.metrics import http_request_duration_seconds, http_requests_total, set_app_info
from storefront_media.core.storage import StorageFactory

setup_logging(log_level=settings.LOG_LEVEL, json_format=settings.LOG_FORMAT_JSON)
logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )
    set_app_info(version=settings.APP_VERSION, environment=settings.ENVIRONMENT)

    if not settings.ADMIN_API_KEY:
        logger.warning("admin_api_key_missing", effect="image endpoints will refuse every caller")

    # Resolve the backend up front so a bad STORAGE_BACKEND shows at boot
    storage = StorageFactory.get_storage()
    logger.info(
        "application_ready",
        storage_backend=type(storage).__name__,
        max_image_bytes=settings.MAX_IMAGE_SIZE_BYTES,
        fetch_timeout_seconds=settings.FETCH_TIMEOUT_SECONDS
    )

    yield

    logger.info("application_shutdown_complete")


app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Product image ingestion for the storefront admin panel.

    - `POST /api/v1/images/fetch-from-url` validates a remote URL, downloads
      it under a time and size budget, verifies and re-encodes the image and
      stores it under `products/{productId}`.
    - `POST /api/v1/images/delete` removes stored images, reporting
      per-image failures instead of failing the call.

    Both require `Authorization: Bearer <ADMIN_API_KEY>`.
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def observe_request(request: Request, call_next):
    """Bind a request id for logging and record request metrics."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    started = time.perf_counter()

    with LogContext(request_id=request_id):
        response = await call_next(request)

    elapsed = time.perf_counter() - started
    http_request_duration_seconds.labels(method=request.method, endpoint=request.url.path).observe(elapsed)
    http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code
    ).inc()

    response.headers[REQUEST_ID_HEADER] = request_id
    response.headers["X-Process-Time"] = f"{elapsed:.4f}"
    return response


register_exception_handlers(app)
app.include_router(api_v1_router)

# Uploads are served from disk only on the local development backend
if settings.STORAGE_BACKEND.lower() == "local" and os.path.isdir(settings.LOCAL_STORAGE_PATH):
    app.mount("/static/storage", StaticFiles(directory=settings.LOCAL_STORAGE_PATH), name="storage")


@app.get("/", tags=["root"])
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/api/docs",
        "api_v1": "/api/v1",
        "metrics": "/api/v1/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "storage_backend": settings.STORAGE_BACKEND
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("storefront_media.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
