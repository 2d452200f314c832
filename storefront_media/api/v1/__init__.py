"""
API v1 Router Module - Storefront Media Ingestion

All v1 endpoints are prefixed with /api/v1/

- /api/v1/images/fetch-from-url - Remote image ingestion
- /api/v1/images/delete - Batch image deletion
- /api/v1/metrics - Prometheus metrics
"""

from fastapi import APIRouter

from storefront_media.api.v1.images import router as images_router
from storefront_media.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(images_router, prefix="/images", tags=["images"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
