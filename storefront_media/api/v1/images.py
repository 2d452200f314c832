"""
Image Endpoints

POST /api/v1/images/fetch-from-url - Ingest a remote image into product storage
POST /api/v1/images/delete         - Best-effort batch delete of stored images

Both endpoints are admin-only.
"""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from storefront_media.api.dependencies import get_media_service, require_admin
from storefront_media.services import MediaService

router = APIRouter()


# =============================================================================
# Request/Response Schemas
# =============================================================================

class FetchFromUrlRequest(BaseModel):
    """Request to ingest a remote image."""
    model_config = ConfigDict(populate_by_name=True)

    image_url: Optional[str] = Field(None, alias="imageUrl", description="Remote image URL")
    product_id: Optional[str] = Field(None, alias="productId", description="Owning product, if already created")
    is_main_image: bool = Field(False, alias="isMainImage", description="Informational only")


class FetchFromUrlResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    cloudinary_url: str = Field(..., alias="cloudinaryUrl", description="Public URL of the stored image")


class DeleteImagesRequest(BaseModel):
    """Request to delete stored images. Shape of imageUrls is checked by the service."""
    model_config = ConfigDict(populate_by_name=True)

    image_urls: Any = Field(None, alias="imageUrls", description="Public URLs to delete")


class DeleteImagesResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    deleted_count: int = Field(..., alias="deletedCount")
    errors: Optional[List[str]] = Field(None, description="One entry per failed delete; omitted when empty")


# =============================================================================
# Endpoints
# =============================================================================

@router.post(
    "/fetch-from-url",
    response_model=FetchFromUrlResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_admin)]
)
async def fetch_image_from_url(
    request: FetchFromUrlRequest,
    service: MediaService = Depends(get_media_service)
):
    """
    Fetch, verify, transcode and upload a remote image.

    Failures are returned as structured errors with the status of the first
    failing stage (invalid-argument, deadline-exceeded or internal).
    """
    return await service.fetch_image_from_url(
        request.image_url,
        product_id=request.product_id,
        is_main_image=request.is_main_image
    )


@router.post(
    "/delete",
    response_model=DeleteImagesResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    dependencies=[Depends(require_admin)]
)
async def delete_images(
    request: DeleteImagesRequest,
    service: MediaService = Depends(get_media_service)
):
    """
    Delete previously uploaded images.

    URLs not issued by the storage backend are skipped. Individual failures
    never fail the request; they are listed in "errors".
    """
    return await service.delete_images(request.image_urls)
