"""
Media Service

The two admin operations, callable in-process or through the HTTP routes:
- fetch_image_from_url: ingest a remote image into product storage
- delete_images: best-effort batch removal of stored images
"""

from typing import Any, Dict, Optional

from storefront_media.core.exceptions import InvalidRequestError, UrlRejection, UrlValidationError
from storefront_media.core.logging import get_logger
from storefront_media.core.storage import IStorage
from storefront_media.pipeline.deletion import BatchDeleter
from storefront_media.pipeline.models import IngestionRequest
from storefront_media.pipeline.orchestrator import IngestionPipeline
from storefront_media.pipeline.stages import BoundedFetcher, StorageUploader

logger = get_logger(__name__)


class MediaService:
    def __init__(
        self,
        storage: IStorage,
        fetcher: Optional[BoundedFetcher] = None,
        delete_concurrency: Optional[int] = None,
        folder_prefix: Optional[str] = None
    ):
        self.storage = storage
        self.pipeline = IngestionPipeline(
            storage,
            fetcher=fetcher,
            uploader=StorageUploader(storage, folder_prefix=folder_prefix)
        )
        self.deleter = BatchDeleter(storage, concurrency=delete_concurrency)

    async def fetch_image_from_url(
        self,
        image_url: Any,
        product_id: Optional[str] = None,
        is_main_image: bool = False
    ) -> Dict[str, Any]:
        """
        Ingest one remote image.

        Returns:
            {"success": True, "cloudinaryUrl": <public url>}

        Raises:
            MediaPipelineError: the classified failure of the first failing stage
        """
        if not isinstance(image_url, str) or not image_url.strip():
            raise UrlValidationError("Image URL is required", reason=UrlRejection.EMPTY)

        result = await self.pipeline.run(
            IngestionRequest(
                source_url=image_url.strip(),
                product_id=product_id,
                is_main_image=bool(is_main_image)
            )
        )
        return {"success": True, "cloudinaryUrl": result.public_url}

    async def delete_images(self, image_urls: Any) -> Dict[str, Any]:
        """
        Delete every recognized image in the list. Individual failures are
        reported in "errors" and never raised.
        """
        if not isinstance(image_urls, list):
            raise InvalidRequestError(
                f"imageUrls must be a list, got {type(image_urls).__name__}",
                user_message="Image URLs array is required."
            )

        report = await self.deleter.delete_many(image_urls)

        response: Dict[str, Any] = {"success": True, "deletedCount": report.deleted_count}
        if report.errors:
            response["errors"] = report.errors
        return response
