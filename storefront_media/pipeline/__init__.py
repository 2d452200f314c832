"""
Image Ingestion Pipeline

Five-stage async pipeline:
1. Validate - Cheap URL pre-filter, no network
2. Fetch - Single bounded HTTP GET (time + byte budget)
3. Verify - Decode and bound the image
4. Transcode - Downsize and re-encode to JPEG, PNG or WebP
5. Upload - Push to the storage backend under the product folder

Plus BatchDeleter for best-effort removal of stored images.
"""

from storefront_media.pipeline.deletion import BatchDeleter
from storefront_media.pipeline.orchestrator import IngestionPipeline

__all__ = ["BatchDeleter", "IngestionPipeline"]
