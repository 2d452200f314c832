"""
Ingestion Orchestrator

Validate -> Fetch -> Verify -> Transcode -> Upload, strictly in that order.
The first failing stage ends the run with its classified error; nothing is
retried and no partial result is returned.
"""

import asyncio
from typing import Iterable, Optional

from storefront_media.core.exceptions import ErrorKind, MediaPipelineError
from storefront_media.core.logging import get_logger
from storefront_media.core.metrics import record_image_bytes, record_ingestion, track_stage_latency
from storefront_media.core.storage import IStorage
from storefront_media.pipeline.models import IngestionRequest, UploadResult
from storefront_media.pipeline.stages import (
    BoundedFetcher,
    StorageUploader,
    transcode_image,
    validate_image_url,
    verify_image,
)

logger = get_logger(__name__)


class IngestionPipeline:
    def __init__(
        self,
        storage: IStorage,
        fetcher: Optional[BoundedFetcher] = None,
        uploader: Optional[StorageUploader] = None,
        image_hosts: Optional[Iterable[str]] = None
    ):
        self.fetcher = fetcher or BoundedFetcher()
        self.uploader = uploader or StorageUploader(storage)
        self.image_hosts = list(image_hosts) if image_hosts is not None else None

    async def run(self, request: IngestionRequest) -> UploadResult:
        stage = "validate"
        try:
            with track_stage_latency("validate"):
                url = validate_image_url(request.source_url, self.image_hosts)

            logger.info(
                "ingestion_started",
                url=url,
                product_id=request.product_id,
                is_main_image=request.is_main_image
            )

            stage = "fetch"
            with track_stage_latency(stage):
                fetched = await self.fetcher.fetch(url)
            record_image_bytes("fetched", fetched.byte_length)

            # Decoding and encoding are CPU-bound; keep them off the event loop
            stage = "verify"
            with track_stage_latency(stage):
                verified = await asyncio.to_thread(verify_image, fetched)
            del fetched

            stage = "transcode"
            with track_stage_latency(stage):
                transcoded = await asyncio.to_thread(transcode_image, verified)
            del verified
            record_image_bytes("transcoded", transcoded.byte_length)

            stage = "upload"
            with track_stage_latency(stage):
                result = await self.uploader.upload(transcoded, request.product_id)

        except MediaPipelineError as e:
            record_ingestion("failed", e.kind.value)
            logger.warning(
                "ingestion_failed",
                stage=e.stage or stage,
                kind=e.kind.value,
                reason=e.reason.value if e.reason else None,
                error=e.message
            )
            raise
        except Exception as e:
            record_ingestion("failed", ErrorKind.INTERNAL.value)
            logger.exception("ingestion_crashed", stage=stage, error=str(e))
            raise MediaPipelineError(
                f"Unexpected failure in {stage}: {type(e).__name__}: {e}",
                kind=ErrorKind.INTERNAL,
                stage=stage
            ) from e

        record_ingestion("success")
        logger.info("ingestion_completed", public_url=result.public_url, folder=result.folder)
        return result
