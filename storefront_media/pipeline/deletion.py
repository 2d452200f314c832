"""
Batch Deletion

Best-effort removal of previously uploaded assets. Every delete runs to
completion (or its own timeout) and is captured into the report; a failed
item never aborts the batch or raises to the caller.
"""

import asyncio
from typing import Any, Iterable, List, Optional

from storefront_media.core.config import settings
from storefront_media.core.logging import get_logger
from storefront_media.core.metrics import record_deletion
from storefront_media.core.storage import IStorage
from storefront_media.pipeline.models import BatchDeletionReport, DeletionOutcome

logger = get_logger(__name__)


class BatchDeleter:
    """Fan-out/fan-in deletes against the storage backend."""

    def __init__(self, storage: IStorage, concurrency: Optional[int] = None):
        self.storage = storage
        if concurrency is None:
            concurrency = settings.DELETE_CONCURRENCY
        self.concurrency = max(1, concurrency)

    def recognized(self, urls: Iterable[Any]) -> List[str]:
        """URLs issued by this backend; anything else was never uploaded here."""
        return [
            url.strip() for url in urls
            if isinstance(url, str) and url.strip() and self.storage.owns_url(url.strip())
        ]

    async def delete_many(self, urls: Iterable[Any]) -> BatchDeletionReport:
        targets = self.recognized(urls)
        if not targets:
            logger.info("batch_delete_skipped", reason="no_recognized_urls")
            return BatchDeletionReport()

        semaphore = asyncio.Semaphore(self.concurrency)
        results = await asyncio.gather(
            *(self._delete_one(url, semaphore) for url in targets),
            return_exceptions=True
        )

        outcomes = []
        for url, result in zip(targets, results):
            if isinstance(result, DeletionOutcome):
                outcomes.append(result)
            else:
                logger.error("image_delete_crashed", url=url, error=str(result))
                record_deletion("failed")
                outcomes.append(DeletionOutcome(url, False, f"Failed to delete image: {url}"))

        report = BatchDeletionReport.from_outcomes(outcomes)
        logger.info(
            "batch_delete_completed",
            attempted=report.attempted,
            deleted=report.deleted_count,
            failed=len(report.errors)
        )
        return report

    async def _delete_one(self, url: str, semaphore: asyncio.Semaphore) -> DeletionOutcome:
        try:
            public_id = self.storage.public_id_for(url)
        except ValueError as e:
            logger.warning("image_delete_unparseable", url=url, error=str(e))
            record_deletion("unparseable")
            return DeletionOutcome(url, False, f"Could not resolve storage identifier for image: {url}")

        async with semaphore:
            try:
                deleted = await self.storage.delete(public_id)
            except Exception as e:
                logger.warning(
                    "image_delete_failed",
                    url=url,
                    public_id=public_id,
                    error=str(e),
                    error_type=type(e).__name__
                )
                record_deletion("failed")
                return DeletionOutcome(url, False, f"Failed to delete image: {url}")

        if not deleted:
            logger.warning("image_delete_not_confirmed", url=url, public_id=public_id)
            record_deletion("failed")
            return DeletionOutcome(url, False, f"Failed to delete image: {url}")

        record_deletion("deleted")
        return DeletionOutcome(url, True)
