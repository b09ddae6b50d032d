"""Runs many document jobs against one collection without failing the whole batch."""

import asyncio
import uuid
from typing import AsyncIterator, Literal

from pydantic import BaseModel

from services.embedding.EmbeddingService import EmbeddingService
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import PipelineError
from shared.models.jobs import JobResult


class BatchJobResult(BaseModel):
    """
    Attributes:
        document_id: Document the job ran for.
        action:      "add" (embed) or "remove".
        ok:          Whether the job finished.
        result:      The job result when ok.
        error:       Structured error (kind, stage, message, ...) when not ok.
    """

    document_id: uuid.UUID
    action: Literal["add", "remove"]
    ok: bool
    result: JobResult | None = None
    error: dict | None = None


class BatchEmbeddingService:
    def __init__(self, helper_config: HelperConfig, embedding_service: EmbeddingService, concurrency: int | None = None):
        self.logging = helper_config.get_logger()
        self.embedding_service = embedding_service
        self.concurrency = concurrency or int(helper_config.get_number_val("BATCH_CONCURRENCY", default=5))
        if self.concurrency < 1:
            raise ValueError("BATCH_CONCURRENCY must be at least 1.")

    async def _run_one(self, sem: asyncio.Semaphore, collection_id: uuid.UUID, document_id: uuid.UUID, action: str) -> BatchJobResult:
        async with sem:
            try:
                if action == "add":
                    result = await self.embedding_service.embed_document(document_id, collection_id)
                else:
                    result = await self.embedding_service.remove_document(document_id, collection_id)
            except PipelineError as e:
                return BatchJobResult(document_id=document_id, action=action, ok=False, error=e.to_dict())
            return BatchJobResult(document_id=document_id, action=action, ok=True, result=result)

    async def run(
        self,
        collection_id: uuid.UUID,
        add: list[uuid.UUID] | None = None,
        remove: list[uuid.UUID] | None = None,
    ) -> AsyncIterator[BatchJobResult]:
        """
        Embeds ``add`` and removes ``remove`` from a collection with bounded concurrency.

        Yields one BatchJobResult per document in completion order. Pipeline
        errors are reported per document; the rest of the batch keeps running.
        """
        sem = asyncio.Semaphore(self.concurrency)
        tasks = [asyncio.create_task(self._run_one(sem, collection_id, doc_id, "add")) for doc_id in add or []]
        tasks += [asyncio.create_task(self._run_one(sem, collection_id, doc_id, "remove")) for doc_id in remove or []]
        self.logging.info("Running batch of %d job(s) on collection %s", len(tasks), collection_id)

        succeeded = failed = 0
        try:
            for next_done in asyncio.as_completed(tasks):
                result = await next_done
                if result.ok:
                    succeeded += 1
                else:
                    failed += 1
                yield result
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        self.logging.info("Batch finished: %d succeeded, %d failed.", succeeded, failed)
