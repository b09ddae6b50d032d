"""Background extraction of images from uploaded documents."""

import asyncio
import hashlib
import uuid

from pydantic import BaseModel, Field

from shared.db.EntityStore import EntityStore
from shared.helper.HelperConfig import HelperConfig
from shared.parsers.ParserManager import ParserManager
from shared.storage.BlobStoreInterface import BlobStoreInterface


class ImageExtractionResult(BaseModel):
    """
    Attributes:
        document_id: Source document.
        extracted:   Images found in the document.
        skipped:     Images whose hash was already recorded for the document.
        image_ids:   Ids of the newly stored images.
    """

    document_id: uuid.UUID
    extracted: int = 0
    skipped: int = 0
    image_ids: list[uuid.UUID] = Field(default_factory=list)


class ImagePipeline:
    """
    Bounded worker pool extracting images after upload.

    ``submit`` returns immediately with a future; IMAGE_WORKERS tasks drain
    the queue. Parsing runs in a thread so it never blocks the event loop.
    Embedding extracted images is a separate, explicit action.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        entity_store: EntityStore,
        blob_store: BlobStoreInterface,
        parser_manager: ParserManager,
        workers: int | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self.entity_store = entity_store
        self.blob_store = blob_store
        self.parser_manager = parser_manager
        self.workers = workers or int(helper_config.get_number_val("IMAGE_WORKERS", default=2))
        if self.workers < 1:
            raise ValueError("IMAGE_WORKERS must be at least 1.")
        self._queue: asyncio.Queue | None = None
        self._tasks: list[asyncio.Task] = []

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    def is_running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self.is_running():
            return
        self._queue = asyncio.Queue()
        self._tasks = [asyncio.create_task(self._worker(n), name=f"image-worker-{n}") for n in range(self.workers)]
        self.logging.info("Image pipeline started with %d worker(s)", self.workers)

    async def stop(self, drain: bool = True) -> None:
        """
        Stops the workers. With ``drain`` queued documents are processed first,
        otherwise their futures are cancelled.
        """
        if not self.is_running():
            return
        if drain:
            await self._queue.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        while not self._queue.empty():
            _, fut = self._queue.get_nowait()
            fut.cancel()
        self.logging.info("Image pipeline stopped")

    def submit(self, document_id: uuid.UUID) -> "asyncio.Future[ImageExtractionResult]":
        """
        Queues image extraction for a document.

        Raises:
            RuntimeError: If the pipeline is not started.
        """
        if not self.is_running():
            raise RuntimeError("Image pipeline not started. Call start() first.")
        fut = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((document_id, fut))
        return fut

    async def _worker(self, number: int) -> None:
        while True:
            document_id, fut = await self._queue.get()
            try:
                if fut.cancelled():
                    continue
                result = await self.extract_document_images(document_id)
                if not fut.done():
                    fut.set_result(result)
            except asyncio.CancelledError:
                fut.cancel()
                raise
            except Exception as e:
                self.logging.error("Image extraction for document %s failed: %s", document_id, e)
                if not fut.done():
                    fut.set_exception(e)
            finally:
                self._queue.task_done()

    ##########################################
    ############### EXTRACTION ###############
    ##########################################

    async def extract_document_images(self, document_id: uuid.UUID) -> ImageExtractionResult:
        """
        Extracts, deduplicates, stores and registers the images of a document.

        An image whose hash is already recorded for the document is skipped.
        """
        document = await self.entity_store.get_document(document_id)
        data = await self.blob_store.get(document.path)
        images = await asyncio.to_thread(self.parser_manager.extract_images, data, document.ext)

        result = ImageExtractionResult(document_id=document_id, extracted=len(images))
        known_hashes = await self.entity_store.get_image_hashes(document_id)
        for image in images:
            content_hash = hashlib.sha256(image.data).hexdigest()
            if content_hash in known_hashes:
                result.skipped += 1
                continue
            known_hashes.add(content_hash)
            ref = await self.blob_store.put(f"images/{document_id}/{content_hash}.{image.format}", image.data)
            record = await self.entity_store.create_image(
                document_id=document_id,
                path=ref,
                format=image.format,
                content_hash=content_hash,
                width=image.width,
                height=image.height,
                page_number=image.page_number,
                image_number=image.image_number,
            )
            if record is None:
                result.skipped += 1
                continue
            result.image_ids.append(record.id)

        self.logging.info(
            "Extracted %d image(s) from '%s': %d stored, %d duplicate(s)",
            result.extracted, document.name, len(result.image_ids), result.skipped,
        )
        return result
