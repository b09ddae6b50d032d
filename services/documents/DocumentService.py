"""Document lifecycle: upload, configs, chunk preview, images and deletion."""

import asyncio
import hashlib
import os
import uuid

from pydantic import BaseModel

from services.embedding.EmbeddingService import EmbeddingService
from services.images.ImagePipeline import ImagePipeline
from shared.chunking.tokens import count_tokens
from shared.db.EntityStore import EntityStore
from shared.db.models import DocumentRecord, ImageRecord
from shared.helper.HelperConfig import HelperConfig
from shared.models.chunking import ChunkConfig, default_chunk_config
from shared.models.errors import ConflictError, UnsupportedFormatError
from shared.models.jobs import JobResult
from shared.models.parsing import ParseConfig
from shared.parsers.ParserManager import ParserManager
from shared.storage.BlobStoreInterface import BlobStoreInterface


def _retrieve_extraction_error(fut: asyncio.Future) -> None:
    # the worker logs failures, upload does not wait for the result
    if not fut.cancelled():
        fut.exception()


class ChunkPreview(BaseModel):
    index: int
    text: str
    tokens: int


class DocumentService:
    def __init__(
        self,
        helper_config: HelperConfig,
        entity_store: EntityStore,
        blob_store: BlobStoreInterface,
        parser_manager: ParserManager,
        embedding_service: EmbeddingService,
        image_pipeline: ImagePipeline | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self.entity_store = entity_store
        self.blob_store = blob_store
        self.parser_manager = parser_manager
        self.embedding_service = embedding_service
        self.image_pipeline = image_pipeline

    ##########################################
    ################ DOCUMENTS ###############
    ##########################################

    async def upload(self, name: str, data: bytes, ext: str | None = None, src: str = "upload") -> DocumentRecord:
        """
        Stores a document and queues its image extraction.

        Args:
            name: Original file name.
            data: File bytes.
            ext: Format, taken from the file name when omitted.
            src: Free-form origin label.

        Raises:
            UnsupportedFormatError: If no parser handles the format.
            ConflictError: If a document with the same content hash exists.
        """
        ext = (ext or os.path.splitext(name)[1]).lower().lstrip(".")
        if ext not in self.parser_manager.get_supported_formats():
            raise UnsupportedFormatError(f"Unsupported document format '{ext}'.", details={"name": name})

        content_hash = hashlib.sha256(data).hexdigest()
        existing = await self.entity_store.get_document_by_hash(content_hash)
        if existing is not None:
            raise ConflictError(
                f"'{name}' has the same content as document '{existing.name}'.",
                details={"hash": content_hash, "document_id": str(existing.id)},
            )

        # blobs are content addressed, so a racing upload of the same bytes writes the same ref
        ref = await self.blob_store.put(f"documents/{content_hash}.{ext}", data)
        document = await self.entity_store.create_document(name=name, path=ref, ext=ext, content_hash=content_hash, src=src)
        self.logging.info("Uploaded '%s' as %s (%d bytes)", name, document.id, len(data))

        if self.image_pipeline is not None and self.image_pipeline.is_running():
            self.image_pipeline.submit(document.id).add_done_callback(_retrieve_extraction_error)
        return document

    async def get(self, document_id: uuid.UUID) -> DocumentRecord:
        return await self.entity_store.get_document(document_id)

    async def list_documents(self) -> list[DocumentRecord]:
        return await self.entity_store.list_documents()

    async def delete(self, document_id: uuid.UUID) -> list[JobResult]:
        """
        Deletes a document with everything derived from it.

        Text vectors are removed from every collection the document is embedded
        in and image vectors from every collection holding them, each with a
        removal report. Then the row is deleted (configs and images cascade)
        and the blobs are removed.

        Returns:
            list[JobResult]: One removal job per (document or image, collection).
        """
        document = await self.entity_store.get_document(document_id)
        images = await self.entity_store.list_images(document_id)

        results = []
        for collection_id in await self.entity_store.get_embedded_collection_ids(document_id):
            results.append(await self.embedding_service.remove_document(document_id, collection_id))
        for image in images:
            for collection_id in await self.entity_store.list_image_collection_ids(image.id):
                results.append(await self.embedding_service.remove_image(image.id, collection_id))

        await self.entity_store.delete_document(document_id)
        for image in images:
            await self.blob_store.delete(image.path)
        await self.blob_store.delete(document.path)
        self.logging.info("Deleted document '%s' (%d removal job(s))", document.name, len(results))
        return results

    ##########################################
    ################ CONFIGS #################
    ##########################################

    async def _check_pair(self, document_id: uuid.UUID, collection_id: uuid.UUID) -> None:
        await self.entity_store.get_document(document_id)
        await self.entity_store.get_collection(collection_id)

    async def set_parse_config(self, document_id: uuid.UUID, collection_id: uuid.UUID, config: ParseConfig) -> None:
        await self._check_pair(document_id, collection_id)
        await self.entity_store.upsert_parse_config(document_id, collection_id, config)

    async def create_parse_config(self, document_id: uuid.UUID, collection_id: uuid.UUID, config: ParseConfig) -> None:
        """
        Raises:
            ConflictError: If the pair already has a parse config.
        """
        await self._check_pair(document_id, collection_id)
        await self.entity_store.create_parse_config(document_id, collection_id, config)

    async def get_parse_config(self, document_id: uuid.UUID, collection_id: uuid.UUID) -> ParseConfig:
        """The stored parse config of the pair, or the default one."""
        return await self.entity_store.get_parse_config(document_id, collection_id) or ParseConfig()

    async def set_chunk_config(self, document_id: uuid.UUID, collection_id: uuid.UUID, config: ChunkConfig) -> None:
        await self._check_pair(document_id, collection_id)
        await self.entity_store.upsert_chunk_config(document_id, collection_id, config)

    async def create_chunk_config(self, document_id: uuid.UUID, collection_id: uuid.UUID, config: ChunkConfig) -> None:
        """
        Raises:
            ConflictError: If the pair already has a chunk config.
        """
        await self._check_pair(document_id, collection_id)
        await self.entity_store.create_chunk_config(document_id, collection_id, config)

    async def get_chunk_config(self, document_id: uuid.UUID, collection_id: uuid.UUID) -> ChunkConfig:
        return await self.entity_store.get_chunk_config(document_id, collection_id) or default_chunk_config()

    async def preview_chunks(
        self,
        document_id: uuid.UUID,
        collection_id: uuid.UUID,
        parse_config: ParseConfig | None = None,
        chunk_config: ChunkConfig | None = None,
    ) -> list[ChunkPreview]:
        """
        Parses and chunks a document without storing anything.

        Given configs override the stored ones for this preview only.
        """
        document = await self.entity_store.get_document(document_id)
        collection = await self.entity_store.get_collection(collection_id)
        parse_config = parse_config or await self.get_parse_config(document_id, collection_id)
        chunk_config = chunk_config or await self.get_chunk_config(document_id, collection_id)

        data = await self.blob_store.get(document.path)
        output = await asyncio.to_thread(self.parser_manager.parse, data, document.ext, parse_config)
        chunks = await self.embedding_service.do_chunk(output, chunk_config, collection)
        return [ChunkPreview(index=i, text=chunk, tokens=count_tokens(chunk)) for i, chunk in enumerate(chunks)]

    ##########################################
    ################# IMAGES #################
    ##########################################

    async def list_images(self, document_id: uuid.UUID) -> list[ImageRecord]:
        return await self.entity_store.list_images(document_id)

    async def update_image_description(self, image_id: uuid.UUID, description: str | None) -> ImageRecord:
        """
        Sets the text that accompanies an image when it is embedded.

        Already stored vectors keep the old description until the image is embedded again.
        """
        record = await self.entity_store.update_image_description(image_id, description)
        self.logging.debug("Updated description of image %s", image_id)
        return record
