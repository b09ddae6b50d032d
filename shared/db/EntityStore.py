"""
Persistence of documents, collections, configs, images and reports.

Every public method opens its own session and commits before returning, so
callers never hold a transaction across provider or vector database calls.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from shared.db.Database import Database
from shared.db.models import (
    ChunkConfigRecord,
    CollectionRecord,
    DocumentRecord,
    EmbeddingCacheRecord,
    EmbeddingRemovalReportRecord,
    EmbeddingReportRecord,
    ImageEmbeddingRecord,
    ImageRecord,
    ParseConfigRecord,
)
from shared.helper.HelperConfig import HelperConfig
from shared.models.chunking import ChunkConfig, ChunkConfigAdapter
from shared.models.errors import ConflictError, NotFoundError
from shared.models.parsing import ParseConfig

ConfigRecord = type[ParseConfigRecord] | type[ChunkConfigRecord]


class EntityStore:
    def __init__(self, helper_config: HelperConfig, database: Database):
        self.logging = helper_config.get_logger()
        self.database = database

    ##########################################
    ############### DOCUMENTS ################
    ##########################################

    async def create_document(self, name: str, path: str, ext: str, content_hash: str, src: str = "upload") -> DocumentRecord:
        """
        Registers a document.

        Raises:
            ConflictError: If a document with the same content hash exists.
        """
        record = DocumentRecord(name=name, path=path, ext=ext.lower(), hash=content_hash, src=src)
        try:
            async with self.database.session() as session, session.begin():
                session.add(record)
        except IntegrityError as e:
            raise ConflictError(
                f"Document with hash {content_hash} already exists.", details={"hash": content_hash}
            ) from e
        return record

    async def get_document(self, document_id: uuid.UUID) -> DocumentRecord:
        async with self.database.session() as session:
            record = await session.get(DocumentRecord, document_id)
        if record is None:
            raise NotFoundError(f"Document {document_id} not found.", details={"document_id": str(document_id)})
        return record

    async def get_document_by_hash(self, content_hash: str) -> DocumentRecord | None:
        async with self.database.session() as session:
            result = await session.execute(select(DocumentRecord).where(DocumentRecord.hash == content_hash))
            return result.scalar_one_or_none()

    async def list_documents(self) -> list[DocumentRecord]:
        async with self.database.session() as session:
            result = await session.execute(select(DocumentRecord).order_by(DocumentRecord.created_at))
            return list(result.scalars().all())

    async def delete_document(self, document_id: uuid.UUID) -> None:
        """Deletes the document row. Configs, images and image links cascade; report FKs are nulled."""
        async with self.database.session() as session, session.begin():
            result = await session.execute(delete(DocumentRecord).where(DocumentRecord.id == document_id))
        if result.rowcount == 0:
            raise NotFoundError(f"Document {document_id} not found.", details={"document_id": str(document_id)})

    ##########################################
    ############## COLLECTIONS ###############
    ##########################################

    async def create_collection(self, name: str, model: str, embedder: str, provider: str) -> CollectionRecord:
        record = CollectionRecord(name=name, model=model, embedder=embedder, provider=provider)
        try:
            async with self.database.session() as session, session.begin():
                session.add(record)
        except IntegrityError as e:
            raise ConflictError(
                f"Collection '{name}' already exists on {provider}.", details={"name": name, "provider": provider}
            ) from e
        return record

    async def get_collection(self, collection_id: uuid.UUID) -> CollectionRecord:
        async with self.database.session() as session:
            record = await session.get(CollectionRecord, collection_id)
        if record is None:
            raise NotFoundError(f"Collection {collection_id} not found.", details={"collection_id": str(collection_id)})
        return record

    async def get_collection_by_name(self, name: str, provider: str) -> CollectionRecord | None:
        async with self.database.session() as session:
            result = await session.execute(
                select(CollectionRecord).where(CollectionRecord.name == name, CollectionRecord.provider == provider)
            )
            return result.scalar_one_or_none()

    async def list_collections(self) -> list[CollectionRecord]:
        async with self.database.session() as session:
            result = await session.execute(select(CollectionRecord).order_by(CollectionRecord.created_at))
            return list(result.scalars().all())

    async def delete_collection(self, collection_id: uuid.UUID) -> None:
        async with self.database.session() as session, session.begin():
            result = await session.execute(delete(CollectionRecord).where(CollectionRecord.id == collection_id))
        if result.rowcount == 0:
            raise NotFoundError(f"Collection {collection_id} not found.", details={"collection_id": str(collection_id)})

    ##########################################
    ################ CONFIGS #################
    ##########################################

    async def _create_config(self, model: ConfigRecord, document_id: uuid.UUID, collection_id: uuid.UUID, config: dict[str, Any]) -> None:
        try:
            async with self.database.session() as session, session.begin():
                session.add(model(document_id=document_id, collection_id=collection_id, config=config))
        except IntegrityError as e:
            raise ConflictError(
                f"{model.__tablename__} entry for document {document_id} and collection {collection_id} already exists.",
                details={"document_id": str(document_id), "collection_id": str(collection_id)},
            ) from e

    async def _update_config(self, model: ConfigRecord, document_id: uuid.UUID, collection_id: uuid.UUID, config: dict[str, Any]) -> bool:
        async with self.database.session() as session, session.begin():
            result = await session.execute(
                select(model).where(model.document_id == document_id, model.collection_id == collection_id)
            )
            record = result.scalar_one_or_none()
            if record is None:
                return False
            record.config = config
            return True

    async def _upsert_config(self, model: ConfigRecord, document_id: uuid.UUID, collection_id: uuid.UUID, config: dict[str, Any]) -> None:
        if await self._update_config(model, document_id, collection_id, config):
            return
        try:
            await self._create_config(model, document_id, collection_id, config)
        except ConflictError:
            # a concurrent writer inserted first
            await self._update_config(model, document_id, collection_id, config)

    async def _get_config(self, model: ConfigRecord, document_id: uuid.UUID, collection_id: uuid.UUID) -> dict[str, Any] | None:
        async with self.database.session() as session:
            result = await session.execute(
                select(model.config).where(model.document_id == document_id, model.collection_id == collection_id)
            )
            return result.scalar_one_or_none()

    async def create_parse_config(self, document_id: uuid.UUID, collection_id: uuid.UUID, config: ParseConfig) -> None:
        """
        Creates the parse config of a (document, collection) pair.

        Raises:
            ConflictError: If the pair already has one. Of two racing writers exactly one succeeds.
        """
        config.check()
        await self._create_config(ParseConfigRecord, document_id, collection_id, config.model_dump(mode="json"))

    async def upsert_parse_config(self, document_id: uuid.UUID, collection_id: uuid.UUID, config: ParseConfig) -> None:
        config.check()
        await self._upsert_config(ParseConfigRecord, document_id, collection_id, config.model_dump(mode="json"))

    async def get_parse_config(self, document_id: uuid.UUID, collection_id: uuid.UUID) -> ParseConfig | None:
        raw = await self._get_config(ParseConfigRecord, document_id, collection_id)
        return ParseConfig.model_validate(raw) if raw is not None else None

    async def create_chunk_config(self, document_id: uuid.UUID, collection_id: uuid.UUID, config: ChunkConfig) -> None:
        """
        Creates the chunk config of a (document, collection) pair.

        Raises:
            ConflictError: If the pair already has one.
        """
        config.check()
        await self._create_config(ChunkConfigRecord, document_id, collection_id, config.model_dump(mode="json"))

    async def upsert_chunk_config(self, document_id: uuid.UUID, collection_id: uuid.UUID, config: ChunkConfig) -> None:
        config.check()
        await self._upsert_config(ChunkConfigRecord, document_id, collection_id, config.model_dump(mode="json"))

    async def get_chunk_config(self, document_id: uuid.UUID, collection_id: uuid.UUID) -> ChunkConfig | None:
        raw = await self._get_config(ChunkConfigRecord, document_id, collection_id)
        return ChunkConfigAdapter.validate_python(raw) if raw is not None else None

    ##########################################
    ################# IMAGES #################
    ##########################################

    async def create_image(
        self,
        document_id: uuid.UUID,
        path: str,
        format: str,
        content_hash: str,
        width: int,
        height: int,
        page_number: int,
        image_number: int,
        description: str | None = None,
    ) -> ImageRecord | None:
        """
        Registers an extracted image.

        Returns:
            ImageRecord | None: The new record, or None if the document already has an image with this hash.
        """
        record = ImageRecord(
            document_id=document_id,
            path=path,
            format=format,
            hash=content_hash,
            width=width,
            height=height,
            page_number=page_number,
            image_number=image_number,
            description=description,
        )
        try:
            async with self.database.session() as session, session.begin():
                session.add(record)
        except IntegrityError:
            self.logging.debug("Image with hash %s already recorded for document %s", content_hash, document_id)
            return None
        return record

    async def get_image(self, image_id: uuid.UUID) -> ImageRecord:
        async with self.database.session() as session:
            record = await session.get(ImageRecord, image_id)
        if record is None:
            raise NotFoundError(f"Image {image_id} not found.", details={"image_id": str(image_id)})
        return record

    async def list_images(self, document_id: uuid.UUID) -> list[ImageRecord]:
        async with self.database.session() as session:
            result = await session.execute(
                select(ImageRecord)
                .where(ImageRecord.document_id == document_id)
                .order_by(ImageRecord.page_number, ImageRecord.image_number)
            )
            return list(result.scalars().all())

    async def get_image_hashes(self, document_id: uuid.UUID) -> set[str]:
        async with self.database.session() as session:
            result = await session.execute(select(ImageRecord.hash).where(ImageRecord.document_id == document_id))
            return set(result.scalars().all())

    async def update_image_description(self, image_id: uuid.UUID, description: str | None) -> ImageRecord:
        async with self.database.session() as session, session.begin():
            record = await session.get(ImageRecord, image_id)
            if record is None:
                raise NotFoundError(f"Image {image_id} not found.", details={"image_id": str(image_id)})
            record.description = description
        return record

    async def add_image_embedding(self, image_id: uuid.UUID, collection_id: uuid.UUID) -> None:
        async with self.database.session() as session, session.begin():
            if await session.get(ImageEmbeddingRecord, (image_id, collection_id)) is None:
                session.add(ImageEmbeddingRecord(image_id=image_id, collection_id=collection_id))

    async def delete_image_embedding(self, image_id: uuid.UUID, collection_id: uuid.UUID) -> bool:
        async with self.database.session() as session, session.begin():
            result = await session.execute(
                delete(ImageEmbeddingRecord).where(
                    ImageEmbeddingRecord.image_id == image_id, ImageEmbeddingRecord.collection_id == collection_id
                )
            )
        return result.rowcount > 0

    async def list_image_collection_ids(self, image_id: uuid.UUID) -> list[uuid.UUID]:
        async with self.database.session() as session:
            result = await session.execute(
                select(ImageEmbeddingRecord.collection_id).where(ImageEmbeddingRecord.image_id == image_id)
            )
            return list(result.scalars().all())

    ##########################################
    ################ REPORTS #################
    ##########################################

    async def add_embedding_report(self, **fields: Any) -> EmbeddingReportRecord:
        """Appends an embedding report. Reports are never updated afterwards."""
        record = EmbeddingReportRecord(**fields)
        async with self.database.session() as session, session.begin():
            session.add(record)
        return record

    async def add_removal_report(self, **fields: Any) -> EmbeddingRemovalReportRecord:
        record = EmbeddingRemovalReportRecord(**fields)
        async with self.database.session() as session, session.begin():
            session.add(record)
        return record

    async def list_embedding_reports(
        self,
        document_id: uuid.UUID | None = None,
        collection_id: uuid.UUID | None = None,
        image_id: uuid.UUID | None = None,
    ) -> list[EmbeddingReportRecord]:
        query = select(EmbeddingReportRecord).order_by(EmbeddingReportRecord.finished_at)
        if document_id is not None:
            query = query.where(EmbeddingReportRecord.document_id == document_id)
        if collection_id is not None:
            query = query.where(EmbeddingReportRecord.collection_id == collection_id)
        if image_id is not None:
            query = query.where(EmbeddingReportRecord.image_id == image_id)
        async with self.database.session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_removal_reports(
        self,
        document_id: uuid.UUID | None = None,
        collection_id: uuid.UUID | None = None,
        image_id: uuid.UUID | None = None,
    ) -> list[EmbeddingRemovalReportRecord]:
        query = select(EmbeddingRemovalReportRecord).order_by(EmbeddingRemovalReportRecord.finished_at)
        if document_id is not None:
            query = query.where(EmbeddingRemovalReportRecord.document_id == document_id)
        if collection_id is not None:
            query = query.where(EmbeddingRemovalReportRecord.collection_id == collection_id)
        if image_id is not None:
            query = query.where(EmbeddingRemovalReportRecord.image_id == image_id)
        async with self.database.session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_embedded_collection_ids(self, document_id: uuid.UUID) -> list[uuid.UUID]:
        """
        Collections currently holding text vectors of the document.

        A collection counts when its latest text report for the document is
        newer than its latest text removal report.
        """
        embedded: dict[uuid.UUID, datetime] = {}
        for report in await self.list_embedding_reports(document_id=document_id):
            if report.type == "text" and report.collection_id is not None:
                embedded[report.collection_id] = report.finished_at
        for removal in await self.list_removal_reports(document_id=document_id):
            if removal.type != "text" or removal.collection_id not in embedded:
                continue
            if removal.finished_at >= embedded[removal.collection_id]:
                del embedded[removal.collection_id]
        return list(embedded)

    ##########################################
    ################# CACHE ##################
    ##########################################

    async def get_cache_value(self, key: str) -> str | None:
        async with self.database.session() as session:
            record = await session.get(EmbeddingCacheRecord, key)
            return record.value if record is not None else None

    async def put_cache_value(self, key: str, value: str) -> None:
        async with self.database.session() as session, session.begin():
            await session.merge(EmbeddingCacheRecord(key=key, value=value))
