"""
Entity store ORM models (SQLAlchemy 2.0).

Tables:
    documents                 : Uploaded files, unique by content hash.
    collections               : Vector collections bound to one embedding model.
    parse_configs             : One per (document, collection).
    chunk_configs             : One per (document, collection).
    images                    : Images extracted from documents, unique by hash per document.
    image_embeddings          : Which image has a vector in which collection.
    embedding_reports         : Append-only audit of embedding jobs.
    embedding_removal_reports : Append-only audit of vector removals.
    embedding_cache           : Backing store of the database embedding cache.

Deleting a document or collection cascades to its configs and links.
Reports keep their rows; their foreign keys are nulled and the denormalized
names preserve the history.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

import pytz
from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(pytz.utc)


class Base(DeclarativeBase):
    pass


class DocumentRecord(Base):
    """
    A stored source document.

    Attributes:
        id: UUID primary key.
        name: Original file name.
        path: BLOB reference of the stored bytes.
        ext: Lowercase file extension, selects the parser.
        hash: SHA-256 of the bytes, unique.
        src: Where the document came from (e.g. "upload", "fs").
    """

    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    path: Mapped[str] = mapped_column(String(1000), nullable=False)
    ext: Mapped[str] = mapped_column(String(20), nullable=False)
    hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    src: Mapped[str] = mapped_column(String(100), nullable=False, default="upload")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    parse_configs: Mapped[list[ParseConfigRecord]] = relationship(
        back_populates="document", cascade="all, delete-orphan", passive_deletes=True
    )
    chunk_configs: Mapped[list[ChunkConfigRecord]] = relationship(
        back_populates="document", cascade="all, delete-orphan", passive_deletes=True
    )
    images: Mapped[list[ImageRecord]] = relationship(
        back_populates="document", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<DocumentRecord(id={self.id!s:.8}, name='{self.name}')>"


class CollectionRecord(Base):
    """
    A vector collection. All its vectors share ``model`` from ``embedder``.

    Attributes:
        name: Collection name in the vector database.
        model: Embedding model used for every vector.
        embedder: Embedding provider engine name.
        provider: Vector database engine name.
    """

    __tablename__ = "collections"
    __table_args__ = (UniqueConstraint("name", "provider", name="uq_collection_name_provider"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    model: Mapped[str] = mapped_column(String(255), nullable=False)
    embedder: Mapped[str] = mapped_column(String(100), nullable=False)
    provider: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<CollectionRecord(name='{self.name}', provider='{self.provider}', model='{self.model}')>"


class ParseConfigRecord(Base):
    __tablename__ = "parse_configs"
    __table_args__ = (UniqueConstraint("document_id", "collection_id", name="uq_parse_config_document_collection"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    collection_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("collections.id", ondelete="CASCADE"), nullable=False)
    config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    document: Mapped[DocumentRecord] = relationship(back_populates="parse_configs")


class ChunkConfigRecord(Base):
    __tablename__ = "chunk_configs"
    __table_args__ = (UniqueConstraint("document_id", "collection_id", name="uq_chunk_config_document_collection"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    collection_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("collections.id", ondelete="CASCADE"), nullable=False)
    config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    document: Mapped[DocumentRecord] = relationship(back_populates="chunk_configs")


class ImageRecord(Base):
    """
    An image extracted from a document. ``hash`` is unique per document.
    """

    __tablename__ = "images"
    __table_args__ = (UniqueConstraint("document_id", "hash", name="uq_image_document_hash"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    path: Mapped[str] = mapped_column(String(1000), nullable=False)
    format: Mapped[str] = mapped_column(String(20), nullable=False)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)
    document_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)
    image_number: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    document: Mapped[DocumentRecord] = relationship(back_populates="images")


class ImageEmbeddingRecord(Base):
    __tablename__ = "image_embeddings"

    image_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("images.id", ondelete="CASCADE"), primary_key=True)
    collection_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("collections.id", ondelete="CASCADE"), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class EmbeddingReportRecord(Base):
    """
    Audit row written once when an embedding job reaches its report step.

    Foreign keys are nulled when the referenced row is deleted; the
    ``*_name`` columns keep the report readable afterwards.
    """

    __tablename__ = "embedding_reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    collection_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("collections.id", ondelete="SET NULL"), nullable=True)
    collection_name: Mapped[str] = mapped_column(String(255), nullable=False)
    document_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("documents.id", ondelete="SET NULL"), nullable=True)
    document_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    image_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("images.id", ondelete="SET NULL"), nullable=True)
    model_used: Mapped[str] = mapped_column(String(255), nullable=False)
    embedding_provider: Mapped[str] = mapped_column(String(100), nullable=False)
    vector_db: Mapped[str] = mapped_column(String(100), nullable=False)
    total_vectors: Mapped[int] = mapped_column(Integer, nullable=False)
    image_vectors: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tokens_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cache: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class EmbeddingRemovalReportRecord(Base):
    __tablename__ = "embedding_removal_reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    collection_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("collections.id", ondelete="SET NULL"), nullable=True)
    collection_name: Mapped[str] = mapped_column(String(255), nullable=False)
    document_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("documents.id", ondelete="SET NULL"), nullable=True)
    document_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    image_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("images.id", ondelete="SET NULL"), nullable=True)
    vector_db: Mapped[str] = mapped_column(String(100), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class EmbeddingCacheRecord(Base):
    __tablename__ = "embedding_cache"

    key: Mapped[str] = mapped_column(String(400), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
