"""Embedding orchestrator.

Runs the per-(document, collection) text pipeline

    pending -> parsing -> chunking -> cache_lookup -> {cache_hit | embedding}
            -> storing -> reported -> done

and the per-(image, collection) image pipeline, which skips parsing and
chunking. Removal jobs go pending -> deleting -> removed. Any non-terminal
state may end in failed; the raised PipelineError carries the stage.

Vectors already stored when a later step fails are left in place and no
report is written. Re-running the job overwrites them, since point ids are
derived from (document, chunk index) and the cache absorbs the embedding cost.
"""

import asyncio
import base64
import uuid
from datetime import datetime
from typing import Awaitable, TypeVar

import pytz

from services.embedding.JobRegistry import JobRegistry
from shared.cache.EmbeddingCache import EmbeddingCache, get_content_hash
from shared.chunking.chunker import chunk_text
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.embed.models.EmbeddingResult import EmbeddingResult
from shared.clients.vector.VectorClientInterface import VectorClientInterface
from shared.clients.vector.VectorClientManager import VectorClientManager
from shared.clients.vector.models.VectorPoint import ImagePayload, TextChunkPayload, VectorPoint
from shared.db.EntityStore import EntityStore
from shared.db.models import CollectionRecord
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperRetry import HelperRetry
from shared.models.chunking import ChunkConfig, SemanticWindowConfig, default_chunk_config
from shared.models.errors import OperationUnsupportedError, PipelineError
from shared.models.jobs import Job, JobKind, JobResult, JobState
from shared.models.parsing import ParseConfig, TextOutput
from shared.parsers.ParserManager import ParserManager
from shared.storage.BlobStoreInterface import BlobStoreInterface

T = TypeVar("T")

_MIME_TYPES = {"jpg": "image/jpeg", "jpeg": "image/jpeg", "png": "image/png", "gif": "image/gif", "bmp": "image/bmp", "tiff": "image/tiff", "webp": "image/webp"}


def _now() -> datetime:
    return datetime.now(pytz.utc)


def make_chunk_point_id(document_id: uuid.UUID, chunk_index: int) -> str:
    """Deterministic point id: re-embedding a document overwrites its chunks."""
    return str(uuid.uuid5(uuid.NAMESPACE_OID, f"text:{document_id}:{chunk_index}"))


def make_image_point_id(image_id: uuid.UUID) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_OID, f"image:{image_id}"))


class EmbeddingService:
    """Turns stored documents and images into vectors of a collection."""

    def __init__(
        self,
        helper_config: HelperConfig,
        entity_store: EntityStore,
        blob_store: BlobStoreInterface,
        parser_manager: ParserManager,
        embed_manager: EmbedClientManager,
        vector_manager: VectorClientManager,
        cache: EmbeddingCache,
        retry: HelperRetry | None = None,
        registry: JobRegistry | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self.entity_store = entity_store
        self.blob_store = blob_store
        self.parser_manager = parser_manager
        self.embed_manager = embed_manager
        self.vector_manager = vector_manager
        self.cache = cache
        self.retry = retry or HelperRetry(helper_config)
        self.registry = registry or JobRegistry(helper_config)

    ##########################################
    ################ HELPERS #################
    ##########################################

    def _get_clients(self, collection: CollectionRecord) -> tuple[EmbedClientInterface, VectorClientInterface]:
        return self.embed_manager.get_client(collection.embedder), self.vector_manager.get_client(collection.provider)

    async def _guard(self, job: Job, operation: Awaitable[T]) -> T:
        """Awaits a job body and records its failure on the job."""
        try:
            return await operation
        except PipelineError as e:
            e.with_stage(job.state.value)
            job.fail(str(e), e.to_dict())
            self.logging.error("%s job for %s failed: %s", job.kind.value, job.key, e)
            raise
        except asyncio.CancelledError:
            self.logging.warning("%s job for %s was cancelled in state %s", job.kind.value, job.key, job.state.value)
            job.fail("cancelled")
            raise

    async def _embed_texts(self, client: EmbedClientInterface, texts: list[str], model: str) -> EmbeddingResult:
        return await self.retry.do_with_retry(
            lambda: client.do_embed(texts, model=model),
            f"Embedding {len(texts)} text(s) with '{model}' on '{client.get_engine_name()}'",
        )

    async def do_chunk(self, output: TextOutput, config: ChunkConfig, collection: CollectionRecord) -> list[str]:
        """Chunks every section of a parse output. Semantic chunking embeds sentences through the cache."""
        embed_sentences = None
        if isinstance(config, SemanticWindowConfig):
            client = self.embed_manager.get_client(config.embedding_provider or collection.embedder)
            model = config.embedding_model or collection.model

            async def embed_sentences(sentences: list[str]) -> list[list[float]]:
                result = await self.cache.do_get_or_embed(
                    sentences, model, lambda texts: self._embed_texts(client, texts, model)
                )
                return result.vectors

        chunks: list[str] = []
        for section in output.as_sections():
            chunks.extend(await chunk_text(section, config, embed=embed_sentences))
        return chunks

    ##########################################
    ############## TEXT JOBS #################
    ##########################################

    async def embed_document(
        self,
        document_id: uuid.UUID,
        collection_id: uuid.UUID,
        parse_config: ParseConfig | None = None,
        chunk_config: ChunkConfig | None = None,
    ) -> JobResult:
        """
        Embeds a stored document into a collection.

        Given configs replace the stored ones of the pair once no other job for
        the pair is running; without any, the stored configs (or the defaults)
        are used. A request joins a running job for the pair only when it
        brings the same configs, otherwise it waits and runs its own job.

        Returns:
            JobResult: The finished job with its report id.

        Raises:
            PipelineError: The failure, with ``stage`` set to the state it happened in.
        """
        variant = None
        if parse_config is not None or chunk_config is not None:
            # raises NotFoundError before a config is written for a missing pair
            await self.entity_store.get_document(document_id)
            await self.entity_store.get_collection(collection_id)
            variant = (
                parse_config.model_dump_json() if parse_config is not None else None,
                chunk_config.model_dump_json() if chunk_config is not None else None,
            )

        async def run(job: Job) -> JobResult:
            # written under the pair's lock so a running job never sees them change
            if parse_config is not None:
                await self.entity_store.upsert_parse_config(document_id, collection_id, parse_config)
            if chunk_config is not None:
                await self.entity_store.upsert_chunk_config(document_id, collection_id, chunk_config)
            return await self._run_embed_document(job, document_id, collection_id)

        return await self.registry.run(
            JobKind.EMBED_TEXT,
            (document_id, collection_id),
            lambda job: self._guard(job, run(job)),
            variant=variant,
        )

    async def _run_embed_document(self, job: Job, document_id: uuid.UUID, collection_id: uuid.UUID) -> JobResult:
        started_at = _now()
        document = await self.entity_store.get_document(document_id)
        collection = await self.entity_store.get_collection(collection_id)
        embed_client, vector_client = self._get_clients(collection)

        job.advance(JobState.PARSING)
        parse_config = await self.entity_store.get_parse_config(document_id, collection_id) or ParseConfig()
        chunk_config = await self.entity_store.get_chunk_config(document_id, collection_id) or default_chunk_config()
        data = await self.blob_store.get(document.path)
        output = await asyncio.to_thread(self.parser_manager.parse, data, document.ext, parse_config)

        job.advance(JobState.CHUNKING)
        chunks = await self.do_chunk(output, chunk_config, collection)
        self.logging.info("Document '%s' split into %d chunk(s) for collection '%s'", document.name, len(chunks), collection.name)

        job.advance(JobState.CACHE_LOOKUP)

        async def embed_missing(texts: list[str]) -> EmbeddingResult:
            if job.state == JobState.CACHE_LOOKUP:
                job.advance(JobState.EMBEDDING)
            return await self._embed_texts(embed_client, texts, collection.model)

        cached = await self.cache.do_get_or_embed(chunks, collection.model, embed_missing)
        if job.state == JobState.CACHE_LOOKUP:
            job.advance(JobState.CACHE_HIT)

        job.advance(JobState.STORING)
        points = [
            VectorPoint(
                id=make_chunk_point_id(document_id, index),
                vector=vector,
                payload=TextChunkPayload(
                    document_id=str(document_id),
                    chunk_index=index,
                    chunk_text=chunk,
                    content_hash=get_content_hash(chunk),
                ).model_dump(),
            )
            for index, (chunk, vector) in enumerate(zip(chunks, cached.vectors))
        ]
        text_filter = {"document_id": str(document_id), "modality": "text"}
        previous_count = await self.retry.do_with_retry(
            lambda: vector_client.do_count(collection.name, filter=text_filter),
            f"Counting vectors of document '{document.name}' in '{collection.name}'",
        )
        await self.retry.do_with_retry(
            lambda: vector_client.do_upsert_points(collection.name, points),
            f"Upserting {len(points)} vector(s) into '{collection.name}'",
        )
        # a previous run with more chunks leaves higher chunk indexes behind
        stale_ids = [make_chunk_point_id(document_id, index) for index in range(len(points), previous_count)]
        if stale_ids:
            await self.retry.do_with_retry(
                lambda: vector_client.do_delete_points(collection.name, stale_ids),
                f"Deleting {len(stale_ids)} stale vector(s) from '{collection.name}'",
            )

        report = await self.entity_store.add_embedding_report(
            type="text",
            collection_id=collection.id,
            collection_name=collection.name,
            document_id=document.id,
            document_name=document.name,
            model_used=collection.model,
            embedding_provider=collection.embedder,
            vector_db=collection.provider,
            total_vectors=len(points),
            tokens_used=cached.tokens_used,
            cache=cached.all_hit,
            started_at=started_at,
            finished_at=_now(),
        )
        job.advance(JobState.REPORTED)
        job.advance(JobState.DONE)
        self.logging.info(
            "Embedded '%s' into '%s': %d vector(s), cache=%s",
            document.name, collection.name, len(points), cached.all_hit, color="green",
        )
        return JobResult(
            job=job,
            report_id=report.id,
            total_vectors=len(points),
            tokens_used=cached.tokens_used,
            cache=cached.all_hit,
        )

    async def remove_document(self, document_id: uuid.UUID, collection_id: uuid.UUID) -> JobResult:
        """
        Removes the text vectors of a document from a collection and records a removal report.

        Cache entries are kept; they are content addressed and may serve other collections.
        """
        return await self.registry.run(
            JobKind.REMOVE_TEXT,
            (document_id, collection_id),
            lambda job: self._guard(job, self._run_remove_document(job, document_id, collection_id)),
        )

    async def _run_remove_document(self, job: Job, document_id: uuid.UUID, collection_id: uuid.UUID) -> JobResult:
        started_at = _now()
        document = await self.entity_store.get_document(document_id)
        collection = await self.entity_store.get_collection(collection_id)
        vector_client = self.vector_manager.get_client(collection.provider)

        job.advance(JobState.DELETING)
        await self.retry.do_with_retry(
            lambda: vector_client.do_delete_points_by_filter(
                collection.name, {"document_id": str(document_id), "modality": "text"}
            ),
            f"Deleting vectors of document '{document.name}' from '{collection.name}'",
        )
        report = await self.entity_store.add_removal_report(
            type="text",
            collection_id=collection.id,
            collection_name=collection.name,
            document_id=document.id,
            document_name=document.name,
            vector_db=collection.provider,
            started_at=started_at,
            finished_at=_now(),
        )
        job.advance(JobState.REMOVED)
        self.logging.info("Removed '%s' from '%s'", document.name, collection.name)
        return JobResult(job=job, report_id=report.id)

    ##########################################
    ############## IMAGE JOBS ################
    ##########################################

    async def embed_images(self, image_ids: list[uuid.UUID], collection_id: uuid.UUID) -> list[JobResult]:
        """
        Embeds images into a collection, strictly one at a time.

        Each image is embedded together with its stored description. The
        first failing image aborts the remaining ones.

        Raises:
            OperationUnsupportedError: If the collection's model is not multimodal.
        """
        results = []
        for image_id in image_ids:
            results.append(await self.registry.run(
                JobKind.EMBED_IMAGE,
                (image_id, collection_id),
                lambda job, image_id=image_id: self._guard(job, self._run_embed_image(job, image_id, collection_id)),
            ))
        return results

    async def _run_embed_image(self, job: Job, image_id: uuid.UUID, collection_id: uuid.UUID) -> JobResult:
        started_at = _now()
        image = await self.entity_store.get_image(image_id)
        document = await self.entity_store.get_document(image.document_id)
        collection = await self.entity_store.get_collection(collection_id)
        embed_client, vector_client = self._get_clients(collection)
        if not await embed_client.supports_images(collection.model):
            raise OperationUnsupportedError(
                f"Model '{collection.model}' on '{collection.embedder}' cannot embed images.",
                details={"collection": collection.name},
            )

        job.advance(JobState.CACHE_LOOKUP)

        async def embed_image() -> EmbeddingResult:
            if job.state == JobState.CACHE_LOOKUP:
                job.advance(JobState.EMBEDDING)
            data = await self.blob_store.get(image.path)
            image_b64 = base64.b64encode(data).decode("ascii")
            mime_type = _MIME_TYPES.get(image.format.lower(), f"image/{image.format.lower()}")
            return await self.retry.do_with_retry(
                lambda: embed_client.do_embed_image(image_b64, mime_type, text=image.description, model=collection.model),
                f"Embedding image {image.id} with '{collection.model}'",
            )

        cached = await self.cache.do_get_or_embed_image(image.hash, image.description, collection.model, embed_image)
        if job.state == JobState.CACHE_LOOKUP:
            job.advance(JobState.CACHE_HIT)

        job.advance(JobState.STORING)
        point = VectorPoint(
            id=make_image_point_id(image.id),
            vector=cached.vectors[0],
            payload=ImagePayload(
                image_id=str(image.id),
                image_data_ref=image.path,
                description=image.description,
                document_id=str(image.document_id),
            ).model_dump(),
        )
        await self.retry.do_with_retry(
            lambda: vector_client.do_upsert_points(collection.name, [point]),
            f"Upserting image {image.id} into '{collection.name}'",
        )
        await self.entity_store.add_image_embedding(image.id, collection.id)

        report = await self.entity_store.add_embedding_report(
            type="image",
            collection_id=collection.id,
            collection_name=collection.name,
            document_id=document.id,
            document_name=document.name,
            image_id=image.id,
            model_used=collection.model,
            embedding_provider=collection.embedder,
            vector_db=collection.provider,
            total_vectors=1,
            image_vectors=1,
            tokens_used=cached.tokens_used,
            cache=cached.all_hit,
            started_at=started_at,
            finished_at=_now(),
        )
        job.advance(JobState.REPORTED)
        job.advance(JobState.DONE)
        return JobResult(
            job=job,
            report_id=report.id,
            total_vectors=1,
            image_vectors=1,
            tokens_used=cached.tokens_used,
            cache=cached.all_hit,
        )

    async def remove_image(self, image_id: uuid.UUID, collection_id: uuid.UUID) -> JobResult:
        return await self.registry.run(
            JobKind.REMOVE_IMAGE,
            (image_id, collection_id),
            lambda job: self._guard(job, self._run_remove_image(job, image_id, collection_id)),
        )

    async def _run_remove_image(self, job: Job, image_id: uuid.UUID, collection_id: uuid.UUID) -> JobResult:
        started_at = _now()
        image = await self.entity_store.get_image(image_id)
        collection = await self.entity_store.get_collection(collection_id)
        vector_client = self.vector_manager.get_client(collection.provider)

        job.advance(JobState.DELETING)
        await self.retry.do_with_retry(
            lambda: vector_client.do_delete_points(collection.name, [make_image_point_id(image.id)]),
            f"Deleting image {image.id} from '{collection.name}'",
        )
        await self.entity_store.delete_image_embedding(image.id, collection.id)
        report = await self.entity_store.add_removal_report(
            type="image",
            collection_id=collection.id,
            collection_name=collection.name,
            document_id=image.document_id,
            image_id=image.id,
            vector_db=collection.provider,
            started_at=started_at,
            finished_at=_now(),
        )
        job.advance(JobState.REMOVED)
        return JobResult(job=job, report_id=report.id)
