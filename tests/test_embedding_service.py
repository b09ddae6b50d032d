"""Tests for the embedding orchestrator."""

import asyncio
import uuid

import pytest

from services.embedding.EmbeddingService import make_chunk_point_id
from shared.models.chunking import SemanticWindowConfig, SlidingWindowConfig
from shared.models.errors import (
    DimensionMismatchError,
    InvalidResponseError,
    NotFoundError,
    ProviderUnavailableError,
    RangeOutOfBoundsError,
    RateLimitedError,
)
from shared.models.jobs import JobKind, JobState
from shared.models.parsing import ParseConfig


async def _upload(document_service, data: bytes, name: str = "report.txt"):
    return await document_service.upload(name, data)


def _rebuild(points, overlap: int) -> str:
    """Concatenates stored chunks in index order, dropping the trailing overlap of all but the last."""
    ordered = sorted(points, key=lambda p: p.payload["chunk_index"])
    texts = [p.payload["chunk_text"] for p in ordered]
    return "".join(t[:len(t) - overlap] for t in texts[:-1]) + texts[-1]


class TestEmbedDocument:
    """Tests for EmbeddingService.embed_document."""

    async def test_embed_then_cache_hit(
        self, embedding_service, document_service, parser_manager, collection, embed_client, vector_client, entity_store, text_document_bytes
    ):
        """A first run embeds and stores every chunk, a second run is served from the cache."""
        document = await _upload(document_service, text_document_bytes)
        parse_config = ParseConfig(end=3)
        chunk_config = SlidingWindowConfig(size=100, overlap=20)

        first = await embedding_service.embed_document(document.id, collection.id, parse_config, chunk_config)

        expected = parser_manager.parse(text_document_bytes, "txt", parse_config).text
        points = vector_client.points("docs", {"document_id": str(document.id)})
        assert first.cache is False
        assert first.total_vectors == len(points) > 1
        assert _rebuild(points, 20) == expected
        assert all(len(p.vector) == 8 for p in points)
        assert first.job.get_states() == [
            JobState.PENDING, JobState.PARSING, JobState.CHUNKING, JobState.CACHE_LOOKUP,
            JobState.EMBEDDING, JobState.STORING, JobState.REPORTED, JobState.DONE,
        ]
        calls = len(embed_client.calls)

        second = await embedding_service.embed_document(document.id, collection.id)

        assert second.cache is True
        assert len(embed_client.calls) == calls
        assert JobState.CACHE_HIT in second.job.get_states()
        assert JobState.EMBEDDING not in second.job.get_states()
        assert len(vector_client.points("docs", {"document_id": str(document.id)})) == first.total_vectors

        reports = await entity_store.list_embedding_reports(document_id=document.id)
        assert [r.cache for r in reports] == [False, True]
        assert reports[0].total_vectors == first.total_vectors
        assert reports[0].model_used == "fake-model"
        assert reports[0].vector_db == "memvec"
        assert reports[0].tokens_used == first.tokens_used > 0

    async def test_point_ids_are_deterministic(self, embedding_service, document_service, collection, vector_client, text_document_bytes):
        """Point ids derive from document and chunk index."""
        document = await _upload(document_service, text_document_bytes)
        await embedding_service.embed_document(document.id, collection.id, chunk_config=SlidingWindowConfig(size=200, overlap=0))
        ids = {p.id for p in vector_client.points("docs")}
        assert make_chunk_point_id(document.id, 0) in ids

    async def test_fewer_chunks_remove_stale_points(self, embedding_service, document_service, collection, vector_client, text_document_bytes):
        """Re-embedding with larger chunks leaves no higher chunk indexes behind."""
        document = await _upload(document_service, text_document_bytes)
        small = await embedding_service.embed_document(document.id, collection.id, chunk_config=SlidingWindowConfig(size=50, overlap=0))
        large = await embedding_service.embed_document(document.id, collection.id, chunk_config=SlidingWindowConfig(size=400, overlap=0))
        points = vector_client.points("docs", {"document_id": str(document.id)})
        assert small.total_vectors > large.total_vectors
        assert sorted(p.payload["chunk_index"] for p in points) == list(range(large.total_vectors))

    async def test_concurrent_same_pair_joins(self, embedding_service, document_service, collection, embed_client, text_document_bytes):
        """Two requests for the same pair share one job."""
        document = await _upload(document_service, text_document_bytes)
        embed_client.delay = 0.05
        first, second = await asyncio.gather(
            embedding_service.embed_document(document.id, collection.id),
            embedding_service.embed_document(document.id, collection.id),
        )
        assert first.job.id == second.job.id
        assert len(embed_client.calls) == 1

    async def test_new_config_waits_for_running_job(
        self, embedding_service, document_service, collection, embed_client, vector_client, entity_store, text_document_bytes
    ):
        """A request with other configs runs its own job after the running one."""
        document = await _upload(document_service, text_document_bytes)
        embed_client.delay = 0.05
        small_task = asyncio.create_task(
            embedding_service.embed_document(document.id, collection.id, chunk_config=SlidingWindowConfig(size=50, overlap=0))
        )
        while not embed_client.calls:
            await asyncio.sleep(0.01)

        large = await embedding_service.embed_document(document.id, collection.id, chunk_config=SlidingWindowConfig(size=400, overlap=0))
        small = await small_task

        assert large.job.id != small.job.id
        assert small.total_vectors > large.total_vectors
        assert len(vector_client.points("docs", {"document_id": str(document.id)})) == large.total_vectors
        stored = await entity_store.get_chunk_config(document.id, collection.id)
        assert stored.size == 400

    async def test_same_config_joins(self, embedding_service, document_service, collection, embed_client, text_document_bytes):
        """Requests bringing identical configs share one job."""
        document = await _upload(document_service, text_document_bytes)
        embed_client.delay = 0.05
        config = SlidingWindowConfig(size=200, overlap=0)
        first, second = await asyncio.gather(
            embedding_service.embed_document(document.id, collection.id, chunk_config=config),
            embedding_service.embed_document(document.id, collection.id, chunk_config=config),
        )
        assert first.job.id == second.job.id

    async def test_same_model_in_two_collections_embeds_once(
        self, embedding_service, document_service, collection_service, embed_client, text_document_bytes
    ):
        """Concurrent jobs on two collections with the same model share the computation."""
        document = await _upload(document_service, text_document_bytes)
        first_collection = await collection_service.create("first", embedder="fake", provider="memvec")
        second_collection = await collection_service.create("second", embedder="fake", provider="memvec")
        embed_client.delay = 0.05
        results = await asyncio.gather(
            embedding_service.embed_document(document.id, first_collection.id),
            embedding_service.embed_document(document.id, second_collection.id),
        )
        assert len(embed_client.calls) == 1
        assert sorted(r.cache for r in results) == [False, True]

    async def test_retries_transient_errors(self, embedding_service, document_service, collection, embed_client, text_document_bytes):
        """Rate limits and outages are retried until the provider answers."""
        document = await _upload(document_service, text_document_bytes)
        embed_client.fail_with = [RateLimitedError("slow down", retry_after=0), ProviderUnavailableError("down")]
        result = await embedding_service.embed_document(document.id, collection.id)
        assert result.job.state == JobState.DONE
        assert len(embed_client.calls) == 3

    async def test_invalid_response_fails_job(
        self, embedding_service, document_service, collection, embed_client, vector_client, entity_store, text_document_bytes
    ):
        """Non-retryable provider errors fail the job at the embedding stage without a report."""
        document = await _upload(document_service, text_document_bytes)
        embed_client.fail_with = [InvalidResponseError("garbage")]
        with pytest.raises(InvalidResponseError) as e:
            await embedding_service.embed_document(document.id, collection.id)
        assert e.value.stage == "embedding"
        assert len(embed_client.calls) == 1
        assert await entity_store.list_embedding_reports(document_id=document.id) == []
        assert vector_client.points("docs") == []
        job = embedding_service.registry.get_last_job(JobKind.EMBED_TEXT, (document.id, collection.id))
        assert job.state == JobState.FAILED
        assert job.error["error"] == "InvalidResponseError"

    async def test_dimension_mismatch_fails_at_storing(self, embedding_service, document_service, collection, embed_client, text_document_bytes):
        """Vectors of the wrong size never reach the collection."""
        document = await _upload(document_service, text_document_bytes)
        embed_client.dimensions = 4
        with pytest.raises(DimensionMismatchError) as e:
            await embedding_service.embed_document(document.id, collection.id)
        assert e.value.stage == "storing"

    async def test_range_out_of_bounds_fails_at_parsing(self, embedding_service, document_service, collection, embed_client, text_document_bytes):
        """A parse range past the document end fails before any embedding."""
        document = await _upload(document_service, text_document_bytes)
        with pytest.raises(RangeOutOfBoundsError) as e:
            await embedding_service.embed_document(document.id, collection.id, parse_config=ParseConfig(start=40))
        assert e.value.stage == "parsing"
        assert embed_client.calls == []

    async def test_unknown_pair(self, embedding_service, collection):
        """Configs for a missing document are rejected without writing anything."""
        with pytest.raises(NotFoundError):
            await embedding_service.embed_document(uuid.uuid4(), collection.id, parse_config=ParseConfig())

    async def test_semantic_chunking_uses_collection_model(self, embedding_service, document_service, collection, embed_client, text_document_bytes):
        """Semantic chunking embeds sentences with the collection's model through the cache."""
        document = await _upload(document_service, text_document_bytes)
        config = SemanticWindowConfig(similarity_threshold=0.5, min_size=10, max_size=400)
        result = await embedding_service.embed_document(document.id, collection.id, chunk_config=config)
        assert result.total_vectors >= 1
        assert len(embed_client.calls) >= 1


class TestRemoveDocument:
    """Tests for EmbeddingService.remove_document."""

    async def test_remove_keeps_cache(self, embedding_service, document_service, collection, embed_client, vector_client, entity_store, text_document_bytes):
        """Removal deletes the vectors and writes a report; re-embedding is a cache hit."""
        document = await _upload(document_service, text_document_bytes)
        await embedding_service.embed_document(document.id, collection.id)
        removed = await embedding_service.remove_document(document.id, collection.id)

        assert removed.job.get_states() == [JobState.PENDING, JobState.DELETING, JobState.REMOVED]
        assert vector_client.points("docs", {"document_id": str(document.id)}) == []
        removals = await entity_store.list_removal_reports(document_id=document.id)
        assert len(removals) == 1 and removals[0].type == "text"
        assert await entity_store.get_embedded_collection_ids(document.id) == []

        calls = len(embed_client.calls)
        again = await embedding_service.embed_document(document.id, collection.id)
        assert again.cache is True
        assert len(embed_client.calls) == calls

    async def test_remove_leaves_other_documents(self, embedding_service, document_service, collection, vector_client, text_document_bytes):
        """Only the vectors of the removed document go."""
        first = await _upload(document_service, text_document_bytes, "first.txt")
        second = await _upload(document_service, text_document_bytes + b"\n\nExtra.", "second.txt")
        await embedding_service.embed_document(first.id, collection.id)
        await embedding_service.embed_document(second.id, collection.id)
        await embedding_service.remove_document(first.id, collection.id)
        assert vector_client.points("docs", {"document_id": str(first.id)}) == []
        assert vector_client.points("docs", {"document_id": str(second.id)}) != []
