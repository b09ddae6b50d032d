"""Tests for the collection service."""

import pytest

from shared.models.chunking import SlidingWindowConfig
from shared.models.errors import ConflictError, DimensionMismatchError, InvalidConfigError


class TestCreate:
    """Tests for CollectionService.create."""

    async def test_create(self, collection_service, vector_client):
        """The backend collection gets the model's size and metadata."""
        collection = await collection_service.create("docs", embedder="fake", provider="memvec")
        assert collection.model == "fake-model"
        assert vector_client.collections["docs"]["size"] == 8
        assert vector_client.collections["docs"]["properties"] == {"embedding_provider": "fake", "embedding_model": "fake-model"}

    @pytest.mark.parametrize("name", ["", "1docs", "my-docs", "a" * 200])
    async def test_invalid_name(self, collection_service, name):
        """Names must start with a letter and hold only letters, digits and underscores."""
        with pytest.raises(InvalidConfigError):
            await collection_service.create(name, embedder="fake", provider="memvec")

    async def test_disabled_engine(self, collection_service):
        """Unknown embedders are a config error."""
        with pytest.raises(InvalidConfigError):
            await collection_service.create("docs", embedder="openai", provider="memvec")

    async def test_duplicate(self, collection_service, collection):
        with pytest.raises(ConflictError):
            await collection_service.create("docs", embedder="fake", provider="memvec")

    async def test_adopts_matching_backend_collection(self, collection_service, vector_client):
        """An existing backend collection with the right size is reused."""
        await vector_client.do_create_collection("legacy", 8)
        collection = await collection_service.create("legacy", embedder="fake", provider="memvec")
        assert collection.name == "legacy"

    async def test_rejects_mismatching_backend_collection(self, collection_service, vector_client, entity_store):
        """An existing backend collection with another size is not adopted."""
        await vector_client.do_create_collection("legacy", 4)
        with pytest.raises(DimensionMismatchError):
            await collection_service.create("legacy", embedder="fake", provider="memvec")
        assert await entity_store.list_collections() == []


class TestDeleteAndSearch:
    """Tests for CollectionService.delete and search."""

    async def test_delete(self, collection_service, collection, vector_client):
        """Deleting drops the backend collection and the entity."""
        await collection_service.delete(collection.id)
        assert "docs" not in vector_client.collections
        assert await collection_service.list_collections() == []

    async def test_delete_when_backend_is_gone(self, collection_service, collection, vector_client):
        """A collection already missing in the backend is still removed from the store."""
        del vector_client.collections["docs"]
        await collection_service.delete(collection.id)
        assert await collection_service.list_collections() == []

    async def test_search_ranks_matching_chunk_first(self, collection_service, embedding_service, document_service, collection, text_document_bytes):
        """Querying with a chunk's text returns that chunk first."""
        document = await document_service.upload("a.txt", text_document_bytes)
        await embedding_service.embed_document(document.id, collection.id, chunk_config=SlidingWindowConfig(size=120, overlap=0))
        previews = await document_service.preview_chunks(document.id, collection.id)
        target = previews[2].text

        matches = await collection_service.search(collection.id, target, top_k=3)

        assert len(matches) == 3
        assert matches[0].payload["chunk_text"] == target
        assert matches[0].score == pytest.approx(1.0)
        assert [m.score for m in matches] == sorted((m.score for m in matches), reverse=True)
