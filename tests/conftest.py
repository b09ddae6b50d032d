"""Shared fixtures: in-process fake providers, temp SQLite entity store and temp blob store."""

import asyncio
import hashlib
import logging
import math

import pytest

from services.collections.CollectionService import CollectionService
from services.documents.DocumentService import DocumentService
from services.embedding.EmbeddingService import EmbeddingService
from services.images.ImagePipeline import ImagePipeline
from shared.cache.EmbeddingCache import EmbeddingCache
from shared.cache.memory.CacheStoreMemory import CacheStoreMemory
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.embed.models.EmbeddingResult import EmbeddingResult
from shared.clients.vector.VectorClientManager import VectorClientManager
from shared.clients.vector.models.CollectionInfo import CollectionInfo, DistanceMetric
from shared.clients.vector.models.QueryMatch import QueryMatch
from shared.clients.vector.models.VectorPoint import VectorPoint
from shared.db.Database import Database
from shared.db.EntityStore import EntityStore
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperRetry import HelperRetry
from shared.logging.logging_setup import ColorLogger
from shared.models.errors import CollectionNotFoundError, DimensionMismatchError
from shared.parsers.ParserManager import ParserManager
from shared.storage.filesystem.BlobStoreFilesystem import BlobStoreFilesystem


class FakeEmbedClient:
    """Deterministic embedder recording every call."""

    def __init__(self, engine: str = "fake", model: str = "fake-model", dimensions: int = 8, multimodal: bool = True):
        self.engine = engine
        self.model = model
        self.dimensions = dimensions
        self.multimodal = multimodal
        self.calls: list[list[str]] = []
        self.image_calls: list[tuple[str, str, str | None]] = []
        self.fail_with: list[Exception] = []
        self.delay = 0.0

    def get_engine_name(self) -> str:
        return self.engine

    def get_client_type(self) -> str:
        return "embed"

    def get_model_id(self) -> str:
        return self.model

    async def boot(self, transport=None) -> None:
        pass

    async def close(self) -> None:
        pass

    async def do_healthcheck(self) -> None:
        pass

    async def do_fetch_dimensions(self, model: str | None = None) -> int:
        return self.dimensions

    async def supports_images(self, model: str | None = None) -> bool:
        return self.multimodal

    def vector_for(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [digest[i % len(digest)] / 255 + 0.01 for i in range(self.dimensions)]

    async def do_embed(self, texts, model: str | None = None) -> EmbeddingResult:
        texts = [texts] if isinstance(texts, str) else list(texts)
        self.calls.append(texts)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with:
            raise self.fail_with.pop(0)
        return EmbeddingResult(vectors=[self.vector_for(t) for t in texts], tokens_used=sum(len(t.split()) for t in texts))

    async def do_embed_image(self, image_b64, mime_type, text=None, model=None, system=None) -> EmbeddingResult:
        self.image_calls.append((image_b64, mime_type, text))
        if self.fail_with:
            raise self.fail_with.pop(0)
        return EmbeddingResult(vectors=[self.vector_for(image_b64 + (text or ""))], tokens_used=1)


class FakeVectorClient:
    """In-memory vector database with the client contract of the real backends."""

    def __init__(self, engine: str = "memvec"):
        self.engine = engine
        self.collections: dict[str, dict] = {}
        self.upsert_calls = 0

    def get_engine_name(self) -> str:
        return self.engine

    def get_client_type(self) -> str:
        return "vector"

    async def boot(self, transport=None) -> None:
        pass

    async def close(self) -> None:
        pass

    async def do_healthcheck(self) -> None:
        pass

    def _get(self, name: str) -> dict:
        if name not in self.collections:
            raise CollectionNotFoundError(f"Collection '{name}' not found.")
        return self.collections[name]

    @staticmethod
    def _matches(payload: dict, filter: dict | None) -> bool:
        return all(payload.get(key) == value for key, value in (filter or {}).items())

    def points(self, name: str, filter: dict | None = None) -> list[VectorPoint]:
        return [p for p in self._get(name)["points"].values() if self._matches(p.payload, filter)]

    async def do_existence_check(self, name: str) -> bool:
        return name in self.collections

    async def do_create_collection(self, name, dimensions, distance="cosine", properties=None) -> None:
        self.collections[name] = {"size": dimensions, "properties": properties or {}, "points": {}}

    async def do_fetch_collection_info(self, name: str) -> CollectionInfo:
        collection = self._get(name)
        return CollectionInfo(name=name, size=collection["size"], distance=DistanceMetric.COSINE, properties=collection["properties"])

    async def do_drop_collection(self, name: str) -> None:
        self._get(name)
        del self.collections[name]

    async def do_upsert_points(self, name: str, points: list[VectorPoint]) -> int:
        collection = self._get(name)
        for point in points:
            if len(point.vector) != collection["size"]:
                raise DimensionMismatchError(f"Vector of length {len(point.vector)} does not fit '{name}'.")
        self.upsert_calls += 1
        for point in points:
            collection["points"][point.id] = point
        return len(points)

    async def do_query(self, name: str, vector: list[float], top_k: int = 5, filter: dict | None = None) -> list[QueryMatch]:
        def similarity(other: list[float]) -> float:
            dot = sum(a * b for a, b in zip(vector, other))
            return dot / (math.sqrt(sum(a * a for a in vector)) * math.sqrt(sum(b * b for b in other)))

        matches = [QueryMatch(id=p.id, score=similarity(p.vector), payload=p.payload) for p in self.points(name, filter)]
        return sorted(matches, key=lambda m: m.score, reverse=True)[:top_k]

    async def do_delete_points(self, name: str, ids: list[str]) -> None:
        collection = self._get(name)
        for point_id in ids:
            collection["points"].pop(point_id, None)

    async def do_delete_points_by_filter(self, name: str, filter: dict) -> None:
        collection = self._get(name)
        for point in self.points(name, filter):
            del collection["points"][point.id]

    async def do_count(self, name: str, filter: dict | None = None) -> int:
        return len(self.points(name, filter))


@pytest.fixture(autouse=True)
def env(monkeypatch, tmp_path):
    """Isolated environment with instant retries."""
    monkeypatch.setenv("ROOT_DIR", str(tmp_path))
    monkeypatch.setenv("RETRY_BASE_DELAY", "0.0")
    monkeypatch.setenv("RETRY_MAX_DELAY", "0.0")
    for key in ("CACHE_ENGINE", "PARSER_ENGINES", "EMBED_ENGINES", "VECTOR_ENGINES", "IMAGE_WORKERS", "DATABASE_URL", "BLOB_ROOT"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def helper_config():
    return HelperConfig(logger=ColorLogger(logging.getLogger("rag_pipeline.tests")))


@pytest.fixture
async def database(helper_config, tmp_path):
    db = Database(helper_config, url=f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}")
    await db.boot()
    yield db
    await db.close()


@pytest.fixture
def entity_store(helper_config, database):
    return EntityStore(helper_config, database)


@pytest.fixture
def blob_store(helper_config, tmp_path):
    return BlobStoreFilesystem(helper_config, root=str(tmp_path / "blobs"))


@pytest.fixture
def parser_manager(helper_config):
    return ParserManager(helper_config)


@pytest.fixture
def embed_client():
    return FakeEmbedClient()


@pytest.fixture
def vector_client():
    return FakeVectorClient()


@pytest.fixture
def embed_manager(helper_config, embed_client):
    return EmbedClientManager(helper_config, clients=[embed_client])


@pytest.fixture
def vector_manager(helper_config, vector_client):
    return VectorClientManager(helper_config, clients=[vector_client])


@pytest.fixture
def cache_store(helper_config):
    return CacheStoreMemory(helper_config)


@pytest.fixture
def cache(helper_config, cache_store):
    return EmbeddingCache(helper_config, cache_store)


@pytest.fixture
def retry(helper_config):
    return HelperRetry(helper_config)


@pytest.fixture
def embedding_service(helper_config, entity_store, blob_store, parser_manager, embed_manager, vector_manager, cache, retry):
    return EmbeddingService(
        helper_config=helper_config,
        entity_store=entity_store,
        blob_store=blob_store,
        parser_manager=parser_manager,
        embed_manager=embed_manager,
        vector_manager=vector_manager,
        cache=cache,
        retry=retry,
    )


@pytest.fixture
def image_pipeline(helper_config, entity_store, blob_store, parser_manager):
    return ImagePipeline(helper_config, entity_store, blob_store, parser_manager, workers=2)


@pytest.fixture
def document_service(helper_config, entity_store, blob_store, parser_manager, embedding_service, image_pipeline):
    return DocumentService(helper_config, entity_store, blob_store, parser_manager, embedding_service, image_pipeline)


@pytest.fixture
def collection_service(helper_config, entity_store, embed_manager, vector_manager, retry):
    return CollectionService(helper_config, entity_store, embed_manager, vector_manager, retry)


@pytest.fixture
async def collection(collection_service):
    return await collection_service.create("docs", embedder="fake", provider="memvec")


PARAGRAPHS = [
    "The first paragraph introduces the topic and explains why it matters to readers.",
    "A second paragraph goes into the details of the method and its assumptions.",
    "The third paragraph shows results with numbers, tables and short remarks.",
    "Paragraph four discusses limitations and what could be improved next time.",
    "The fifth paragraph is outside of the configured range in most tests.",
    "Finally the sixth paragraph closes the document with a short summary.",
]


@pytest.fixture
def text_document_bytes() -> bytes:
    return "\n\n".join(PARAGRAPHS).encode("utf-8")
