"""Collection lifecycle and similarity search."""

import re
import uuid

from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.vector.VectorClientManager import VectorClientManager
from shared.clients.vector.models.QueryMatch import QueryMatch
from shared.db.EntityStore import EntityStore
from shared.db.models import CollectionRecord
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperRetry import HelperRetry
from shared.models.errors import CollectionNotFoundError, ConflictError, DimensionMismatchError, InvalidConfigError

_COLLECTION_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,127}$")


class CollectionService:
    def __init__(
        self,
        helper_config: HelperConfig,
        entity_store: EntityStore,
        embed_manager: EmbedClientManager,
        vector_manager: VectorClientManager,
        retry: HelperRetry | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self.entity_store = entity_store
        self.embed_manager = embed_manager
        self.vector_manager = vector_manager
        self.retry = retry or HelperRetry(helper_config)

    async def create(
        self,
        name: str,
        embedder: str,
        provider: str,
        model: str | None = None,
        distance: str = "cosine",
    ) -> CollectionRecord:
        """
        Creates a collection bound to one embedding model.

        The vector size is taken from the model. An existing backend collection
        of the same name is adopted if its size matches.

        Args:
            name: Letters, digits and underscores, starting with a letter.
            embedder: Enabled embedding engine.
            provider: Enabled vector database engine.
            model: Embedding model, defaults to the engine's configured model.
            distance: cosine, dot or euclid.

        Raises:
            InvalidConfigError: On a bad name or a disabled engine.
            ConflictError: If the collection is already registered.
            DimensionMismatchError: If an existing backend collection has another size.
        """
        if not _COLLECTION_NAME.match(name):
            raise InvalidConfigError(
                f"Invalid collection name '{name}'. Use letters, digits and underscores, starting with a letter.",
                details={"name": name},
            )
        embed_client = self.embed_manager.get_client(embedder)
        vector_client = self.vector_manager.get_client(provider)
        model = model or embed_client.get_model_id()
        if await self.entity_store.get_collection_by_name(name, vector_client.get_engine_name()) is not None:
            raise ConflictError(f"Collection '{name}' already exists on {provider}.", details={"name": name})

        dimensions = await self.retry.do_with_retry(
            lambda: embed_client.do_fetch_dimensions(model), f"Fetching dimensions of '{model}'"
        )
        if await self.retry.do_with_retry(lambda: vector_client.do_existence_check(name), f"Checking collection '{name}'"):
            info = await vector_client.do_fetch_collection_info(name)
            if info.size != dimensions:
                raise DimensionMismatchError(
                    f"Existing collection '{name}' has {info.size} dimensions, model '{model}' produces {dimensions}.",
                    details={"collection": name, "expected": info.size, "actual": dimensions},
                )
            self.logging.warning("Collection '%s' already exists on '%s'. Adopting it.", name, provider)
        else:
            await self.retry.do_with_retry(
                lambda: vector_client.do_create_collection(
                    name,
                    dimensions,
                    distance,
                    properties={"embedding_provider": embed_client.get_engine_name(), "embedding_model": model},
                ),
                f"Creating collection '{name}'",
            )
        return await self.entity_store.create_collection(
            name=name, model=model, embedder=embed_client.get_engine_name(), provider=vector_client.get_engine_name()
        )

    async def get(self, collection_id: uuid.UUID) -> CollectionRecord:
        return await self.entity_store.get_collection(collection_id)

    async def list_collections(self) -> list[CollectionRecord]:
        return await self.entity_store.list_collections()

    async def delete(self, collection_id: uuid.UUID) -> None:
        """
        Drops the backend collection and the entity. Configs and image links
        cascade; reports keep their rows with the collection reference nulled.
        """
        collection = await self.entity_store.get_collection(collection_id)
        vector_client = self.vector_manager.get_client(collection.provider)
        try:
            await self.retry.do_with_retry(
                lambda: vector_client.do_drop_collection(collection.name), f"Dropping collection '{collection.name}'"
            )
        except CollectionNotFoundError:
            self.logging.warning("Collection '%s' no longer exists on '%s'", collection.name, collection.provider)
        await self.entity_store.delete_collection(collection_id)

    async def search(
        self,
        collection_id: uuid.UUID,
        query: str,
        top_k: int = 5,
        filter: dict | None = None,
    ) -> list[QueryMatch]:
        """Embeds ``query`` with the collection's model and returns the closest points, best first."""
        collection = await self.entity_store.get_collection(collection_id)
        embed_client = self.embed_manager.get_client(collection.embedder)
        vector_client = self.vector_manager.get_client(collection.provider)
        result = await self.retry.do_with_retry(
            lambda: embed_client.do_embed([query], model=collection.model), f"Embedding query for '{collection.name}'"
        )
        return await self.retry.do_with_retry(
            lambda: vector_client.do_query(collection.name, result.vectors[0], top_k=top_k, filter=filter),
            f"Querying '{collection.name}'",
        )
