from sqlalchemy.exc import SQLAlchemyError

from shared.cache.CacheStoreInterface import CacheStoreInterface
from shared.db.EntityStore import EntityStore
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import CacheError


class CacheStoreDatabase(CacheStoreInterface):
    """Stores cache entries in the embedding_cache table of the entity database."""

    def __init__(self, helper_config: HelperConfig, entity_store: EntityStore):
        super().__init__(helper_config)
        self.entity_store = entity_store

    async def get(self, key: str) -> str | None:
        try:
            return await self.entity_store.get_cache_value(key)
        except SQLAlchemyError as e:
            raise CacheError(f"Failed to read cache entry: {e}", details={"key": key}) from e

    async def put(self, key: str, value: str) -> None:
        try:
            await self.entity_store.put_cache_value(key, value)
        except SQLAlchemyError as e:
            raise CacheError(f"Failed to write cache entry: {e}", details={"key": key}) from e
