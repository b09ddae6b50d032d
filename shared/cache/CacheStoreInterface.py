from abc import ABC, abstractmethod

from shared.helper.HelperConfig import HelperConfig


class CacheStoreInterface(ABC):
    """
    Backing key-value store of the embedding cache.

    Stores only hold opaque string values. TTL and eviction, if any, belong to
    the concrete store.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()

    def get_engine_name(self) -> str:
        return self.__class__.__name__.replace("CacheStore", "").lower()

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """
        Returns the stored value or None on a miss.

        Raises:
            CacheError: If the store cannot be read.
        """
        pass

    @abstractmethod
    async def put(self, key: str, value: str) -> None:
        """
        Stores a value, replacing any previous one.

        Raises:
            CacheError: If the store cannot be written.
        """
        pass
