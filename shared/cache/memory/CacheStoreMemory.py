from shared.cache.CacheStoreInterface import CacheStoreInterface
from shared.helper.HelperConfig import HelperConfig


class CacheStoreMemory(CacheStoreInterface):
    """Process-local store, lost on restart."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config)
        self._values: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._values.get(key)

    async def put(self, key: str, value: str) -> None:
        self._values[key] = value

    def __len__(self) -> int:
        return len(self._values)
