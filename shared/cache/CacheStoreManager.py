from shared.cache.CacheStoreInterface import CacheStoreInterface
from shared.db.EntityStore import EntityStore
from shared.helper.HelperConfig import HelperConfig


class CacheStoreManager:
    """
    Resolves the cache backing store named by CACHE_ENGINE ("memory" or "database").
    """

    def __init__(self, helper_config: HelperConfig, entity_store: EntityStore | None = None):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.entity_store = entity_store
        self.store = self._initialize_store()

    def _initialize_store(self) -> CacheStoreInterface:
        """
        Raises:
            ValueError: If the engine is unknown or needs an entity store that was not given.
        """
        engine = self.helper_config.get_string_val("CACHE_ENGINE", default="memory").strip().lower().capitalize()
        className = f"CacheStore{engine}"
        try:
            module = __import__(f"shared.cache.{engine.lower()}.{className}", fromlist=[className])
            store_class = getattr(module, className)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported cache engine specified: '{engine}'. Error: {e}")
        if engine == "Database":
            if self.entity_store is None:
                raise ValueError("CACHE_ENGINE=database requires the entity store.")
            store = store_class(helper_config=self.helper_config, entity_store=self.entity_store)
        else:
            store = store_class(helper_config=self.helper_config)
        self.logging.debug("Using cache store: %s", store.get_engine_name())
        return store

    def get_store(self) -> CacheStoreInterface:
        return self.store
