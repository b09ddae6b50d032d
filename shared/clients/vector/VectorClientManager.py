from shared.helper.HelperConfig import HelperConfig
from shared.clients.vector.VectorClientInterface import VectorClientInterface
from shared.models.errors import InvalidConfigError


class VectorClientManager:
    """
    Manager class to handle multiple vector database clients based on configuration.

    VECTOR_ENGINES lists the enabled backends (e.g. "[qdrant,weaviate]").
    """

    def __init__(self, helper_config: HelperConfig, clients: list[VectorClientInterface] | None = None):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.clients = clients if clients is not None else self._initialize_clients()
        self._by_name = {client.get_engine_name(): client for client in self.clients}

    def _get_engines_from_env(self) -> list[str]:
        """
        Reads the list of vector engines from ENV configuration.

        Raises:
            ValueError: If no vector engines are specified in the configuration.
        """
        engines = self.helper_config.get_list_val("VECTOR_ENGINES")
        if not engines:
            raise ValueError("No Vector engines specified in configuration.")
        return [engine.strip().lower().capitalize() for engine in engines]

    def _initialize_clients(self) -> list[VectorClientInterface]:
        """
        Initializes vector clients based on the engines specified in the configuration.

        Raises:
            ValueError: If an engine is unsupported or no client could be instantiated.
        """
        clients = []
        for engine in self._get_engines_from_env():
            className = f"VectorClient{engine}"
            try:
                module = __import__(
                    f"shared.clients.vector.{engine.lower()}.{className}",
                    fromlist=[className],
                )
                client_class = getattr(module, className)
            except (ImportError, AttributeError) as e:
                raise ValueError(f"Unsupported Vector engine specified: '{engine}'. Error: {e}")
            clients.append(client_class(helper_config=self.helper_config))
            self.logging.debug("Instantiated Vector client for engine: %s", engine)
        if not clients:
            raise ValueError("No valid Vector clients could be instantiated from the specified engines.")
        return clients

    def get_clients(self) -> list[VectorClientInterface]:
        """
        Returns the list of instantiated vector clients.
        """
        return self.clients

    def get_client(self, engine: str) -> VectorClientInterface:
        """
        Returns the client of an enabled backend.

        Raises:
            InvalidConfigError: If the backend is not enabled in this process.
        """
        client = self._by_name.get(engine.lower())
        if client is None:
            raise InvalidConfigError(
                f"Vector database '{engine}' is not enabled. Enabled: {sorted(self._by_name)}",
                details={"vector_db": engine},
            )
        return client
