from shared.helper.HelperConfig import HelperConfig
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.models.errors import InvalidConfigError


class EmbedClientManager:
    """
    Manager class holding every embedding engine enabled in the configuration.

    EMBED_ENGINES lists the enabled engines (e.g. "[openai,vllm]"). Each engine is
    imported from shared.clients.embed.{engine}.EmbedClient{Engine} and validates
    its own configuration on construction, so a bad setup fails at startup.
    """

    def __init__(self, helper_config: HelperConfig, clients: list[EmbedClientInterface] | None = None):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.clients = clients if clients is not None else self._initialize_clients()
        self._by_name = {client.get_engine_name(): client for client in self.clients}

    def _get_engines_from_env(self) -> list[str]:
        """
        Reads the list of embedding engines from ENV configuration.

        Returns:
            list[str]: Capitalized engine names (e.g. ["Openai", "Vllm"]).

        Raises:
            ValueError: If no engine is specified in the configuration.
        """
        engines = self.helper_config.get_list_val("EMBED_ENGINES")
        if not engines:
            raise ValueError("No Embed engines specified in configuration.")
        return [engine.strip().lower().capitalize() for engine in engines]

    def _initialize_clients(self) -> list[EmbedClientInterface]:
        """
        Instantiates one client per configured engine.

        Raises:
            ValueError: If an engine is unknown or its configuration is invalid.
        """
        clients = []
        for engine in self._get_engines_from_env():
            className = f"EmbedClient{engine}"
            try:
                module = __import__(
                    f"shared.clients.embed.{engine.lower()}.{className}",
                    fromlist=[className],
                )
                client_class = getattr(module, className)
            except (ImportError, AttributeError) as e:
                raise ValueError(f"Unsupported Embed engine specified: '{engine}'. Error: {e}")
            clients.append(client_class(helper_config=self.helper_config))
            self.logging.debug("Instantiated Embed client for engine: %s", engine)
        return clients

    def get_clients(self) -> list[EmbedClientInterface]:
        """
        Returns all instantiated embedding clients.
        """
        return self.clients

    def get_client(self, engine: str) -> EmbedClientInterface:
        """
        Returns the client of an enabled engine.

        Raises:
            InvalidConfigError: If the engine is not enabled in this process.
        """
        client = self._by_name.get(engine.lower())
        if client is None:
            raise InvalidConfigError(
                f"Embedding provider '{engine}' is not enabled. Enabled: {sorted(self._by_name)}",
                details={"provider": engine},
            )
        return client
