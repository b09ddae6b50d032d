from shared.clients.embed.EmbedClientRemote import EmbedClientRemote
from shared.clients.embed.models.EmbeddingModel import EmbeddingModel
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.errors import InvalidResponseError


class EmbedClientOllama(EmbedClientRemote):
    """Remote embedding service reached over plain HTTP (Ollama API)."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._model_sizes: dict[str, int] = {}

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Ollama"

    def _get_default_model(self) -> str:
        return "nomic-embed-text"

    def _get_known_models(self) -> list[EmbeddingModel]:
        # sizes are discovered through /api/show
        return [
            EmbeddingModel(name=name, size=size, provider=self.get_engine_name())
            for name, size in self._model_sizes.items()
        ]

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        # root on ollama
        return ""

    def _get_endpoint_models(self) -> str:
        return "/api/tags"

    def _get_endpoint_embedding(self, model: str) -> str:
        return "/api/embed"

    def _get_endpoint_model_details(self) -> str:
        # model name goes into the body
        return "/api/show"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str], model: str) -> dict:
        return {"model": model, "input": texts}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_vector_size_from_model_info(self, model: str, model_info: dict) -> int:
        for key, value in (model_info.get("model_info") or {}).items():
            if key.endswith(".embedding_length"):
                return int(value)
        raise InvalidResponseError(f"Could not determine embedding vector size for model {model}")

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from an Ollama /api/embed response.

        Raises:
            InvalidResponseError: If the response does not contain valid embeddings.
        """
        embeddings = response_data.get("embeddings") if isinstance(response_data, dict) else None
        if not embeddings or any(not vector for vector in embeddings):
            raise InvalidResponseError(
                "Ollama response does not contain valid embeddings.",
                details={"keys": list(response_data.keys()) if isinstance(response_data, dict) else None},
            )
        return embeddings

    def extract_tokens_from_response(self, response_data: dict) -> int | None:
        tokens = response_data.get("prompt_eval_count")
        return int(tokens) if tokens is not None else None

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_list_models(self) -> list[EmbeddingModel]:
        """List pulled models; sizes are known only for models already inspected."""
        response = await self.do_request(method="GET", endpoint=self._get_endpoint_models())
        names = [m.get("name", "").split(":")[0] for m in self._parse_json(response).get("models", [])]
        return [
            EmbeddingModel(name=name, size=self._model_sizes.get(name, 0), provider=self.get_engine_name())
            for name in names if name
        ]

    async def do_fetch_dimensions(self, model: str | None = None) -> int:
        model = model or self.embed_model
        if model not in self._model_sizes:
            response = await self.do_request(
                method="POST",
                json={"name": model},
                endpoint=self._get_endpoint_model_details(),
            )
            self._model_sizes[model] = self.extract_vector_size_from_model_info(model, self._parse_json(response))
        return self._model_sizes[model]
