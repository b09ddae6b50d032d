from shared.clients.embed.EmbedClientOpenaiCompatible import EmbedClientOpenaiCompatible
from shared.clients.embed.models.EmbeddingModel import EmbeddingModel
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig

# (model, vector size)
OPENAI_MODELS = [
    ("text-embedding-3-large", 3072),
    ("text-embedding-3-small", 1536),
    ("text-embedding-ada-002", 1536),
]


class EmbedClientOpenai(EmbedClientOpenaiCompatible):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="https://api.openai.com", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Openai"

    def _get_default_model(self) -> str:
        return "text-embedding-3-small"

    def _get_known_models(self) -> list[EmbeddingModel]:
        return [EmbeddingModel(name=name, size=size, provider=self.get_engine_name()) for name, size in OPENAI_MODELS]

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://api.openai.com"),
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self._api_key}"}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/v1/models"

    def _get_endpoint_embedding(self, model: str) -> str:
        return "/v1/embeddings"
