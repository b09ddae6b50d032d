from shared.clients.embed.EmbedClientOpenaiCompatible import EmbedClientOpenaiCompatible
from shared.clients.embed.models.EmbeddingModel import EmbeddingModel
from shared.clients.embed.openai.EmbedClientOpenai import OPENAI_MODELS
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class EmbedClientAzure(EmbedClientOpenaiCompatible):
    """Azure OpenAI embeddings.

    Azure addresses models through deployments, so the model name doubles as the
    deployment name in the URL. Every request carries the configured api-version.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")
        self._api_version = self.get_config_val("API_VERSION", default="2024-10-21", val_type="string")
        self._deployments = self.get_config_val("DEPLOYMENTS", default=[], val_type="list")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Azure"

    def _get_default_model(self) -> str:
        return "text-embedding-3-small"

    def _get_known_models(self) -> list[EmbeddingModel]:
        models = [EmbeddingModel(name=name, size=size, provider=self.get_engine_name()) for name, size in OPENAI_MODELS]
        if self._deployments:
            # only what has actually been deployed
            models = [m for m in models if m.name in self._deployments]
        return models

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
            EnvConfig(env_key="API_VERSION", val_type="string", default="2024-10-21"),
            EnvConfig(env_key="DEPLOYMENTS", val_type="list", default=[]),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"api-key": self._api_key}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/openai/models"

    def _get_endpoint_embedding(self, model: str) -> str:
        return f"/openai/deployments/{model}/embeddings"

    def _get_params_embedding(self) -> dict | None:
        return {"api-version": self._api_version}

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str], model: str) -> dict:
        # the deployment in the URL selects the model
        return {"input": texts, "encoding_format": "float"}

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_healthcheck(self):
        # azure rejects every data plane call without an api-version
        return await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_healthcheck(),
            params={"api-version": self._api_version},
        )
