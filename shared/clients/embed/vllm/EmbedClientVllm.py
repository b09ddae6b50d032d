from shared.clients.embed.EmbedClientInterface import DEFAULT_IMAGE_PROMPT
from shared.clients.embed.EmbedClientOpenaiCompatible import EmbedClientOpenaiCompatible
from shared.clients.embed.models.EmbeddingModel import EmbeddingModel
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class EmbedClientVllm(EmbedClientOpenaiCompatible):
    """vLLM served embedding models, routed per model as ``{base_url}/{model}/v1/embeddings``.

    The multimodal model embeds images through a chat template: one user
    message carrying the image and a conditioning text. The backend accepts a
    single image per request.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._model_size = int(self.get_config_val("MODEL_SIZE", default=1536, val_type="number"))
        self._multimodal = self.get_config_val("MULTIMODAL", default=True, val_type="bool")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Vllm"

    def _get_default_model(self) -> str:
        return "qwen2-dse"

    def _get_known_models(self) -> list[EmbeddingModel]:
        return [
            EmbeddingModel(
                name=self.embed_model,
                size=self._model_size,
                provider=self.get_engine_name(),
                multimodal=self._multimodal,
            )
        ]

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="MODEL_SIZE", val_type="number", default=1536),
            EnvConfig(env_key="MULTIMODAL", val_type="bool", default=True),
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
        return f"/{self.embed_model}/health"

    def _get_endpoint_embedding(self, model: str) -> str:
        return f"/{model}/v1/embeddings"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str], model: str) -> dict:
        return {"model": model, "input": texts, "encoding_format": "float"}

    def get_image_payload(self, image_url: str, text: str | None, model: str, system: str | None = None) -> dict:
        """Build the chat-template request for one image.

        Returns:
            dict: {"model": ..., "messages": [system?, user(image_url, text)], "encoding_format": "float"}
        """
        if not self._multimodal:
            return super().get_image_payload(image_url, text, model, system)
        messages: list[dict] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({
            "role": "user",
            "content": [
                {"type": "image_url", "image_url": {"url": image_url}},
                {"type": "text", "text": text or DEFAULT_IMAGE_PROMPT},
            ],
        })
        return {"model": model, "messages": messages, "encoding_format": "float"}
