from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.clients.embed.models.EmbeddingModel import EmbeddingModel
from shared.clients.embed.models.EmbeddingResult import EmbeddingResult
from shared.models.errors import OperationUnsupportedError

from shared.helper.HelperConfig import HelperConfig

DEFAULT_IMAGE_PROMPT = "Represent the image."


class EmbedClientInterface(ClientInterface):
    """Common contract over embedding engines, remote or in-process.

    HTTP engines derive from EmbedClientRemote, which implements do_embed and
    do_embed_image on top of request and response hooks.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model and embedding config
        self.embed_distance = helper_config.get_string_val(f"{self.get_client_type().upper()}_DISTANCE", default="cosine")
        self.embed_batch_size = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_BATCH_SIZE", default=64))
        self.embed_model = self.get_config_val("MODEL", default=self._get_default_model(), val_type="string")
        if self.embed_batch_size < 1:
            raise ValueError("EMBED_BATCH_SIZE must be at least 1.")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "embed"

    def get_model_id(self) -> str:
        """
        Returns the model used when a caller does not name one explicitly.
        """
        return self.embed_model

    @abstractmethod
    def _get_default_model(self) -> str:
        """
        Returns the model name used when EMBED_{ENGINE}_MODEL is not set.
        """
        pass

    @abstractmethod
    def _get_known_models(self) -> list[EmbeddingModel]:
        """
        Returns the models this engine is known to serve, with their vector sizes.

        Engines that discover models at runtime may return an empty list and
        override do_list_models() instead.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_list_models(self) -> list[EmbeddingModel]:
        """List the models this engine serves."""
        return self._get_known_models()

    async def do_fetch_dimensions(self, model: str | None = None) -> int:
        """
        Returns the vector size produced by a model.

        Known models are answered from the model list; anything else is measured
        with a one-word embedding request.

        Raises:
            PipelineError: If the backend cannot be reached or answers garbage.
        """
        model = model or self.embed_model
        for known in await self.do_list_models():
            if known.name == model:
                return known.size
        self.logging.debug("Measuring vector size of unknown model '%s' on '%s'", model, self.get_engine_name())
        sample = await self.do_embed(["dimension check"], model=model)
        return len(sample.vectors[0])

    async def supports_images(self, model: str | None = None) -> bool:
        """Whether the given model accepts image input."""
        model = model or self.embed_model
        return any(m.name == model and m.multimodal for m in await self.do_list_models())

    @abstractmethod
    async def do_embed(self, texts: list[str] | str, model: str | None = None) -> EmbeddingResult:
        """Embed texts and return the vectors in input order.

        Args:
            texts (list[str] | str): One or more texts to embed.
            model (str | None): Model to use, defaults to the configured model.

        Returns:
            EmbeddingResult: One vector per input text plus the reported token usage.
        """
        pass

    async def do_embed_image(self, image_b64: str, mime_type: str, text: str | None = None, model: str | None = None, system: str | None = None) -> EmbeddingResult:
        """Embed exactly one image, optionally conditioned on a text description.

        Raises:
            OperationUnsupportedError: If the engine has no multimodal support.
        """
        model = model or self.embed_model
        raise OperationUnsupportedError(
            f"Embedding engine '{self.get_engine_name()}' does not support multimodal embeddings.",
            details={"engine": self.get_engine_name(), "model": model},
        )
