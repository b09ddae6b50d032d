import asyncio
from typing import Any

import httpx
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.embed.models.EmbeddingModel import EmbeddingModel
from shared.clients.embed.models.EmbeddingResult import EmbeddingResult
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.errors import AcceleratorUnavailableError, ProviderUnavailableError

CPU_DEVICE = "cpu"


class EmbedClientLocal(EmbedClientInterface):
    """On-device inference with sentence-transformers.

    The configured device (EMBED_LOCAL_DEVICE, default "cuda") is tried first.
    When the accelerator cannot be used the client switches to the CPU for the
    rest of its lifetime and the request still succeeds.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._device = self.get_config_val("DEVICE", default="cuda", val_type="string").lower()
        self._cache_dir = self.get_config_val("CACHE_DIR", default="", val_type="string") or None
        self._models: dict[str, Any] = {}
        self._lock = asyncio.Lock()

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Local"

    def _get_default_model(self) -> str:
        return "sentence-transformers/all-MiniLM-L6-v2"

    def _get_known_models(self) -> list[EmbeddingModel]:
        return [
            EmbeddingModel(name=name, size=model.get_sentence_embedding_dimension(), provider=self.get_engine_name())
            for name, model in self._models.items()
        ]

    def get_device(self) -> str:
        """
        Returns the device inference currently runs on.
        """
        return self._device

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="DEVICE", val_type="string", default="cuda"),
            EnvConfig(env_key="CACHE_DIR", val_type="string", default=""),
        ]

    ##########################################
    ############### INFERENCE ################
    ##########################################

    def _check_accelerator(self, device: str) -> None:
        if device == CPU_DEVICE:
            return
        import torch

        if device.startswith("cuda") and not torch.cuda.is_available():
            raise AcceleratorUnavailableError(f"CUDA device '{device}' is not available.")
        if device == "mps" and not torch.backends.mps.is_available():
            raise AcceleratorUnavailableError("MPS device is not available.")

    def _load_model(self, model: str, device: str) -> Any:
        from sentence_transformers import SentenceTransformer

        self._check_accelerator(device)
        try:
            return SentenceTransformer(model, device=device, cache_folder=self._cache_dir)
        except (RuntimeError, AssertionError) as e:
            if device != CPU_DEVICE:
                raise AcceleratorUnavailableError(f"Could not load '{model}' on '{device}': {e}") from e
            raise ProviderUnavailableError(f"Could not load local model '{model}': {e}") from e

    def _encode(self, model: str, texts: list[str]) -> list[list[float]]:
        instance = self._models.get(model)
        if instance is None:
            instance = self._load_model(model, self._device)
            self._models[model] = instance
        try:
            vectors = instance.encode(texts, batch_size=self.embed_batch_size, convert_to_numpy=True)
        except RuntimeError as e:
            if self._device != CPU_DEVICE:
                raise AcceleratorUnavailableError(f"Inference on '{self._device}' failed: {e}") from e
            raise
        return [vector.tolist() for vector in vectors]

    async def _run(self, model: str, texts: list[str]) -> list[list[float]]:
        async with self._lock:
            try:
                return await asyncio.to_thread(self._encode, model, texts)
            except AcceleratorUnavailableError as e:
                self.logging.warning("%s Falling back to CPU for local embeddings.", e.message)
                self._device = CPU_DEVICE
                self._models.clear()
                return await asyncio.to_thread(self._encode, model, texts)

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        # model weights are loaded lazily on first use
        return None

    async def close(self) -> None:
        self._models.clear()

    async def do_healthcheck(self) -> None:
        await self._run(self.embed_model, ["healthcheck"])

    async def do_list_models(self) -> list[EmbeddingModel]:
        return self._get_known_models()

    async def do_fetch_dimensions(self, model: str | None = None) -> int:
        model = model or self.embed_model
        if model not in self._models:
            await self._run(model, ["dimension check"])
        return self._models[model].get_sentence_embedding_dimension()

    async def do_embed(self, texts: list[str] | str, model: str | None = None) -> EmbeddingResult:
        texts = [texts] if isinstance(texts, str) else texts
        model = model or self.embed_model
        vectors = await self._run(model, texts)
        self.logging.debug("Embedded %d text(s) locally with '%s' on %s", len(texts), model, self._device)
        return EmbeddingResult(vectors=vectors, tokens_used=None)
