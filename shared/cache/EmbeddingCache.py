"""
Content-addressed embedding cache with single-flight computation.

Keys are "{namespace}:{model}:{sha256}". Entries record the model that produced
them and are never returned for a different model.
"""

import hashlib
import json
from typing import Awaitable, Callable

from pydantic import BaseModel

from shared.cache.CacheStoreInterface import CacheStoreInterface
from shared.cache.SingleFlight import SingleFlight
from shared.clients.embed.models.EmbeddingResult import EmbeddingResult
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import CacheError, InvalidResponseError

TEXT_NAMESPACE = "text"
IMAGE_NAMESPACE = "image"

BatchEmbedFn = Callable[[list[str]], Awaitable[EmbeddingResult]]
SingleEmbedFn = Callable[[], Awaitable[EmbeddingResult]]


class CacheResult(BaseModel):
    """
    Vectors returned by the cache, in input order.

    Attributes:
        vectors:     One vector per input.
        computed:    Number of distinct inputs this call had to embed itself.
        tokens_used: Tokens reported by the provider for the computed inputs.
    """

    vectors: list[list[float]]
    computed: int = 0
    tokens_used: int | None = None

    @property
    def all_hit(self) -> bool:
        return self.computed == 0


def get_content_hash(content: str | bytes) -> str:
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


class EmbeddingCache:
    def __init__(self, helper_config: HelperConfig, store: CacheStoreInterface):
        self.logging = helper_config.get_logger()
        self.store = store
        self.single_flight: SingleFlight[list[float]] = SingleFlight()

    ##########################################
    ################ GETTER ##################
    ##########################################

    @staticmethod
    def get_key(namespace: str, model: str, content_hash: str) -> str:
        return f"{namespace}:{model}:{content_hash}"

    @staticmethod
    def get_image_content_hash(image_hash: str, description: str | None) -> str:
        # the description changes the resulting vector
        return get_content_hash(f"{image_hash}\x00{description or ''}")

    async def _read(self, key: str, model: str) -> list[float] | None:
        try:
            raw = await self.store.get(key)
        except CacheError as e:
            self.logging.warning("Cache read failed for %s, treating as miss: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
            entry_model, vector = entry["model"], entry["vector"]
        except (ValueError, KeyError, TypeError) as e:
            self.logging.warning("Discarding malformed cache entry %s: %s", key, e)
            return None
        if entry_model != model:
            self.logging.warning("Cache entry %s belongs to model '%s', not '%s'. Ignoring it.", key, entry_model, model)
            return None
        return vector

    async def _write(self, key: str, model: str, vector: list[float]) -> None:
        try:
            await self.store.put(key, json.dumps({"model": model, "vector": vector}))
        except CacheError as e:
            self.logging.warning("Cache write failed for %s: %s", key, e)

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_get_or_embed(
        self,
        texts: list[str],
        model: str,
        embed_fn: BatchEmbedFn,
        namespace: str = TEXT_NAMESPACE,
    ) -> CacheResult:
        """
        Returns one vector per text, embedding only what is neither cached nor in flight.

        Identical texts within ``texts`` are embedded once. Texts already being
        embedded by a concurrent caller are awaited instead of embedded again.

        Args:
            texts: Inputs in order.
            model: Model identifier, part of the key.
            embed_fn: Called with the texts that still need embedding.
            namespace: Key namespace separating modalities.

        Raises:
            ProviderError: Propagated from ``embed_fn``.
            InvalidResponseError: If ``embed_fn`` returns a wrong number of vectors.
        """
        keys = [self.get_key(namespace, model, get_content_hash(text)) for text in texts]
        text_by_key = dict(zip(keys, texts))

        vectors: dict[str, list[float]] = {}
        for key in text_by_key:
            cached = await self._read(key, model)
            if cached is not None:
                vectors[key] = cached

        computed: list[str] = []
        tokens: list[int] = []

        async def compute(owned: list[str]) -> dict[str, list[float]]:
            found = {}
            missing = []
            # an earlier owner may have finished between our read and the claim
            for key in owned:
                cached = await self._read(key, model)
                if cached is not None:
                    found[key] = cached
                else:
                    missing.append(key)
            if not missing:
                return found
            result = await embed_fn([text_by_key[key] for key in missing])
            if len(result.vectors) != len(missing):
                raise InvalidResponseError(
                    f"Expected {len(missing)} vectors, got {len(result.vectors)}.",
                    details={"model": model},
                )
            if result.tokens_used is not None:
                tokens.append(result.tokens_used)
            for key, vector in zip(missing, result.vectors):
                await self._write(key, model, vector)
                found[key] = vector
            computed.extend(missing)
            return found

        misses = [key for key in text_by_key if key not in vectors]
        if misses:
            vectors.update(await self.single_flight.do_many(misses, compute))

        self.logging.debug(
            "Cache lookup for %d text(s) with model '%s': %d distinct, %d embedded",
            len(texts), model, len(text_by_key), len(computed),
        )
        return CacheResult(
            vectors=[vectors[key] for key in keys],
            computed=len(computed),
            tokens_used=sum(tokens) if tokens else None,
        )

    async def do_get_or_embed_image(
        self,
        image_hash: str,
        description: str | None,
        model: str,
        embed_fn: SingleEmbedFn,
    ) -> CacheResult:
        """
        Returns the vector of one image (with its optional description).

        Raises:
            ProviderError: Propagated from ``embed_fn``.
            InvalidResponseError: If ``embed_fn`` does not return exactly one vector.
        """
        key = self.get_key(IMAGE_NAMESPACE, model, self.get_image_content_hash(image_hash, description))
        cached = await self._read(key, model)
        if cached is not None:
            return CacheResult(vectors=[cached])

        outcome: dict[str, int | None] = {}

        async def compute() -> list[float]:
            cached = await self._read(key, model)
            if cached is not None:
                return cached
            result = await embed_fn()
            if len(result.vectors) != 1:
                raise InvalidResponseError(
                    f"Expected exactly one image vector, got {len(result.vectors)}.",
                    details={"model": model},
                )
            await self._write(key, model, result.vectors[0])
            outcome["tokens_used"] = result.tokens_used
            return result.vectors[0]

        vector = await self.single_flight.do(key, compute)
        return CacheResult(
            vectors=[vector],
            computed=1 if outcome else 0,
            tokens_used=outcome.get("tokens_used"),
        )
