from abc import abstractmethod
from typing import NoReturn

import httpx
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.embed.models.EmbeddingResult import EmbeddingResult
from shared.models.errors import (
    InvalidResponseError,
    OperationUnsupportedError,
    ProviderUnavailableError,
    RateLimitedError,
)


class EmbedClientRemote(EmbedClientInterface):
    """Embedding engines reached over HTTP.

    Subclasses describe the endpoint, the request body and how vectors are
    read from the response; batching and error mapping live here.
    """

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_embedding(self, model: str) -> str:
        """
        Returns the endpoint path for embedding requests for the given model.

        Returns:
            str: The endpoint path (e.g. "/v1/embeddings")
        """
        pass

    def _get_params_embedding(self) -> dict | None:
        """
        Returns query parameters sent with each embedding request (e.g. an api-version).
        """
        return None

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str], model: str) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed.
            model (str): The model to embed with.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    def get_image_payload(self, image_url: str, text: str | None, model: str, system: str | None = None) -> dict:
        """Build the request body for embedding a single image.

        Args:
            image_url (str): The image as a data URL ("data:image/png;base64,...").
            text (str | None): Optional text that conditions the resulting vector.
            model (str): The multimodal model to embed with.
            system (str | None): Optional system prompt.

        Raises:
            OperationUnsupportedError: If the engine has no multimodal support.
        """
        raise OperationUnsupportedError(
            f"Embedding engine '{self.get_engine_name()}' does not support multimodal embeddings.",
            details={"engine": self.get_engine_name(), "model": model},
        )

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            InvalidResponseError: If the response format is invalid or embeddings are empty.
        """
        pass

    def extract_tokens_from_response(self, response_data: dict) -> int | None:
        """
        Returns the total number of tokens billed for a request, None if unreported.
        """
        return None

    ##########################################
    ################ ERRORS ##################
    ##########################################

    def _raise_for_transport_error(self, error: httpx.TransportError, url: str) -> NoReturn:
        raise ProviderUnavailableError(
            f"Embedding engine '{self.get_engine_name()}' is unreachable at {url}: {error}",
            details={"engine": self.get_engine_name()},
        ) from error

    def _raise_for_status(self, response: httpx.Response, url: str) -> NoReturn:
        status = response.status_code
        details = {"engine": self.get_engine_name(), "status": status, "body": response.text[:200]}
        if status == 429:
            retry_after = response.headers.get("retry-after")
            raise RateLimitedError(
                f"Embedding engine '{self.get_engine_name()}' rate limited the request to {url}",
                retry_after=float(retry_after) if retry_after and retry_after.replace(".", "", 1).isdigit() else None,
                details=details,
            )
        if status >= 500 or status == 408:
            raise ProviderUnavailableError(
                f"Embedding engine '{self.get_engine_name()}' answered {status} for {url}",
                details=details,
            )
        raise InvalidResponseError(
            f"Embedding engine '{self.get_engine_name()}' returned an unusable response ({status}) for {url}",
            details=details,
        )

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_embed(self, texts: list[str] | str, model: str | None = None) -> EmbeddingResult:
        """Embed texts and return the vectors in input order.

        The input is split into requests of at most EMBED_BATCH_SIZE texts.

        Args:
            texts (list[str] | str): One or more texts to embed.
            model (str | None): Model to use, defaults to the configured model.

        Returns:
            EmbeddingResult: One vector per input text plus the reported token usage.

        Raises:
            ProviderUnavailableError: On connection failures or 5xx answers.
            RateLimitedError: On 429 answers.
            InvalidResponseError: If the response cannot be turned into one vector per input.
        """
        texts = [texts] if isinstance(texts, str) else texts
        model = model or self.embed_model
        result = EmbeddingResult(vectors=[], tokens_used=None)
        for start in range(0, len(texts), self.embed_batch_size):
            batch = texts[start:start + self.embed_batch_size]
            response = await self.do_request(
                method="POST",
                endpoint=self._get_endpoint_embedding(model),
                params=self._get_params_embedding(),
                json=self.get_embed_payload(batch, model),
            )
            body = self._parse_json(response)
            vectors = self.extract_embeddings_from_response(body)
            if len(vectors) != len(batch):
                raise InvalidResponseError(
                    f"Embedding engine '{self.get_engine_name()}' returned {len(vectors)} vectors for {len(batch)} inputs.",
                    details={"engine": self.get_engine_name(), "model": model},
                )
            result = result.merge(EmbeddingResult(vectors=vectors, tokens_used=self.extract_tokens_from_response(body)))
        self.logging.debug(
            "Embedded %d text(s) with '%s' on '%s', tokens used: %s",
            len(texts), model, self.get_engine_name(), result.tokens_used,
        )
        return result

    async def do_embed_image(self, image_b64: str, mime_type: str, text: str | None = None, model: str | None = None, system: str | None = None) -> EmbeddingResult:
        """Embed exactly one image, optionally conditioned on a text description.

        Multimodal backends only accept one image per request, so callers with
        several images must call this once per image.

        Args:
            image_b64 (str): Base64 encoded image bytes.
            mime_type (str): MIME type of the image (e.g. "image/png").
            text (str | None): Optional description influencing the vector.
            model (str | None): Model to use, defaults to the configured model.
            system (str | None): Optional system prompt.

        Returns:
            EmbeddingResult: A result holding a single vector.
        """
        model = model or self.embed_model
        payload = self.get_image_payload(f"data:{mime_type};base64,{image_b64}", text, model, system)
        response = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_embedding(model),
            params=self._get_params_embedding(),
            json=payload,
        )
        body = self._parse_json(response)
        vectors = self.extract_embeddings_from_response(body)
        if len(vectors) != 1:
            raise InvalidResponseError(
                f"Embedding engine '{self.get_engine_name()}' returned {len(vectors)} vectors for one image.",
                details={"engine": self.get_engine_name(), "model": model},
            )
        return EmbeddingResult(vectors=vectors, tokens_used=self.extract_tokens_from_response(body))
