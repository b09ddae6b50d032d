from abc import abstractmethod

from shared.clients.embed.EmbedClientRemote import EmbedClientRemote
from shared.models.errors import InvalidResponseError


class EmbedClientOpenaiCompatible(EmbedClientRemote):
    """Shared request/response handling for backends speaking the OpenAI embeddings schema.

    Request:  {"model": "...", "input": [...]}
    Response: {"data": [{"embedding": [...], "index": 0}], "usage": {"total_tokens": 12}}
    """

    @abstractmethod
    def _get_endpoint_embedding(self, model: str) -> str:
        pass

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str], model: str) -> dict:
        return {"model": model, "input": texts, "encoding_format": "float"}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract vectors from an OpenAI-style response.

        Items carry an explicit index and are not guaranteed to arrive in input
        order, so they are sorted before being returned.
        """
        data = response_data.get("data") if isinstance(response_data, dict) else None
        if not data:
            raise InvalidResponseError(
                f"Response of '{self.get_engine_name()}' does not contain embedding data.",
                details={"keys": list(response_data.keys()) if isinstance(response_data, dict) else None},
            )
        try:
            ordered = sorted(data, key=lambda item: item.get("index", 0))
            vectors = [item["embedding"] for item in ordered]
        except (KeyError, TypeError, AttributeError) as e:
            raise InvalidResponseError(f"Malformed embedding item in response of '{self.get_engine_name()}': {e}") from e
        if any(not vector for vector in vectors):
            raise InvalidResponseError(f"Response of '{self.get_engine_name()}' contains an empty embedding.")
        return vectors

    def extract_tokens_from_response(self, response_data: dict) -> int | None:
        usage = response_data.get("usage") or {}
        tokens = usage.get("total_tokens")
        return int(tokens) if tokens is not None else None
