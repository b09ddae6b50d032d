"""EmbeddingModel model: Describes one model an embedding backend can serve."""

from pydantic import BaseModel


class EmbeddingModel(BaseModel):
    """A model offered by an embedding engine.

    Attributes:
        name:       Model identifier as understood by the backend.
        size:       Dimension of the produced vectors.
        provider:   Engine name of the client serving the model (e.g. "openai").
        multimodal: Whether the model accepts images (one image per request).
    """

    name: str
    size: int
    provider: str
    multimodal: bool = False
