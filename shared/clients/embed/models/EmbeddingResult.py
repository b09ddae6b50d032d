"""EmbeddingResult model: Vectors returned by one embed call."""

from pydantic import BaseModel


class EmbeddingResult(BaseModel):
    """Vectors for a batch of inputs, in input order.

    Attributes:
        vectors:     One vector per input.
        tokens_used: Total tokens billed by the backend, None if it does not report usage.
    """

    vectors: list[list[float]]
    tokens_used: int | None = None

    def merge(self, other: "EmbeddingResult") -> "EmbeddingResult":
        """Concatenate two results, summing token usage when either side reports it."""
        if self.tokens_used is None and other.tokens_used is None:
            tokens = None
        else:
            tokens = (self.tokens_used or 0) + (other.tokens_used or 0)
        return EmbeddingResult(vectors=self.vectors + other.vectors, tokens_used=tokens)
