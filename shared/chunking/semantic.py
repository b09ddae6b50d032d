"""Embedding-driven chunking: sentences are merged while they stay semantically close."""

import math
from typing import Awaitable, Callable

from shared.chunking.delimiters import split_sentences
from shared.models.chunking import SemanticWindowConfig
from shared.models.errors import EmptyInputError, InvalidResponseError

SentenceEmbedder = Callable[[list[str]], Awaitable[list[list[float]]]]


def cosine_distance(a: list[float], b: list[float]) -> float:
    """1 - cosine similarity. Zero vectors are treated as unrelated (distance 1)."""
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 1.0
    return 1.0 - dot / norm


async def chunk_semantic(text: str, config: SemanticWindowConfig, embed: SentenceEmbedder) -> list[str]:
    """Group sentences into chunks at semantic breaks.

    A boundary is proposed where the distance between two consecutive sentence
    vectors reaches ``similarity_threshold`` or where the next sentence would
    push the chunk past ``max_size``. Boundaries are deferred while the current
    chunk is shorter than ``min_size``. A threshold of 0 disables splitting and
    returns the text as one chunk without embedding anything.

    Args:
        text (str): Text to chunk.
        config (SemanticWindowConfig): Threshold, sizes and sentence delimiters.
        embed (SentenceEmbedder): Coroutine returning one vector per sentence.

    Raises:
        EmptyInputError: If text is empty.
        InvalidConfigError: On non-positive or inverted sizes.
        InvalidResponseError: If the embedder returns the wrong number of vectors.
    """
    config.check()
    if not text:
        raise EmptyInputError("Cannot chunk empty text.", details=config.model_dump())

    sentences = split_sentences(text, config.delimiters, config.skip_back, config.skip_forward)
    if config.similarity_threshold == 0 or len(sentences) < 2:
        return [text]

    vectors = await embed(sentences)
    if len(vectors) != len(sentences):
        raise InvalidResponseError(f"Got {len(vectors)} vectors for {len(sentences)} sentences.")

    chunks = []
    current = sentences[0]
    for index, sentence in enumerate(sentences[1:]):
        distance = cosine_distance(vectors[index], vectors[index + 1])
        boundary = distance >= config.similarity_threshold or len(current) + len(sentence) > config.max_size
        if boundary and len(current) >= config.min_size:
            chunks.append(current)
            current = sentence
        else:
            current += sentence
    chunks.append(current)
    return chunks
