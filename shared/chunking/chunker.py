"""Entry point dispatching a chunk config to its strategy."""

from shared.chunking.semantic import SentenceEmbedder, chunk_semantic
from shared.chunking.sliding import chunk_sliding
from shared.chunking.snapping import chunk_snapping
from shared.chunking.splitline import chunk_splitline
from shared.models.chunking import (
    ChunkConfig,
    SemanticWindowConfig,
    SlidingWindowConfig,
    SnappingWindowConfig,
    SplitlineConfig,
)
from shared.models.errors import InvalidConfigError


async def chunk_text(text: str, config: ChunkConfig, embed: SentenceEmbedder | None = None) -> list[str]:
    """Chunk text with the strategy selected by ``config``.

    Only the semantic strategy needs ``embed``; the others are pure functions of
    their input.

    Raises:
        EmptyInputError: If text is empty.
        InvalidConfigError: If the config is invalid or semantic chunking has no embedder.
    """
    if isinstance(config, SlidingWindowConfig):
        return chunk_sliding(text, config)
    if isinstance(config, SnappingWindowConfig):
        return chunk_snapping(text, config)
    if isinstance(config, SplitlineConfig):
        return chunk_splitline(text, config)
    if isinstance(config, SemanticWindowConfig):
        if embed is None:
            raise InvalidConfigError("Semantic chunking requires an embedding provider.", details=config.model_dump())
        return await chunk_semantic(text, config, embed)
    raise InvalidConfigError(f"Unknown chunk config type '{type(config).__name__}'.")
