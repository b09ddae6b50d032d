"""Fixed-size sliding window chunking."""

from shared.chunking.tokens import split_tokens
from shared.models.chunking import ChunkUnit, SlidingWindowConfig
from shared.models.errors import EmptyInputError


def chunk_sliding(text: str, config: SlidingWindowConfig) -> list[str]:
    """Split text into windows of ``size`` units advancing by ``size - overlap``.

    Dropping the trailing ``overlap`` units of every chunk but the last and
    concatenating the rest gives back the input exactly.

    Raises:
        EmptyInputError: If text is empty.
        InvalidConfigError: If size is not positive or overlap >= size.
    """
    config.check()
    if not text:
        raise EmptyInputError("Cannot chunk empty text.", details=config.model_dump())

    units = list(text) if config.unit == ChunkUnit.CHARACTERS else split_tokens(text)
    step = config.size - config.overlap
    chunks = []
    start = 0
    while True:
        chunks.append("".join(units[start:start + config.size]))
        if start + config.size >= len(units):
            break
        start += step
    return chunks
