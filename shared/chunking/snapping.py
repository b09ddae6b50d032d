"""Sliding window chunking with boundaries snapped to delimiters."""

from shared.chunking.delimiters import is_boundary
from shared.models.chunking import SnappingWindowConfig
from shared.models.errors import EmptyInputError


def _snap(text: str, nominal: int, lower: int, config: SnappingWindowConfig) -> int:
    """Nearest boundary to ``nominal`` within ``max_skip`` characters, ties going backwards.

    Backward candidates must stay above ``lower`` so the next window still
    advances once the overlap is subtracted. Without a candidate the nominal
    position is a hard cut.
    """
    for distance in range(config.max_skip + 1):
        back = nominal - distance
        if back > lower and is_boundary(text, back, config.delimiters, config.skip_back, config.skip_forward):
            return back
        forward = nominal + distance
        if distance and forward <= len(text) and is_boundary(
            text, forward, config.delimiters, config.skip_back, config.skip_forward
        ):
            return forward
    return nominal


def chunk_snapping(text: str, config: SnappingWindowConfig) -> list[str]:
    """Split text into windows of about ``size`` characters ending on delimiters.

    Each chunk starts ``overlap`` characters before the snapped end of the
    previous one.

    Raises:
        EmptyInputError: If text is empty.
        InvalidConfigError: On non-positive size, overlap >= size or missing delimiters.
    """
    config.check()
    if not text:
        raise EmptyInputError("Cannot chunk empty text.", details=config.model_dump())

    chunks = []
    start = 0
    while True:
        nominal = start + config.size
        if nominal >= len(text):
            chunks.append(text[start:])
            break
        end = _snap(text, nominal, start + config.overlap, config)
        chunks.append(text[start:end])
        if end >= len(text):
            break
        start = end - config.overlap
    return chunks
