"""Line based chunking with header detection."""

import re

from shared.models.chunking import SplitlineConfig
from shared.models.errors import EmptyInputError


def chunk_splitline(text: str, config: SplitlineConfig) -> list[str]:
    """Split text into groups of ``size`` lines, starting a new chunk at every header.

    The first line is always a header. With ``prepend_latest_header`` a chunk
    cut purely by size starts with the most recent header.

    Raises:
        EmptyInputError: If text is empty.
        InvalidConfigError: If size is not positive or a pattern does not compile.
    """
    config.check()
    if not text:
        raise EmptyInputError("Cannot chunk empty text.", details=config.model_dump())

    patterns = [re.compile(p) for p in config.patterns]
    trailing_newline = text.endswith("\n")
    lines = text.split("\n")
    if trailing_newline:
        lines.pop()
    header = lines[0]
    if len(lines) == 1:
        return [text]

    chunks = []
    buffer = [header]
    amount = 0
    for line in lines[1:]:
        if amount == config.size:
            chunks.append("\n".join(buffer) + "\n")
            buffer = [header] if config.prepend_latest_header else []
            amount = 0
        if any(p.search(line) for p in patterns):
            if amount > 0:
                chunks.append("\n".join(buffer) + "\n")
            buffer = [line]
            amount = 0
            header = line
            continue
        buffer.append(line)
        amount += 1

    if amount > 0:
        chunks.append("\n".join(buffer) + ("\n" if trailing_newline else ""))
    return chunks
