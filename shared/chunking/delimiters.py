"""Delimiter boundary detection shared by the snapping and semantic chunkers.

A boundary is the position directly after a delimiter occurrence. Occurrences
directly preceded by a ``skip_back`` word (e.g. "e.g") or followed by a
``skip_forward`` word (e.g. "com") are not boundaries.
"""

import re


def _preceded_by(text: str, end: int, word: str) -> bool:
    start = end - len(word)
    if start < 0 or not text.startswith(word, start):
        return False
    # whole words only, "Summer." does not end with the abbreviation "Mr"
    return start == 0 or not text[start - 1].isalnum()


def is_boundary(text: str, pos: int, delimiters: list[str], skip_back: list[str], skip_forward: list[str]) -> bool:
    """Whether ``pos`` lies directly after a delimiter that is not guarded by a skip word."""
    for delimiter in delimiters:
        start = pos - len(delimiter)
        if start < 0 or not text.startswith(delimiter, start):
            continue
        if any(_preceded_by(text, start, word) for word in skip_back):
            continue
        if any(text.startswith(word, pos) for word in skip_forward):
            continue
        return True
    return False


def split_sentences(text: str, delimiters: list[str], skip_back: list[str], skip_forward: list[str]) -> list[str]:
    """Split text at every boundary, keeping delimiters attached so that ``"".join`` restores the text."""
    pattern = re.compile("|".join(re.escape(d) for d in sorted(delimiters, key=len, reverse=True)))
    sentences = []
    start = 0
    for match in pattern.finditer(text):
        end = match.end()
        if end >= len(text) or not is_boundary(text, end, delimiters, skip_back, skip_forward):
            continue
        sentences.append(text[start:end])
        start = end
    sentences.append(text[start:])
    return [s for s in sentences if s]
