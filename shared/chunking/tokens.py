"""Whitespace tokenization used for token-unit windows and token counts."""

import re

# a token is a word with its trailing whitespace; leading whitespace is a token of its own
_TOKEN = re.compile(r"\S+\s*|\s+")


def split_tokens(text: str) -> list[str]:
    """Split text into tokens whose concatenation is exactly ``text``."""
    return _TOKEN.findall(text)


def count_tokens(text: str) -> int:
    """Number of whitespace separated words in ``text``."""
    return len(text.split())
