"""Chunk configuration models, one per chunking strategy.

Configs are persisted as JSON; the ``type`` field selects the strategy when
they are loaded back through ``ChunkConfigAdapter``.
"""

import re
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from shared.models.errors import InvalidConfigError

DEFAULT_DELIMITERS = [". ", "! ", "? ", "\n\n"]
DEFAULT_SKIP_BACK = ["e.g", "i.e", "etc", "vs", "Mr", "Mrs", "Ms", "Dr", "Prof", "St", "No"]
DEFAULT_SKIP_FORWARD = ["com", "org", "net", "io"]


class ChunkUnit(str, Enum):
    CHARACTERS = "characters"
    TOKENS = "tokens"


class SlidingWindowConfig(BaseModel):
    type: Literal["sliding"] = "sliding"
    size: int = 1000
    overlap: int = 100
    unit: ChunkUnit = ChunkUnit.CHARACTERS

    def check(self) -> None:
        if self.size <= 0:
            raise InvalidConfigError(f"Chunk size must be positive, got {self.size}.", details=self.model_dump())
        if self.overlap < 0:
            raise InvalidConfigError(f"Chunk overlap must not be negative, got {self.overlap}.", details=self.model_dump())
        if self.overlap >= self.size:
            raise InvalidConfigError(
                f"Chunk overlap ({self.overlap}) must be smaller than the size ({self.size}).", details=self.model_dump()
            )


class SnappingWindowConfig(BaseModel):
    """Sliding window whose boundaries snap to the nearest delimiter within ``max_skip`` characters.

    ``skip_back`` and ``skip_forward`` suppress delimiters directly preceded or
    followed by one of their entries, so "e.g. this" is not treated as a
    sentence end.
    """

    type: Literal["snapping"] = "snapping"
    size: int = 1000
    overlap: int = 100
    delimiters: list[str] = Field(default_factory=lambda: list(DEFAULT_DELIMITERS))
    max_skip: int = 200
    skip_back: list[str] = Field(default_factory=lambda: list(DEFAULT_SKIP_BACK))
    skip_forward: list[str] = Field(default_factory=lambda: list(DEFAULT_SKIP_FORWARD))

    def check(self) -> None:
        SlidingWindowConfig(size=self.size, overlap=self.overlap).check()
        if self.max_skip < 0:
            raise InvalidConfigError(f"max_skip must not be negative, got {self.max_skip}.", details=self.model_dump())
        if not self.delimiters or any(not d for d in self.delimiters):
            raise InvalidConfigError("Snapping needs at least one non-empty delimiter.", details=self.model_dump())


class SemanticWindowConfig(BaseModel):
    """Merges consecutive sentences while their embedding distance stays below the threshold.

    Attributes:
        similarity_threshold: Cosine distance at or above which a boundary is proposed. 0 disables splitting.
        min_size:             Chunks shorter than this (characters) defer boundaries.
        max_size:             Chunks are closed before exceeding this (characters).
        embedding_provider:   Provider embedding the sentences, defaults to the collection's.
        embedding_model:      Model embedding the sentences, defaults to the collection's.
    """

    type: Literal["semantic"] = "semantic"
    similarity_threshold: float = 0.3
    min_size: int = 200
    max_size: int = 2000
    delimiters: list[str] = Field(default_factory=lambda: list(DEFAULT_DELIMITERS))
    skip_back: list[str] = Field(default_factory=lambda: list(DEFAULT_SKIP_BACK))
    skip_forward: list[str] = Field(default_factory=lambda: list(DEFAULT_SKIP_FORWARD))
    embedding_provider: str | None = None
    embedding_model: str | None = None

    def check(self) -> None:
        if self.min_size <= 0 or self.max_size <= 0:
            raise InvalidConfigError("Semantic chunk sizes must be positive.", details=self.model_dump())
        if self.min_size > self.max_size:
            raise InvalidConfigError(
                f"min_size ({self.min_size}) must not exceed max_size ({self.max_size}).", details=self.model_dump()
            )
        if not 0 <= self.similarity_threshold <= 2:
            raise InvalidConfigError(
                f"similarity_threshold must be within [0, 2], got {self.similarity_threshold}.", details=self.model_dump()
            )
        if not self.delimiters or any(not d for d in self.delimiters):
            raise InvalidConfigError("Semantic chunking needs at least one non-empty delimiter.", details=self.model_dump())


class SplitlineConfig(BaseModel):
    """Line based chunking for tabular or outline-like text.

    The first line and every line matching one of ``patterns`` is a header and
    starts a new chunk. ``size`` is the number of non-header lines per chunk.
    """

    type: Literal["splitline"] = "splitline"
    size: int = 100
    patterns: list[str] = []
    prepend_latest_header: bool = False

    def check(self) -> None:
        if self.size <= 0:
            raise InvalidConfigError(f"Splitline size must be positive, got {self.size}.", details=self.model_dump())
        for pattern in self.patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise InvalidConfigError(f"Invalid header pattern '{pattern}': {e}", details=self.model_dump())


ChunkConfig = Annotated[
    Union[SlidingWindowConfig, SnappingWindowConfig, SemanticWindowConfig, SplitlineConfig],
    Field(discriminator="type"),
]

ChunkConfigAdapter: TypeAdapter[ChunkConfig] = TypeAdapter(ChunkConfig)


def default_chunk_config() -> SnappingWindowConfig:
    """Config used for documents that have no chunk config for a collection."""
    return SnappingWindowConfig()
