"""Tests for the chunking strategies."""

from unittest.mock import AsyncMock

import pytest

from shared.chunking.chunker import chunk_text
from shared.chunking.delimiters import is_boundary, split_sentences
from shared.chunking.semantic import chunk_semantic, cosine_distance
from shared.chunking.sliding import chunk_sliding
from shared.chunking.snapping import chunk_snapping
from shared.chunking.splitline import chunk_splitline
from shared.chunking.tokens import split_tokens
from shared.models.chunking import (
    ChunkConfigAdapter,
    ChunkUnit,
    SemanticWindowConfig,
    SlidingWindowConfig,
    SnappingWindowConfig,
    SplitlineConfig,
)
from shared.models.errors import EmptyInputError, InvalidConfigError

TEXT = (
    "Lorem ipsum dolor sit amet, consectetur adipiscing elit. Sed do eiusmod tempor incididunt ut labore. "
    "Ut enim ad minim veniam, quis nostrud exercitation ullamco laboris nisi ut aliquip ex ea commodo. "
    "Duis aute irure dolor in reprehenderit in voluptate velit esse cillum dolore eu fugiat nulla pariatur."
)


def _reconstruct(chunks: list[str], overlap: int, split=list) -> str:
    """Joins chunks after dropping the trailing overlap units of every chunk but the last."""
    parts = []
    for chunk in chunks[:-1]:
        units = split(chunk)
        parts.append("".join(units[:len(units) - overlap]))
    parts.append(chunks[-1])
    return "".join(parts)


class TestSlidingWindow:
    """Tests for chunk_sliding."""

    @pytest.mark.parametrize("size,overlap", [(1, 0), (7, 3), (50, 10), (100, 99), (1000, 100)])
    def test_round_trip_characters(self, size, overlap):
        """Trimming the trailing overlap and concatenating restores the text."""
        chunks = chunk_sliding(TEXT, SlidingWindowConfig(size=size, overlap=overlap))
        assert _reconstruct(chunks, overlap) == TEXT
        assert all(len(chunk) == size for chunk in chunks[:-1])
        assert len(chunks[-1]) <= size

    @pytest.mark.parametrize("size,overlap", [(3, 1), (10, 0), (5, 4)])
    def test_round_trip_tokens(self, size, overlap):
        """Token windows keep whitespace so the round trip is exact."""
        text = "  leading space, " + TEXT + "\n\ntrailing   "
        chunks = chunk_sliding(text, SlidingWindowConfig(size=size, overlap=overlap, unit=ChunkUnit.TOKENS))
        assert _reconstruct(chunks, overlap, split=split_tokens) == text

    def test_short_text_is_single_chunk(self):
        """Text shorter than the window yields one chunk."""
        assert chunk_sliding("short", SlidingWindowConfig(size=100, overlap=10)) == ["short"]

    @pytest.mark.parametrize("size,overlap", [(10, 10), (10, 11), (0, 0), (-5, 0)])
    def test_invalid_config(self, size, overlap):
        """overlap >= size and non-positive sizes are rejected."""
        with pytest.raises(InvalidConfigError):
            chunk_sliding(TEXT, SlidingWindowConfig(size=size, overlap=overlap))

    def test_empty_input(self):
        """Empty text fails with EmptyInputError."""
        with pytest.raises(EmptyInputError):
            chunk_sliding("", SlidingWindowConfig(size=10, overlap=2))


class TestSnappingWindow:
    """Tests for chunk_snapping."""

    SENTENCES = "Alpha beta gamma. Delta epsilon zeta. Eta theta iota. Kappa lambda mu. "

    def test_boundaries_lie_on_delimiters(self):
        """Every chunk ends right after a delimiter when one is within max_skip."""
        config = SnappingWindowConfig(size=25, overlap=0, max_skip=10)
        chunks = chunk_snapping(self.SENTENCES, config)
        assert "".join(chunks) == self.SENTENCES
        assert len(chunks) > 1
        assert all(chunk.endswith(". ") for chunk in chunks)

    def test_overlap_is_applied_after_snapping(self):
        """The next chunk starts overlap characters before the snapped end."""
        chunks = chunk_snapping(self.SENTENCES, SnappingWindowConfig(size=25, overlap=5, max_skip=10))
        assert chunks[0] == "Alpha beta gamma. "
        for previous, current in zip(chunks, chunks[1:]):
            assert current.startswith(previous[-5:])

    def test_hard_cut_without_delimiter(self):
        """Without a delimiter in reach the nominal boundary is used."""
        chunks = chunk_snapping("a" * 100, SnappingWindowConfig(size=30, overlap=0, max_skip=5))
        assert [len(chunk) for chunk in chunks] == [30, 30, 30, 10]

    def test_skip_back_guards_abbreviations(self):
        """A delimiter after an abbreviation is not a boundary."""
        text = "See e.g. the docs. More text."
        delimiters = [". "]
        assert not is_boundary(text, text.index("the"), delimiters, ["e.g"], [])
        assert is_boundary(text, text.index("More"), delimiters, ["e.g"], [])

    def test_skip_back_matches_whole_words(self):
        """A word merely ending in an abbreviation does not suppress the boundary."""
        text = "Meet at EastSt. Then go."
        assert is_boundary(text, text.index("Then"), [". "], ["St"], [])

    def test_skip_forward_guards_domains(self):
        """A delimiter followed by a skip_forward word is not a boundary."""
        text = "Visit example. com today."
        assert not is_boundary(text, text.index("com"), [". "], [], ["com"])

    def test_split_sentences_restores_text(self):
        """Sentence splitting keeps delimiters attached."""
        sentences = split_sentences(self.SENTENCES, [". "], [], [])
        assert "".join(sentences) == self.SENTENCES
        assert len(sentences) == 4


class TestSemanticWindow:
    """Tests for chunk_semantic."""

    TEXT = "One. Two. Three."

    async def test_threshold_zero_is_one_chunk(self):
        """A threshold of 0 merges everything without embedding."""
        embed = AsyncMock()
        chunks = await chunk_semantic(self.TEXT, SemanticWindowConfig(similarity_threshold=0, min_size=1, max_size=1000, delimiters=[". "]), embed)
        assert chunks == [self.TEXT]
        embed.assert_not_called()

    async def test_low_threshold_splits_every_sentence(self):
        """A threshold below every observed distance yields one chunk per sentence."""
        embed = AsyncMock(return_value=[[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
        config = SemanticWindowConfig(similarity_threshold=0.5, min_size=1, max_size=1000, delimiters=[". "])
        chunks = await chunk_semantic(self.TEXT, config, embed)
        assert chunks == ["One. ", "Two. ", "Three."]

    async def test_similar_sentences_merge(self):
        """Close vectors stay in one chunk, a distant one opens a new chunk."""
        embed = AsyncMock(return_value=[[1.0, 0.0], [0.99, 0.01], [0.0, 1.0]])
        config = SemanticWindowConfig(similarity_threshold=0.3, min_size=1, max_size=1000, delimiters=[". "])
        chunks = await chunk_semantic(self.TEXT, config, embed)
        assert chunks == ["One. Two. ", "Three."]

    async def test_min_size_defers_boundary(self):
        """Chunks below min_size absorb the next sentence."""
        embed = AsyncMock(return_value=[[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
        config = SemanticWindowConfig(similarity_threshold=0.5, min_size=8, max_size=1000, delimiters=[". "])
        chunks = await chunk_semantic(self.TEXT, config, embed)
        assert chunks == ["One. Two. ", "Three."]

    def test_cosine_distance(self):
        """Identical vectors have distance 0, orthogonal ones 1."""
        assert cosine_distance([1.0, 2.0], [1.0, 2.0]) == pytest.approx(0.0)
        assert cosine_distance([1.0, 0.0], [0.0, 1.0]) == pytest.approx(1.0)

    async def test_chunk_text_requires_embedder(self):
        """Dispatching a semantic config without an embedder is a config error."""
        with pytest.raises(InvalidConfigError):
            await chunk_text(self.TEXT, SemanticWindowConfig())


class TestSplitline:
    """Tests for chunk_splitline."""

    TEXT = "H1\na\nb\nc\nH2\nd\n"

    def test_headers_start_new_chunks(self):
        """Header lines always open a chunk; size limits the other lines."""
        chunks = chunk_splitline(self.TEXT, SplitlineConfig(size=2, patterns=[r"^H\d"]))
        assert chunks == ["H1\na\nb\n", "c\n", "H2\nd\n"]

    def test_prepend_latest_header(self):
        """Size-cut chunks repeat the latest header."""
        chunks = chunk_splitline(self.TEXT, SplitlineConfig(size=2, patterns=[r"^H\d"], prepend_latest_header=True))
        assert chunks == ["H1\na\nb\n", "H1\nc\n", "H2\nd\n"]

    def test_invalid_pattern(self):
        """Patterns that do not compile are rejected."""
        with pytest.raises(InvalidConfigError):
            chunk_splitline(self.TEXT, SplitlineConfig(patterns=["("]))


class TestChunkConfig:
    """Tests for loading persisted chunk configs."""

    def test_discriminated_by_type(self):
        """Stored JSON comes back as the matching config class."""
        config = ChunkConfigAdapter.validate_python({"type": "sliding", "size": 100, "overlap": 20})
        assert isinstance(config, SlidingWindowConfig)
        assert config.size == 100

    async def test_dispatch(self):
        """chunk_text routes to the strategy of the config."""
        assert await chunk_text("abcdef", SlidingWindowConfig(size=4, overlap=2)) == ["abcd", "cdef"]
