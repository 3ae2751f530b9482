"""
Unit tests for chunking strategies.
"""

import pytest

from docchat.processing.chunking_strategies import (
    ChunkingConfig,
    ChunkingStrategy,
    FixedSizeChunkingStrategy,
    RecursiveChunkingStrategy,
    create_chunking_strategy,
)


class TestRecursiveChunking:
    """Test cases for separator-priority chunking."""

    def test_short_document_is_one_chunk(self):
        """Test that a sentence shorter than the chunk size stays whole."""
        strategy = RecursiveChunkingStrategy(ChunkingConfig())
        chunks = strategy.chunk_content("Employees must badge in by 9am.", "policy.txt")

        assert len(chunks) == 1
        assert chunks[0].text == "Employees must badge in by 9am."
        assert chunks[0].source_document == "policy.txt"
        assert chunks[0].chunk_index == 0

    def test_chunks_respect_size_and_overlap(self):
        """Test that long text yields bounded chunks that overlap their neighbours."""
        text = " ".join(f"word{i}" for i in range(400))
        strategy = RecursiveChunkingStrategy(ChunkingConfig(max_chunk_size=100, chunk_overlap=20))

        chunks = strategy.chunk_content(text, "words.txt")

        assert len(chunks) > 1
        assert all(len(c.text) <= 100 for c in chunks)
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        for previous, current in zip(chunks, chunks[1:]):
            assert current.text.split()[0] in previous.text.split()

        # Every word of the document survives chunking
        seen = set()
        for chunk in chunks:
            seen.update(chunk.text.split())
        assert seen == set(text.split())

    def test_paragraphs_split_before_sentences(self):
        """Test that paragraph boundaries are preferred split points."""
        paragraphs = [f"Paragraph {name} " + "x" * 30 for name in ("alpha", "beta", "gamma")]
        strategy = RecursiveChunkingStrategy(ChunkingConfig(max_chunk_size=50, chunk_overlap=0))

        chunks = strategy.chunk_content("\n\n".join(paragraphs), "doc.txt")

        assert [c.text for c in chunks] == paragraphs

    def test_whitespace_is_normalized(self):
        """Test that whitespace runs collapse to single spaces."""
        strategy = RecursiveChunkingStrategy(ChunkingConfig())
        chunks = strategy.chunk_content("Hello\n\n   world\t\tagain", "doc.txt")

        assert [c.text for c in chunks] == ["Hello world again"]

    def test_blank_document_has_no_chunks(self):
        """Test that whitespace-only content produces nothing."""
        strategy = RecursiveChunkingStrategy(ChunkingConfig())

        assert strategy.chunk_content("  \n\n \t ", "empty.txt") == []


class TestFixedSizeChunking:
    """Test cases for fixed-width chunking."""

    def test_fixed_windows(self):
        """Test window starts advance by size minus overlap."""
        strategy = FixedSizeChunkingStrategy(
            ChunkingConfig(strategy=ChunkingStrategy.FIXED_SIZE, max_chunk_size=100, chunk_overlap=20)
        )
        chunks = strategy.chunk_content("a" * 250, "doc.txt")

        assert [len(c.text) for c in chunks] == [100, 100, 90, 10]


class TestChunkingConfig:
    """Test cases for chunking configuration."""

    def test_overlap_must_be_smaller_than_size(self):
        """Test rejection of an overlap that leaves no room for new text."""
        with pytest.raises(ValueError):
            ChunkingConfig(max_chunk_size=100, chunk_overlap=100)

    def test_factory(self):
        """Test strategy factory."""
        assert isinstance(create_chunking_strategy(ChunkingConfig()), RecursiveChunkingStrategy)
        assert isinstance(
            create_chunking_strategy(ChunkingConfig(strategy=ChunkingStrategy.FIXED_SIZE)),
            FixedSizeChunkingStrategy,
        )
