"""
Unit tests for the document ingestion pipeline.

Provider failures are injected through the fake embedding service.
"""

import pytest
import asyncio

from docchat.exceptions import (
    IngestionFailed,
    InvalidDocument,
    ProviderRateLimited,
    ProviderTimeout,
    ProviderUnavailable,
)
from docchat.processing.pipeline import DocumentIngestionPipeline

from .fakes import DIMENSION, FakeEmbeddingService


def three_paragraphs() -> str:
    return "\n\n".join(f"Paragraph {name} " + "x" * 30 for name in ("alpha", "beta", "gamma"))


class SlowEmbeddingService(FakeEmbeddingService):
    async def _embed_texts(self, texts):
        await asyncio.sleep(1)
        return await super()._embed_texts(texts)


class TestDocumentIngestionPipeline:
    """Test cases for chunk-then-embed ingestion."""

    @pytest.mark.asyncio
    async def test_ingest_embeds_every_chunk(self, pipeline):
        """Test that every returned chunk carries an embedding."""
        chunks = await pipeline.ingest("Employees must badge in by 9am.", "policy.txt")

        assert len(chunks) == 1
        assert chunks[0].text == "Employees must badge in by 9am."
        assert chunks[0].chunk_id == "policy.txt#0"
        assert len(chunks[0].embedding) == DIMENSION

    @pytest.mark.asyncio
    async def test_chunks_keep_document_order(self, embedder):
        """Test that concurrent embedding keeps chunk order."""
        pipeline = DocumentIngestionPipeline(embedder, chunk_size=50, chunk_overlap=0, retry_base_delay=0.0)

        chunks = await pipeline.ingest(three_paragraphs(), "doc.txt")

        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert "gamma" in chunks[2].text
        assert all(c.embedding is not None for c in chunks)

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, pipeline, embedder):
        """Test that timeouts and rate limits are retried until success."""
        embedder.fail_on(
            "badge",
            ProviderTimeout("fake", "timed out"),
            ProviderRateLimited("fake", "slow down", retry_after=1.0),
        )

        chunks = await pipeline.ingest("Employees must badge in by 9am.", "policy.txt")

        assert len(chunks) == 1
        assert len(embedder.calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_name_the_chunk(self, embedder):
        """Test that IngestionFailed reports the index of the failing chunk."""
        pipeline = DocumentIngestionPipeline(
            embedder, chunk_size=50, chunk_overlap=0, max_retries=2, retry_base_delay=0.0
        )
        embedder.fail_on("gamma", *(ProviderTimeout("fake", "timed out") for _ in range(5)))

        with pytest.raises(IngestionFailed) as exc_info:
            await pipeline.ingest(three_paragraphs(), "doc.txt")

        assert exc_info.value.document == "doc.txt"
        assert exc_info.value.chunk_index == 2
        assert isinstance(exc_info.value.cause, ProviderTimeout)
        assert exc_info.value.details["chunk_index"] == 2

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self, pipeline, embedder):
        """Test that a non-transient provider error fails on the first attempt."""
        embedder.fail_on("badge", ProviderUnavailable("fake", "invalid api key"))

        with pytest.raises(IngestionFailed) as exc_info:
            await pipeline.ingest("Employees must badge in by 9am.", "policy.txt")

        assert exc_info.value.chunk_index == 0
        assert isinstance(exc_info.value.cause, ProviderUnavailable)
        assert len(embedder.calls) == 1

    @pytest.mark.asyncio
    async def test_empty_document_rejected(self, pipeline, embedder):
        """Test that a document without text is rejected before embedding."""
        with pytest.raises(InvalidDocument):
            await pipeline.ingest("   \n\n  ", "empty.txt")

        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_deadline_raises_provider_timeout(self):
        """Test that the overall deadline surfaces as ProviderTimeout."""
        pipeline = DocumentIngestionPipeline(SlowEmbeddingService(), retry_base_delay=0.0)

        with pytest.raises(ProviderTimeout):
            await pipeline.ingest("Employees must badge in by 9am.", "policy.txt", timeout=0.05)

    def test_split_does_not_embed(self, pipeline, embedder):
        """Test that split only chunks the document."""
        chunks = pipeline.split("Employees must badge in by 9am.", "policy.txt")

        assert len(chunks) == 1
        assert chunks[0].embedding is None
        assert embedder.calls == []
