"""
Document ingestion pipeline.

Turns raw document text into a complete list of embedded chunks. Either every
chunk of a document is embedded or ``IngestionFailed`` is raised and nothing
is returned, so a failing document can never reach a vector store half-done.
"""

import asyncio
from typing import List, Optional

from docchat.config.settings import settings
from docchat.exceptions import IngestionFailed, InvalidDocument, ProviderTimeout, TRANSIENT_PROVIDER_ERRORS
from docchat.processing.chunking_strategies import (
    ChunkingConfig,
    ChunkingStrategy,
    BaseChunkingStrategy,
    create_chunking_strategy,
)
from docchat.processing.chunks import Chunk
from docchat.utils.async_utils import AsyncRetry, async_timer, gather_with_concurrency
from docchat.utils.logger import get_logger
from docchat.vector.embeddings import BaseEmbeddingService

logger = get_logger(__name__)


class DocumentIngestionPipeline:
    """
    Split a document into overlapping chunks and embed each of them.

    Transient provider errors (timeouts, rate limits) are retried with
    exponential backoff; once the retry budget is spent the failure surfaces
    as ``IngestionFailed`` naming the chunk index.
    """

    def __init__(self,
                 embedding_service: BaseEmbeddingService,
                 chunk_size: Optional[int] = None,
                 chunk_overlap: Optional[int] = None,
                 max_retries: Optional[int] = None,
                 retry_base_delay: Optional[float] = None,
                 retry_max_delay: Optional[float] = None,
                 max_concurrency: Optional[int] = None,
                 strategy: ChunkingStrategy = ChunkingStrategy.RECURSIVE):
        self.embedding_service = embedding_service
        self.chunker: BaseChunkingStrategy = create_chunking_strategy(ChunkingConfig(
            strategy=strategy,
            max_chunk_size=chunk_size or settings.chunk_size,
            chunk_overlap=settings.chunk_overlap if chunk_overlap is None else chunk_overlap,
        ))
        self.retry = AsyncRetry(
            max_attempts=max_retries or settings.embedding_max_retries,
            base_delay=settings.retry_base_delay if retry_base_delay is None else retry_base_delay,
            max_delay=settings.retry_max_delay if retry_max_delay is None else retry_max_delay,
            exceptions=TRANSIENT_PROVIDER_ERRORS,
        )
        self.max_concurrency = max_concurrency or settings.embedding_concurrency

    def split(self, raw_text: str, source_name: str) -> List[Chunk]:
        """Chunk a document without embedding it."""
        return self.chunker.chunk_content(raw_text, source_name)

    async def ingest(self,
                     raw_text: str,
                     source_name: str,
                     timeout: Optional[float] = None) -> List[Chunk]:
        """
        Chunk and embed a document.

        Args:
            raw_text: Document content
            source_name: Document name recorded on every chunk
            timeout: Overall deadline for the embedding phase in seconds

        Returns:
            Every chunk of the document, in order, with its embedding

        Raises:
            InvalidDocument: If the document has no text
            IngestionFailed: If a chunk could not be embedded
            ProviderTimeout: If the deadline expired before all chunks were embedded
        """
        chunks = self.split(raw_text, source_name)
        if not chunks:
            raise InvalidDocument(source_name, "document contains no text")

        async with async_timer("Document embedding", document=source_name, chunks=len(chunks)):
            embed_all = gather_with_concurrency(
                [self._embed_chunk(chunk, timeout) for chunk in chunks],
                max_concurrency=self.max_concurrency,
            )
            if timeout is None:
                embedded = await embed_all
            else:
                try:
                    embedded = await asyncio.wait_for(embed_all, timeout=timeout)
                except asyncio.TimeoutError:
                    logger.warning("Ingestion deadline exceeded", document=source_name, timeout=timeout)
                    raise ProviderTimeout(
                        self.embedding_service.provider,
                        f"deadline of {timeout}s exceeded while embedding '{source_name}'"
                    )

        logger.info("Document ingested", document=source_name, chunks=len(embedded))
        return embedded

    async def _embed_chunk(self, chunk: Chunk, timeout: Optional[float]) -> Chunk:
        @self.retry
        async def embed_with_retry() -> List[float]:
            return await self.embedding_service.embed(chunk.text, timeout=timeout)

        try:
            vector = await embed_with_retry()
        except TRANSIENT_PROVIDER_ERRORS as e:
            raise IngestionFailed(chunk.source_document, chunk.chunk_index, e) from e
        except Exception as e:
            logger.error(
                "Chunk embedding failed",
                document=chunk.source_document,
                chunk_index=chunk.chunk_index,
                error=str(e),
            )
            raise IngestionFailed(chunk.source_document, chunk.chunk_index, e) from e

        return chunk.with_embedding(vector)
