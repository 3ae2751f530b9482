"""
Document processing: chunk model, chunking strategies and the ingestion pipeline.
"""

from .chunks import Chunk
from .chunking_strategies import (
    ChunkingConfig,
    ChunkingStrategy,
    RecursiveChunkingStrategy,
    FixedSizeChunkingStrategy,
    create_chunking_strategy,
)
from .pipeline import DocumentIngestionPipeline

__all__ = [
    "Chunk",
    "ChunkingConfig",
    "ChunkingStrategy",
    "RecursiveChunkingStrategy",
    "FixedSizeChunkingStrategy",
    "create_chunking_strategy",
    "DocumentIngestionPipeline",
]
