"""
Chunking strategies for plain-text documents.

The recursive strategy splits on the highest-priority separator present in the
text (paragraph, then line, then sentence, then word) and falls back to fixed
width, merging the pieces back into chunks of at most ``max_chunk_size``
characters with ``chunk_overlap`` characters carried over between neighbours.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List

from docchat.processing.chunks import Chunk
from docchat.utils.logger import get_logger
from docchat.utils.text_utils import normalize_whitespace

logger = get_logger(__name__)


DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", " ", ""]


class ChunkingStrategy(Enum):
    """Available chunking strategies."""
    RECURSIVE = "recursive"
    FIXED_SIZE = "fixed_size"


@dataclass
class ChunkingConfig:
    """Configuration for chunking strategies."""
    strategy: ChunkingStrategy = ChunkingStrategy.RECURSIVE
    max_chunk_size: int = 1000
    chunk_overlap: int = 200
    separators: List[str] = field(default_factory=lambda: list(DEFAULT_SEPARATORS))

    def __post_init__(self):
        if self.max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        if not 0 <= self.chunk_overlap < self.max_chunk_size:
            raise ValueError("chunk_overlap must be in [0, max_chunk_size)")


class BaseChunkingStrategy(ABC):
    """Abstract base class for chunking strategies."""

    def __init__(self, config: ChunkingConfig):
        self.config = config
        self.logger = get_logger(__name__, strategy=config.strategy.value)

    @abstractmethod
    def split_text(self, content: str) -> List[str]:
        """Split content into raw text spans."""

    def chunk_content(self, content: str, source_document: str) -> List[Chunk]:
        """
        Split content into chunks ready for embedding.

        Whitespace inside each span is collapsed to single spaces and blank
        spans are dropped; chunk indexes are contiguous from zero.
        """
        chunks: List[Chunk] = []
        for span in self.split_text(content):
            text = normalize_whitespace(span)
            if not text:
                continue
            chunks.append(Chunk(text=text, source_document=source_document, chunk_index=len(chunks)))

        self.logger.debug(
            "Content chunked",
            document=source_document,
            content_length=len(content),
            chunks=len(chunks),
        )
        return chunks

    def _merge_splits(self, splits: List[str]) -> List[str]:
        """Greedily pack pieces into windows, keeping an overlapping tail."""
        size = self.config.max_chunk_size
        overlap = self.config.chunk_overlap

        merged: List[str] = []
        window: List[str] = []
        total = 0

        for piece in splits:
            if window and total + len(piece) > size:
                merged.append("".join(window))
                # Drop from the front until only the overlap tail remains
                # and the next piece fits.
                while window and (total > overlap or total + len(piece) > size):
                    total -= len(window.pop(0))
            window.append(piece)
            total += len(piece)

        if window:
            merged.append("".join(window))
        return merged


class RecursiveChunkingStrategy(BaseChunkingStrategy):
    """Separator-priority recursive splitting."""

    def split_text(self, content: str) -> List[str]:
        return self._split(content, self.config.separators)

    def _split(self, text: str, separators: List[str]) -> List[str]:
        separator = separators[-1]
        remaining: List[str] = []
        for i, candidate in enumerate(separators):
            if candidate == "" or candidate in text:
                separator = candidate
                remaining = separators[i + 1:]
                break

        pieces = _split_keeping_separator(text, separator)

        spans: List[str] = []
        pending: List[str] = []
        for piece in pieces:
            if len(piece) <= self.config.max_chunk_size:
                pending.append(piece)
                continue
            if pending:
                spans.extend(self._merge_splits(pending))
                pending = []
            if remaining:
                spans.extend(self._split(piece, remaining))
            else:
                spans.extend(self._merge_splits(list(piece)))

        if pending:
            spans.extend(self._merge_splits(pending))
        return spans


class FixedSizeChunkingStrategy(BaseChunkingStrategy):
    """Fixed-width windows with overlap, ignoring structure."""

    def split_text(self, content: str) -> List[str]:
        step = self.config.max_chunk_size - self.config.chunk_overlap
        return [
            content[start:start + self.config.max_chunk_size]
            for start in range(0, len(content), step)
        ]


def _split_keeping_separator(text: str, separator: str) -> List[str]:
    """Split ``text`` on ``separator``, leaving the separator on the left piece."""
    if separator == "":
        return list(text)
    parts = text.split(separator)
    pieces = [part + separator for part in parts[:-1]]
    pieces.append(parts[-1])
    return [piece for piece in pieces if piece]


def create_chunking_strategy(config: ChunkingConfig) -> BaseChunkingStrategy:
    """Instantiate the strategy named by ``config.strategy``."""
    strategies = {
        ChunkingStrategy.RECURSIVE: RecursiveChunkingStrategy,
        ChunkingStrategy.FIXED_SIZE: FixedSizeChunkingStrategy,
    }
    return strategies[config.strategy](config)
