"""
Chunk model shared by the ingestion pipeline and the vector stores.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Chunk:
    """A bounded span of a source document, embedded independently for retrieval."""
    text: str
    source_document: str
    chunk_index: int
    embedding: Optional[Tuple[float, ...]] = field(default=None, repr=False, compare=False)

    @property
    def chunk_id(self) -> str:
        return f"{self.source_document}#{self.chunk_index}"

    @property
    def length(self) -> int:
        return len(self.text)

    def with_embedding(self, vector: List[float]) -> "Chunk":
        return Chunk(
            text=self.text,
            source_document=self.source_document,
            chunk_index=self.chunk_index,
            embedding=tuple(float(x) for x in vector),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Metadata form persisted next to the index (vectors live in the index itself)."""
        return {
            'text': self.text,
            'source_document': self.source_document,
            'chunk_index': self.chunk_index,
            'length': self.length,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], embedding: Optional[List[float]] = None) -> "Chunk":
        return cls(
            text=data['text'],
            source_document=data['source_document'],
            chunk_index=int(data['chunk_index']),
            embedding=tuple(float(x) for x in embedding) if embedding is not None else None,
        )

    def __len__(self) -> int:
        return len(self.text)
