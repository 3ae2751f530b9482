"""
Nearest-neighbour index engine.

``VectorIndexEngine`` is the narrow interface the registry relies on
(add, search, save, load). ``NumpyVectorIndex`` is a flat, exact cosine
index over a numpy matrix, serialized as ``vectors.npy`` plus ``chunks.json``.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import numpy as np

from docchat.processing.chunks import Chunk

VECTORS_FILE = "vectors.npy"
CHUNKS_FILE = "chunks.json"


@dataclass(frozen=True)
class SearchHit:
    """A chunk returned by a search, with its distance to the query."""
    chunk: Chunk
    distance: float
    rank: int

    @property
    def score(self) -> float:
        """Cosine similarity, 1 - distance."""
        return 1.0 - self.distance

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.chunk.to_dict(),
            'distance': self.distance,
            'score': self.score,
            'rank': self.rank,
        }


class VectorIndexEngine(ABC):
    """Interface of an in-memory nearest-neighbour structure with disk serialization."""

    @property
    @abstractmethod
    def dimension(self) -> Optional[int]:
        """Vector dimension, or None while the index is empty."""

    @abstractmethod
    def __len__(self) -> int:
        ...

    @abstractmethod
    def add(self, chunks: List[Chunk]) -> None:
        """Append embedded chunks; insertion order is preserved."""

    @abstractmethod
    def remove_document(self, document: str) -> int:
        """Drop every chunk of ``document``; returns how many were removed."""

    @abstractmethod
    def search(self, vector: List[float], k: int) -> List[SearchHit]:
        """Return at most ``k`` hits by ascending distance, ties by insertion order."""

    @abstractmethod
    def copy(self) -> "VectorIndexEngine":
        """Independent copy used for copy-on-write updates."""

    @abstractmethod
    def save(self, path: Path) -> None:
        """Write the index into directory ``path``."""

    @classmethod
    @abstractmethod
    def load(cls, path: Path) -> "VectorIndexEngine":
        """Read an index previously written by ``save``."""

    def documents(self) -> Set[str]:
        return {chunk.source_document for chunk in self.chunks()}

    @abstractmethod
    def chunks(self) -> List[Chunk]:
        ...


class NumpyVectorIndex(VectorIndexEngine):
    """Exact cosine-distance index backed by a dense float32 matrix."""

    def __init__(self, dimension: Optional[int] = None):
        self._dimension = dimension
        self._chunks: List[Chunk] = []
        self._vectors = np.zeros((0, dimension or 0), dtype=np.float32)

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def __len__(self) -> int:
        return len(self._chunks)

    def chunks(self) -> List[Chunk]:
        return list(self._chunks)

    def add(self, chunks: List[Chunk]) -> None:
        if not chunks:
            return
        missing = [c.chunk_index for c in chunks if c.embedding is None]
        if missing:
            raise ValueError(f"Chunks without embeddings: {missing}")

        matrix = np.asarray([c.embedding for c in chunks], dtype=np.float32)
        if matrix.ndim != 2:
            raise ValueError("Embeddings must all have the same length")
        if self._dimension is None:
            self._dimension = matrix.shape[1]
            self._vectors = np.zeros((0, self._dimension), dtype=np.float32)
        if matrix.shape[1] != self._dimension:
            raise ValueError(
                f"Embedding dimension {matrix.shape[1]} does not match index dimension {self._dimension}"
            )

        self._vectors = np.vstack([self._vectors, matrix])
        # Vectors live in the matrix; keep the chunk metadata light
        self._chunks.extend(
            Chunk(text=c.text, source_document=c.source_document, chunk_index=c.chunk_index)
            for c in chunks
        )

    def remove_document(self, document: str) -> int:
        keep = [i for i, c in enumerate(self._chunks) if c.source_document != document]
        removed = len(self._chunks) - len(keep)
        if removed:
            self._chunks = [self._chunks[i] for i in keep]
            self._vectors = self._vectors[keep]
        return removed

    def search(self, vector: List[float], k: int) -> List[SearchHit]:
        if k <= 0 or not self._chunks:
            return []

        query = np.asarray(vector, dtype=np.float32)
        if query.shape != (self._dimension,):
            raise ValueError(
                f"Query dimension {query.shape[-1] if query.ndim else 0} does not match index dimension {self._dimension}"
            )

        norms = np.linalg.norm(self._vectors, axis=1) * np.linalg.norm(query)
        dots = self._vectors @ query
        similarities = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
        distances = 1.0 - similarities

        # Stable sort keeps insertion order among equal distances
        order = np.argsort(distances, kind="stable")[:k]
        return [
            SearchHit(chunk=self._chunks[i], distance=float(distances[i]), rank=rank)
            for rank, i in enumerate(order)
        ]

    def copy(self) -> "NumpyVectorIndex":
        clone = NumpyVectorIndex(self._dimension)
        clone._chunks = list(self._chunks)
        clone._vectors = self._vectors.copy()
        return clone

    def save(self, path: Path) -> None:
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)
        with open(path / VECTORS_FILE, "wb") as handle:
            np.save(handle, self._vectors)
            handle.flush()
        with open(path / CHUNKS_FILE, "w", encoding="utf-8") as handle:
            json.dump(
                {'dimension': self._dimension, 'chunks': [c.to_dict() for c in self._chunks]},
                handle,
                ensure_ascii=False,
            )
            handle.flush()

    @classmethod
    def load(cls, path: Path) -> "NumpyVectorIndex":
        path = Path(path)
        with open(path / CHUNKS_FILE, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
        vectors = np.load(path / VECTORS_FILE)

        chunks = [Chunk.from_dict(item) for item in payload['chunks']]
        if len(chunks) != vectors.shape[0]:
            raise ValueError(
                f"Index at {path} is inconsistent: {len(chunks)} chunks, {vectors.shape[0]} vectors"
            )

        index = cls(payload.get('dimension'))
        index._chunks = chunks
        index._vectors = vectors.astype(np.float32, copy=False)
        return index
