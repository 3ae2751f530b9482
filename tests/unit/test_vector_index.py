"""
Unit tests for the numpy vector index.
"""

import pytest

from docchat.processing.chunks import Chunk
from docchat.vector.index import NumpyVectorIndex


def chunk(document, index, vector, text=None):
    return Chunk(text=text or f"{document} part {index}", source_document=document, chunk_index=index).with_embedding(vector)


class TestNumpyVectorIndex:
    """Test cases for exact cosine search."""

    def test_search_orders_by_ascending_distance(self):
        """Test that nearer chunks rank first."""
        index = NumpyVectorIndex()
        index.add([
            chunk("a.txt", 0, [1.0, 0.0]),
            chunk("a.txt", 1, [0.0, 1.0]),
            chunk("a.txt", 2, [1.0, 1.0]),
        ])

        hits = index.search([1.0, 0.0], k=3)

        assert [h.chunk.chunk_index for h in hits] == [0, 2, 1]
        assert [h.rank for h in hits] == [0, 1, 2]
        assert hits[0].distance == pytest.approx(0.0, abs=1e-6)
        assert hits[0].score == pytest.approx(1.0, abs=1e-6)
        assert hits[1].distance < hits[2].distance

    def test_ties_keep_insertion_order(self):
        """Test that equal distances are returned in ingestion order."""
        index = NumpyVectorIndex()
        index.add([chunk("b.txt", i, [2.0, 0.0]) for i in range(3)])
        index.add([chunk("a.txt", 0, [1.0, 0.0])])

        hits = index.search([1.0, 0.0], k=4)

        assert [h.chunk.chunk_id for h in hits] == ["b.txt#0", "b.txt#1", "b.txt#2", "a.txt#0"]

    def test_k_bounds(self):
        """Test that k caps the result count and k <= 0 returns nothing."""
        index = NumpyVectorIndex()
        index.add([chunk("a.txt", i, [1.0, float(i)]) for i in range(3)])

        assert len(index.search([1.0, 0.0], k=10)) == 3
        assert len(index.search([1.0, 0.0], k=2)) == 2
        assert index.search([1.0, 0.0], k=0) == []
        assert NumpyVectorIndex().search([1.0, 0.0], k=5) == []

    def test_dimension_mismatch(self):
        """Test rejection of vectors of the wrong dimension."""
        index = NumpyVectorIndex()
        index.add([chunk("a.txt", 0, [1.0, 0.0])])

        with pytest.raises(ValueError):
            index.add([chunk("a.txt", 1, [1.0, 0.0, 0.0])])
        with pytest.raises(ValueError):
            index.search([1.0, 0.0, 0.0], k=1)
        assert len(index) == 1

    def test_chunks_require_embeddings(self):
        """Test that unembedded chunks are rejected."""
        with pytest.raises(ValueError):
            NumpyVectorIndex().add([Chunk(text="x", source_document="a.txt", chunk_index=0)])

    def test_remove_document(self):
        """Test dropping every chunk of one document."""
        index = NumpyVectorIndex()
        index.add([chunk("a.txt", 0, [1.0, 0.0]), chunk("b.txt", 0, [0.0, 1.0]), chunk("a.txt", 1, [1.0, 1.0])])

        assert index.remove_document("a.txt") == 2
        assert index.remove_document("missing.txt") == 0
        assert index.documents() == {"b.txt"}
        assert [h.chunk.chunk_id for h in index.search([1.0, 0.0], k=5)] == ["b.txt#0"]

    def test_copy_is_independent(self):
        """Test that mutating a copy leaves the original unchanged."""
        index = NumpyVectorIndex()
        index.add([chunk("a.txt", 0, [1.0, 0.0])])

        clone = index.copy()
        clone.add([chunk("b.txt", 0, [0.0, 1.0])])

        assert len(index) == 1
        assert len(clone) == 2

    def test_save_and_load(self, tmp_path):
        """Test that a saved index loads with identical search results."""
        index = NumpyVectorIndex()
        index.add([
            chunk("a.txt", 0, [1.0, 0.0], text="Employees must badge in by 9am."),
            chunk("a.txt", 1, [0.0, 1.0], text="Lunch is at noon."),
        ])
        index.save(tmp_path / "v1")

        loaded = NumpyVectorIndex.load(tmp_path / "v1")

        assert loaded.dimension == 2
        assert [c.text for c in loaded.chunks()] == ["Employees must badge in by 9am.", "Lunch is at noon."]
        assert [h.chunk.chunk_id for h in loaded.search([0.0, 1.0], k=2)] == ["a.txt#1", "a.txt#0"]
