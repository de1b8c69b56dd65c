"""
Test cases for the vector index collaborators (in-memory and FAISS).
"""

import asyncio

import numpy as np
import pytest

from campus_rag.vector.index import InMemoryVectorIndex
from campus_rag.vector.knowledge_store import KnowledgeStore
from campus_rag.vector.types import KnowledgeMetadata, KnowledgeRecord

from conftest import DIM, unit


def make_faiss_index(dimension):
    pytest.importorskip("faiss")
    from campus_rag.vector.faiss_store import FaissVectorIndex
    return FaissVectorIndex(dimension)


@pytest.fixture(params=["memory", "faiss"])
def index(request):
    if request.param == "faiss":
        return make_faiss_index(DIM)
    return InMemoryVectorIndex(DIM)


def upsert(index, record_id, vector, category="general"):
    asyncio.run(index.upsert(record_id, vector, {"category": category, "source": "manual"}))


class TestVectorIndex:

    def test_empty_query(self, index):
        assert asyncio.run(index.query(unit(0))) == []

    def test_nearest_first(self, index):
        upsert(index, "far", unit(1))
        upsert(index, "near", unit(0) + 0.2 * unit(1))
        upsert(index, "exact", unit(0))

        results = asyncio.run(index.query(unit(0), top_k=2))

        assert [r.id for r in results] == ["exact", "near"]
        assert results[0].score == pytest.approx(1.0, abs=1e-5)
        assert results[0].metadata["category"] == "general"

    def test_category_filter(self, index):
        upsert(index, "fees_1", unit(0), category="fees")
        upsert(index, "campus_1", unit(0), category="campus")
        upsert(index, "campus_2", unit(1), category="campus")

        results = asyncio.run(index.query(unit(0), top_k=5, category="campus"))

        assert [r.id for r in results] == ["campus_1", "campus_2"]

    def test_upsert_replaces(self, index):
        upsert(index, "a", unit(0))
        upsert(index, "a", unit(1), category="fees")

        results = asyncio.run(index.query(unit(1), top_k=5))

        assert index.count() == 1
        assert results[0].id == "a"
        assert results[0].metadata["category"] == "fees"

    def test_delete(self, index):
        upsert(index, "a", unit(0))
        upsert(index, "b", unit(1))

        asyncio.run(index.delete("a"))
        asyncio.run(index.delete("unknown"))

        assert index.count() == 1
        assert [r.id for r in asyncio.run(index.query(unit(0)))] == ["b"]

    def test_clear(self, index):
        upsert(index, "a", unit(0))
        index.clear()
        assert index.count() == 0

    def test_zero_vector_skipped(self, index):
        upsert(index, "zero", np.zeros(DIM, dtype=np.float32))
        assert index.count() == 0
        assert asyncio.run(index.query(np.zeros(DIM, dtype=np.float32))) == []

    def test_dimension_mismatch(self, index):
        with pytest.raises(ValueError):
            upsert(index, "a", np.ones(DIM + 1, dtype=np.float32))


def test_store_rebuilds_faiss_index(db_path):
    """Records persisted without an index are pushed into a fresh FAISS index on rebuild."""
    plain = KnowledgeStore(db_path, DIM)
    plain.load()
    for i in range(3):
        asyncio.run(plain.upsert(KnowledgeRecord(
            id=f"kb_{i}", text=f"fact {i}", vector=unit(i), metadata=KnowledgeMetadata(category="campus")
        )))

    indexed = KnowledgeStore(db_path, DIM, make_faiss_index(DIM))
    indexed.load()

    assert asyncio.run(indexed.rebuild_index()) == 3
    assert indexed.index.count() == 3

    matches = asyncio.run(indexed.search(unit(2), top_k=1))
    assert matches[0].record.id == "kb_2"
    assert indexed.index_query_count == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
