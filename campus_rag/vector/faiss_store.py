"""
FAISS-backed vector index collaborator.
"""

from typing import Dict, List, Optional

import numpy as np

from ..core.errors import CollaboratorUnavailableError
from .index import IVectorIndex, _normalize
from .types import QueryResult


class FaissVectorIndex(IVectorIndex):
    """FAISS-backed implementation of IVectorIndex.

    Vectors live in an IndexIDMap2 over a flat inner-product index, so
    normalized vectors score by cosine similarity and records can be
    replaced or removed by ID. Category filtering is applied after the
    search, over-fetching the whole index when a filter is set.
    """

    def __init__(self, dimension: int = 384):
        """
        Initialize FAISS vector index.

        Args:
            dimension: Dimension of the vectors (default: 384)
        """
        try:
            import faiss
        except ImportError:
            raise ImportError("FAISS not installed. Please install faiss-cpu package.")

        self.faiss = faiss
        self.dimension = dimension
        self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))

        # Keep track of record IDs and their corresponding FAISS ids
        self.id_to_faiss_id: Dict[str, int] = {}
        self.faiss_id_to_id: Dict[int, str] = {}
        self.metadata: Dict[str, Dict[str, object]] = {}
        self.next_faiss_id = 0

    def _remove(self, record_id: str) -> None:
        faiss_id = self.id_to_faiss_id.pop(record_id, None)
        if faiss_id is None:
            return
        self.index.remove_ids(np.array([faiss_id], dtype=np.int64))
        self.faiss_id_to_id.pop(faiss_id, None)
        self.metadata.pop(record_id, None)

    async def upsert(self, record_id: str, vector: np.ndarray, metadata: Dict[str, object]) -> None:
        if len(vector) != self.dimension:
            raise ValueError(f"Vector dimension {len(vector)} does not match expected dimension {self.dimension}")

        try:
            self._remove(record_id)

            normalized = _normalize(vector)
            if normalized is None:
                return

            faiss_id = self.next_faiss_id
            self.next_faiss_id += 1
            self.index.add_with_ids(
                np.asarray(normalized, dtype=np.float32).reshape(1, -1),
                np.array([faiss_id], dtype=np.int64)
            )
        except Exception as e:
            raise CollaboratorUnavailableError("vector_index", f"upsert failed: {e}", e) from e

        self.id_to_faiss_id[record_id] = faiss_id
        self.faiss_id_to_id[faiss_id] = record_id
        self.metadata[record_id] = dict(metadata or {})

    async def query(self, vector: np.ndarray, top_k: int = 5, category: Optional[str] = None) -> List[QueryResult]:
        if not self.index.ntotal:
            return []

        normalized_query = _normalize(vector)
        if normalized_query is None:
            return []

        fetch = self.index.ntotal if category is not None else min(top_k, self.index.ntotal)
        try:
            scores, indices = self.index.search(
                np.asarray(normalized_query, dtype=np.float32).reshape(1, -1), fetch
            )
        except Exception as e:
            raise CollaboratorUnavailableError("vector_index", f"search failed: {e}", e) from e

        results = []
        for score, faiss_id in zip(scores[0], indices[0]):
            record_id = self.faiss_id_to_id.get(int(faiss_id))
            if record_id is None:
                continue
            metadata = self.metadata.get(record_id, {})
            if category is not None and metadata.get("category") != category:
                continue
            results.append(QueryResult(id=record_id, score=float(score), metadata=dict(metadata)))
            if len(results) >= top_k:
                break

        return results

    async def delete(self, record_id: str) -> None:
        try:
            self._remove(record_id)
        except Exception as e:
            raise CollaboratorUnavailableError("vector_index", f"delete failed: {e}", e) from e

    def clear(self) -> None:
        self.index = self.faiss.IndexIDMap2(self.faiss.IndexFlatIP(self.dimension))
        self.id_to_faiss_id.clear()
        self.faiss_id_to_id.clear()
        self.metadata.clear()
        self.next_faiss_id = 0

    def count(self) -> int:
        return int(self.index.ntotal)
