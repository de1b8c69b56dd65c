"""
Vector index collaborator contract and the in-process implementation.

The index is advisory: the knowledge store keeps the canonical records and
falls back to local search whenever the index fails.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import numpy as np

from .types import QueryResult


class IVectorIndex(ABC):
    """Abstract interface for vector index operations."""

    dimension: int

    @abstractmethod
    async def query(self, vector: np.ndarray, top_k: int = 5, category: Optional[str] = None) -> List[QueryResult]:
        """Return up to top_k nearest records, optionally restricted to one category."""
        pass

    @abstractmethod
    async def upsert(self, record_id: str, vector: np.ndarray, metadata: Dict[str, object]) -> None:
        """Insert or replace the vector stored under record_id."""
        pass

    @abstractmethod
    async def delete(self, record_id: str) -> None:
        """Delete a vector by ID; unknown IDs are ignored."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all vectors from the index."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Number of vectors held."""
        pass


def _normalize(vector: np.ndarray) -> Optional[np.ndarray]:
    vector = np.asarray(vector, dtype=np.float32)
    norm = np.linalg.norm(vector)
    if norm == 0:
        return None
    return vector / norm


class InMemoryVectorIndex(IVectorIndex):
    """Simple in-memory implementation of IVectorIndex using cosine similarity."""

    def __init__(self, dimension: int = 384):
        self.dimension = dimension
        self._vectors: Dict[str, np.ndarray] = {}  # record_id -> normalized vector
        self._metadata: Dict[str, Dict[str, object]] = {}

    async def query(self, vector: np.ndarray, top_k: int = 5, category: Optional[str] = None) -> List[QueryResult]:
        if not self._vectors:
            return []

        normalized_query = _normalize(vector)
        if normalized_query is None:
            return []

        similarities = {}
        for record_id, stored_vector in self._vectors.items():
            if category is not None and self._metadata[record_id].get("category") != category:
                continue
            similarities[record_id] = float(np.dot(normalized_query, stored_vector))

        sorted_results = sorted(similarities.items(), key=lambda x: x[1], reverse=True)
        return [
            QueryResult(id=record_id, score=score, metadata=dict(self._metadata[record_id]))
            for record_id, score in sorted_results[:top_k]
        ]

    async def upsert(self, record_id: str, vector: np.ndarray, metadata: Dict[str, object]) -> None:
        if len(vector) != self.dimension:
            raise ValueError(f"Vector dimension {len(vector)} does not match expected dimension {self.dimension}")

        normalized = _normalize(vector)
        if normalized is None:
            # Zero vectors can never match; drop any stale entry
            await self.delete(record_id)
            return

        self._vectors[record_id] = normalized
        self._metadata[record_id] = dict(metadata or {})

    async def delete(self, record_id: str) -> None:
        self._vectors.pop(record_id, None)
        self._metadata.pop(record_id, None)

    def clear(self) -> None:
        self._vectors.clear()
        self._metadata.clear()

    def count(self) -> int:
        return len(self._vectors)
