"""
Knowledge store: canonical records in SQLite, mirrored in memory, with an
optional vector index collaborator.

Search goes to the index when one is configured and degrades to local
search (cosine over stored vectors, keyword scoring for keyword-only
records) when the index is absent or fails.
"""

import asyncio
from typing import Dict, List, Optional

import numpy as np

from ..core import dao
from ..core.errors import CollaboratorUnavailableError, ConfigurationError
from ..util.logging import logger
from .index import IVectorIndex
from .similarity import clipped_cosine, keyword_score
from .types import KnowledgeRecord, RetrievalMatch, now_ms

# Below this many filtered matches the search is repeated without the filter
MIN_FILTERED_MATCHES = 2


def rank_key(match: RetrievalMatch):
    """Score descending, then most recently verified, then insertion order."""
    verified_at = match.record.metadata.verified_at
    return (
        -match.score,
        0 if verified_at is not None else 1,
        -(verified_at or 0),
        match.record.inserted_seq,
    )


class KnowledgeStore:
    """Durable collection of knowledge records with filtered nearest-neighbour search."""

    def __init__(self, db_path: str, dimension: int, index: Optional[IVectorIndex] = None):
        self.db_path = db_path
        self.dimension = dimension
        self.index = index
        self._records: Dict[str, KnowledgeRecord] = {}
        self._next_seq = 1
        self.index_query_count = 0

    def load(self) -> int:
        """Hydrate the in-memory mirror from SQLite. Returns the record count."""
        records = dao.list_records(self.db_path)
        for record in records:
            if record.vector is not None and len(record.vector) != self.dimension:
                raise ConfigurationError(
                    f"Stored record {record.id} has dimension {len(record.vector)}, "
                    f"store is configured for {self.dimension}"
                )
        self._records = {r.id: r for r in records}
        self._next_seq = dao.max_inserted_seq(self.db_path) + 1
        logger.log_operation("knowledge.load", "success", {"records": len(records)})
        return len(records)

    async def rebuild_index(self) -> int:
        """Push every stored vector into the index collaborator."""
        if self.index is None:
            return 0

        self.index.clear()
        pushed = 0
        for record in self._records.values():
            if record.vector is None:
                continue
            await self.index.upsert(record.id, record.vector, self._index_metadata(record))
            pushed += 1

        logger.log_operation("knowledge.reindex", "success", {"vectors": pushed})
        return pushed

    @staticmethod
    def _index_metadata(record: KnowledgeRecord) -> Dict[str, object]:
        return {"category": record.metadata.category, "source": record.metadata.source}

    # Reads

    def get(self, record_id: str) -> Optional[KnowledgeRecord]:
        return self._records.get(record_id)

    def list_all(self) -> List[KnowledgeRecord]:
        return sorted(self._records.values(), key=lambda r: r.inserted_seq)

    def count(self) -> int:
        return len(self._records)

    def list_older_than(self, age_ms: int, now: Optional[int] = None) -> List[KnowledgeRecord]:
        """Records created more than age_ms before now."""
        cutoff = (now if now is not None else now_ms()) - age_ms
        return [r for r in self.list_all() if r.metadata.timestamp < cutoff]

    # Search

    async def search(self, query_vector: Optional[np.ndarray], top_k: int, min_similarity: float = 0.0,
                     category_filter: Optional[str] = None, query_text: Optional[str] = None) -> List[RetrievalMatch]:
        """
        Ranked search for the records nearest to query_vector.

        A category filter is an optimization only: when it leaves fewer than
        two matches, the same search is repeated without it.

        Args:
            query_vector: Embedded query; may be None for keyword-only search
            top_k: Maximum number of matches to return
            min_similarity: Matches scoring below this are excluded
            category_filter: Restrict to one category first
            query_text: Raw query text, used to score keyword-only records

        Returns:
            Matches sorted by score descending with deterministic tie-breaks.
        """
        if self.index is not None and query_vector is not None:
            try:
                matches = await self._index_search(query_vector, top_k, min_similarity, category_filter, query_text)
                if category_filter is not None and len(matches) < MIN_FILTERED_MATCHES:
                    matches = await self._index_search(query_vector, top_k, min_similarity, None, query_text)
                return matches
            except CollaboratorUnavailableError as e:
                logger.log_fallback("vector_index", str(e), {"mode": "local_search"})

        matches = self._local_search(query_vector, top_k, min_similarity, category_filter, query_text)
        if category_filter is not None and len(matches) < MIN_FILTERED_MATCHES:
            matches = self._local_search(query_vector, top_k, min_similarity, None, query_text)
        return matches

    async def _index_search(self, query_vector: np.ndarray, top_k: int, min_similarity: float,
                            category: Optional[str], query_text: Optional[str]) -> List[RetrievalMatch]:
        self.index_query_count += 1
        try:
            hits = await self.index.query(query_vector, top_k, category)
        except CollaboratorUnavailableError:
            raise
        except Exception as e:
            raise CollaboratorUnavailableError("vector_index", str(e), e) from e

        matches = []
        for hit in hits:
            record = self._records.get(hit.id)
            if record is None:
                continue
            score = max(0.0, min(1.0, float(hit.score)))
            if score <= 0.0 or score < min_similarity:
                continue
            matches.append(RetrievalMatch(record=record, score=score))

        # The index only holds vectors; keyword-only records are scored here
        matches.extend(self._keyword_matches(min_similarity, category, query_text))
        matches.sort(key=rank_key)
        return matches[:top_k]

    def _keyword_matches(self, min_similarity: float, category: Optional[str],
                         query_text: Optional[str]) -> List[RetrievalMatch]:
        """Keyword-scored matches among records stored without a vector."""
        if not query_text:
            return []
        matches = []
        for record in self._records.values():
            if record.vector is not None:
                continue
            if category is not None and record.metadata.category != category:
                continue
            score = keyword_score(query_text, record.text)
            if score <= 0.0 or score < min_similarity:
                continue
            matches.append(RetrievalMatch(record=record, score=score))
        return matches

    def _local_search(self, query_vector: Optional[np.ndarray], top_k: int, min_similarity: float,
                      category: Optional[str], query_text: Optional[str]) -> List[RetrievalMatch]:
        matches = []
        if query_vector is not None:
            for record in self._records.values():
                if record.vector is None:
                    continue
                if category is not None and record.metadata.category != category:
                    continue
                score = clipped_cosine(query_vector, record.vector)
                if score <= 0.0 or score < min_similarity:
                    continue
                matches.append(RetrievalMatch(record=record, score=score))

        matches.extend(self._keyword_matches(min_similarity, category, query_text))
        matches.sort(key=rank_key)
        return matches[:top_k]

    # Writes

    async def upsert(self, record: KnowledgeRecord) -> KnowledgeRecord:
        """Insert or overwrite a record by id; text, vector and metadata are replaced together."""
        if record.vector is not None:
            record.vector = np.asarray(record.vector, dtype=np.float32)
            if record.vector.ndim != 1 or record.vector.shape[0] != self.dimension:
                raise ConfigurationError(
                    f"Vector dimension {record.vector.shape} does not match store dimension {self.dimension}"
                )

        existing = self._records.get(record.id)
        if existing is not None:
            record.inserted_seq = existing.inserted_seq
        else:
            record.inserted_seq = self._next_seq
            self._next_seq += 1

        await asyncio.to_thread(dao.save_record, self.db_path, record)
        self._records[record.id] = record

        if self.index is not None:
            try:
                if record.vector is not None:
                    await self.index.upsert(record.id, record.vector, self._index_metadata(record))
                else:
                    await self.index.delete(record.id)
            except Exception as e:
                # Local search still sees the record
                logger.log_fallback("vector_index", f"upsert failed: {e}", {"record_id": record.id})

        logger.log_operation("knowledge.upsert", "success", {
            "record_id": record.id,
            "category": record.metadata.category,
            "source": record.metadata.source,
            "has_vector": record.vector is not None
        })
        return record

    async def delete(self, record_id: str) -> bool:
        """Delete a record; returns False when it did not exist."""
        removed = await asyncio.to_thread(dao.delete_record, self.db_path, record_id)
        removed = self._records.pop(record_id, None) is not None or removed

        if self.index is not None:
            try:
                await self.index.delete(record_id)
            except Exception as e:
                logger.log_fallback("vector_index", f"delete failed: {e}", {"record_id": record_id})

        if removed:
            logger.log_operation("knowledge.delete", "success", {"record_id": record_id})
        return removed

    async def save_metadata(self, record: KnowledgeRecord) -> None:
        """Persist a metadata-only change to an existing record."""
        if record.id not in self._records:
            return
        await asyncio.to_thread(dao.save_record, self.db_path, record)

    async def record_usage(self, record_ids: List[str], when: Optional[int] = None) -> None:
        """Increment usageCount and stamp lastUsed for each known record."""
        stamp = when if when is not None else now_ms()
        for record_id in record_ids:
            record = self._records.get(record_id)
            if record is None:
                continue
            record.metadata.usage_count += 1
            record.metadata.last_used = stamp
            await self.save_metadata(record)
