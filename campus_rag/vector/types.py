"""
Knowledge record types shared by the store, the index and the pipeline.
"""

import secrets
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional

import numpy as np


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class KnowledgeMetadata:
    """Metadata attached to every knowledge record."""

    category: str = "general"
    source: str = "manual"
    title: Optional[str] = None
    timestamp: int = field(default_factory=now_ms)
    """Creation time, epoch milliseconds"""

    verified: bool = False
    verification_status: Optional[str] = None
    """ACCURATE | NEEDS_UPDATE | INCORRECT once a fact-check has run"""

    verification_explanation: Optional[str] = None
    verified_at: Optional[int] = None
    usage_count: int = 0
    last_used: Optional[int] = None
    update_count: int = 0
    last_updated: Optional[int] = None
    origin_topic: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeMetadata":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        unknown = {k: v for k, v in data.items() if k not in cls.__dataclass_fields__}
        metadata = cls(**known)
        if unknown:
            metadata.extra.update(unknown)
        return metadata


@dataclass
class KnowledgeRecord:
    """A unit of retrievable knowledge."""

    id: str
    """Unique identifier for the record"""

    text: str
    """The knowledge text itself"""

    vector: Optional[np.ndarray]
    """Embedding of text; None for keyword-only records"""

    metadata: KnowledgeMetadata = field(default_factory=KnowledgeMetadata)

    inserted_seq: int = 0
    """Insertion order, used as the final ranking tie-break"""

    @property
    def title(self) -> str:
        return self.metadata.title or self.id

    @property
    def category(self) -> str:
        return self.metadata.category

    def to_dict(self, include_vector: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "text": self.text,
            "metadata": self.metadata.to_dict(),
            "has_vector": self.vector is not None,
        }
        if include_vector and self.vector is not None:
            data["vector"] = self.vector.tolist()
        return data


@dataclass
class RetrievalMatch:
    """A ranked search result."""

    record: KnowledgeRecord
    score: float
    """Similarity score of the match (0-1)"""


@dataclass
class QueryResult:
    """Represents a search hit returned by a vector index."""

    id: str
    """Identifier for the matching record"""

    score: float
    """Similarity score of the match"""

    metadata: Dict[str, object]
    """Metadata stored alongside the vector in the index"""


def make_record_id(prefix: str = "kb", when: Optional[int] = None) -> str:
    """Time-and-random id: <prefix>_<epoch ms>_<6 hex chars>."""
    stamp = when if when is not None else now_ms()
    return f"{prefix}_{stamp}_{secrets.token_hex(3)}"
