"""
Per-user conversational memory with decay-weighted keyword relevance.
"""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..vector.similarity import keyword_overlap
from ..vector.types import now_ms
from . import dao


@dataclass
class MemoryEntry:
    """One past conversational turn."""
    user_id: str
    message: str
    response: str
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp_ms: int = field(default_factory=now_ms)
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MemoryEntry":
        return cls(
            user_id=row["user_id"],
            message=row["message"],
            response=row["response"],
            context=row.get("context") or {},
            timestamp_ms=row["timestamp_ms"],
            id=row.get("id")
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "message": self.message,
            "response": self.response,
            "context": self.context,
            "timestamp_ms": self.timestamp_ms
        }


def decay_weight(age_ms: float, half_life_ms: float) -> float:
    """exp(-age / halfLife); future timestamps count as age zero."""
    return math.exp(-max(0.0, age_ms) / half_life_ms)


class ConversationMemory:
    """
    Append-only, bounded, per-user log of past turns.

    The FIFO trim happens inside the same SQLite transaction as the insert,
    so same-user appends are serialized by the database and no update is lost.
    """

    def __init__(self, db_path: str, capacity: int = 100, half_life_ms: int = 7 * 24 * 60 * 60 * 1000):
        if capacity < 1:
            raise ValueError(f"Capacity must be >= 1: {capacity}")
        if half_life_ms <= 0:
            raise ValueError(f"Half life must be > 0: {half_life_ms}")
        self.db_path = db_path
        self.capacity = capacity
        self.half_life_ms = half_life_ms

    async def append(self, user_id: str, entry: MemoryEntry) -> MemoryEntry:
        """Append an entry to the user's log, evicting the oldest on overflow."""
        entry.user_id = user_id
        entry.id = await asyncio.to_thread(
            dao.append_memory,
            self.db_path,
            user_id,
            entry.message,
            entry.response,
            entry.context,
            entry.timestamp_ms,
            self.capacity
        )
        return entry

    async def entries(self, user_id: str) -> List[MemoryEntry]:
        """All of a user's entries, oldest first."""
        rows = await asyncio.to_thread(dao.list_memory, self.db_path, user_id)
        return [MemoryEntry.from_row(row) for row in rows]

    async def relevant(self, user_id: str, query: str, limit: int = 3,
                       now: Optional[int] = None) -> List[MemoryEntry]:
        """
        Top entries by keywordOverlap(query, message + response) * exp(-age / halfLife).

        Entries scoring zero are excluded. Equal scores favour the newer entry.
        """
        if not user_id or limit < 1:
            return []

        now = now if now is not None else now_ms()
        scored = []
        for entry in await self.entries(user_id):
            overlap = keyword_overlap(query, f"{entry.message} {entry.response}")
            if overlap <= 0:
                continue
            score = overlap * decay_weight(now - entry.timestamp_ms, self.half_life_ms)
            if score > 0:
                scored.append((score, entry))

        scored.sort(key=lambda item: (item[0], item[1].timestamp_ms), reverse=True)
        return [entry for _, entry in scored[:limit]]
