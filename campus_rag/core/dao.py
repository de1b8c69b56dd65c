"""
Data access functions over the SQLite tables.

Functions are synchronous; async callers run them with asyncio.to_thread.
Every function opens its own connection so calls are safe from any thread.
"""

import json
from typing import Any, Dict, List, Optional

import numpy as np

from ..util.logging import logger
from ..vector.types import KnowledgeMetadata, KnowledgeRecord
from .db import get_db


def _row_to_record(row) -> KnowledgeRecord:
    record_id, text, vector_json, metadata_json, inserted_seq = row
    vector = None
    if vector_json is not None:
        vector = np.asarray(json.loads(vector_json), dtype=np.float32)
    return KnowledgeRecord(
        id=record_id,
        text=text,
        vector=vector,
        metadata=KnowledgeMetadata.from_dict(json.loads(metadata_json)),
        inserted_seq=inserted_seq
    )


def save_record(db_path: str, record: KnowledgeRecord) -> None:
    """Insert or replace a knowledge record; text, vector and metadata change together."""
    vector_json = None
    if record.vector is not None:
        vector_json = json.dumps([float(x) for x in record.vector])

    with get_db(db_path) as conn:
        conn.execute(
            '''
            INSERT INTO knowledge (id, text, vector, metadata, inserted_seq)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                text = excluded.text,
                vector = excluded.vector,
                metadata = excluded.metadata
            ''',
            (record.id, record.text, vector_json, json.dumps(record.metadata.to_dict()), record.inserted_seq)
        )
        conn.commit()


def get_record(db_path: str, record_id: str) -> Optional[KnowledgeRecord]:
    """Get a knowledge record by ID."""
    with get_db(db_path) as conn:
        row = conn.execute(
            "SELECT id, text, vector, metadata, inserted_seq FROM knowledge WHERE id = ?",
            (record_id,)
        ).fetchone()
    return _row_to_record(row) if row else None


def delete_record(db_path: str, record_id: str) -> bool:
    """Delete a knowledge record; returns whether a row was removed."""
    with get_db(db_path) as conn:
        cursor = conn.execute("DELETE FROM knowledge WHERE id = ?", (record_id,))
        conn.commit()
        return cursor.rowcount > 0


def list_records(db_path: str) -> List[KnowledgeRecord]:
    """List all knowledge records in insertion order."""
    with get_db(db_path) as conn:
        rows = conn.execute(
            "SELECT id, text, vector, metadata, inserted_seq FROM knowledge ORDER BY inserted_seq"
        ).fetchall()
    return [_row_to_record(row) for row in rows]


def list_records_older_than(db_path: str, cutoff_ms: int) -> List[KnowledgeRecord]:
    """List records whose creation timestamp is before cutoff_ms."""
    return [r for r in list_records(db_path) if r.metadata.timestamp < cutoff_ms]


def max_inserted_seq(db_path: str) -> int:
    with get_db(db_path) as conn:
        row = conn.execute("SELECT MAX(inserted_seq) FROM knowledge").fetchone()
    return row[0] if row and row[0] is not None else 0


def append_memory(db_path: str, user_id: str, message: str, response: str,
                  context: Dict[str, Any], timestamp_ms: int, capacity: int) -> int:
    """
    Append a memory entry and trim the user's log to capacity, oldest first.

    Insert and trim share one transaction so concurrent appends for the same
    user cannot leave the log over capacity.

    Returns:
        The new entry's row id.
    """
    with get_db(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(
            "INSERT INTO memory (user_id, message, response, context, timestamp_ms) VALUES (?, ?, ?, ?, ?)",
            (user_id, message, response, json.dumps(context or {}), timestamp_ms)
        )
        entry_id = cursor.lastrowid
        cursor.execute(
            '''
            DELETE FROM memory WHERE user_id = ? AND id NOT IN (
                SELECT id FROM memory WHERE user_id = ? ORDER BY id DESC LIMIT ?
            )
            ''',
            (user_id, user_id, capacity)
        )
        trimmed = cursor.rowcount
        conn.commit()

    if trimmed > 0:
        logger.log_operation("memory.trim", "success", {"user_id": user_id, "trimmed": trimmed})
    return entry_id


def list_memory(db_path: str, user_id: str) -> List[Dict[str, Any]]:
    """List a user's memory entries, oldest first."""
    with get_db(db_path) as conn:
        rows = conn.execute(
            "SELECT id, user_id, message, response, context, timestamp_ms FROM memory WHERE user_id = ? ORDER BY id",
            (user_id,)
        ).fetchall()

    return [
        {
            "id": row[0],
            "user_id": row[1],
            "message": row[2],
            "response": row[3],
            "context": json.loads(row[4]) if row[4] else {},
            "timestamp_ms": row[5],
        }
        for row in rows
    ]


def log_learning_failure(db_path: str, query: str, chunk: Optional[str], status: str,
                         error: str, failed_at: int) -> int:
    """Persist a failed learning step for audit and retry."""
    with get_db(db_path) as conn:
        cursor = conn.execute(
            "INSERT INTO learning_failures (query, chunk, status, error, failed_at) VALUES (?, ?, ?, ?, ?)",
            (query, chunk, status, error, failed_at)
        )
        conn.commit()
        return cursor.lastrowid


def list_learning_failures(db_path: str, limit: int = 100) -> List[Dict[str, Any]]:
    """List recent learning failures, newest first."""
    with get_db(db_path) as conn:
        rows = conn.execute(
            "SELECT id, query, chunk, status, error, failed_at FROM learning_failures ORDER BY id DESC LIMIT ?",
            (limit,)
        ).fetchall()

    return [
        {"id": r[0], "query": r[1], "chunk": r[2], "status": r[3], "error": r[4], "failed_at": r[5]}
        for r in rows
    ]
