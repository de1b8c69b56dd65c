"""
Structured logging for the retrieval core.
Every pipeline event is emitted as "Operation: X, Status: Y, Details: {...}".
"""

import logging
from typing import Any, Dict, List

import numpy as np

DEFAULT_SENSITIVE_FIELDS = ['password', 'secret', 'token', 'api_key', 'authorization']
MAX_LOGGED_CHARS = 100
QUERY_EXCERPT_CHARS = 50


def excerpt(text: str, limit: int = QUERY_EXCERPT_CHARS) -> str:
    return text[:limit] + "..." if len(text) > limit else text


class StructuredLogger:
    """Structured logger for retrieval, learning and lifecycle events."""

    def __init__(self, name: str = "campus_rag"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {sanitize_payload(details)}"

        self.logger.log(level, message)

    def set_debug(self, enabled: bool):
        """DEBUG-level events (per-request traces) are emitted only when enabled."""
        self.logger.setLevel(logging.DEBUG if enabled else logging.INFO)

    def _with(self, base: Dict[str, Any], extra: Dict[str, Any] = None) -> Dict[str, Any]:
        if extra:
            base.update(extra)
        return base

    def log_gate(self, gate: str, outcome: str, details: Dict[str, Any] = None):
        """Pipeline gate decision: safety, category or confidence."""
        self.log_operation(f"gate.{gate}", outcome, details)

    def log_retrieval(self, query: str, match_count: int, best_score: float, category: str = None,
                      filtered: bool = False, status: str = "success"):
        details = {
            "query": excerpt(query),
            "match_count": match_count,
            "best_score": round(best_score, 4),
            "filtered": filtered
        }
        if category:
            details["category"] = category

        self.log_operation("retrieval.search", status, details)

    def log_fallback(self, component: str, reason: str, details: Dict[str, Any] = None):
        """A collaborator failed and a degraded path was taken instead."""
        self.log_operation(
            f"fallback.{component}",
            "degraded",
            self._with({"component": component, "reason": str(reason)[:MAX_LOGGED_CHARS]}, details),
            level=logging.WARNING
        )

    def log_learning_job(self, query: str, status: str, chunk_count: int = 0, details: Dict[str, Any] = None):
        level = logging.ERROR if status == "failed" else logging.INFO
        self.log_operation(
            "learning.job",
            status,
            self._with({"query": excerpt(query), "chunk_count": chunk_count}, details),
            level=level
        )

    def log_verification(self, record_id: str, verdict: str, details: Dict[str, Any] = None):
        self.log_operation(
            "lifecycle.verification", verdict.lower(), self._with({"record_id": record_id, "verdict": verdict}, details)
        )

    def log_eviction(self, scanned: int, deleted: int, details: Dict[str, Any] = None):
        self.log_operation("lifecycle.eviction", "success", self._with({"scanned": scanned, "deleted": deleted}, details))

    def log_scheduler_task(self, task_name: str, start_time: float, end_time: float, status: str = "success",
                           details: Dict[str, Any] = None):
        """Scheduled task run with its duration in milliseconds."""
        level = logging.ERROR if status == "failed" else logging.INFO
        self.log_operation(
            f"scheduler.{task_name}",
            status,
            self._with({"duration_ms": round((end_time - start_time) * 1000, 2)}, details),
            level=level
        )

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.logger.error(message)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """
    Make a payload safe and short enough to log.

    Sensitive keys are redacted, strings are truncated and embedding vectors
    are summarized by their dimension instead of being dumped.
    """
    if sensitive_fields is None:
        sensitive_fields = DEFAULT_SENSITIVE_FIELDS

    if isinstance(payload, dict):
        return {
            k: "[REDACTED]" if not reveal_sensitive and k in sensitive_fields
            else sanitize_payload(v, reveal_sensitive, sensitive_fields)
            for k, v in payload.items()
        }
    if isinstance(payload, np.ndarray):
        return f"<vector dim={payload.shape[-1] if payload.ndim else 0}>"
    if isinstance(payload, str):
        return excerpt(payload, MAX_LOGGED_CHARS)
    if isinstance(payload, (list, tuple)):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    return payload


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None,
                sensitive_fields: List[str] = None):
    """Audit-level event: learning failures, evictions and knowledge edits."""
    log_details = dict(identifiers or {})
    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(f"audit.{event_type}", "recorded", log_details)
