"""
Knowledge lifecycle: categorization, ingestion, updates, delayed
fact-check verification, usage statistics and stale eviction.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..agents.classifier import parse_category
from ..util.logging import logger, audit_event
from ..util.payload import extract_payload, first_line
from ..vector.embeddings import IEmbeddingProvider
from ..vector.knowledge_store import KnowledgeStore
from ..vector.types import KnowledgeMetadata, KnowledgeRecord, make_record_id, now_ms
from .config import CATEGORY_DESCRIPTIONS, first_priority_category
from .errors import EmptyInputError
from .scheduler import TaskScheduler

DAY_MS = 24 * 60 * 60 * 1000
OUTDATED_AFTER_DAYS = 30

VERDICTS = ("ACCURATE", "NEEDS_UPDATE", "INCORRECT")

# Sources whose facts are re-checked after ingestion
VERIFIED_SOURCES = ("web", "web_auto_learned", "user")

VERIFY_INSTRUCTIONS = """You fact-check entries in a university knowledge base.
Judge whether the entry is still accurate and current.
Answer on the first line with exactly one of: ACCURATE, NEEDS_UPDATE, INCORRECT.
On the following lines give a one or two sentence explanation."""


def categorize_instructions(categories) -> str:
    lines = [f"- {name}: {CATEGORY_DESCRIPTIONS.get(name, name)}" for name in categories]
    return (
        "Assign this knowledge base entry to one category.\n"
        + "\n".join(lines)
        + "\nReply with exactly one category name."
    )


@dataclass
class EvictionReport:
    """Outcome of one stale-knowledge eviction pass."""
    started_at: datetime
    max_age_ms: int
    completed_at: Optional[datetime] = None
    scanned: int = 0
    deleted: List[str] = field(default_factory=list)
    retained: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        data = {
            "operation": "evict_stale",
            "started_at": self.started_at.isoformat(),
            "max_age_ms": self.max_age_ms,
            "scanned": self.scanned,
            "deleted": self.deleted,
            "retained": self.retained,
            "errors": self.errors
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


def parse_verdict(raw: str) -> Tuple[Optional[str], str]:
    """Return (verdict, explanation); verdict is None when the answer names none."""
    payload = extract_payload(raw)
    if isinstance(payload, dict) and isinstance(payload.get("verdict"), str):
        verdict = payload["verdict"].strip().upper()
        return (verdict if verdict in VERDICTS else None), str(payload.get("explanation", "")).strip()

    head = first_line(raw).upper().replace(" ", "_")
    # Longer spellings first so "ACCURATE" inside "INACCURATE" cannot win
    for spelling, verdict in (("NEEDS_UPDATE", "NEEDS_UPDATE"), ("INCORRECT", "INCORRECT"),
                              ("INACCURATE", "INCORRECT"), ("ACCURATE", "ACCURATE")):
        if spelling in head:
            lines = raw.strip().splitlines()
            return verdict, " ".join(line.strip() for line in lines[1:]).strip()
    return None, raw.strip()


def is_evictable(record: KnowledgeRecord) -> bool:
    """Stale records go unless they were verified as accurate."""
    return not record.metadata.verified and record.metadata.verification_status != "ACCURATE"


class KnowledgeLifecycleManager:
    """Owns every mutation of a knowledge record after the first write."""

    def __init__(self, store: KnowledgeStore, embedder: IEmbeddingProvider, classifier,
                 scheduler: Optional[TaskScheduler] = None, categories: Tuple[str, ...] = (),
                 verification_enabled: bool = True, verification_delay_sec: int = 3600,
                 stale_after_days: int = 90):
        self.store = store
        self.embedder = embedder
        self.classifier = classifier
        self.scheduler = scheduler
        self.categories = tuple(categories) or tuple(CATEGORY_DESCRIPTIONS)
        self.verification_enabled = verification_enabled
        self.verification_delay_sec = verification_delay_sec
        self.stale_after_days = stale_after_days

    async def categorize(self, text: str) -> str:
        """Pick a taxonomy category; the first-priority category on any failure."""
        default = first_priority_category()
        try:
            raw = await self.classifier.classify(text[:1000], categorize_instructions(self.categories))
        except Exception as e:
            logger.log_fallback("categorize", str(e), {"outcome": default})
            return default

        category, _ = parse_category(raw, self.categories)
        if category not in self.categories:
            return default
        return category

    def schedule_verification(self, record_id: str, delay_sec: Optional[int] = None) -> bool:
        """Queue a fact-check for record_id; returns False when verification is off."""
        if not self.verification_enabled or self.scheduler is None:
            return False
        delay = self.verification_delay_sec if delay_sec is None else delay_sec
        self.scheduler.schedule(f"verify:{record_id}", delay, self.verify, record_id)
        return True

    def handle_learned_record(self, record: KnowledgeRecord):
        """Hook for records written by the self-learning loop."""
        if record.metadata.source in VERIFIED_SOURCES:
            self.schedule_verification(record.id)

    async def verify(self, record_id: str) -> Optional[str]:
        """
        Fact-check a record and store the verdict on it.

        A record deleted or replaced while the check runs is a no-op. Collaborator failures
        leave the record unverified.

        Returns:
            The verdict, or None when nothing was stored.
        """
        record = self.store.get(record_id)
        if record is None:
            logger.log_operation("lifecycle.verification", "skipped", {"record_id": record_id, "reason": "missing"})
            return None

        checked_text = record.text
        checked_updates = record.metadata.update_count
        prompt = (
            f"Category: {record.metadata.category}\n"
            f"Source: {record.metadata.source}\n"
            f"Entry: {record.text}"
        )
        try:
            raw = await self.classifier.classify(prompt, VERIFY_INSTRUCTIONS)
        except Exception as e:
            logger.log_fallback("verification", str(e), {"record_id": record_id})
            return None

        verdict, explanation = parse_verdict(raw)
        if verdict is None:
            logger.log_operation("lifecycle.verification", "unparsed", {"record_id": record_id, "raw": raw[:100]})
            return None

        # The verdict only applies to the text that was checked
        record = self.store.get(record_id)
        if record is None:
            return None
        if record.text != checked_text or record.metadata.update_count != checked_updates:
            logger.log_operation("lifecycle.verification", "stale", {"record_id": record_id, "verdict": verdict})
            return None

        record.metadata.verification_status = verdict
        record.metadata.verification_explanation = explanation
        record.metadata.verified = verdict == "ACCURATE"
        record.metadata.verified_at = now_ms()
        await self.store.save_metadata(record)
        logger.log_verification(record_id, verdict)
        return verdict

    async def evict_stale(self, max_age_ms: Optional[int] = None, now: Optional[int] = None) -> EvictionReport:
        """Delete records older than max_age_ms that are unverified and not marked accurate."""
        max_age_ms = max_age_ms if max_age_ms is not None else self.stale_after_days * DAY_MS
        report = EvictionReport(started_at=datetime.now(), max_age_ms=max_age_ms)

        candidates = self.store.list_older_than(max_age_ms, now=now)
        report.scanned = len(candidates)
        for record in candidates:
            if not is_evictable(record):
                report.retained.append(record.id)
                continue
            try:
                await self.store.delete(record.id)
                report.deleted.append(record.id)
            except Exception as e:
                report.errors.append(f"{record.id}: {e}")

        report.completed_at = datetime.now()
        logger.log_eviction(report.scanned, len(report.deleted), {"retained": len(report.retained)})
        if report.deleted:
            audit_event("knowledge.eviction", {"deleted": len(report.deleted)}, {"ids": report.deleted})
        return report

    async def add_knowledge(self, text: str, source: str = "manual", category: Optional[str] = None,
                            title: Optional[str] = None) -> KnowledgeRecord:
        """Categorize (when needed), embed and store a new record."""
        if text is None or not text.strip():
            raise EmptyInputError("text")
        text = text.strip()

        if not category:
            category = await self.categorize(text)

        stamp = now_ms()
        prefix = "learned" if source == "web_auto_learned" else "kb"
        record = KnowledgeRecord(
            id=make_record_id(prefix, stamp),
            text=text,
            vector=await self.embedder.embed(text),
            metadata=KnowledgeMetadata(category=category, source=source, title=title, timestamp=stamp)
        )
        await self.store.upsert(record)

        if source in VERIFIED_SOURCES:
            self.schedule_verification(record.id)
        return record

    async def update_knowledge(self, record_id: str, new_text: str, reason: str = "") -> Optional[KnowledgeRecord]:
        """Replace text and vector together; verification starts over."""
        if new_text is None or not new_text.strip():
            raise EmptyInputError("text")

        existing = self.store.get(record_id)
        if existing is None:
            return None

        new_text = new_text.strip()
        vector = await self.embedder.embed(new_text)

        metadata = KnowledgeMetadata.from_dict(existing.metadata.to_dict())
        metadata.update_count += 1
        metadata.last_updated = now_ms()
        metadata.verified = False
        metadata.verification_status = None
        metadata.verification_explanation = None
        metadata.verified_at = None
        if reason:
            metadata.extra["update_reason"] = reason

        record = KnowledgeRecord(id=record_id, text=new_text, vector=vector, metadata=metadata)
        await self.store.upsert(record)
        audit_event("knowledge.update", {"record_id": record_id}, {"reason": reason})

        if metadata.source in VERIFIED_SOURCES:
            self.schedule_verification(record_id)
        return record

    def get_stats(self, now: Optional[int] = None) -> Dict[str, Any]:
        """Totals by category and source, verification and usage figures."""
        now = now if now is not None else now_ms()
        records = self.store.list_all()
        outdated_cutoff = now - OUTDATED_AFTER_DAYS * DAY_MS

        total = len(records)
        return {
            "total": total,
            "by_category": dict(Counter(r.metadata.category for r in records)),
            "by_source": dict(Counter(r.metadata.source for r in records)),
            "verified_count": sum(1 for r in records if r.metadata.verified),
            "outdated_count": sum(1 for r in records if r.metadata.timestamp < outdated_cutoff),
            "average_usage_count": (sum(r.metadata.usage_count for r in records) / total) if total else 0.0
        }
