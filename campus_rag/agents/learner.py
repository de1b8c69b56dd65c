"""
Self-learning loop: external search, distillation, embedding and write-back.

Each chunk is embedded and written independently. A failed chunk is logged,
persisted to learning_failures and skipped; it never blocks the others and
never aborts the caller.
"""

import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from ..core import dao
from ..core.config import GENERAL_CATEGORY
from ..util.logging import logger, audit_event
from ..util.payload import extract_payload, strip_fences
from ..vector.embeddings import IEmbeddingProvider
from ..vector.knowledge_store import KnowledgeStore
from ..vector.types import KnowledgeMetadata, KnowledgeRecord, make_record_id, now_ms
from .agent import ITextClassifier, IWebSearch, WebResult

LEARNED_SOURCE = "web_auto_learned"

DISTILL_INSTRUCTIONS = """You are a knowledge extractor for a university information assistant.
From the search results provided, write a clean factual paragraph of 2-4 sentences
that answers the question. Include only concrete facts (numbers, dates, names, places).
Do not add opinions, greetings or anything not supported by the results."""

_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


class JobStatus(str, Enum):
    QUEUED = "queued"
    EMBEDDING = "embedding"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class LearningJob:
    """Transient work item; its durable effect is the records it writes."""
    query: str
    category: str = GENERAL_CATEGORY
    source_text: str = ""
    distilled_chunks: List[str] = field(default_factory=list)
    status: JobStatus = JobStatus.QUEUED
    web_results: List[WebResult] = field(default_factory=list)
    records: List[KnowledgeRecord] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def build_source_text(results: List[WebResult], max_chars: int) -> str:
    """Join result titles and snippets, bounded to max_chars."""
    text = "\n\n---\n\n".join(f"{r.title}\n{r.snippet}".strip() for r in results)
    return text[:max_chars]


def split_chunks(text: str, mode: str = "paragraph") -> List[str]:
    """
    Split distilled text into chunks.

    paragraph: the whole paragraph is a single chunk (blank lines separate
    paragraphs when the distiller returns several). sentence: one chunk per
    sentence.
    """
    paragraphs = [" ".join(p.split()) for p in re.split(r"\n\s*\n", text.strip())]
    paragraphs = [p for p in paragraphs if p]
    if mode != "sentence":
        return paragraphs

    chunks = []
    for paragraph in paragraphs:
        chunks.extend(s.strip() for s in _SENTENCE_RE.split(paragraph) if s.strip())
    return chunks


def clean_distilled(raw: str) -> str:
    """Distiller output as plain text; a JSON {"summary": ...} payload is unwrapped."""
    payload = extract_payload(raw)
    if isinstance(payload, dict):
        for key in ("summary", "text", "content"):
            if isinstance(payload.get(key), str):
                return payload[key].strip()
    return strip_fences(raw)


class SelfLearningLoop:
    """Turns low-confidence queries into new knowledge records."""

    def __init__(self, web_search: IWebSearch, distiller: ITextClassifier, embedder: IEmbeddingProvider,
                 store: KnowledgeStore, db_path: str, max_results: int = 5, max_input_chars: int = 3000,
                 min_chars: int = 50, chunk_mode: str = "paragraph",
                 on_record_learned: Optional[Callable[[KnowledgeRecord], None]] = None):
        self.web_search = web_search
        self.distiller = distiller
        self.embedder = embedder
        self.store = store
        self.db_path = db_path
        self.max_results = max_results
        self.max_input_chars = max_input_chars
        self.min_chars = min_chars
        self.chunk_mode = chunk_mode
        self.on_record_learned = on_record_learned
        self.jobs_run = 0

    async def learn_from_external(self, query: str, category: str = GENERAL_CATEGORY) -> List[KnowledgeRecord]:
        """Run one learning job and return the records written (possibly empty)."""
        job = await self.run_job(query, category)
        return job.records

    async def run_job(self, query: str, category: str = GENERAL_CATEGORY) -> LearningJob:
        self.jobs_run += 1
        job = LearningJob(query=query, category=category)
        logger.log_learning_job(query, job.status.value)

        try:
            job.web_results = await self.web_search.search(query, self.max_results)
        except Exception as e:
            await self._fail(job, None, f"web search failed: {e}")
            return job

        if not job.web_results:
            job.status = JobStatus.DONE
            logger.log_learning_job(query, "no_results")
            return job

        job.source_text = build_source_text(job.web_results, self.max_input_chars)
        try:
            raw = await self.distiller.classify(
                f"Question: {query}\n\n{job.source_text}",
                DISTILL_INSTRUCTIONS
            )
        except Exception as e:
            await self._fail(job, None, f"distillation failed: {e}")
            return job

        distilled = clean_distilled(raw)
        if len(distilled) < self.min_chars:
            job.status = JobStatus.DONE
            logger.log_learning_job(query, "discarded", details={"distilled_chars": len(distilled)})
            return job

        job.distilled_chunks = split_chunks(distilled, self.chunk_mode)
        for index, chunk in enumerate(job.distilled_chunks):
            record = await self._write_chunk(job, index, chunk)
            if record is not None:
                job.records.append(record)

        job.status = JobStatus.DONE if job.records or not job.errors else JobStatus.FAILED
        logger.log_learning_job(query, job.status.value, len(job.records), {"errors": len(job.errors)})
        return job

    async def _write_chunk(self, job: LearningJob, index: int, chunk: str) -> Optional[KnowledgeRecord]:
        job.status = JobStatus.EMBEDDING
        try:
            vector = await self.embedder.embed(chunk)
        except Exception as e:
            await self._fail(job, chunk, f"embedding failed: {e}")
            return None

        stamp = now_ms()
        record = KnowledgeRecord(
            id=make_record_id("learned", stamp),
            text=chunk,
            vector=vector,
            metadata=KnowledgeMetadata(
                category=job.category,
                source=LEARNED_SOURCE,
                title=f"Web: {job.query[:60]}" + (f" ({index + 1})" if len(job.distilled_chunks) > 1 else ""),
                timestamp=stamp,
                origin_topic=job.query,
                extra={"urls": [r.url for r in job.web_results if r.url]}
            )
        )

        job.status = JobStatus.WRITING
        try:
            await self.store.upsert(record)
        except Exception as e:
            await self._fail(job, chunk, f"upsert failed: {e}")
            return None

        if self.on_record_learned is not None:
            try:
                self.on_record_learned(record)
            except Exception as e:
                logger.warning(f"Post-learning hook failed for {record.id}: {e}")
        return record

    async def _fail(self, job: LearningJob, chunk: Optional[str], error: str):
        """Log and persist a failure; the job continues with any remaining chunks."""
        stage = job.status.value
        job.errors.append(error)
        job.status = JobStatus.FAILED
        logger.log_learning_job(job.query, "failed", details={"stage": stage, "error": error[:200]})
        audit_event("learning.failure", {"query": job.query[:100], "stage": stage}, {"error": error})
        try:
            await asyncio.to_thread(dao.log_learning_failure, self.db_path, job.query, chunk, stage, error, now_ms())
        except Exception as e:
            logger.error(f"Could not persist learning failure: {e}")
