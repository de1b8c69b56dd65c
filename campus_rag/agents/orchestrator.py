"""
Retrieval orchestrator: the confidence-gated answer pipeline.

States: received -> safety_checked -> categorized -> retrieved ->
confident | low_confidence -> answered. The safety gate is the only hard
stop. A generator failure is the only collaborator error surfaced to the
caller; every other failure degrades through a documented fallback.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from ..core.config import GENERAL_CATEGORY, RAGSettings
from ..core.errors import EmptyInputError, QueryTooLongError
from ..core.memory import ConversationMemory, MemoryEntry
from ..util.logging import logger
from ..vector.embeddings import IEmbeddingProvider
from ..vector.knowledge_store import KnowledgeStore
from ..vector.similarity import clipped_cosine
from ..vector.types import KnowledgeRecord, RetrievalMatch
from .agent import ITextGenerator, WebResult
from .classifier import QueryClassifier
from .learner import SelfLearningLoop

BLOCKED_RESPONSE = (
    "I'm sorry, but I cannot assist with that request as it may violate university policies. "
    "If you have questions about academic integrity, course content, or campus services, "
    "I'd be happy to help!"
)

ANSWER_INSTRUCTIONS = """You are a helpful virtual senior student at a university.
Answer the student's question using only the knowledge base context provided.
Cite every fact with [Source: Document Title].
Use the temporal context for questions about opening hours, deadlines or whether it is business hours.
If the context does not contain the answer, say so plainly instead of guessing."""

LOW_CONFIDENCE_INSTRUCTIONS = """You are a helpful virtual senior student at a university.
Only limited or no verified information is available for this question.
Say clearly that you are not certain, share anything relevant from the context below,
and suggest the student confirm with university student services. Do not invent facts."""

MEMORY_RESPONSE_EXCERPT_CHARS = 200


def get_temporal_context(now: Optional[datetime] = None, tz: str = "Australia/Sydney") -> Dict[str, Any]:
    """Current date and time facts in the campus timezone; business hours are Mon-Fri 09:00-17:00."""
    zone = ZoneInfo(tz)
    now = now.astimezone(zone) if now is not None else datetime.now(zone)

    date_string = f"{now:%A}, {now.day} {now:%B %Y}"
    time_string = now.strftime("%I:%M %p").lower()
    is_business_hours = now.weekday() < 5 and 9 <= now.hour < 17

    return {
        "full_date_time": f"{date_string} at {time_string}",
        "date": date_string,
        "time": time_string,
        "day_of_week": f"{now:%A}",
        "is_business_hours": is_business_hours,
        "timestamp": now.isoformat()
    }


def format_temporal_context(temporal: Dict[str, Any]) -> str:
    hours = "Yes (Mon-Fri 9am-5pm)" if temporal["is_business_hours"] else "No (outside business hours)"
    return (
        f"Current Date/Time: {temporal['full_date_time']}\n"
        f"Day: {temporal['day_of_week']}\n"
        f"Business Hours: {hours}"
    )


def document_header(record: KnowledgeRecord, score: float) -> str:
    return f'DOCUMENT: "{record.title}" [{record.category}] ({score * 100:.0f}% relevance)'


def build_context_block(matches: List[RetrievalMatch], max_chars: int) -> str:
    """
    Format ranked matches as citation blocks within max_chars.

    Matches are added in rank order; the first one that does not fit is
    truncated to the remaining budget and everything after it is dropped.
    """
    blocks = []
    used = 0
    for match in matches:
        block = f"{document_header(match.record, match.score)}\n{match.record.text}"
        separator = 2 if blocks else 0
        remaining = max_chars - used - separator
        if remaining <= 0:
            break
        if len(block) > remaining:
            blocks.append(block[:remaining])
            break
        blocks.append(block)
        used += separator + len(block)
    return "\n\n".join(blocks)


def build_web_block(results: List[WebResult], max_chars: int) -> str:
    blocks = [f'DOCUMENT: "{r.title or "Web result"}" [web]\n{r.snippet}' for r in results]
    return "\n\n".join(blocks)[:max_chars]


def format_memory(entries: List[MemoryEntry]) -> str:
    lines = []
    for entry in entries:
        response = entry.response
        if len(response) > MEMORY_RESPONSE_EXCERPT_CHARS:
            response = response[:MEMORY_RESPONSE_EXCERPT_CHARS] + "..."
        lines.append(f"Student: {entry.message}\nAssistant: {response}")
    return "\n\n".join(lines)


@dataclass
class AnswerResult:
    """What answer() hands back upward."""
    text: str
    confidence: float
    category: str
    blocked: bool = False
    learned: bool = False
    low_confidence: bool = False
    sources: List[str] = field(default_factory=list)
    debug: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "text": self.text,
            "confidence": self.confidence,
            "category": self.category,
            "blocked": self.blocked,
            "learned": self.learned,
            "low_confidence": self.low_confidence,
            "sources": self.sources
        }
        if self.debug is not None:
            data["debug"] = self.debug
        return data


class _Trace:
    """State transitions and timings for one request."""

    def __init__(self):
        self.started = time.monotonic()
        self.states: List[str] = []
        self.info: Dict[str, Any] = {}

    def enter(self, state: str):
        self.states.append(state)

    def as_dict(self) -> Dict[str, Any]:
        data = {"states": list(self.states)}
        data.update(self.info)
        data["processing_time_ms"] = int((time.monotonic() - self.started) * 1000)
        return data


class RetrievalOrchestrator:
    """Composes the classifier, store, memory, learner and generator into answer()."""

    def __init__(self, settings: RAGSettings, classifier: QueryClassifier, embedder: IEmbeddingProvider,
                 store: KnowledgeStore, memory: ConversationMemory, generator: ITextGenerator,
                 learner: SelfLearningLoop):
        self.settings = settings
        self.classifier = classifier
        self.embedder = embedder
        self.store = store
        self.memory = memory
        self.generator = generator
        self.learner = learner

    def validate_query(self, query: str) -> str:
        """Strip and bound the query; raises before any I/O."""
        if query is None or not str(query).strip():
            raise EmptyInputError("query")
        query = str(query).strip()
        if len(query) > self.settings.max_query_chars:
            raise QueryTooLongError(len(query), self.settings.max_query_chars)
        return query

    def expand_query(self, query: str, previous_answer: Optional[str]) -> str:
        """Prefix an excerpt of the previous answer to resolve follow-up references."""
        if previous_answer and previous_answer.strip():
            excerpt = previous_answer.strip()[:self.settings.previous_answer_excerpt_chars]
            return f"Previous context: {excerpt}\n\nCurrent question: {query}"
        return query

    async def answer(self, query: str, user_id: Optional[str] = None, previous_answer: Optional[str] = None,
                     include_debug: bool = False, now: Optional[datetime] = None) -> AnswerResult:
        """
        Answer a question from the knowledge base, learning from the web when unsure.

        Raises:
            EmptyInputError, QueryTooLongError: invalid query, raised before any I/O
            CollaboratorUnavailableError: the text generator failed
        """
        trace = _Trace()
        query = self.validate_query(query)
        trace.enter("received")

        # Safety gate: the only hard stop
        safe = await self.classifier.classify_safety(query)
        trace.enter("safety_checked")
        if not safe:
            trace.enter("answered")
            trace.info.update({"blocked": True})
            result = AnswerResult(text=BLOCKED_RESPONSE, confidence=0.0, category=GENERAL_CATEGORY, blocked=True)
            return self._finish(trace, result, include_debug)

        category, _ = await self.classifier.classify_category_detailed(query)
        trace.enter("categorized")

        search_text = self.expand_query(query, previous_answer)
        query_vector = await self.embedder.embed(search_text)
        matches = await self.store.search(
            query_vector,
            self.settings.top_k,
            self.settings.min_similarity,
            category_filter=None if category == GENERAL_CATEGORY else category,
            query_text=query
        )
        memories = []
        if user_id:
            memories = await self.memory.relevant(user_id, query, self.settings.memory_limit)
        trace.enter("retrieved")

        best_score = matches[0].score if matches else 0.0
        logger.log_retrieval(query, len(matches), best_score, category)
        trace.info.update({
            "category": category,
            "best_score": best_score,
            "matches": [
                {"id": m.record.id, "score": m.score, "title": m.record.title, "category": m.record.category}
                for m in matches
            ],
            "memory_entries": len(memories),
            "had_previous_context": bool(previous_answer and previous_answer.strip())
        })

        temporal = format_temporal_context(get_temporal_context(now, self.settings.timezone))

        if matches and best_score >= self.settings.confidence_threshold:
            trace.enter("confident")
            logger.log_gate("confidence", "confident", {"best_score": round(best_score, 4)})
            context = build_context_block(matches, self.settings.max_context_chars)
            text = await self.generator.generate(
                self._prompt(query, context, memories, temporal),
                ANSWER_INSTRUCTIONS
            )
            await self.store.record_usage([m.record.id for m in matches])
            result = AnswerResult(
                text=text,
                confidence=best_score,
                category=category,
                sources=[m.record.title for m in matches]
            )
        else:
            trace.enter("low_confidence")
            logger.log_gate("confidence", "low_confidence", {"best_score": round(best_score, 4)})
            result = await self._answer_low_confidence(
                query, category, query_vector, matches, memories, temporal, best_score, trace
            )

        trace.enter("answered")
        if user_id:
            await self._remember(user_id, query, result)
        return self._finish(trace, result, include_debug)

    @staticmethod
    def _finish(trace: _Trace, result: AnswerResult, include_debug: bool) -> AnswerResult:
        trace_data = trace.as_dict()
        logger.log_operation("answer.trace", "answered", trace_data, level=logging.DEBUG)
        if include_debug:
            result.debug = trace_data
        return result

    async def _answer_low_confidence(self, query, category, query_vector, matches, memories,
                                     temporal, best_score, trace) -> AnswerResult:
        job = await self.learner.run_job(query, category)
        trace.info.update({"learning_status": job.status.value, "learned_records": len(job.records),
                           "web_results": len(job.web_results)})

        if job.records:
            learned_matches = [
                RetrievalMatch(record=r, score=clipped_cosine(query_vector, r.vector)) for r in job.records
            ]
            context = build_context_block(learned_matches, self.settings.max_context_chars)
            text = await self.generator.generate(
                self._prompt(query, context, memories, temporal),
                ANSWER_INSTRUCTIONS
            )
            confidence = max([best_score] + [m.score for m in learned_matches])
            return AnswerResult(
                text=text,
                confidence=confidence,
                category=category,
                learned=True,
                low_confidence=confidence < self.settings.confidence_threshold,
                sources=[r.title for r in job.records]
            )

        # Nothing learned: answer from whatever limited context exists and say so
        if job.web_results:
            context = build_web_block(job.web_results, self.settings.max_context_chars)
            sources = [r.title for r in job.web_results]
        else:
            context = build_context_block(matches, self.settings.max_context_chars)
            sources = [m.record.title for m in matches]

        text = await self.generator.generate(
            self._prompt(query, context, memories, temporal),
            LOW_CONFIDENCE_INSTRUCTIONS
        )
        return AnswerResult(
            text=text,
            confidence=best_score,
            category=category,
            learned=False,
            low_confidence=True,
            sources=sources
        )

    @staticmethod
    def _prompt(query: str, context: str, memories: List[MemoryEntry], temporal: str) -> str:
        sections = [
            f"TEMPORAL CONTEXT:\n{temporal}",
            f"KNOWLEDGE BASE CONTEXT:\n\n{context or 'No specific context retrieved.'}",
        ]
        if memories:
            sections.append(f"CONVERSATION HISTORY:\n{format_memory(memories)}")
        sections.append(f"STUDENT QUESTION:\n{query}")
        return "\n\n".join(sections)

    async def _remember(self, user_id: str, query: str, result: AnswerResult):
        entry = MemoryEntry(
            user_id=user_id,
            message=query,
            response=result.text,
            context={"category": result.category, "confidence": result.confidence, "learned": result.learned}
        )
        try:
            await self.memory.append(user_id, entry)
        except Exception as e:
            logger.log_fallback("memory", f"write-back failed: {e}", {"user_id": user_id})
