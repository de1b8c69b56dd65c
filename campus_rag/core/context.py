"""
Explicit context: every component, constructed once at process start and
passed by reference. Named provider variants are resolved here and nowhere
else.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..agents.agent import ITextClassifier, ITextGenerator, IWebSearch
from ..agents.classifier import QueryClassifier
from ..agents.learner import SelfLearningLoop
from ..agents.mock_agent import MockTextClassifier, MockTextGenerator
from ..agents.ollama_agent import OllamaTextClassifier, OllamaTextGenerator
from ..agents.orchestrator import RetrievalOrchestrator
from ..agents.web_search import HttpWebSearch, NullWebSearch
from ..util.logging import logger
from ..vector.embeddings import (
    DeterministicHashEmbedding,
    FallbackEmbedding,
    IEmbeddingProvider,
    SentenceTransformerEmbedding,
)
from ..vector.faiss_store import FaissVectorIndex
from ..vector.index import IVectorIndex, InMemoryVectorIndex
from ..vector.knowledge_store import KnowledgeStore
from .config import RAGSettings, load_settings, validate_settings
from .db import init_db
from .errors import ConfigurationError
from .lifecycle import KnowledgeLifecycleManager
from .memory import ConversationMemory
from .scheduler import TaskScheduler

_UNSET = object()


@dataclass
class RAGContext:
    """One instance per process."""
    settings: RAGSettings
    embedder: IEmbeddingProvider
    index: Optional[IVectorIndex]
    store: KnowledgeStore
    text_classifier: ITextClassifier
    classifier: QueryClassifier
    memory: ConversationMemory
    generator: ITextGenerator
    web_search: IWebSearch
    scheduler: TaskScheduler
    lifecycle: KnowledgeLifecycleManager
    learner: SelfLearningLoop
    orchestrator: RetrievalOrchestrator

    async def startup(self, start_worker: bool = True):
        """Load the index, register stale eviction and start the scheduler worker."""
        await self.store.rebuild_index()
        self.scheduler.register_periodic(
            "evict_stale", self.settings.eviction_interval_sec, self.lifecycle.evict_stale
        )
        if start_worker:
            self.scheduler.start()
        logger.log_operation("context.startup", "success", {"records": self.store.count()})

    async def shutdown(self):
        await self.scheduler.stop()
        logger.log_operation("context.shutdown", "success")

    def get_status(self) -> Dict[str, Any]:
        return {
            "embed_provider": self.settings.embed_provider,
            "vector_index": self.settings.vector_index,
            "llm_provider": self.settings.llm_provider,
            "web_search_provider": self.settings.web_search_provider,
            "records": self.store.count(),
            "scheduler": self.scheduler.get_status()
        }


def make_embedder(settings: RAGSettings) -> IEmbeddingProvider:
    hashed = DeterministicHashEmbedding(settings.embed_dim)
    if settings.embed_provider == "sentence_transformer":
        return FallbackEmbedding(SentenceTransformerEmbedding(settings.embed_model_name, settings.embed_dim), hashed)
    return hashed


def make_index(settings: RAGSettings) -> Optional[IVectorIndex]:
    if settings.vector_index == "memory":
        return InMemoryVectorIndex(settings.embed_dim)
    if settings.vector_index == "faiss":
        return FaissVectorIndex(settings.embed_dim)
    return None


def make_text_classifier(settings: RAGSettings) -> ITextClassifier:
    if settings.llm_provider == "ollama":
        return OllamaTextClassifier(settings.ollama_classifier_model, host=settings.ollama_host)
    return MockTextClassifier()


def make_generator(settings: RAGSettings) -> ITextGenerator:
    if settings.llm_provider == "ollama":
        return OllamaTextGenerator(settings.ollama_model, host=settings.ollama_host)
    return MockTextGenerator()


def make_web_search(settings: RAGSettings) -> IWebSearch:
    if settings.web_search_provider == "http":
        return HttpWebSearch(settings.web_search_url, settings.web_search_timeout_sec)
    return NullWebSearch()


def build_context(settings: Optional[RAGSettings] = None, embedder: IEmbeddingProvider = None,
                  index: Any = _UNSET, text_classifier: ITextClassifier = None,
                  generator: ITextGenerator = None, web_search: IWebSearch = None,
                  scheduler: TaskScheduler = None) -> RAGContext:
    """
    Resolve provider variants and wire every component.

    Keyword overrides replace the configured variant (tests inject fakes
    this way); pass index=None to force local-only search.

    Raises:
        ConfigurationError: invalid settings or a vector dimension mismatch
    """
    settings = settings or load_settings()

    issues = validate_settings(settings)
    try:
        ZoneInfo(settings.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        issues.append(f"Unknown TIMEZONE: {settings.timezone}")
    if issues:
        raise ConfigurationError(f"Invalid configuration: {issues}")
    logger.set_debug(settings.debug)

    embedder = embedder or make_embedder(settings)
    if embedder.get_dimension() != settings.embed_dim:
        raise ConfigurationError(
            f"Embedding dimension {embedder.get_dimension()} does not match EMBED_DIM {settings.embed_dim}"
        )

    index = make_index(settings) if index is _UNSET else index
    if index is not None and index.dimension != settings.embed_dim:
        raise ConfigurationError(
            f"Vector index dimension {index.dimension} does not match EMBED_DIM {settings.embed_dim}"
        )

    init_db(settings.db_path)
    store = KnowledgeStore(settings.db_path, settings.embed_dim, index)
    store.load()

    text_classifier = text_classifier or make_text_classifier(settings)
    generator = generator or make_generator(settings)
    web_search = web_search or make_web_search(settings)
    scheduler = scheduler or TaskScheduler()

    classifier = QueryClassifier(text_classifier, settings.categories)
    memory = ConversationMemory(settings.db_path, settings.memory_capacity, settings.memory_half_life_ms)
    lifecycle = KnowledgeLifecycleManager(
        store,
        embedder,
        text_classifier,
        scheduler,
        categories=settings.categories,
        verification_enabled=settings.verification_enabled,
        verification_delay_sec=settings.verification_delay_sec,
        stale_after_days=settings.stale_after_days
    )
    learner = SelfLearningLoop(
        web_search,
        text_classifier,
        embedder,
        store,
        settings.db_path,
        max_results=settings.web_max_results,
        max_input_chars=settings.learning_max_input_chars,
        min_chars=settings.learning_min_chars,
        chunk_mode=settings.learning_chunk_mode,
        on_record_learned=lifecycle.handle_learned_record
    )
    orchestrator = RetrievalOrchestrator(settings, classifier, embedder, store, memory, generator, learner)

    logger.log_operation("context.build", "success", {
        "embed_provider": settings.embed_provider,
        "vector_index": settings.vector_index if index is not None else "none",
        "llm_provider": settings.llm_provider,
        "web_search_provider": settings.web_search_provider,
        "records": store.count()
    })

    return RAGContext(
        settings=settings,
        embedder=embedder,
        index=index,
        store=store,
        text_classifier=text_classifier,
        classifier=classifier,
        memory=memory,
        generator=generator,
        web_search=web_search,
        scheduler=scheduler,
        lifecycle=lifecycle,
        learner=learner,
        orchestrator=orchestrator
    )
