"""
Configuration for the confidence-gated retrieval core.

Values are read from the environment once at import time. Components never
read the environment themselves: load_settings() snapshots these values into
a RAGSettings object at process start and build_context() passes it down.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Tuple

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/campus_rag.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Embedding configuration
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "hash")  # hash|sentence_transformer
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "all-MiniLM-L6-v2")
EMBED_DIM = int(os.getenv("EMBED_DIM", "384"))

# Vector index collaborator (none = local search only)
VECTOR_INDEX = os.getenv("VECTOR_INDEX", "none")  # none|memory|faiss

# Language model collaborators
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "mock")  # ollama|mock
OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.1:8b")
OLLAMA_CLASSIFIER_MODEL = os.getenv("OLLAMA_CLASSIFIER_MODEL", OLLAMA_MODEL)

# Web search collaborator
WEB_SEARCH_PROVIDER = os.getenv("WEB_SEARCH_PROVIDER", "none")  # none|http
WEB_SEARCH_URL = os.getenv("WEB_SEARCH_URL", "http://localhost:8888/search")
WEB_SEARCH_TIMEOUT_SEC = float(os.getenv("WEB_SEARCH_TIMEOUT_SEC", "10"))

# Retrieval and confidence gate
CONFIDENCE_THRESHOLD = float(os.getenv("CONFIDENCE_THRESHOLD", "0.70"))
TOP_K = int(os.getenv("TOP_K", "5"))
MIN_SIMILARITY = float(os.getenv("MIN_SIMILARITY", "0.0"))
MAX_QUERY_CHARS = int(os.getenv("MAX_QUERY_CHARS", "2000"))
MAX_CONTEXT_CHARS = int(os.getenv("MAX_CONTEXT_CHARS", "3000"))
PREVIOUS_ANSWER_EXCERPT_CHARS = int(os.getenv("PREVIOUS_ANSWER_EXCERPT_CHARS", "300"))

# Conversational memory
MEMORY_CAPACITY = int(os.getenv("MEMORY_CAPACITY", "100"))
MEMORY_HALF_LIFE_MS = int(os.getenv("MEMORY_HALF_LIFE_MS", str(7 * 24 * 60 * 60 * 1000)))
MEMORY_LIMIT = int(os.getenv("MEMORY_LIMIT", "3"))

# Self-learning loop
WEB_MAX_RESULTS = int(os.getenv("WEB_MAX_RESULTS", "5"))
LEARNING_MAX_INPUT_CHARS = int(os.getenv("LEARNING_MAX_INPUT_CHARS", "3000"))
LEARNING_MIN_CHARS = int(os.getenv("LEARNING_MIN_CHARS", "50"))
LEARNING_CHUNK_MODE = os.getenv("LEARNING_CHUNK_MODE", "paragraph")  # paragraph|sentence

# Knowledge lifecycle
VERIFICATION_ENABLED = os.getenv("VERIFICATION_ENABLED", "true").lower() == "true"
VERIFICATION_DELAY_SEC = int(os.getenv("VERIFICATION_DELAY_SEC", "3600"))
STALE_AFTER_DAYS = int(os.getenv("STALE_AFTER_DAYS", "90"))
EVICTION_INTERVAL_SEC = int(os.getenv("EVICTION_INTERVAL_SEC", "86400"))

# Temporal grounding
TIMEZONE = os.getenv("TIMEZONE", "Australia/Sydney")

VERSION = "1.0.0"

# Topic taxonomy: category -> priority (1 = highest). Order matters for ties.
CATEGORY_PRIORITIES: Dict[str, int] = {
    "fees": 2,
    "courses": 1,
    "admissions": 1,
    "campus": 2,
    "support": 3,
    "agents": 3,
}
CATEGORIES: Tuple[str, ...] = tuple(CATEGORY_PRIORITIES.keys())
GENERAL_CATEGORY = "general"

CATEGORY_DESCRIPTIONS: Dict[str, str] = {
    "fees": "tuition, costs, deposits, payments, scholarships",
    "courses": "programs, subjects, curriculum, duration, credits",
    "admissions": "applications, requirements, deadlines, enrollment",
    "campus": "locations, facilities, library, opening hours, buildings",
    "support": "student services, counseling, IT help, accommodation",
    "agents": "education agents, representatives, consultants",
}

EMBED_PROVIDERS = ("hash", "sentence_transformer")
VECTOR_INDEXES = ("none", "memory", "faiss")
LLM_PROVIDERS = ("ollama", "mock")
WEB_SEARCH_PROVIDERS = ("none", "http")
CHUNK_MODES = ("paragraph", "sentence")


def first_priority_category() -> str:
    """Return the highest-priority category, earliest in taxonomy order on ties."""
    return min(CATEGORIES, key=lambda name: (CATEGORY_PRIORITIES[name], CATEGORIES.index(name)))


@dataclass(frozen=True)
class RAGSettings:
    """Snapshot of configuration resolved once at startup."""
    db_path: str = DB_PATH
    debug: bool = DEBUG
    embed_provider: str = EMBED_PROVIDER
    embed_model_name: str = EMBED_MODEL_NAME
    embed_dim: int = EMBED_DIM
    vector_index: str = VECTOR_INDEX
    llm_provider: str = LLM_PROVIDER
    ollama_host: str = OLLAMA_HOST
    ollama_model: str = OLLAMA_MODEL
    ollama_classifier_model: str = OLLAMA_CLASSIFIER_MODEL
    web_search_provider: str = WEB_SEARCH_PROVIDER
    web_search_url: str = WEB_SEARCH_URL
    web_search_timeout_sec: float = WEB_SEARCH_TIMEOUT_SEC
    confidence_threshold: float = CONFIDENCE_THRESHOLD
    top_k: int = TOP_K
    min_similarity: float = MIN_SIMILARITY
    max_query_chars: int = MAX_QUERY_CHARS
    max_context_chars: int = MAX_CONTEXT_CHARS
    previous_answer_excerpt_chars: int = PREVIOUS_ANSWER_EXCERPT_CHARS
    memory_capacity: int = MEMORY_CAPACITY
    memory_half_life_ms: int = MEMORY_HALF_LIFE_MS
    memory_limit: int = MEMORY_LIMIT
    web_max_results: int = WEB_MAX_RESULTS
    learning_max_input_chars: int = LEARNING_MAX_INPUT_CHARS
    learning_min_chars: int = LEARNING_MIN_CHARS
    learning_chunk_mode: str = LEARNING_CHUNK_MODE
    verification_enabled: bool = VERIFICATION_ENABLED
    verification_delay_sec: int = VERIFICATION_DELAY_SEC
    stale_after_days: int = STALE_AFTER_DAYS
    eviction_interval_sec: int = EVICTION_INTERVAL_SEC
    timezone: str = TIMEZONE
    categories: Tuple[str, ...] = field(default=CATEGORIES)

    def with_overrides(self, **changes) -> "RAGSettings":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


def load_settings(**overrides) -> RAGSettings:
    """Build the settings snapshot from module configuration plus overrides."""
    return RAGSettings(**overrides)


def validate_settings(settings: RAGSettings) -> List[str]:
    """Validate settings and return any issues."""
    issues = []

    if settings.embed_provider not in EMBED_PROVIDERS:
        issues.append(f"Invalid EMBED_PROVIDER: {settings.embed_provider}")

    if settings.vector_index not in VECTOR_INDEXES:
        issues.append(f"Invalid VECTOR_INDEX: {settings.vector_index}")

    if settings.llm_provider not in LLM_PROVIDERS:
        issues.append(f"Invalid LLM_PROVIDER: {settings.llm_provider}")

    if settings.web_search_provider not in WEB_SEARCH_PROVIDERS:
        issues.append(f"Invalid WEB_SEARCH_PROVIDER: {settings.web_search_provider}")

    if settings.learning_chunk_mode not in CHUNK_MODES:
        issues.append(f"Invalid LEARNING_CHUNK_MODE: {settings.learning_chunk_mode}")

    if not 0.0 <= settings.confidence_threshold <= 1.0:
        issues.append("CONFIDENCE_THRESHOLD must be within [0, 1]")

    if not 0.0 <= settings.min_similarity <= 1.0:
        issues.append("MIN_SIMILARITY must be within [0, 1]")

    positive = {
        "EMBED_DIM": settings.embed_dim,
        "TOP_K": settings.top_k,
        "MAX_QUERY_CHARS": settings.max_query_chars,
        "MAX_CONTEXT_CHARS": settings.max_context_chars,
        "MEMORY_CAPACITY": settings.memory_capacity,
        "MEMORY_HALF_LIFE_MS": settings.memory_half_life_ms,
        "WEB_MAX_RESULTS": settings.web_max_results,
        "STALE_AFTER_DAYS": settings.stale_after_days,
    }
    for name, value in positive.items():
        if value < 1:
            issues.append(f"{name} must be >= 1")

    if settings.eviction_interval_sec < 1:
        issues.append("EVICTION_INTERVAL_SEC must be >= 1")

    if settings.verification_delay_sec < 0:
        issues.append("VERIFICATION_DELAY_SEC must be >= 0")

    return issues


def ensure_db_directory(db_path: str = DB_PATH):
    """Ensure the database directory exists."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
