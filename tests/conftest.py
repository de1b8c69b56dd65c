"""
Shared fixtures: in-process collaborator fakes and a throwaway database.
"""

from typing import Dict, List, Optional

import numpy as np
import pytest

from campus_rag.agents.agent import ITextClassifier, ITextGenerator, IWebSearch, WebResult
from campus_rag.core.config import load_settings
from campus_rag.core.context import build_context
from campus_rag.core.db import init_db
from campus_rag.core.errors import CollaboratorUnavailableError
from campus_rag.vector.embeddings import DeterministicHashEmbedding, IEmbeddingProvider
from campus_rag.vector.knowledge_store import KnowledgeStore

DIM = 8


def unit(index: int, dimension: int = DIM) -> np.ndarray:
    vector = np.zeros(dimension, dtype=np.float32)
    vector[index] = 1.0
    return vector


class FakeEmbedder(IEmbeddingProvider):
    """Fixed vectors for known texts, hash embedding for everything else."""

    def __init__(self, vectors: Optional[Dict[str, np.ndarray]] = None, dimension: int = DIM,
                 fail: bool = False):
        self.vectors = dict(vectors or {})
        self.dimension = dimension
        self.fail = fail
        self.calls: List[str] = []
        self._hash = DeterministicHashEmbedding(dimension)

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if self.fail:
            raise CollaboratorUnavailableError("embedding_model", "offline")
        if text in self.vectors:
            return np.asarray(self.vectors[text], dtype=np.float32)
        return self._hash.embed_text(text)

    def get_dimension(self) -> int:
        return self.dimension


class FakeWebSearch(IWebSearch):
    def __init__(self, results: Optional[List[WebResult]] = None, error: Optional[Exception] = None):
        self.results = list(results or [])
        self.error = error
        self.calls: List[str] = []

    async def search(self, query: str, max_results: int = 5) -> List[WebResult]:
        self.calls.append(query)
        if self.error is not None:
            raise self.error
        return self.results[:max_results]


class FailingClassifier(ITextClassifier):
    def __init__(self):
        self.calls = 0

    async def classify(self, prompt: str, instructions: str) -> str:
        self.calls += 1
        raise CollaboratorUnavailableError("text_classifier", "connection refused")


class FailingGenerator(ITextGenerator):
    async def generate(self, prompt: str, system_instructions: str) -> str:
        raise CollaboratorUnavailableError("text_generator", "model not loaded")


CAMPUS_RESULTS = [
    WebResult(
        title="Library opening hours",
        snippet="The main library is open from 8am to 10pm on weekdays. "
                "On weekends the library opens from 10am to 6pm. "
                "Study rooms can be booked online through the student portal.",
        url="https://example.edu/library"
    ),
    WebResult(title="Library services", snippet="Printing is available on level 2.", url=None),
]


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "campus_rag.db")
    init_db(path)
    return path


@pytest.fixture
def store(db_path):
    knowledge = KnowledgeStore(db_path, DIM)
    knowledge.load()
    return knowledge


@pytest.fixture
def settings(tmp_path):
    return load_settings(
        db_path=str(tmp_path / "campus_rag.db"),
        embed_provider="hash",
        embed_dim=DIM,
        vector_index="none",
        llm_provider="mock",
        web_search_provider="none",
        verification_enabled=False,
        timezone="Australia/Sydney"
    )


@pytest.fixture
def rag_factory(settings):
    """Build a context on the temporary database with fakes injected."""

    def factory(embedder=None, web_search=None, index=None, text_classifier=None, generator=None, **overrides):
        return build_context(
            settings.with_overrides(**overrides) if overrides else settings,
            embedder=embedder or FakeEmbedder(),
            index=index,
            text_classifier=text_classifier,
            generator=generator,
            web_search=web_search or FakeWebSearch()
        )

    return factory
