"""
Embedding providers.

Two named variants sit behind IEmbeddingProvider: a sentence-transformers
model (the external path) and a deterministic hash embedding that needs no
trained model. FallbackEmbedding composes them so the external path never
raises to the caller.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import List

import numpy as np
from sentence_transformers import SentenceTransformer

from ..core.errors import CollaboratorUnavailableError, EmptyInputError
from ..util.logging import logger

_MASK32 = 0xFFFFFFFF
_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193


def _require_text(text: str) -> str:
    if text is None or not str(text).strip():
        raise EmptyInputError("text")
    return str(text)


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    async def embed(self, text: str) -> np.ndarray:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


def forward_hash(word: str) -> int:
    """Rolling 31-multiplier hash over the characters, 32-bit."""
    h = 0
    for ch in word:
        h = (h * 31 + ord(ch)) & _MASK32
    return h


def reverse_hash(word: str) -> int:
    """Rolling 37-multiplier hash over the characters in reverse order, 32-bit."""
    h = 7
    for ch in reversed(word):
        h = (h * 37 + ord(ch)) & _MASK32
    return h


def bigram_hash(bigram: str) -> int:
    """FNV-1a hash of a two-character substring, 32-bit."""
    h = _FNV_OFFSET
    for byte in bigram.encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & _MASK32
    return h


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider.

    Each whitespace-separated word at position i votes into up to three
    buckets with position-decayed weights: forward hash (1/(i+1)), reverse
    hash (0.5/(i+1), when distinct) and every character bigram (0.3/(i+1),
    when distinct from the first two). The result is L2-normalized.

    Texts sharing many words land close together; this is approximate
    retrieval, not a semantic model.
    """

    def __init__(self, dimension: int = 384):
        if dimension < 1:
            raise ValueError(f"Dimension must be >= 1: {dimension}")
        self.dimension = dimension

    def embed_text(self, text: str) -> np.ndarray:
        """Synchronous embedding; a pure function of text and dimension."""
        text = _require_text(text)
        vector = np.zeros(self.dimension, dtype=np.float64)

        for i, word in enumerate(text.lower().split()):
            weight = 1.0 / (i + 1)
            fwd = forward_hash(word) % self.dimension
            rev = reverse_hash(word) % self.dimension

            vector[fwd] += weight
            if rev != fwd:
                vector[rev] += 0.5 * weight

            for j in range(len(word) - 1):
                bucket = bigram_hash(word[j:j + 2]) % self.dimension
                if bucket != fwd and bucket != rev:
                    vector[bucket] += 0.3 * weight

        magnitude = np.linalg.norm(vector)
        if magnitude > 0:
            vector = vector / magnitude
        return vector.astype(np.float32)

    async def embed(self, text: str) -> np.ndarray:
        return self.embed_text(text)

    def get_dimension(self) -> int:
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    The model is loaded lazily on first use. Encoding runs in a worker thread
    so it does not block the event loop. Any failure, including output of the
    wrong length, raises CollaboratorUnavailableError.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", dimension: int = 384):
        self.model_name = model_name
        self.dimension = dimension
        self._model = None

    @property
    def model(self):
        if self._model is None:
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def _encode(self, text: str) -> np.ndarray:
        embedding = self.model.encode(text, convert_to_tensor=False)
        return np.asarray(embedding, dtype=np.float32)

    async def embed(self, text: str) -> np.ndarray:
        """Generate embedding vector using sentence transformers."""
        text = _require_text(text)
        try:
            vector = await asyncio.to_thread(self._encode, text)
        except Exception as e:
            raise CollaboratorUnavailableError("embedding_model", str(e), e) from e

        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise CollaboratorUnavailableError(
                "embedding_model",
                f"malformed embedding of shape {vector.shape}, expected ({self.dimension},)"
            )
        return vector

    def get_dimension(self) -> int:
        return self.dimension


class FallbackEmbedding(IEmbeddingProvider):
    """Primary provider with a deterministic fallback.

    Blank input is rejected before either provider runs. Any error from the
    primary is logged and answered by the fallback instead.
    """

    def __init__(self, primary: IEmbeddingProvider, fallback: IEmbeddingProvider):
        if primary.get_dimension() != fallback.get_dimension():
            raise ValueError(
                f"Primary dimension {primary.get_dimension()} does not match "
                f"fallback dimension {fallback.get_dimension()}"
            )
        self.primary = primary
        self.fallback = fallback
        self.fallback_count = 0

    async def embed(self, text: str) -> np.ndarray:
        text = _require_text(text)
        try:
            return await self.primary.embed(text)
        except EmptyInputError:
            raise
        except Exception as e:
            self.fallback_count += 1
            logger.log_fallback("embedding", str(e), {"provider": type(self.primary).__name__})
            return await self.fallback.embed(text)

    def get_dimension(self) -> int:
        return self.primary.get_dimension()


async def embed_many(provider: IEmbeddingProvider, texts: List[str]) -> List[np.ndarray]:
    """Embed texts concurrently, preserving order."""
    return list(await asyncio.gather(*(provider.embed(t) for t in texts)))
