"""
Tests for the embedding providers: the deterministic hash embedding, the
sentence-transformers path and the fallback composition.
"""

import asyncio

import numpy as np
import pytest
from unittest.mock import Mock

from campus_rag.core.errors import CollaboratorUnavailableError, EmptyInputError
from campus_rag.vector.embeddings import (
    DeterministicHashEmbedding,
    FallbackEmbedding,
    IEmbeddingProvider,
    SentenceTransformerEmbedding,
    bigram_hash,
    embed_many,
    forward_hash,
    reverse_hash,
)


def test_embedding_interface():
    """Test that the embedding provider implements the interface correctly."""
    embedder = DeterministicHashEmbedding(dimension=384)

    assert isinstance(embedder, IEmbeddingProvider)
    assert embedder.get_dimension() == 384


def test_deterministic_embedding():
    """The same input always produces byte-identical output."""
    embedder1 = DeterministicHashEmbedding(dimension=384)
    embedder2 = DeterministicHashEmbedding(dimension=384)

    text = "When does the library open on Saturday?"
    vector1 = embedder1.embed_text(text)
    vector2 = embedder2.embed_text(text)

    assert vector1.dtype == np.float32
    assert vector1.tobytes() == vector2.tobytes()
    assert len(vector1) == 384


def test_embedding_is_normalized():
    embedder = DeterministicHashEmbedding(dimension=128)

    for text in ["fees", "How much is the tuition deposit?", "A" * 1000, "Hello\n\t\rWorld!@#$%^&*()"]:
        vector = embedder.embed_text(text)
        assert abs(float(np.linalg.norm(vector)) - 1.0) < 1e-5


def test_different_inputs_produce_different_vectors():
    embedder = DeterministicHashEmbedding(dimension=384)

    vector1 = embedder.embed_text("Hello, world!")
    vector2 = embedder.embed_text("Goodbye, world!")

    assert not np.array_equal(vector1, vector2)


def test_embedding_with_different_dimensions():
    assert len(DeterministicHashEmbedding(dimension=64).embed_text("test")) == 64
    assert len(DeterministicHashEmbedding(dimension=512).embed_text("test")) == 512


def test_single_word_bucket_weights():
    """One word votes 1.0 forward, 0.5 reverse and 0.3 per bigram before normalization."""
    dimension = 10007
    word = "fees"
    fwd = forward_hash(word) % dimension
    rev = reverse_hash(word) % dimension
    buckets = [bigram_hash(word[j:j + 2]) % dimension for j in range(len(word) - 1)]
    bigrams = set(buckets)
    if len({fwd, rev} | bigrams) != 2 + len(buckets):
        pytest.skip("bucket collision for this dimension")

    vector = DeterministicHashEmbedding(dimension).embed_text(word)

    assert vector[rev] / vector[fwd] == pytest.approx(0.5)
    for bucket in bigrams:
        assert vector[bucket] / vector[fwd] == pytest.approx(0.3)


def test_later_words_weigh_less():
    dimension = 10007
    first, second = "parking", "library"
    if forward_hash(first) % dimension == forward_hash(second) % dimension:
        pytest.skip("bucket collision for this dimension")

    vector = DeterministicHashEmbedding(dimension).embed_text(f"{first} {second}")

    assert vector[forward_hash(first) % dimension] > vector[forward_hash(second) % dimension]


def test_hash_functions_are_32_bit():
    for value in [forward_hash("x" * 200), reverse_hash("y" * 200), bigram_hash("zz")]:
        assert 0 <= value <= 0xFFFFFFFF


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_blank_input_is_rejected(text):
    embedder = DeterministicHashEmbedding(dimension=32)

    with pytest.raises(EmptyInputError):
        embedder.embed_text(text)


def test_invalid_dimension():
    with pytest.raises(ValueError):
        DeterministicHashEmbedding(dimension=0)


class TestSentenceTransformerEmbedding:
    """The external path, with the model replaced by a mock."""

    def test_embed_uses_model(self):
        embedder = SentenceTransformerEmbedding("all-MiniLM-L6-v2", dimension=4)
        embedder._model = Mock()
        embedder._model.encode.return_value = np.array([0.1, 0.2, 0.3, 0.4])

        vector = asyncio.run(embedder.embed("tuition fees"))

        assert vector.dtype == np.float32
        assert vector.shape == (4,)
        embedder._model.encode.assert_called_once_with("tuition fees", convert_to_tensor=False)

    def test_wrong_length_is_malformed(self):
        embedder = SentenceTransformerEmbedding("all-MiniLM-L6-v2", dimension=8)
        embedder._model = Mock()
        embedder._model.encode.return_value = np.ones(5)

        with pytest.raises(CollaboratorUnavailableError) as exc_info:
            asyncio.run(embedder.embed("tuition fees"))
        assert exc_info.value.collaborator == "embedding_model"

    def test_model_error_is_wrapped(self):
        embedder = SentenceTransformerEmbedding("all-MiniLM-L6-v2", dimension=8)
        embedder._model = Mock()
        embedder._model.encode.side_effect = RuntimeError("CUDA out of memory")

        with pytest.raises(CollaboratorUnavailableError):
            asyncio.run(embedder.embed("tuition fees"))


class TestFallbackEmbedding:

    @pytest.fixture
    def hashed(self):
        return DeterministicHashEmbedding(dimension=16)

    def test_primary_result_is_used(self, hashed):
        primary = SentenceTransformerEmbedding(dimension=16)
        primary._model = Mock()
        primary._model.encode.return_value = np.full(16, 0.25)
        embedder = FallbackEmbedding(primary, hashed)

        vector = asyncio.run(embedder.embed("campus map"))

        assert np.allclose(vector, 0.25)
        assert embedder.fallback_count == 0

    def test_primary_failure_falls_back(self, hashed):
        primary = SentenceTransformerEmbedding(dimension=16)
        primary._model = Mock()
        primary._model.encode.side_effect = ConnectionError("quota exceeded")
        embedder = FallbackEmbedding(primary, hashed)

        vector = asyncio.run(embedder.embed("campus map"))

        assert np.array_equal(vector, hashed.embed_text("campus map"))
        assert embedder.fallback_count == 1

    def test_malformed_primary_output_falls_back(self, hashed):
        primary = SentenceTransformerEmbedding(dimension=16)
        primary._model = Mock()
        primary._model.encode.return_value = np.ones(3)
        embedder = FallbackEmbedding(primary, hashed)

        vector = asyncio.run(embedder.embed("campus map"))

        assert vector.shape == (16,)
        assert embedder.fallback_count == 1

    def test_empty_input_rejected_before_primary(self, hashed):
        primary = Mock(spec=IEmbeddingProvider)
        primary.get_dimension.return_value = 16
        embedder = FallbackEmbedding(primary, hashed)

        with pytest.raises(EmptyInputError):
            asyncio.run(embedder.embed("  "))
        primary.embed.assert_not_called()

    def test_dimension_mismatch(self, hashed):
        with pytest.raises(ValueError):
            FallbackEmbedding(DeterministicHashEmbedding(dimension=8), hashed)


def test_embed_many_preserves_order():
    embedder = DeterministicHashEmbedding(dimension=32)
    texts = ["fees", "courses", "campus"]

    vectors = asyncio.run(embed_many(embedder, texts))

    for text, vector in zip(texts, vectors):
        assert np.array_equal(vector, embedder.embed_text(text))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
