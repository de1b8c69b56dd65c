"""
Vector layer: embeddings, similarity, index collaborators and record types.
The knowledge store lives in campus_rag.vector.knowledge_store.
"""

from .index import IVectorIndex, InMemoryVectorIndex
from .faiss_store import FaissVectorIndex
from .types import KnowledgeRecord, KnowledgeMetadata, RetrievalMatch, QueryResult, now_ms
from .embeddings import IEmbeddingProvider, DeterministicHashEmbedding, SentenceTransformerEmbedding, FallbackEmbedding
from .similarity import cosine, clipped_cosine, keyword_overlap, keyword_score

__all__ = [
    'IVectorIndex',
    'InMemoryVectorIndex',
    'FaissVectorIndex',
    'KnowledgeRecord',
    'KnowledgeMetadata',
    'RetrievalMatch',
    'QueryResult',
    'now_ms',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'FallbackEmbedding',
    'cosine',
    'clipped_cosine',
    'keyword_overlap',
    'keyword_score'
]
