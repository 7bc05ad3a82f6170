"""
Vector layer: bi-encoder embeddings, cross-encoder reranking and the ANN index.
Derived data only; the embeddings table in SQLite is canonical.
"""

from .index import IVectorStore, SimpleInMemoryVectorStore, normalize_vector
from .faiss_store import FaissHNSWVectorStore
from .types import VectorRecord, QueryResult
from .embeddings import IEmbeddingProvider, DeterministicHashEmbedding, SentenceTransformerEmbedding
from .rerank import IRerankProvider, CrossEncoderReranker, LexicalOverlapReranker

__all__ = [
    'IVectorStore',
    'SimpleInMemoryVectorStore',
    'FaissHNSWVectorStore',
    'normalize_vector',
    'VectorRecord',
    'QueryResult',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'IRerankProvider',
    'CrossEncoderReranker',
    'LexicalOverlapReranker',
]
