"""
Persistent semantic memory store: SQLite records, FAISS HNSW index,
sentence-transformers embeddings and optional cross-encoder reranking.
"""

from .core.config import VERSION as __version__
from .core.errors import (
    MemoryStoreError,
    MemoryValidationError,
    StoreLifecycleError,
    StoreNotInitializedError,
    StoreClosingError,
    StoreInitializationError,
    SchemaInitializationError,
    EmbedderUnavailableError,
    RerankerUnavailableError,
    StoreOperationError,
)
from .core.memory_store import MemoryStore
from .core.schema import Memory, MemoryType, SearchResult, RerankerConfig

__all__ = [
    'MemoryStore',
    'Memory',
    'MemoryType',
    'SearchResult',
    'RerankerConfig',
    'MemoryStoreError',
    'MemoryValidationError',
    'StoreLifecycleError',
    'StoreNotInitializedError',
    'StoreClosingError',
    'StoreInitializationError',
    'SchemaInitializationError',
    'EmbedderUnavailableError',
    'RerankerUnavailableError',
    'StoreOperationError',
]
