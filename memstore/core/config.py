"""
Configuration for the semantic memory store.
Environment-driven defaults; every value can be overridden per store via StoreSettings.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Storage location
MEMORY_DB_PATH = os.getenv("MEMORY_DB_PATH", "./data/memory.db")

# Embedding model (bi-encoder)
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "sentence-transformers")  # sentence-transformers|hash
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "sentence-transformers/all-MiniLM-L6-v2")
EMBED_DIM = int(os.getenv("EMBED_DIM", "384"))

# Reranking model (cross-encoder), optional
RERANK_PROVIDER = os.getenv("RERANK_PROVIDER", "cross-encoder")  # cross-encoder|overlap|none
RERANK_MODEL_NAME = os.getenv("RERANK_MODEL_NAME", "cross-encoder/ms-marco-MiniLM-L-6-v2")
MODEL_DEVICE = os.getenv("MODEL_DEVICE") or None

# Vector index
VECTOR_PROVIDER = os.getenv("VECTOR_PROVIDER", "hnsw")  # hnsw|flat
HNSW_M = int(os.getenv("HNSW_M", "32"))
HNSW_EF_CONSTRUCTION = int(os.getenv("HNSW_EF_CONSTRUCTION", "200"))
HNSW_EF_SEARCH = int(os.getenv("HNSW_EF_SEARCH", "64"))
INDEX_COMPACTION_RATIO = float(os.getenv("INDEX_COMPACTION_RATIO", "0.25"))
INDEX_COMPACTION_MIN_SIZE = 64

# Two-stage retrieval tunables
RERANK_THRESHOLD_RELAXATION = float(os.getenv("RERANK_THRESHOLD_RELAXATION", "0.3"))
RERANK_THRESHOLD_FLOOR = float(os.getenv("RERANK_THRESHOLD_FLOOR", "0.3"))

# Input limits and defaults
MAX_CONTENT_LENGTH = 100_000
MAX_QUERY_LENGTH = MAX_CONTENT_LENGTH
MAX_TAG_LENGTH = 100
MAX_RESULT_LIMIT = 100
DEFAULT_IMPORTANCE = 0.5
DEFAULT_SEARCH_LIMIT = 10
DEFAULT_RECENT_LIMIT = 20
DEFAULT_MIN_SIMILARITY = 0.7
DEFAULT_USE_RERANKER = True
DEFAULT_RETRIEVAL_MULTIPLIER = 3
MAX_RETRIEVAL_MULTIPLIER = 10

SCHEMA_VERSION = 1
VERSION = "1.0.0"


@dataclass
class StoreSettings:
    """Per-store tunables. Defaults come from the environment."""

    embedding_dimension: int = EMBED_DIM
    rerank_threshold_relaxation: float = RERANK_THRESHOLD_RELAXATION
    rerank_threshold_floor: float = RERANK_THRESHOLD_FLOOR
    index_compaction_ratio: float = INDEX_COMPACTION_RATIO
    index_compaction_min_size: int = INDEX_COMPACTION_MIN_SIZE

    @classmethod
    def from_env(cls) -> "StoreSettings":
        return cls(
            embedding_dimension=int(os.getenv("EMBED_DIM", str(EMBED_DIM))),
            rerank_threshold_relaxation=float(
                os.getenv("RERANK_THRESHOLD_RELAXATION", str(RERANK_THRESHOLD_RELAXATION))
            ),
            rerank_threshold_floor=float(os.getenv("RERANK_THRESHOLD_FLOOR", str(RERANK_THRESHOLD_FLOOR))),
            index_compaction_ratio=float(os.getenv("INDEX_COMPACTION_RATIO", str(INDEX_COMPACTION_RATIO))),
        )


def get_embedding_provider(provider: str = None):
    """Get configured embedding provider implementation."""
    provider = (provider or os.getenv("EMBED_PROVIDER", EMBED_PROVIDER)).strip().lower()

    if provider == "sentence-transformers":
        from memstore.vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(EMBED_MODEL_NAME, device=MODEL_DEVICE)
    elif provider == "hash":
        from memstore.vector.embeddings import DeterministicHashEmbedding
        return DeterministicHashEmbedding(dimension=EMBED_DIM)
    raise ValueError(f"Unknown EMBED_PROVIDER: {provider}")


def get_rerank_provider(provider: str = None):
    """Get configured reranking provider. Returns None if reranking is switched off."""
    provider = (provider or os.getenv("RERANK_PROVIDER", RERANK_PROVIDER)).strip().lower()

    if provider == "none":
        return None
    elif provider == "cross-encoder":
        from memstore.vector.rerank import CrossEncoderReranker
        return CrossEncoderReranker(RERANK_MODEL_NAME, device=MODEL_DEVICE)
    elif provider == "overlap":
        from memstore.vector.rerank import LexicalOverlapReranker
        return LexicalOverlapReranker()
    raise ValueError(f"Unknown RERANK_PROVIDER: {provider}")


def get_vector_store(dimension: int, provider: str = None):
    """Get configured vector index implementation."""
    provider = (provider or os.getenv("VECTOR_PROVIDER", VECTOR_PROVIDER)).strip().lower()

    if provider == "hnsw":
        from memstore.vector.faiss_store import FaissHNSWVectorStore
        return FaissHNSWVectorStore(
            dimension=dimension,
            m=HNSW_M,
            ef_construction=HNSW_EF_CONSTRUCTION,
            ef_search=HNSW_EF_SEARCH,
        )
    elif provider == "flat":
        from memstore.vector.index import SimpleInMemoryVectorStore
        return SimpleInMemoryVectorStore(dimension=dimension)
    raise ValueError(f"Unknown VECTOR_PROVIDER: {provider}")


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str):
    """Ensure the database directory exists."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if EMBED_PROVIDER not in ["sentence-transformers", "hash"]:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")

    if RERANK_PROVIDER not in ["cross-encoder", "overlap", "none"]:
        issues.append(f"Invalid RERANK_PROVIDER: {RERANK_PROVIDER}")

    if VECTOR_PROVIDER not in ["hnsw", "flat"]:
        issues.append(f"Invalid VECTOR_PROVIDER: {VECTOR_PROVIDER}")

    if EMBED_DIM < 1:
        issues.append("EMBED_DIM must be >= 1")

    if HNSW_M < 2:
        issues.append("HNSW_M must be >= 2")

    if not 0.0 <= RERANK_THRESHOLD_FLOOR <= 1.0:
        issues.append("RERANK_THRESHOLD_FLOOR must be between 0 and 1")

    if RERANK_THRESHOLD_RELAXATION < 0.0:
        issues.append("RERANK_THRESHOLD_RELAXATION must be >= 0")

    if not 0.0 < INDEX_COMPACTION_RATIO <= 1.0:
        issues.append("INDEX_COMPACTION_RATIO must be in (0, 1]")

    return issues
