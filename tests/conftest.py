"""
Shared fixtures: tmp_path databases, hash embeddings and scripted rerankers,
so no model download is needed.
"""

import pytest

from memstore.core.config import StoreSettings
from memstore.core.errors import RerankerUnavailableError
from memstore.core.memory_store import MemoryStore
from memstore.vector.embeddings import DeterministicHashEmbedding
from memstore.vector.faiss_store import FaissHNSWVectorStore
from memstore.vector.rerank import IRerankProvider, LexicalOverlapReranker

DIM = 384


class FailingLoadReranker(IRerankProvider):
    """Reranker whose model never loads."""

    model_name = "failing-load"

    def load(self):
        raise RerankerUnavailableError("model weights not found", operation="initialize")

    def score(self, query, documents):
        raise AssertionError("score() must not be called on an unloaded reranker")


class ExplodingReranker(IRerankProvider):
    """Loads fine, fails on every call."""

    model_name = "exploding"

    def score(self, query, documents):
        raise RuntimeError("inference backend crashed")


class RecordingReranker(IRerankProvider):
    """Records every call; scores with a fixed function of the document."""

    model_name = "recording"

    def __init__(self, scorer=None):
        self.calls = []
        self.scorer = scorer or (lambda query, document: float(len(document)))

    def score(self, query, documents):
        self.calls.append((query, list(documents)))
        return [self.scorer(query, document) for document in documents]


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "memory.db")


@pytest.fixture
def store_factory(db_path):
    """Build (not initialize) stores against test doubles. Closes whatever it built."""
    created = []

    def _make(reranker=None, path=None, embedder=None, vector_store=None, **settings):
        settings.setdefault("embedding_dimension", DIM)
        dimension = settings["embedding_dimension"]
        store = MemoryStore(
            path or db_path,
            embedding_provider=embedder or DeterministicHashEmbedding(dimension=dimension),
            rerank_provider=reranker,
            vector_store=vector_store if vector_store is not None else FaissHNSWVectorStore(dimension=dimension),
            settings=StoreSettings(**settings),
        )
        created.append(store)
        return store

    yield _make

    for store in created:
        store.close()


@pytest.fixture
def store(store_factory):
    """Initialized store with the lexical-overlap reranker enabled."""
    s = store_factory(reranker=LexicalOverlapReranker())
    s.initialize()
    return s


@pytest.fixture
def plain_store(store_factory):
    """Initialized store with reranking disabled."""
    s = store_factory(reranker=None)
    s.initialize()
    return s
