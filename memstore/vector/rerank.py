"""
Cross-encoder reranking. Scores (query, document) pairs jointly; used as the
optional second stage of search.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np
from sentence_transformers import CrossEncoder

from ..core.errors import RerankerUnavailableError
from .embeddings import tokenize


class IRerankProvider(ABC):
    """Abstract interface for rerankers."""

    model_name = "abstract"

    def load(self) -> None:
        """Load model weights. Raises RerankerUnavailableError on failure."""
        pass

    @abstractmethod
    def score(self, query: str, documents: Sequence[str]) -> List[float]:
        """Relevance score for each document, in input order. Higher is more relevant."""
        pass


class CrossEncoderReranker(IRerankProvider):
    """sentence-transformers CrossEncoder, ms-marco-MiniLM-L-6-v2 by default.

    Scores are the model's native relevance logits, comparable within one call
    but not to bi-encoder cosine similarities.
    """

    def __init__(self, model_name: str = "cross-encoder/ms-marco-MiniLM-L-6-v2", device: Optional[str] = None):
        self.model_name = model_name
        self.device = device
        self._model = None

    def load(self) -> None:
        if self._model is not None:
            return
        try:
            self._model = CrossEncoder(self.model_name, device=self.device)
        except Exception as e:
            raise RerankerUnavailableError(
                f"Failed to load reranking model {self.model_name}: {e}", operation="initialize"
            ) from e

    def score(self, query: str, documents: Sequence[str]) -> List[float]:
        if not documents:
            return []
        if self._model is None:
            raise RerankerUnavailableError(f"Reranking model {self.model_name} is not loaded")

        pairs = [(query, document) for document in documents]
        scores = self._model.predict(pairs, convert_to_numpy=True, show_progress_bar=False)
        return [float(s) for s in np.asarray(scores).reshape(-1)]


class LexicalOverlapReranker(IRerankProvider):
    """Fraction of query tokens present in the document.

    Deterministic stand-in for the cross-encoder in tests and offline setups.
    """

    model_name = "lexical-overlap"

    def score(self, query: str, documents: Sequence[str]) -> List[float]:
        query_tokens = set(tokenize(query))
        if not query_tokens:
            return [0.0 for _ in documents]
        return [len(query_tokens & set(tokenize(document))) / len(query_tokens) for document in documents]
