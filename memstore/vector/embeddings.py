"""
Bi-encoder embeddings. Text in, unit-length float32 vector out.
"""

from abc import ABC, abstractmethod
import hashlib
import re
from typing import Optional

import numpy as np
from sentence_transformers import SentenceTransformer

from ..core.errors import EmbedderUnavailableError

_TOKEN_RE = re.compile(r"\w+")


def tokenize(text: str) -> list[str]:
    """Lowercased word tokens; shared by the hash embedder and the overlap reranker."""
    return _TOKEN_RE.findall(text.lower())


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    model_name = "abstract"

    def load(self) -> None:
        """Load model weights. Providers with nothing to load keep this no-op."""
        pass

    @abstractmethod
    def embed_text(self, text: str) -> np.ndarray:
        """Generate a normalized embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider for testing purposes.

    Each token is hashed into a signed bucket (feature hashing), so texts that
    share words land close together and identical texts always produce the same
    vector. No model download is needed.
    """

    model_name = "deterministic-hash"

    def __init__(self, dimension: int = 384):
        self.dimension = dimension

    def _bucket(self, token: str):
        digest = hashlib.md5(token.encode("utf-8")).digest()
        index = int.from_bytes(digest[:4], "little") % self.dimension
        sign = 1.0 if digest[4] & 1 else -1.0
        return index, sign

    def embed_text(self, text: str) -> np.ndarray:
        """Generate deterministic embedding vector using token hashing."""
        vector = np.zeros(self.dimension, dtype=np.float32)

        # Texts without word characters still need a stable, non-zero vector
        tokens = tokenize(text) or [text]
        for token in tokens:
            index, sign = self._bucket(token)
            vector[index] += sign

        norm = np.linalg.norm(vector)
        if norm == 0:
            index, _ = self._bucket(text)
            vector[index] = 1.0
            norm = 1.0
        return vector / norm

    def get_dimension(self) -> int:
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    Defaults to all-MiniLM-L6-v2 (384 dimensions). Output is mean-pooled and
    L2-normalized by the model, so inner product equals cosine similarity.
    """

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2", device: Optional[str] = None):
        self.model_name = model_name
        self.device = device
        self._model = None
        self._dimension = None

    def load(self) -> None:
        if self._model is not None:
            return
        try:
            self._model = SentenceTransformer(self.model_name, device=self.device)
        except Exception as e:
            raise EmbedderUnavailableError(
                f"Failed to load embedding model {self.model_name}: {e}", operation="initialize"
            ) from e
        self._dimension = self._model.get_sentence_embedding_dimension()

    @property
    def model(self):
        if self._model is None:
            raise EmbedderUnavailableError(f"Embedding model {self.model_name} is not loaded")
        return self._model

    def embed_text(self, text: str) -> np.ndarray:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_numpy=True, normalize_embeddings=True)
        return np.asarray(embedding, dtype=np.float32)

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            # Get dimension by encoding a dummy string
            self._dimension = len(self.embed_text("test"))
        return self._dimension
