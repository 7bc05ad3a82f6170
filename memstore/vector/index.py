"""
Vector index interface plus an exact, brute-force in-memory implementation.
"""

import io
from abc import ABC, abstractmethod
from typing import Dict, List, Set

import numpy as np

from .types import VectorRecord, QueryResult


def normalize_vector(vector, dimension: int) -> np.ndarray:
    """Return a float32 unit-length copy of vector, validating its shape."""
    array = np.asarray(vector, dtype=np.float32).reshape(-1)
    if array.shape[0] != dimension:
        raise ValueError(f"Vector dimension {array.shape[0]} does not match expected dimension {dimension}")
    norm = np.linalg.norm(array)
    if norm == 0 or not np.isfinite(norm):
        raise ValueError("Cannot index a zero or non-finite vector")
    return array / norm


class IVectorStore(ABC):
    """Abstract interface for ANN indexes keyed by integer labels."""

    provider_name = "abstract"

    def __init__(self, dimension: int):
        self.dimension = dimension

    @abstractmethod
    def add(self, record: VectorRecord) -> None:
        """Add a single vector record to the index."""
        pass

    def batch_add(self, records: List[VectorRecord]) -> None:
        """Add multiple vector records to the index."""
        for record in records:
            self.add(record)

    @abstractmethod
    def search(self, query_vector: np.ndarray, top_k: int = 5) -> List[QueryResult]:
        """Return up to top_k live vectors ranked by cosine similarity, best first."""
        pass

    @abstractmethod
    def delete(self, record_id: int) -> None:
        """Remove a label from search results. Unknown labels are ignored."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all records from the index."""
        pass

    @abstractmethod
    def labels(self) -> Set[int]:
        """Labels currently searchable."""
        pass

    @abstractmethod
    def serialize(self) -> bytes:
        pass

    @abstractmethod
    def load(self, data: bytes) -> None:
        """Replace the index contents with a serialized snapshot."""
        pass

    @property
    def tombstone_count(self) -> int:
        """Deleted vectors still occupying space in the index."""
        return 0

    def __len__(self) -> int:
        return len(self.labels())


class SimpleInMemoryVectorStore(IVectorStore):
    """Exact cosine-similarity search over a dict of normalized vectors."""

    provider_name = "flat"

    def __init__(self, dimension: int = 384):
        super().__init__(dimension)
        self._index: Dict[int, np.ndarray] = {}  # label -> normalized vector

    def add(self, record: VectorRecord) -> None:
        self._index[int(record.id)] = normalize_vector(record.vector, self.dimension)

    def search(self, query_vector: np.ndarray, top_k: int = 5) -> List[QueryResult]:
        if not self._index or top_k <= 0:
            return []

        query = normalize_vector(query_vector, self.dimension)
        labels = list(self._index.keys())
        matrix = np.vstack([self._index[label] for label in labels])
        scores = matrix @ query

        order = np.argsort(-scores, kind="stable")[:top_k]
        return [QueryResult(id=labels[i], score=float(scores[i])) for i in order]

    def delete(self, record_id: int) -> None:
        self._index.pop(int(record_id), None)

    def clear(self) -> None:
        self._index.clear()

    def labels(self) -> Set[int]:
        return set(self._index.keys())

    def serialize(self) -> bytes:
        labels = np.array(list(self._index.keys()), dtype=np.int64)
        if len(labels):
            matrix = np.vstack([self._index[int(label)] for label in labels])
        else:
            matrix = np.zeros((0, self.dimension), dtype=np.float32)
        buffer = io.BytesIO()
        np.savez(buffer, labels=labels, vectors=matrix)
        return buffer.getvalue()

    def load(self, data: bytes) -> None:
        with np.load(io.BytesIO(data)) as arrays:
            labels = arrays["labels"]
            vectors = arrays["vectors"]
        if vectors.shape[1:] != (self.dimension,):
            raise ValueError(f"Snapshot dimension {vectors.shape[1:]} does not match {self.dimension}")
        self._index = {int(label): vectors[i].astype(np.float32) for i, label in enumerate(labels)}
