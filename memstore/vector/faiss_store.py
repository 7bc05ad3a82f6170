"""
FAISS HNSW vector index.
Approximate nearest-neighbour search over unit vectors with inner product (= cosine).
"""

from typing import List, Set

import faiss
import numpy as np

from .index import IVectorStore, normalize_vector
from .types import VectorRecord, QueryResult


class FaissHNSWVectorStore(IVectorStore):
    """FAISS-backed HNSW implementation of IVectorStore.

    Vectors are keyed by the integer label of their embeddings row through an
    IndexIDMap2 wrapper. HNSW graphs cannot drop nodes, so delete() tombstones
    the label and search() skips it; the owner rebuilds the index once
    tombstone_count grows too large.
    """

    provider_name = "hnsw"

    def __init__(self, dimension: int = 384, m: int = 32, ef_construction: int = 200, ef_search: int = 64):
        """
        Initialize the HNSW index.

        Args:
            dimension: Dimension of the vectors (384 for all-MiniLM-L6-v2)
            m: Graph degree
            ef_construction: Candidate list size while inserting
            ef_search: Minimum candidate list size while searching
        """
        super().__init__(dimension)
        self.m = m
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self._labels: Set[int] = set()
        self._deleted: Set[int] = set()
        self.index = self._new_index()

    def _new_index(self):
        hnsw = faiss.IndexHNSWFlat(self.dimension, self.m, faiss.METRIC_INNER_PRODUCT)
        hnsw.hnsw.efConstruction = self.ef_construction
        hnsw.hnsw.efSearch = self.ef_search
        # IndexIDMap2 does not own the wrapped index; keep it alive here
        self._hnsw = hnsw
        return faiss.IndexIDMap2(hnsw)

    def add(self, record: VectorRecord) -> None:
        self.batch_add([record])

    def batch_add(self, records: List[VectorRecord]) -> None:
        if not records:
            return

        labels = [int(record.id) for record in records]
        duplicates = [label for label in labels if label in self._labels]
        if duplicates or len(set(labels)) != len(labels):
            raise ValueError(f"Labels already indexed: {duplicates or labels}")

        vectors = np.vstack([normalize_vector(record.vector, self.dimension) for record in records])
        self.index.add_with_ids(vectors.astype(np.float32), np.array(labels, dtype=np.int64))
        self._labels.update(labels)

    def search(self, query_vector: np.ndarray, top_k: int = 5) -> List[QueryResult]:
        if top_k <= 0 or not self.index.ntotal or len(self._labels) == len(self._deleted):
            return []

        query = normalize_vector(query_vector, self.dimension).reshape(1, -1)

        # Over-fetch by the tombstone count so deleted labels never crowd out live ones
        k = min(top_k + len(self._deleted), self.index.ntotal)
        self._hnsw.hnsw.efSearch = max(self.ef_search, k)
        scores, ids = self.index.search(query, k)

        results = []
        for score, label in zip(scores[0], ids[0]):
            label = int(label)
            if label < 0 or label in self._deleted:
                continue
            results.append(QueryResult(id=label, score=float(score)))
            if len(results) == top_k:
                break
        return results

    def delete(self, record_id: int) -> None:
        label = int(record_id)
        if label in self._labels:
            self._deleted.add(label)

    def clear(self) -> None:
        self._labels.clear()
        self._deleted.clear()
        self.index = self._new_index()

    def labels(self) -> Set[int]:
        return self._labels - self._deleted

    @property
    def tombstone_count(self) -> int:
        return len(self._deleted)

    def serialize(self) -> bytes:
        return faiss.serialize_index(self.index).tobytes()

    def load(self, data: bytes) -> None:
        index = faiss.deserialize_index(np.frombuffer(data, dtype=np.uint8))
        if not isinstance(index, faiss.IndexIDMap2):
            raise ValueError(f"Snapshot holds {type(index).__name__}, expected IndexIDMap2")
        if index.d != self.dimension:
            raise ValueError(f"Snapshot dimension {index.d} does not match {self.dimension}")

        self.index = index
        self._hnsw = faiss.downcast_index(index.index)
        self._labels = set(int(label) for label in faiss.vector_to_array(index.id_map))
        self._deleted = set()
