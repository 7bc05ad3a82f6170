"""
Record types exchanged with vector indexes.
"""

from dataclasses import dataclass

import numpy as np


@dataclass
class VectorRecord:
    """Represents a vector keyed by its integer index label."""

    id: int
    """Label shared with the embeddings table"""

    vector: np.ndarray
    """Unit-length embedding"""


@dataclass
class QueryResult:
    """Represents a search result from a vector index."""

    id: int
    """Label of the matching vector"""

    score: float
    """Cosine similarity of the match"""
