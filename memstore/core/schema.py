"""
Typed records for everything that crosses the storage boundary.
Rows are converted into these immediately on read; nothing untyped leaves dao.py.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np


class MemoryType(str, Enum):
    conversation = "conversation"
    code = "code"
    decision = "decision"
    context = "context"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]


@dataclass
class Memory:
    id: str
    content: str
    memory_type: MemoryType
    created_at: datetime
    updated_at: datetime
    importance_score: float
    access_count: int
    metadata: Optional[Dict[str, Any]] = None
    last_accessed: Optional[datetime] = None
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "memory_type": self.memory_type.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "metadata": self.metadata,
            "importance_score": self.importance_score,
            "access_count": self.access_count,
            "last_accessed": self.last_accessed.isoformat() if self.last_accessed else None,
            "tags": list(self.tags),
        }


@dataclass
class SearchResult(Memory):
    """A memory plus the score it was ranked by. Never persisted."""

    similarity: float = 0.0
    vector_similarity: float = 0.0
    reranked: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["similarity"] = self.similarity
        data["vector_similarity"] = self.vector_similarity
        data["reranked"] = self.reranked
        return data


@dataclass
class TagRecord:
    id: str
    tag_name: str


@dataclass
class EmbeddingRecord:
    label: int
    memory_id: str
    vector: np.ndarray


@dataclass
class IndexSnapshot:
    name: str
    provider: str
    dimension: int
    data: bytes
    vector_count: int
    saved_at: datetime


@dataclass
class RerankerConfig:
    enabled: bool
    model: str
