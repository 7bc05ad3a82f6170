"""
Request models for the public operations.
Validation happens here, before the store touches storage.
"""

import json
import math
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import (
    DEFAULT_IMPORTANCE,
    DEFAULT_MIN_SIMILARITY,
    DEFAULT_RECENT_LIMIT,
    DEFAULT_RETRIEVAL_MULTIPLIER,
    DEFAULT_SEARCH_LIMIT,
    DEFAULT_USE_RERANKER,
    MAX_CONTENT_LENGTH,
    MAX_QUERY_LENGTH,
    MAX_RESULT_LIMIT,
    MAX_RETRIEVAL_MULTIPLIER,
    MAX_TAG_LENGTH,
)
from .errors import MemoryValidationError
from .schema import MemoryType

RequestT = TypeVar("RequestT", bound=BaseModel)


def _check_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    if tags is None:
        return None
    for tag in tags:
        if len(tag) == 0:
            raise ValueError("each tag must be a non-empty string")
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"tag length must not exceed {MAX_TAG_LENGTH} characters")
    return tags


def _check_finite(value: float, name: str) -> float:
    if math.isnan(value):
        raise ValueError(f"{name} must be a number")
    return value


class StoreMemoryRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: str
    memory_type: MemoryType
    importance: float = Field(DEFAULT_IMPORTANCE, ge=0.0, le=1.0)
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("content")
    @classmethod
    def content_must_be_valid(cls, v):
        if not v:
            raise ValueError("memory content must be a non-empty string")
        if len(v) > MAX_CONTENT_LENGTH:
            raise ValueError(f"memory content exceeds maximum length of {MAX_CONTENT_LENGTH} characters")
        return v

    @field_validator("importance")
    @classmethod
    def importance_must_be_number(cls, v):
        return _check_finite(v, "importance")

    @field_validator("tags")
    @classmethod
    def tags_must_be_valid(cls, v):
        return _check_tags(v)

    @field_validator("metadata")
    @classmethod
    def metadata_must_serialize(cls, v):
        if v is None:
            return v
        try:
            json.dumps(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"metadata must be JSON-serializable: {e}")
        return v


class SearchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str
    memory_type: Optional[MemoryType] = None
    limit: int = Field(DEFAULT_SEARCH_LIMIT, ge=1, le=MAX_RESULT_LIMIT)
    min_similarity: float = Field(DEFAULT_MIN_SIMILARITY, ge=0.0, le=1.0)
    tags: Optional[List[str]] = None
    use_reranker: bool = DEFAULT_USE_RERANKER
    retrieval_multiplier: int = Field(DEFAULT_RETRIEVAL_MULTIPLIER, ge=1, le=MAX_RETRIEVAL_MULTIPLIER)

    @field_validator("query")
    @classmethod
    def query_must_be_valid(cls, v):
        if not v:
            raise ValueError("search query must be a non-empty string")
        if len(v) > MAX_QUERY_LENGTH:
            raise ValueError(f"search query exceeds maximum length of {MAX_QUERY_LENGTH} characters")
        return v

    @field_validator("min_similarity")
    @classmethod
    def min_similarity_must_be_number(cls, v):
        return _check_finite(v, "min_similarity")

    @field_validator("tags")
    @classmethod
    def tags_must_be_valid(cls, v):
        return _check_tags(v)


class RecentMemoriesRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    limit: int = Field(DEFAULT_RECENT_LIMIT, ge=1, le=MAX_RESULT_LIMIT)
    memory_type: Optional[MemoryType] = None
    min_importance: float = Field(0.0, ge=0.0, le=1.0)

    @field_validator("min_importance")
    @classmethod
    def min_importance_must_be_number(cls, v):
        return _check_finite(v, "min_importance")


class DeleteMemoryRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    memory_id: str

    @field_validator("memory_id")
    @classmethod
    def memory_id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError("memory ID must be a non-empty string")
        return v


def parse_request(model: Type[RequestT], operation: str, **values: Any) -> RequestT:
    """Build a request model, turning pydantic errors into MemoryValidationError."""
    try:
        return model(**values)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error.get("loc", ())) or "unknown"
        message = error.get("msg", str(e))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        raise MemoryValidationError(
            f"Invalid {field} for {operation}: {message}",
            field=field,
            error_type=error.get("type", "invalid"),
            operation=operation,
        ) from e
