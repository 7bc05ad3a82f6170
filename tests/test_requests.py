"""
Request validation for the public operations.
"""

import pytest

from memstore.core.config import MAX_CONTENT_LENGTH, MAX_TAG_LENGTH
from memstore.core.errors import MemoryStoreError, MemoryValidationError
from memstore.core.requests import (
    DeleteMemoryRequest,
    RecentMemoriesRequest,
    SearchRequest,
    StoreMemoryRequest,
    parse_request,
)
from memstore.core.schema import MemoryType


def test_store_request_defaults():
    request = parse_request(StoreMemoryRequest, "store_memory", content="hello", memory_type="code")

    assert request.memory_type is MemoryType.code
    assert request.importance == 0.5
    assert request.tags is None
    assert request.metadata is None


def test_search_request_defaults():
    request = parse_request(SearchRequest, "search_memories", query="hello")

    assert request.limit == 10
    assert request.min_similarity == 0.7
    assert request.use_reranker is True
    assert request.retrieval_multiplier == 3
    assert request.memory_type is None


def test_recent_request_defaults():
    request = parse_request(RecentMemoriesRequest, "get_recent_memories")

    assert request.limit == 20
    assert request.min_importance == 0.0


@pytest.mark.parametrize("values, field", [
    ({"content": "", "memory_type": "code"}, "content"),
    ({"content": "x" * (MAX_CONTENT_LENGTH + 1), "memory_type": "code"}, "content"),
    ({"content": "ok", "memory_type": "diary"}, "memory_type"),
    ({"content": "ok", "memory_type": "code", "importance": 1.1}, "importance"),
    ({"content": "ok", "memory_type": "code", "importance": -0.1}, "importance"),
    ({"content": "ok", "memory_type": "code", "importance": float("nan")}, "importance"),
    ({"content": "ok", "memory_type": "code", "tags": [""]}, "tags"),
    ({"content": "ok", "memory_type": "code", "tags": ["t" * (MAX_TAG_LENGTH + 1)]}, "tags"),
    ({"content": "ok", "memory_type": "code", "metadata": {"when": object()}}, "metadata"),
])
def test_store_request_rejects_invalid_input(values, field):
    with pytest.raises(MemoryValidationError) as exc_info:
        parse_request(StoreMemoryRequest, "store_memory", **values)

    error = exc_info.value
    assert error.field == field
    assert error.operation == "store_memory"
    assert isinstance(error, ValueError)
    assert isinstance(error, MemoryStoreError)
    assert str(error).startswith(f"Invalid {field} for store_memory")


@pytest.mark.parametrize("values, field", [
    ({"query": ""}, "query"),
    ({"query": "q", "limit": 0}, "limit"),
    ({"query": "q", "limit": 101}, "limit"),
    ({"query": "q", "min_similarity": 1.5}, "min_similarity"),
    ({"query": "q", "min_similarity": -0.1}, "min_similarity"),
    ({"query": "q", "retrieval_multiplier": 0}, "retrieval_multiplier"),
    ({"query": "q", "retrieval_multiplier": 11}, "retrieval_multiplier"),
    ({"query": "q", "memory_type": "diary"}, "memory_type"),
    ({"query": "q", "tags": ["ok", ""]}, "tags"),
])
def test_search_request_rejects_invalid_input(values, field):
    with pytest.raises(MemoryValidationError) as exc_info:
        parse_request(SearchRequest, "search_memories", **values)

    assert exc_info.value.field == field


def test_limits_accept_bounds():
    assert parse_request(SearchRequest, "search_memories", query="q", limit=1).limit == 1
    assert parse_request(SearchRequest, "search_memories", query="q", limit=100).limit == 100
    assert parse_request(RecentMemoriesRequest, "get_recent_memories", limit=100).limit == 100
    tag = "t" * MAX_TAG_LENGTH
    assert parse_request(StoreMemoryRequest, "store_memory", content="c", memory_type="code", tags=[tag]).tags == [tag]


def test_tags_are_case_sensitive():
    request = parse_request(StoreMemoryRequest, "store_memory", content="c", memory_type="code", tags=["Tag", "tag"])

    assert request.tags == ["Tag", "tag"]


def test_recent_request_rejects_invalid_input():
    with pytest.raises(MemoryValidationError) as exc_info:
        parse_request(RecentMemoriesRequest, "get_recent_memories", min_importance=2.0)

    assert exc_info.value.field == "min_importance"


def test_delete_request_rejects_blank_id():
    with pytest.raises(MemoryValidationError):
        parse_request(DeleteMemoryRequest, "delete_memory", memory_id=" ")


def test_whitespace_only_text_is_accepted():
    stored = parse_request(StoreMemoryRequest, "store_memory", content="   ", memory_type="code")
    searched = parse_request(SearchRequest, "search_memories", query=" \n")

    assert stored.content == "   "
    assert searched.query == " \n"
