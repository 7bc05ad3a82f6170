"""
Relational store: typed records in and out of SQLite.
"""

from datetime import timezone

import numpy as np
import pytest

from memstore.core import dao
from memstore.core.db import init_schema, open_db, transaction
from memstore.core.schema import EmbeddingRecord, Memory, MemoryType

DIM = 4


@pytest.fixture
def conn(tmp_path):
    connection = open_db(str(tmp_path / "dao.db"))
    init_schema(connection, DIM)
    yield connection
    connection.close()


def add(conn, memory_id, memory_type=MemoryType.code, importance=0.5, tags=None, metadata=None, vector=None):
    with transaction(conn):
        dao.insert_memory(conn, memory_id, f"content of {memory_id}", memory_type, importance, metadata)
        label = dao.insert_embedding(conn, memory_id, vector if vector is not None else np.ones(DIM, dtype=np.float32))
        if tags:
            dao.link_tags(conn, memory_id, tags)
    return label


def test_insert_and_get_memory(conn):
    add(conn, "m1", MemoryType.decision, 0.8, tags=["zeta", "alpha"], metadata={"source": "test"})

    memory = dao.get_memory(conn, "m1")

    assert isinstance(memory, Memory)
    assert memory.content == "content of m1"
    assert memory.memory_type is MemoryType.decision
    assert memory.importance_score == pytest.approx(0.8)
    assert memory.metadata == {"source": "test"}
    assert memory.tags == ["alpha", "zeta"]
    assert memory.access_count == 0
    assert memory.last_accessed is None
    assert memory.created_at.tzinfo == timezone.utc


def test_get_missing_memory(conn):
    assert dao.get_memory(conn, "nope") is None


def test_tags_are_created_once_and_reused(conn):
    add(conn, "m1", tags=["a", "b"])
    add(conn, "m2", tags=["b", "c"])

    assert conn.execute("SELECT COUNT(*) FROM tags").fetchone()[0] == 3
    assert conn.execute("SELECT COUNT(*) FROM memory_tags").fetchone()[0] == 4
    assert dao.get_tag_by_name(conn, "b") is not None
    assert dao.get_tag_by_name(conn, "B") is None


def test_embedding_labels_are_sequential_and_never_reused(conn):
    first = add(conn, "m1")
    second = add(conn, "m2")
    with transaction(conn):
        dao.delete_memory(conn, "m2")
    third = add(conn, "m3")

    assert second == first + 1
    assert third > second
    assert dao.list_embedding_labels(conn) == {first, third}


def test_delete_memory_removes_everything(conn):
    label = add(conn, "m1", tags=["a"])

    with transaction(conn):
        freed = dao.delete_memory(conn, "m1")
        missing = dao.delete_memory(conn, "m1")

    assert freed == label
    assert missing is None
    counts = dao.count_rows(conn)
    assert counts["memories"] == 0
    assert counts["embeddings"] == 0
    assert counts["memory_tags"] == 0
    # Tag vocabulary survives
    assert counts["tags"] == 1


def test_fetch_candidates_applies_filters(conn):
    l1 = add(conn, "m1", MemoryType.decision, tags=["a", "b"])
    l2 = add(conn, "m2", MemoryType.code, tags=["b", "c"])
    l3 = add(conn, "m3", MemoryType.code)

    assert set(dao.fetch_candidates(conn, [l1, l2, l3])) == {l1, l2, l3}
    assert set(dao.fetch_candidates(conn, [l1, l2, l3], memory_type=MemoryType.code)) == {l2, l3}
    assert set(dao.fetch_candidates(conn, [l1, l2, l3], tags=["a"])) == {l1}
    assert set(dao.fetch_candidates(conn, [l1, l2, l3], tags=["a", "c"])) == {l1, l2}
    assert dao.fetch_candidates(conn, [l1, 9999]).keys() == {l1}
    assert dao.fetch_candidates(conn, []) == {}


def test_fetch_candidates_handles_large_label_lists(conn):
    labels = [add(conn, f"m{i}") for i in range(3)]

    found = dao.fetch_candidates(conn, labels + list(range(10_000, 10_000 + dao.IN_CLAUSE_CHUNK * 2)))

    assert set(found) == set(labels)


def test_list_recent_memories_order_and_filters(conn):
    add(conn, "m1", MemoryType.code, 0.2)
    add(conn, "m2", MemoryType.decision, 0.9)
    add(conn, "m3", MemoryType.code, 0.6)

    assert [m.id for m in dao.list_recent_memories(conn, 10)] == ["m3", "m2", "m1"]
    assert [m.id for m in dao.list_recent_memories(conn, 2)] == ["m3", "m2"]
    assert [m.id for m in dao.list_recent_memories(conn, 10, MemoryType.code)] == ["m3", "m1"]
    assert [m.id for m in dao.list_recent_memories(conn, 10, min_importance=0.5)] == ["m3", "m2"]


def test_record_access(conn):
    add(conn, "m1")
    add(conn, "m2")

    with transaction(conn):
        touched = dao.record_access(conn, ["m1", "missing"])

    assert touched == 1
    m1 = dao.get_memory(conn, "m1")
    assert m1.access_count == 1
    assert m1.last_accessed is not None
    assert dao.get_memory(conn, "m2").access_count == 0


def test_iter_embeddings_batches(conn):
    vectors = {}
    for i in range(5):
        vector = np.arange(DIM, dtype=np.float32) + i
        vectors[add(conn, f"m{i}", vector=vector)] = vector

    batches = list(dao.iter_embeddings(conn, batch_size=2))

    assert [len(batch) for batch in batches] == [2, 2, 1]
    for record in (r for batch in batches for r in batch):
        assert isinstance(record, EmbeddingRecord)
        np.testing.assert_array_equal(record.vector, vectors[record.label])


def test_meta_upsert(conn):
    with transaction(conn):
        dao.set_meta(conn, "embedding_model", "a")
        dao.set_meta(conn, "embedding_model", "b")

    assert dao.get_meta(conn, "embedding_model") == "b"
    assert dao.get_meta(conn, "missing") is None


def test_index_snapshot_round_trip(conn):
    assert dao.load_index_snapshot(conn, "memories") is None

    with transaction(conn):
        dao.save_index_snapshot(conn, "memories", "hnsw", DIM, b"\x00\x01payload", 3)
        dao.save_index_snapshot(conn, "memories", "hnsw", DIM, b"newer", 4)

    snapshot = dao.load_index_snapshot(conn, "memories")
    assert snapshot.data == b"newer"
    assert snapshot.vector_count == 4
    assert snapshot.provider == "hnsw"
    assert snapshot.saved_at.tzinfo == timezone.utc
