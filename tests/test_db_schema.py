"""
Schema manager: idempotent setup, constraints and transactions.
"""

import sqlite3
from unittest.mock import MagicMock

import pytest

from memstore.core.db import REQUIRED_TABLES, health_check, init_schema, open_db, transaction
from memstore.core.errors import SchemaInitializationError, StoreInitializationError


@pytest.fixture
def conn(tmp_path):
    connection = open_db(str(tmp_path / "schema.db"))
    yield connection
    connection.close()


def test_init_schema_creates_required_tables(conn):
    init_schema(conn, 4)

    tables = {row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert set(REQUIRED_TABLES) <= tables
    assert health_check(conn)


def test_init_schema_is_idempotent(conn):
    init_schema(conn, 4)
    conn.execute("INSERT INTO memories (id, content, memory_type) VALUES ('m1', 'kept', 'code')")

    init_schema(conn, 4)

    assert conn.execute("SELECT content FROM memories WHERE id = 'm1'").fetchone()["content"] == "kept"
    meta = {row["key"]: row["value"] for row in conn.execute("SELECT key, value FROM store_meta")}
    assert meta["embedding_dimension"] == "4"
    assert meta["schema_version"] == "1"


def test_dimension_mismatch_fails(conn):
    init_schema(conn, 4)

    with pytest.raises(SchemaInitializationError) as exc_info:
        init_schema(conn, 8)

    assert isinstance(exc_info.value, StoreInitializationError)
    assert exc_info.value.operation == "initialize"


def test_ddl_failure_is_wrapped():
    broken = MagicMock()
    broken.execute.side_effect = sqlite3.OperationalError("disk I/O error")

    with pytest.raises(SchemaInitializationError) as exc_info:
        init_schema(broken, 4)

    assert "memories table" in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)


@pytest.mark.parametrize("sql", [
    "INSERT INTO memories (id, content, memory_type) VALUES ('x', 'c', 'bogus')",
    "INSERT INTO memories (id, content, memory_type, importance_score) VALUES ('x', 'c', 'code', 1.5)",
    "INSERT INTO memories (id, content, memory_type) VALUES ('x', '', 'code')",
    "INSERT INTO embeddings (memory_id, embedding) VALUES ('missing', zeroblob(16))",
])
def test_constraints_reject_invalid_rows(conn, sql):
    init_schema(conn, 4)

    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(sql)


def test_embedding_width_is_checked(conn):
    init_schema(conn, 4)
    conn.execute("INSERT INTO memories (id, content, memory_type) VALUES ('m1', 'c', 'code')")

    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("INSERT INTO embeddings (memory_id, embedding) VALUES ('m1', zeroblob(8))")


def test_transaction_rolls_back_on_error(conn):
    init_schema(conn, 4)

    with pytest.raises(RuntimeError):
        with transaction(conn):
            conn.execute("INSERT INTO memories (id, content, memory_type) VALUES ('m1', 'c', 'code')")
            raise RuntimeError("boom")

    assert conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0] == 0


def test_failed_commit_rolls_back(conn):
    init_schema(conn, 4)

    # Deferred foreign keys are only checked at COMMIT
    with pytest.raises(sqlite3.IntegrityError):
        with transaction(conn):
            conn.execute("PRAGMA defer_foreign_keys = ON")
            conn.execute("INSERT INTO embeddings (memory_id, embedding) VALUES ('missing', zeroblob(16))")

    assert not conn.in_transaction
    assert conn.execute("SELECT COUNT(*) FROM embeddings").fetchone()[0] == 0

    with transaction(conn):
        conn.execute("INSERT INTO memories (id, content, memory_type) VALUES ('m1', 'c', 'code')")
    assert conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0] == 1


def test_health_check_detects_missing_tables(conn):
    assert not health_check(conn)
