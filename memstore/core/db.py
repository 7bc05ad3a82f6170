"""
SQLite connection handling and the schema manager.
Schema setup is idempotent: running it against an initialized store is a no-op.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, List, Tuple

from .config import SCHEMA_VERSION
from .errors import SchemaInitializationError

# Millisecond-precision UTC timestamps, sortable as text
NOW_SQL = "strftime('%Y-%m-%d %H:%M:%f', 'now')"

REQUIRED_TABLES = ["memories", "embeddings", "tags", "memory_tags", "store_meta", "vector_index_snapshots"]


def open_db(db_path: str) -> sqlite3.Connection:
    """Open a connection shared by the store and its background worker."""
    conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
    """Run a block in an explicit write transaction; roll back on any error, including a failed COMMIT."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        # A failed COMMIT leaves the transaction open
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise


def _schema_steps(dimension: int) -> List[Tuple[str, str]]:
    return [
        (
            "creating memories table",
            f"""
            CREATE TABLE IF NOT EXISTS memories (
                id TEXT PRIMARY KEY,
                content TEXT NOT NULL CHECK (length(content) > 0),
                memory_type TEXT NOT NULL CHECK (memory_type IN ('conversation', 'code', 'decision', 'context')),
                created_at TEXT NOT NULL DEFAULT ({NOW_SQL}),
                updated_at TEXT NOT NULL DEFAULT ({NOW_SQL}),
                metadata TEXT,
                importance_score REAL NOT NULL DEFAULT 0.5 CHECK (importance_score BETWEEN 0.0 AND 1.0),
                access_count INTEGER NOT NULL DEFAULT 0 CHECK (access_count >= 0),
                last_accessed TEXT
            )
            """,
        ),
        (
            "creating embeddings table",
            f"""
            CREATE TABLE IF NOT EXISTS embeddings (
                label INTEGER PRIMARY KEY AUTOINCREMENT,
                memory_id TEXT NOT NULL UNIQUE REFERENCES memories(id) ON DELETE CASCADE,
                embedding BLOB NOT NULL CHECK (length(embedding) = {dimension * 4})
            )
            """,
        ),
        (
            "creating tags table",
            """
            CREATE TABLE IF NOT EXISTS tags (
                id TEXT PRIMARY KEY,
                tag_name TEXT NOT NULL UNIQUE CHECK (length(tag_name) BETWEEN 1 AND 100)
            )
            """,
        ),
        (
            "creating memory_tags table",
            """
            CREATE TABLE IF NOT EXISTS memory_tags (
                memory_id TEXT NOT NULL REFERENCES memories(id) ON DELETE CASCADE,
                tag_id TEXT NOT NULL REFERENCES tags(id),
                PRIMARY KEY (memory_id, tag_id)
            )
            """,
        ),
        (
            "creating store_meta table",
            """
            CREATE TABLE IF NOT EXISTS store_meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """,
        ),
        (
            "creating vector_index_snapshots table",
            """
            CREATE TABLE IF NOT EXISTS vector_index_snapshots (
                name TEXT PRIMARY KEY,
                provider TEXT NOT NULL,
                dimension INTEGER NOT NULL,
                data BLOB NOT NULL,
                vector_count INTEGER NOT NULL,
                saved_at TEXT NOT NULL
            )
            """,
        ),
        (
            "creating recency index",
            "CREATE INDEX IF NOT EXISTS idx_memories_created_at ON memories(created_at DESC)",
        ),
        (
            "creating memory type index",
            "CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(memory_type, importance_score)",
        ),
        (
            "creating tag lookup index",
            "CREATE INDEX IF NOT EXISTS idx_memory_tags_tag ON memory_tags(tag_id)",
        ),
    ]


def init_schema(conn: sqlite3.Connection, dimension: int) -> None:
    """Create tables and indexes, then pin the schema version and embedding dimension."""
    for description, sql in _schema_steps(dimension):
        try:
            conn.execute(sql)
        except sqlite3.Error as e:
            raise SchemaInitializationError(f"Failed {description}: {e}", operation="initialize") from e

    try:
        with transaction(conn):
            conn.execute(
                "INSERT OR IGNORE INTO store_meta (key, value) VALUES ('schema_version', ?)",
                (str(SCHEMA_VERSION),),
            )
            conn.execute(
                "INSERT OR IGNORE INTO store_meta (key, value) VALUES ('embedding_dimension', ?)",
                (str(dimension),),
            )
            row = conn.execute("SELECT value FROM store_meta WHERE key = 'embedding_dimension'").fetchone()
    except sqlite3.Error as e:
        raise SchemaInitializationError(f"Failed recording schema metadata: {e}", operation="initialize") from e

    stored_dimension = int(row["value"])
    if stored_dimension != dimension:
        raise SchemaInitializationError(
            f"Store was created with embedding dimension {stored_dimension}, configured dimension is {dimension}",
            operation="initialize",
        )


def health_check(conn: sqlite3.Connection) -> bool:
    """Check that every required table exists."""
    try:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    except sqlite3.Error:
        return False
    table_names = {row["name"] for row in rows}
    return all(table in table_names for table in REQUIRED_TABLES)
