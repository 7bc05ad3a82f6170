"""
Relational store: every SQL statement the memory store issues lives here.
Rows are converted to typed records before they leave this module.
"""

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set

import numpy as np

from .db import NOW_SQL
from .schema import EmbeddingRecord, IndexSnapshot, Memory, MemoryType, TagRecord

# Keeps every statement well under SQLite's bound-parameter limit
IN_CLAUSE_CHUNK = 500

MEMORY_COLUMNS = (
    "m.id, m.content, m.memory_type, m.created_at, m.updated_at, m.metadata, "
    "m.importance_score, m.access_count, m.last_accessed"
)


def _chunks(values: Sequence, size: int = IN_CLAUSE_CHUNK) -> Iterator[Sequence]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored UTC timestamp into an aware datetime."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def vector_to_blob(vector: np.ndarray) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def blob_to_vector(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


def row_to_memory(row: sqlite3.Row, tags: Optional[List[str]] = None) -> Memory:
    metadata = row["metadata"]
    return Memory(
        id=row["id"],
        content=row["content"],
        memory_type=MemoryType(row["memory_type"]),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        metadata=json.loads(metadata) if metadata else None,
        importance_score=float(row["importance_score"]),
        access_count=int(row["access_count"]),
        last_accessed=parse_timestamp(row["last_accessed"]),
        tags=list(tags or []),
    )


# ============================================================
# Memories and embeddings
# ============================================================

def insert_memory(
    conn: sqlite3.Connection,
    memory_id: str,
    content: str,
    memory_type: MemoryType,
    importance: float,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    conn.execute(
        "INSERT INTO memories (id, content, memory_type, importance_score, metadata) VALUES (?, ?, ?, ?, ?)",
        (
            memory_id,
            content,
            MemoryType(memory_type).value,
            importance,
            json.dumps(metadata) if metadata is not None else None,
        ),
    )


def insert_embedding(conn: sqlite3.Connection, memory_id: str, vector: np.ndarray) -> int:
    """Store a memory's vector and return the integer label the ANN index uses for it."""
    cursor = conn.execute(
        "INSERT INTO embeddings (memory_id, embedding) VALUES (?, ?)",
        (memory_id, vector_to_blob(vector)),
    )
    return int(cursor.lastrowid)


def get_memory(conn: sqlite3.Connection, memory_id: str) -> Optional[Memory]:
    row = conn.execute(f"SELECT {MEMORY_COLUMNS} FROM memories m WHERE m.id = ?", (memory_id,)).fetchone()
    if row is None:
        return None
    tags = tags_for_memories(conn, [memory_id]).get(memory_id, [])
    return row_to_memory(row, tags)


def list_recent_memories(
    conn: sqlite3.Connection,
    limit: int,
    memory_type: Optional[MemoryType] = None,
    min_importance: float = 0.0,
) -> List[Memory]:
    """Newest first; rows created in the same millisecond fall back to insertion order."""
    sql = f"SELECT {MEMORY_COLUMNS} FROM memories m WHERE m.importance_score >= ?"
    params: List[Any] = [min_importance]

    if memory_type is not None:
        sql += " AND m.memory_type = ?"
        params.append(MemoryType(memory_type).value)

    sql += " ORDER BY m.created_at DESC, m.rowid DESC LIMIT ?"
    params.append(limit)

    rows = conn.execute(sql, params).fetchall()
    tag_map = tags_for_memories(conn, [row["id"] for row in rows])
    return [row_to_memory(row, tag_map.get(row["id"])) for row in rows]


def fetch_candidates(
    conn: sqlite3.Connection,
    labels: Sequence[int],
    memory_type: Optional[MemoryType] = None,
    tags: Optional[Sequence[str]] = None,
) -> Dict[int, Memory]:
    """Join ANN labels back to their memories, applying the relational filters.

    Labels with no surviving memory (deleted, or never committed) and memories
    failing the kind/tag filters are simply absent from the result.
    """
    if not labels:
        return {}

    found: Dict[int, sqlite3.Row] = {}
    for chunk in _chunks(list(labels)):
        sql = (
            f"SELECT e.label, {MEMORY_COLUMNS} FROM embeddings e "
            f"JOIN memories m ON m.id = e.memory_id "
            f"WHERE e.label IN ({_placeholders(len(chunk))})"
        )
        params: List[Any] = list(chunk)

        if memory_type is not None:
            sql += " AND m.memory_type = ?"
            params.append(MemoryType(memory_type).value)

        if tags:
            sql += (
                " AND m.id IN (SELECT mt.memory_id FROM memory_tags mt "
                "JOIN tags t ON t.id = mt.tag_id "
                f"WHERE t.tag_name IN ({_placeholders(len(tags))}))"
            )
            params.extend(tags)

        for row in conn.execute(sql, params):
            found[int(row["label"])] = row

    tag_map = tags_for_memories(conn, [row["id"] for row in found.values()])
    return {label: row_to_memory(row, tag_map.get(row["id"])) for label, row in found.items()}


def delete_memory(conn: sqlite3.Connection, memory_id: str) -> Optional[int]:
    """Delete associations, embedding, then the memory. Returns the freed ANN label, if any."""
    row = conn.execute("SELECT label FROM embeddings WHERE memory_id = ?", (memory_id,)).fetchone()
    conn.execute("DELETE FROM memory_tags WHERE memory_id = ?", (memory_id,))
    conn.execute("DELETE FROM embeddings WHERE memory_id = ?", (memory_id,))
    conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
    return int(row["label"]) if row else None


def record_access(conn: sqlite3.Connection, memory_ids: Sequence[str]) -> int:
    """Bump access_count and last_accessed for every id. Returns rows touched."""
    updated = 0
    for chunk in _chunks(list(memory_ids)):
        cursor = conn.execute(
            f"UPDATE memories SET access_count = access_count + 1, last_accessed = {NOW_SQL} "
            f"WHERE id IN ({_placeholders(len(chunk))})",
            list(chunk),
        )
        updated += cursor.rowcount
    return updated


def list_embedding_labels(conn: sqlite3.Connection) -> Set[int]:
    return {int(row["label"]) for row in conn.execute("SELECT label FROM embeddings")}


def iter_embeddings(conn: sqlite3.Connection, batch_size: int = 1000) -> Iterator[List[EmbeddingRecord]]:
    """Yield every stored embedding in label order, batch by batch."""
    last_label = 0
    while True:
        rows = conn.execute(
            "SELECT label, memory_id, embedding FROM embeddings WHERE label > ? ORDER BY label LIMIT ?",
            (last_label, batch_size),
        ).fetchall()
        if not rows:
            return
        yield [
            EmbeddingRecord(
                label=int(row["label"]),
                memory_id=row["memory_id"],
                vector=blob_to_vector(row["embedding"]),
            )
            for row in rows
        ]
        last_label = int(rows[-1]["label"])


# ============================================================
# Tags
# ============================================================

def get_tag_by_name(conn: sqlite3.Connection, tag_name: str) -> Optional[TagRecord]:
    row = conn.execute("SELECT id, tag_name FROM tags WHERE tag_name = ?", (tag_name,)).fetchone()
    if row is None:
        return None
    return TagRecord(id=row["id"], tag_name=row["tag_name"])


def create_tag(conn: sqlite3.Connection, tag_name: str) -> TagRecord:
    tag = TagRecord(id=str(uuid.uuid4()), tag_name=tag_name)
    conn.execute("INSERT INTO tags (id, tag_name) VALUES (?, ?)", (tag.id, tag.tag_name))
    return tag


def link_tags(conn: sqlite3.Connection, memory_id: str, tag_names: Sequence[str]) -> List[TagRecord]:
    """Associate tags with a memory, creating tag rows on first use."""
    linked = []
    for tag_name in tag_names:
        tag = get_tag_by_name(conn, tag_name) or create_tag(conn, tag_name)
        conn.execute(
            "INSERT OR IGNORE INTO memory_tags (memory_id, tag_id) VALUES (?, ?)",
            (memory_id, tag.id),
        )
        linked.append(tag)
    return linked


def tags_for_memories(conn: sqlite3.Connection, memory_ids: Sequence[str]) -> Dict[str, List[str]]:
    tag_map: Dict[str, List[str]] = {}
    for chunk in _chunks(list(memory_ids)):
        rows = conn.execute(
            "SELECT mt.memory_id, t.tag_name FROM memory_tags mt JOIN tags t ON t.id = mt.tag_id "
            f"WHERE mt.memory_id IN ({_placeholders(len(chunk))}) ORDER BY t.tag_name",
            list(chunk),
        )
        for row in rows:
            tag_map.setdefault(row["memory_id"], []).append(row["tag_name"])
    return tag_map


# ============================================================
# Store metadata and index snapshots
# ============================================================

def get_meta(conn: sqlite3.Connection, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM store_meta WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else None


def set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        "INSERT INTO store_meta (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, value),
    )


def save_index_snapshot(
    conn: sqlite3.Connection,
    name: str,
    provider: str,
    dimension: int,
    data: bytes,
    vector_count: int,
) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO vector_index_snapshots (name, provider, dimension, data, vector_count, saved_at) "
        f"VALUES (?, ?, ?, ?, ?, {NOW_SQL})",
        (name, provider, dimension, sqlite3.Binary(data), vector_count),
    )


def load_index_snapshot(conn: sqlite3.Connection, name: str) -> Optional[IndexSnapshot]:
    row = conn.execute(
        "SELECT name, provider, dimension, data, vector_count, saved_at FROM vector_index_snapshots WHERE name = ?",
        (name,),
    ).fetchone()
    if row is None:
        return None
    return IndexSnapshot(
        name=row["name"],
        provider=row["provider"],
        dimension=int(row["dimension"]),
        data=bytes(row["data"]),
        vector_count=int(row["vector_count"]),
        saved_at=parse_timestamp(row["saved_at"]),
    )


def count_rows(conn: sqlite3.Connection) -> Dict[str, int]:
    counts = {}
    for table in ("memories", "embeddings", "tags", "memory_tags"):
        counts[table] = int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
    return counts
