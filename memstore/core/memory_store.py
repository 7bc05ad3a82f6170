"""
Memory store facade: lifecycle plus the four public operations.
SQLite is canonical; the vector index is rebuilt from it whenever it cannot be trusted.
"""

import sqlite3
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional, Set

from . import dao
from .config import (
    DEFAULT_IMPORTANCE,
    DEFAULT_MIN_SIMILARITY,
    DEFAULT_RECENT_LIMIT,
    DEFAULT_RETRIEVAL_MULTIPLIER,
    DEFAULT_SEARCH_LIMIT,
    DEFAULT_USE_RERANKER,
    MEMORY_DB_PATH,
    VERSION,
    StoreSettings,
    ensure_db_directory,
    get_embedding_provider,
    get_rerank_provider,
    get_vector_store,
)
from .db import health_check, init_schema, open_db, transaction
from .errors import (
    MemoryStoreError,
    StoreClosingError,
    StoreInitializationError,
    StoreNotInitializedError,
    StoreOperationError,
)
from .requests import (
    DeleteMemoryRequest,
    RecentMemoriesRequest,
    SearchRequest,
    StoreMemoryRequest,
    parse_request,
)
from .retrieval import RetrievalPipeline
from .schema import Memory, MemoryType, RerankerConfig, SearchResult
from ..util.logging import logger
from ..vector.embeddings import IEmbeddingProvider
from ..vector.index import IVectorStore
from ..vector.rerank import IRerankProvider
from ..vector.types import VectorRecord

INDEX_SNAPSHOT_NAME = "memories"

# Storage and index failures wrapped into StoreOperationError
STORAGE_ERRORS = (sqlite3.Error, ValueError, RuntimeError)

_FROM_CONFIG = object()


def _elapsed_ms(start: float) -> float:
    return (time.time() - start) * 1000


class MemoryStore:
    """Persistent semantic memory store.

    Usage:
        with MemoryStore("./data/memory.db") as store:
            memory = store.store_memory("Use WAL mode for SQLite", "decision", tags=["sqlite"])
            results = store.search_memories("sqlite journal mode", min_similarity=0.3)

    Collaborators default to the configured providers (see memstore.core.config);
    pass them explicitly to run against test doubles. rerank_provider=None
    disables reranking.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        embedding_provider: Optional[IEmbeddingProvider] = None,
        rerank_provider: Any = _FROM_CONFIG,
        vector_store: Optional[IVectorStore] = None,
        settings: Optional[StoreSettings] = None,
    ):
        self.db_path = db_path or MEMORY_DB_PATH
        self.settings = settings or StoreSettings.from_env()
        self._embedding_provider = embedding_provider if embedding_provider is not None else get_embedding_provider()
        self._rerank_provider: Optional[IRerankProvider] = (
            get_rerank_provider() if rerank_provider is _FROM_CONFIG else rerank_provider
        )
        # IVectorStore defines __len__, so an empty index is falsy
        if vector_store is None:
            vector_store = get_vector_store(self.settings.embedding_dimension)
        self._vector_store = vector_store
        self._pipeline = RetrievalPipeline(self._vector_store, self._embedding_provider, self.settings)

        self._conn: Optional[sqlite3.Connection] = None
        self._reranker: Optional[IRerankProvider] = None
        self._reranker_load_failed = False
        self._index_source: Optional[str] = None

        self._initialized = False
        self._closing = False
        self._lock = threading.RLock()
        self._lifecycle_lock = threading.Lock()

        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()

    # ============================================================
    # Lifecycle
    # ============================================================

    def initialize(self) -> None:
        """Open storage, load models and restore the vector index. Safe to call twice."""
        with self._lifecycle_lock:
            if self._initialized:
                logger.warning(f"Memory store at {self.db_path} already initialized")
                return

            start = time.time()
            try:
                self._open()
            except MemoryStoreError as e:
                self._release()
                logger.log_operation("initialize", "error", _elapsed_ms(start), {"db_path": self.db_path, "error": e})
                raise
            except Exception as e:
                self._release()
                logger.log_operation("initialize", "error", _elapsed_ms(start), {"db_path": self.db_path, "error": e})
                raise StoreInitializationError(
                    f"Failed to initialize memory store at {self.db_path}: {e}", operation="initialize"
                ) from e

            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="memstore-access")
            self._closing = False
            self._initialized = True
            logger.log_operation(
                "initialize",
                "success",
                _elapsed_ms(start),
                {
                    "db_path": self.db_path,
                    "index_source": self._index_source,
                    "vectors": len(self._vector_store),
                    "reranker_enabled": self.is_reranker_enabled(),
                },
            )

    def _open(self) -> None:
        dimension = self.settings.embedding_dimension

        if self.db_path != ":memory:":
            ensure_db_directory(self.db_path)
        try:
            self._conn = open_db(self.db_path)
        except sqlite3.Error as e:
            raise StoreInitializationError(f"Failed to open {self.db_path}: {e}", operation="initialize") from e

        init_schema(self._conn, dimension)

        self._embedding_provider.load()
        if self._embedding_provider.get_dimension() != dimension:
            raise StoreInitializationError(
                f"Embedding model {self._embedding_provider.model_name} produces "
                f"{self._embedding_provider.get_dimension()}-dimensional vectors, store expects {dimension}",
                operation="initialize",
            )
        if self._vector_store.dimension != dimension:
            raise StoreInitializationError(
                f"Vector index dimension {self._vector_store.dimension} does not match {dimension}",
                operation="initialize",
            )
        self._check_embedding_model()

        self._reranker = self._load_reranker()
        self._restore_index()

    def _check_embedding_model(self) -> None:
        model_name = self._embedding_provider.model_name
        stored = dao.get_meta(self._conn, "embedding_model")
        if stored is None:
            with transaction(self._conn):
                dao.set_meta(self._conn, "embedding_model", model_name)
        elif stored != model_name:
            logger.log_operation(
                "initialize.embedding_model",
                "degraded",
                details={"stored": stored, "configured": model_name},
            )

    def _load_reranker(self) -> Optional[IRerankProvider]:
        self._reranker_load_failed = False
        candidate = self._rerank_provider
        if candidate is None:
            logger.log_operation("reranker.load", "skipped", details={"reason": "disabled"})
            return None

        try:
            candidate.load()
        except Exception as e:
            self._reranker_load_failed = True
            logger.log_operation(
                "reranker.load",
                "degraded",
                details={"model": candidate.model_name, "error": e, "fallback": "bi-encoder"},
            )
            return None

        logger.log_operation("reranker.load", "success", details={"model": candidate.model_name})
        return candidate

    def _restore_index(self) -> None:
        """Load the saved index if it covers every stored embedding, else rebuild it."""
        db_labels = dao.list_embedding_labels(self._conn)
        snapshot = dao.load_index_snapshot(self._conn, INDEX_SNAPSHOT_NAME)
        vector_store = self._vector_store

        if (
            snapshot is not None
            and snapshot.provider == vector_store.provider_name
            and snapshot.dimension == vector_store.dimension
        ):
            try:
                vector_store.load(snapshot.data)
            except (ValueError, RuntimeError) as e:
                logger.log_vector_operation("snapshot.load", {"error": e}, status="degraded")
            else:
                indexed = vector_store.labels()
                if db_labels <= indexed:
                    for stale_label in indexed - db_labels:
                        vector_store.delete(stale_label)
                    self._index_source = "snapshot"
                    self._maybe_compact()
                    return
                logger.log_vector_operation(
                    "snapshot.load",
                    {"missing_labels": len(db_labels - indexed)},
                    status="stale",
                )

        count = self._rebuild_vector_store()
        self._index_source = "rebuilt"
        logger.log_vector_operation("rebuild", {"vectors": count, "reason": "no usable snapshot"})

    def _rebuild_vector_store(self) -> int:
        self._vector_store.clear()
        count = 0
        for batch in dao.iter_embeddings(self._conn):
            self._vector_store.batch_add([VectorRecord(id=record.label, vector=record.vector) for record in batch])
            count += len(batch)
        return count

    def _save_snapshot(self) -> None:
        vector_store = self._vector_store
        with transaction(self._conn):
            dao.save_index_snapshot(
                self._conn,
                INDEX_SNAPSHOT_NAME,
                vector_store.provider_name,
                vector_store.dimension,
                vector_store.serialize(),
                len(vector_store),
            )

    def close(self) -> None:
        """Drain background work, snapshot the index and release the connection. Safe to call twice."""
        with self._lifecycle_lock:
            if not self._initialized or self._closing:
                logger.warning(f"Memory store at {self.db_path} is not open; close() ignored")
                return
            self._closing = True

            # Drain before taking the store lock; access updates need it
            executor, self._executor = self._executor, None
            if executor is not None:
                executor.shutdown(wait=True)

            with self._lock:
                try:
                    self._save_snapshot()
                except STORAGE_ERRORS as e:
                    logger.log_vector_operation("snapshot.save", {"error": e}, status="error")
                self._release()

            self._initialized = False
            self._closing = False
            logger.log_operation("close", "success", details={"db_path": self.db_path})

    def _release(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Error closing {self.db_path}: {e}")
            self._conn = None
        self._reranker = None

    def __enter__(self) -> "MemoryStore":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _ensure_ready(self, operation: str) -> None:
        if self._closing:
            raise StoreClosingError("Memory store is closing", operation=operation)
        if not self._initialized:
            raise StoreNotInitializedError(
                "Memory store is not initialized; call initialize() first", operation=operation
            )

    # ============================================================
    # Public operations
    # ============================================================

    def store_memory(
        self,
        content: str,
        memory_type: MemoryType,
        importance: float = DEFAULT_IMPORTANCE,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Memory:
        """Embed and persist a memory with its tags. Returns the record as stored."""
        request = parse_request(
            StoreMemoryRequest,
            "store_memory",
            content=content,
            memory_type=memory_type,
            importance=importance,
            tags=tags,
            metadata=metadata,
        )
        self._ensure_ready("store_memory")

        start = time.time()
        memory_id = str(uuid.uuid4())
        vector = self._embedding_provider.embed_text(request.content)

        with self._lock:
            self._ensure_ready("store_memory")
            label = None
            try:
                with transaction(self._conn):
                    dao.insert_memory(
                        self._conn,
                        memory_id,
                        request.content,
                        request.memory_type,
                        request.importance,
                        request.metadata,
                    )
                    label = dao.insert_embedding(self._conn, memory_id, vector)
                    if request.tags:
                        dao.link_tags(self._conn, memory_id, list(dict.fromkeys(request.tags)))
                    # Indexed last so a failed insert never reaches the index
                    self._vector_store.add(VectorRecord(id=label, vector=vector))
            except STORAGE_ERRORS as e:
                if label is not None:
                    self._vector_store.delete(label)
                logger.log_memory_operation(
                    "store", memory_id, request.content, status="error", details={"error": e}
                )
                raise StoreOperationError(
                    f"Failed to store memory: {e}", operation="store_memory", memory_id=memory_id
                ) from e

            memory = dao.get_memory(self._conn, memory_id)

        logger.log_memory_operation(
            "store",
            memory_id,
            request.content,
            duration_ms=_elapsed_ms(start),
            details={"memory_type": request.memory_type.value, "tags": len(memory.tags)},
        )
        return memory

    def search_memories(
        self,
        query: str,
        memory_type: Optional[MemoryType] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        tags: Optional[List[str]] = None,
        use_reranker: bool = DEFAULT_USE_RERANKER,
        retrieval_multiplier: int = DEFAULT_RETRIEVAL_MULTIPLIER,
    ) -> List[SearchResult]:
        """Two-stage semantic search. Bumps access counts of returned memories in the background."""
        request = parse_request(
            SearchRequest,
            "search_memories",
            query=query,
            memory_type=memory_type,
            limit=limit,
            min_similarity=min_similarity,
            tags=tags,
            use_reranker=use_reranker,
            retrieval_multiplier=retrieval_multiplier,
        )
        self._ensure_ready("search_memories")

        start = time.time()
        reranker = self._reranker
        with self._lock:
            self._ensure_ready("search_memories")
            try:
                results = self._pipeline.run(self._conn, request, reranker)
            except STORAGE_ERRORS as e:
                logger.log_search(request.query, 0, False, status="error", details={"error": e})
                raise StoreOperationError(f"Search failed: {e}", operation="search_memories") from e

        if results:
            self._schedule_access_update([result.id for result in results])

        logger.log_search(
            request.query,
            len(results),
            any(result.reranked for result in results),
            duration_ms=_elapsed_ms(start),
            details={"limit": request.limit},
        )
        return results

    def get_recent_memories(
        self,
        limit: int = DEFAULT_RECENT_LIMIT,
        memory_type: Optional[MemoryType] = None,
        min_importance: float = 0.0,
    ) -> List[Memory]:
        """Newest memories first. Pure relational read; access counts are untouched."""
        request = parse_request(
            RecentMemoriesRequest,
            "get_recent_memories",
            limit=limit,
            memory_type=memory_type,
            min_importance=min_importance,
        )
        self._ensure_ready("get_recent_memories")

        with self._lock:
            self._ensure_ready("get_recent_memories")
            try:
                return dao.list_recent_memories(
                    self._conn, request.limit, request.memory_type, request.min_importance
                )
            except sqlite3.Error as e:
                raise StoreOperationError(
                    f"Failed to list recent memories: {e}", operation="get_recent_memories"
                ) from e

    def delete_memory(self, memory_id: str) -> None:
        """Delete a memory, its embedding and its tag links. Unknown ids are a no-op."""
        request = parse_request(DeleteMemoryRequest, "delete_memory", memory_id=memory_id)
        self._ensure_ready("delete_memory")

        with self._lock:
            self._ensure_ready("delete_memory")
            try:
                with transaction(self._conn):
                    label = dao.delete_memory(self._conn, request.memory_id)
            except sqlite3.Error as e:
                logger.log_memory_operation("delete", request.memory_id, status="error", details={"error": e})
                raise StoreOperationError(
                    f"Failed to delete memory: {e}", operation="delete_memory", memory_id=request.memory_id
                ) from e

            if label is None:
                logger.log_memory_operation("delete", request.memory_id, status="skipped", details={"reason": "not found"})
                return

            self._vector_store.delete(label)
            self._maybe_compact()

        logger.log_memory_operation("delete", request.memory_id)

    # ============================================================
    # Index maintenance
    # ============================================================

    def _maybe_compact(self) -> None:
        vector_store = self._vector_store
        tombstones = vector_store.tombstone_count
        total = len(vector_store) + tombstones
        if total < self.settings.index_compaction_min_size:
            return
        if tombstones <= self.settings.index_compaction_ratio * total:
            return

        count = self._rebuild_vector_store()
        logger.log_vector_operation("compact", {"vectors": count, "tombstones_dropped": tombstones})

    def rebuild_index(self) -> int:
        """Rebuild the vector index from the embeddings table and snapshot it. Returns vectors indexed."""
        self._ensure_ready("rebuild_index")

        start = time.time()
        with self._lock:
            self._ensure_ready("rebuild_index")
            try:
                count = self._rebuild_vector_store()
                self._save_snapshot()
            except STORAGE_ERRORS as e:
                logger.log_vector_operation("rebuild", {"error": e}, status="error")
                raise StoreOperationError(f"Failed to rebuild index: {e}", operation="rebuild_index") from e
            self._index_source = "rebuilt"

        logger.log_operation("vector.rebuild", "success", _elapsed_ms(start), {"vectors": count})
        return count

    # ============================================================
    # Background access-count updates
    # ============================================================

    def _schedule_access_update(self, memory_ids: List[str]) -> None:
        executor = self._executor
        if executor is None:
            return
        try:
            future = executor.submit(self._record_access, memory_ids)
        except RuntimeError:
            # Executor shut down by a concurrent close()
            logger.log_operation("memory.record_access", "skipped", details={"reason": "closing"})
            return

        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._access_update_done)

    def _record_access(self, memory_ids: List[str]) -> int:
        with self._lock:
            if self._conn is None:
                return 0
            with transaction(self._conn):
                return dao.record_access(self._conn, memory_ids)

    def _access_update_done(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.log_operation("memory.record_access", "error", details={"error": repr(error)})
        else:
            logger.debug(f"Recorded access for {future.result()} memories")

    def wait_for_background_tasks(self, timeout: Optional[float] = None) -> bool:
        """Block until scheduled access-count updates finish. Returns False on timeout."""
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    # ============================================================
    # Diagnostics
    # ============================================================

    def is_reranker_enabled(self) -> bool:
        return self._reranker is not None

    def get_reranker_config(self) -> RerankerConfig:
        model = self._rerank_provider.model_name if self._rerank_provider is not None else "none"
        return RerankerConfig(enabled=self.is_reranker_enabled(), model=model)

    def health(self) -> Dict[str, Any]:
        """Snapshot of store state for health-check scripts."""
        report: Dict[str, Any] = {
            "version": VERSION,
            "db_path": self.db_path,
            "embedding_model": self._embedding_provider.model_name,
            "reranker_enabled": self.is_reranker_enabled(),
            "reranker_model": self.get_reranker_config().model,
        }
        if not self._initialized or self._closing:
            report["status"] = "not_initialized"
            return report

        with self._lock:
            schema_ok = health_check(self._conn)
            counts = dao.count_rows(self._conn) if schema_ok else {}

        if not schema_ok:
            status = "unhealthy"
        elif self._reranker_load_failed:
            status = "degraded"
        else:
            status = "healthy"

        report.update(
            {
                "status": status,
                "schema_ok": schema_ok,
                "memories": counts.get("memories", 0),
                "tags": counts.get("tags", 0),
                "embeddings": counts.get("embeddings", 0),
                "indexed_vectors": len(self._vector_store),
                "tombstoned_vectors": self._vector_store.tombstone_count,
                "index_provider": self._vector_store.provider_name,
                "index_source": self._index_source,
                "embedding_dimension": self.settings.embedding_dimension,
            }
        )
        return report
