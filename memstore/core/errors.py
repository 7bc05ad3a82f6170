"""
Error types for the memory store.
"""

from typing import Optional


class MemoryStoreError(Exception):
    """Base error. Carries the failing operation and, where known, the memory id."""

    def __init__(self, message: str, operation: Optional[str] = None, memory_id: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.memory_id = memory_id


class MemoryValidationError(MemoryStoreError, ValueError):
    """Caller supplied bad input. Raised before any storage is touched."""

    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        operation: Optional[str] = None,
    ):
        super().__init__(message, operation=operation)
        self.field = field
        self.error_type = error_type


class StoreLifecycleError(MemoryStoreError):
    """The store was used out of order."""


class StoreNotInitializedError(StoreLifecycleError):
    pass


class StoreClosingError(StoreLifecycleError):
    pass


class StoreInitializationError(MemoryStoreError):
    """Fatal failure while opening the store."""


class SchemaInitializationError(StoreInitializationError):
    pass


class EmbedderUnavailableError(MemoryStoreError):
    """Raised when the embedding model is not loaded or cannot be loaded."""


class RerankerUnavailableError(MemoryStoreError):
    """Raised when the reranking model cannot be loaded."""


class StoreOperationError(MemoryStoreError):
    """A storage operation failed mid-call."""
