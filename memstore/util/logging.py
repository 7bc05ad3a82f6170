"""
Structured logging for store operations.
Writes to stderr so stdout stays free for a protocol adapter embedding the store.
"""

import logging
import sys
from typing import Any, Dict, Optional

from memstore.core.config import debug_enabled

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
PREVIEW_LENGTH = 50


def preview(text: Optional[str], length: int = PREVIEW_LENGTH) -> Optional[str]:
    """Shorten content for log lines. Full memory content is never logged."""
    if text is None:
        return None
    return text[:length] + "..." if len(text) > length else text


class StructuredLogger:
    """Structured logger for memory, search and vector index operations."""

    def __init__(self, name: str = "memstore"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG if debug_enabled() else logging.INFO)

        # Child loggers ("memstore.retrieval") propagate to the parent handler
        if "." not in name and not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            self.logger.addHandler(handler)

    def log_operation(
        self,
        operation: str,
        status: str,
        duration_ms: Optional[float] = None,
        details: Dict[str, Any] = None,
    ):
        """Log a structured operation. Level follows status: success=INFO, error=ERROR, else WARNING."""
        parts = [f"operation={operation}", f"status={status}"]
        if duration_ms is not None:
            parts.append(f"duration_ms={round(duration_ms, 2)}")
        if details:
            parts.append(" ".join(f"{k}={v}" for k, v in details.items()))
        message = " | ".join(parts)

        if status == "success":
            self.logger.info(message)
        elif status == "error":
            self.logger.error(message)
        else:
            self.logger.warning(message)

    def log_memory_operation(
        self,
        operation: str,
        memory_id: str,
        content: str = None,
        status: str = "success",
        duration_ms: Optional[float] = None,
        details: Dict[str, Any] = None,
    ):
        """Log an operation on a single memory."""
        log_details = {"memory_id": memory_id}
        if content is not None:
            log_details["preview"] = repr(preview(content))
        if details:
            log_details.update(details)

        self.log_operation(f"memory.{operation}", status, duration_ms, log_details)

    def log_search(
        self,
        query: str,
        result_count: int,
        reranked: bool,
        status: str = "success",
        duration_ms: Optional[float] = None,
        details: Dict[str, Any] = None,
    ):
        """Log a search call."""
        log_details = {"query": repr(preview(query)), "results": result_count, "reranked": reranked}
        if details:
            log_details.update(details)

        self.log_operation("memory.search", status, duration_ms, log_details)

    def log_vector_operation(self, operation: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a vector index operation."""
        self.log_operation(f"vector.{operation}", status, details=details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        self.logger.info(message)

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.logger.error(message)

    def debug(self, message: str) -> None:
        self.logger.debug(message)


def get_logger(name: str = "memstore") -> StructuredLogger:
    """Structured logger for a child component, e.g. get_logger("memstore.retrieval")."""
    return StructuredLogger(name)


# Global logger instance
logger = StructuredLogger()
