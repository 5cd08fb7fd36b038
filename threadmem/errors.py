"""Error types raised across threadmem."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised for invalid configuration, always before any I/O happens."""
    pass


class MemoryAdapterError(Exception):
    """Store / index / embedding failure classified with a stable code."""

    STORE_UNREACHABLE = "STORE_UNREACHABLE"
    STORE_ERROR = "STORE_ERROR"
    INDEX_UNREACHABLE = "INDEX_UNREACHABLE"
    INDEX_NOT_FOUND = "INDEX_NOT_FOUND"
    DIMENSION_MISMATCH = "DIMENSION_MISMATCH"
    INDEX_ERROR = "INDEX_ERROR"
    EMBEDDING_FAILED = "EMBEDDING_FAILED"

    def __init__(self, code: str, message: str):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message


class ScoringModelError(Exception):
    """Raised when the reranking model call fails or returns garbage."""
    pass
