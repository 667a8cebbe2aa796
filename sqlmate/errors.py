from typing import Optional


class SQLMateError(Exception):
    """Base class for errors raised by the sqlmate package."""


class ValidationError(SQLMateError):
    """Raised when required input is missing or malformed."""


class SafetyViolation(SQLMateError):
    """Raised when generated SQL is not a single read-only SELECT."""

    def __init__(self, reason: str, keyword: Optional[str] = None, suggestion: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.keyword = keyword
        # First statement of a multi-statement query, offered as a hint.
        self.suggestion = suggestion


class ExecutionError(SQLMateError):
    """Raised when the storage engine rejects a query."""

    def __init__(self, message: str, sql: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.sql = sql


class LLMError(SQLMateError):
    """Raised when the model provider cannot produce SQL."""


class StorageError(SQLMateError):
    """Raised when the embedded store cannot be opened or prepared."""
