"""
Error Taxonomy Module
Exceptions raised by the sync pipeline and the task manager.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for all sync pipeline errors."""

    http_status = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationError(SyncError):
    """Malformed request or inconsistent input."""

    http_status = 400


class EngineConnectionError(SyncError):
    """Engine unreachable or authentication failed."""

    http_status = 502

    def __init__(self, message: str, engine: Optional[str] = None):
        self.engine = engine
        super().__init__(message)


class UnsupportedTypeError(SyncError):
    """Column type absent from the type mapping tables."""

    http_status = 422

    def __init__(self, type_name: str, dialect: str = 'source'):
        self.type_name = type_name
        self.dialect = dialect
        super().__init__(f"Unsupported {dialect} type: {type_name}")


class InvalidIdentifierError(SyncError):
    """Identifier cannot be safely quoted for the target dialect."""

    http_status = 422

    def __init__(self, name: str, dialect: str):
        self.name = name
        self.dialect = dialect
        super().__init__(f"Invalid {dialect} identifier: {name!r}")


class SchemaValidationError(SyncError):
    """Source table schema violates its own invariants."""

    http_status = 422


class StatementExecutionError(SyncError):
    """An engine rejected a specific statement."""

    http_status = 502

    def __init__(self, statement: str, raw_error: str):
        self.statement = statement
        self.raw_error = raw_error
        super().__init__(raw_error)


class NotFoundError(SyncError):
    """Requested task, config or table does not exist."""

    http_status = 404


class NotCancellableError(SyncError):
    """Task is not in a cancellable state."""

    http_status = 409


class NotRetryableError(SyncError):
    """Task is not in a retryable state."""

    http_status = 409


class InvalidTransitionError(SyncError):
    """State machine transition not allowed from the current status."""

    http_status = 409


class OptionsDecodeError(SyncError):
    """Serialized sync options could not be decoded."""

    http_status = 500
