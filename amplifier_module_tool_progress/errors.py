"""
Error types for the progress log module.

Four kinds of failure are distinguished:
- validation: caller input broke a documented constraint
- not found: a project or entry lookup resolved to nothing
- storage: SQLite could not complete an operation
- summariser: the external summarisation call failed (absorbed internally)
"""

import logging
from typing import Any, Literal

logger = logging.getLogger(__name__)

ErrorCategory = Literal["validation", "not_found", "database", "llm", "system"]


class ProgressError(Exception):
    """Base class for all progress log errors."""


class ValidationError(ProgressError):
    """Caller-supplied input violates a documented constraint."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field} {message}")


class NotFoundError(ProgressError):
    """A lookup found nothing."""


class ProjectNotFoundError(NotFoundError):
    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class EntryNotFoundError(NotFoundError):
    def __init__(self, project_id: str, entry_id: str):
        self.project_id = project_id
        self.entry_id = entry_id
        super().__init__(f"Entry not found: {entry_id} in project {project_id}")


class StorageError(ProgressError):
    """The store could not complete an operation.

    ``context`` holds the operation name and identifiers involved so the
    failure can be diagnosed from logs alone.
    """

    def __init__(self, message: str, **context: Any):
        self.context = context
        super().__init__(message)


class EntryExistsError(StorageError):
    """An entry with the requested identifier is already stored."""


class SummariserError(ProgressError):
    """The summarisation collaborator failed or returned nothing usable."""

    def __init__(self, message: str, reason: str = "unknown_error"):
        self.reason = reason
        super().__init__(message)


def log_error(error: BaseException, category: ErrorCategory, **context: Any) -> None:
    """Log an error with its category and diagnostic context.

    Database and system errors carry their traceback; the others are
    logged as a single line.
    """
    suffix = f" | {context}" if context else ""
    message = f"[{category.upper()}] {error}{suffix}"
    if category in ("database", "system"):
        logger.error(message, exc_info=error)
    else:
        logger.error(message)
