"""Exceptions raised by the quoteflow services.

Routers translate these into HTTP responses; services never raise
``HTTPException`` themselves.
"""

from __future__ import annotations


class NotFoundError(RuntimeError):
    """Raised when a referenced conversation, quote or customer does not exist."""


class InvalidInputError(ValueError):
    """Raised for malformed caller input such as an unknown status value."""


class ConcurrentUpdateConflict(RuntimeError):
    """Raised when a conversation changed underneath an update.

    Services retry internally; the error only escapes once every attempt
    has lost the race.
    """


class DuplicateThreadKeyError(RuntimeError):
    """Raised by repositories when a live conversation already owns a thread key."""

    def __init__(self, thread_key: str) -> None:
        super().__init__(f"A live conversation already exists for thread {thread_key}")
        self.thread_key = thread_key


__all__ = [
    "ConcurrentUpdateConflict",
    "DuplicateThreadKeyError",
    "InvalidInputError",
    "NotFoundError",
]
