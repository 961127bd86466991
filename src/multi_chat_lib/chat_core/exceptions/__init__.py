"""Export the exception hierarchy shared by the merge, reconcile and grouping paths."""

from .exceptions import (
    ChatSyncError,
    InvalidPartError,
    StorageError,
    CacheError,
    TurnSourceError,
    MessageNotFoundError,
)

__all__ = [
    "ChatSyncError",
    "InvalidPartError",
    "StorageError",
    "CacheError",
    "TurnSourceError",
    "MessageNotFoundError",
]
