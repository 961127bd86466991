"""
Custom exception classes for the chat sync core.

Collaborators (stores, caches, turn sources) raise these; the core catches the
storage-related ones at its public seams and degrades to a no-op. Only
``InvalidPartError`` and ``MessageNotFoundError`` are meant to reach callers.
"""


class ChatSyncError(Exception):
    """Base exception for all chat sync errors."""

    pass


class InvalidPartError(ChatSyncError):
    """Raised when a wire message part has no recognizable shape."""

    pass


class StorageError(ChatSyncError):
    """Raised by a message store when a read or write fails."""

    pass


class CacheError(ChatSyncError):
    """Raised by a local cache when a read or write fails."""

    pass


class TurnSourceError(ChatSyncError):
    """Raised when a model stream cannot be opened or breaks mid-turn."""

    pass


class MessageNotFoundError(ChatSyncError):
    """Raised when an edit targets a message that is not in the local list."""

    pass
