"""Multi-chat sync library - keeps optimistic, persisted and multi-model chat state convergent."""

from .chat_core import (
    ConversationSync,
    PartMerger,
    IdentityReconciler,
    GroupAggregator,
    ModelChatSnapshot,
    Message,
    Turn,
    TurnResponse,
    ToolState,
    SyncSettings,
    ChatSyncError,
    InvalidPartError,
    get_logger,
    setup_logging,
)
from .chat_impl import InMemoryMessageStore, InMemoryCache, OpenAITurnSource

__all__ = [
    "ConversationSync",
    "PartMerger",
    "IdentityReconciler",
    "GroupAggregator",
    "ModelChatSnapshot",
    "Message",
    "Turn",
    "TurnResponse",
    "ToolState",
    "SyncSettings",
    "ChatSyncError",
    "InvalidPartError",
    "get_logger",
    "setup_logging",
    "InMemoryMessageStore",
    "InMemoryCache",
    "OpenAITurnSource",
]
