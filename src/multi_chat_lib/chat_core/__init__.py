"""Public exports for the chat sync core."""

from .base import (
    TurnContext,
    PartEvent,
    FinishEvent,
    StreamEvent,
    TurnSource,
    MessageStore,
    LocalCache,
)
from .config import SyncSettings
from .exceptions import (
    ChatSyncError,
    InvalidPartError,
    StorageError,
    CacheError,
    TurnSourceError,
    MessageNotFoundError,
)
from .grouping import GroupAggregator, GroupKeyStrategy, ContentGroupKey, ModelChatSnapshot
from .logger import get_logger, setup_logging
from .merging import PartMerger, MergedParts
from .messages import (
    Message,
    MessagePart,
    TextPart,
    ReasoningPart,
    ReasoningDetail,
    StepBoundaryPart,
    ToolInvocationPart,
    ToolState,
    Turn,
    TurnResponse,
    RawTurnMessage,
    parse_part,
    parse_turn_parts,
    parse_message,
    dump_message,
)
from .reconcile import IdentityMatcher, TailRoleMatcher, IdentityReconciler
from .session import ModelTask, ConversationSync

__all__ = [
    "TurnContext",
    "PartEvent",
    "FinishEvent",
    "StreamEvent",
    "TurnSource",
    "MessageStore",
    "LocalCache",
    "SyncSettings",
    "ChatSyncError",
    "InvalidPartError",
    "StorageError",
    "CacheError",
    "TurnSourceError",
    "MessageNotFoundError",
    "GroupAggregator",
    "GroupKeyStrategy",
    "ContentGroupKey",
    "ModelChatSnapshot",
    "get_logger",
    "setup_logging",
    "PartMerger",
    "MergedParts",
    "Message",
    "MessagePart",
    "TextPart",
    "ReasoningPart",
    "ReasoningDetail",
    "StepBoundaryPart",
    "ToolInvocationPart",
    "ToolState",
    "Turn",
    "TurnResponse",
    "RawTurnMessage",
    "parse_part",
    "parse_turn_parts",
    "parse_message",
    "dump_message",
    "IdentityMatcher",
    "TailRoleMatcher",
    "IdentityReconciler",
    "ModelTask",
    "ConversationSync",
]
