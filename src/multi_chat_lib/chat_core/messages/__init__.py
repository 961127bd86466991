"""Expose the message model types and wire adapters shared by the sync components."""

from .models import (
    Role,
    Message,
    MessagePart,
    TextPart,
    ReasoningPart,
    ReasoningDetail,
    StepBoundaryPart,
    ToolInvocationPart,
    Turn,
    TurnResponse,
)
from .tool_state import ToolState
from .wire import RawTurnMessage, parse_part, parse_turn_parts, parse_message, dump_message

__all__ = [
    "Role",
    "Message",
    "MessagePart",
    "TextPart",
    "ReasoningPart",
    "ReasoningDetail",
    "StepBoundaryPart",
    "ToolInvocationPart",
    "Turn",
    "TurnResponse",
    "ToolState",
    "RawTurnMessage",
    "parse_part",
    "parse_turn_parts",
    "parse_message",
    "dump_message",
]
