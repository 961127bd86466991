"""Re-export the collaborator contracts and stream event types used by all implementations."""

from .base import (
    TurnContext,
    PartEvent,
    FinishEvent,
    StreamEvent,
    TurnSource,
    MessageStore,
    LocalCache,
)

__all__ = [
    "TurnContext",
    "PartEvent",
    "FinishEvent",
    "StreamEvent",
    "TurnSource",
    "MessageStore",
    "LocalCache",
]
