"""Contracts for the collaborators the sync core consumes.

Implementations live in ``multi_chat_lib.chat_impl``. The core only relies on
the behaviour documented here: streams deliver parts in order and end with a
single finish event, stores hand back the durable copy of what they wrote, and
caches are best-effort scratch space.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, List, Optional, Sequence, Union

from ..messages import Message, MessagePart, RawTurnMessage


@dataclass(frozen=True)
class TurnContext:
    """Everything a turn source needs besides the prompt and the model.

    Attributes:
        chat_id: Conversation the turn belongs to.
        group_id: Correlation id shared by every model answering this prompt.
        history: Messages preceding the prompt in this model's conversation.
        system_prompt: Optional system instruction.
    """

    chat_id: str
    group_id: Optional[str] = None
    history: Sequence[Message] = field(default_factory=tuple)
    system_prompt: Optional[str] = None


@dataclass(frozen=True)
class PartEvent:
    """A part observed on the live stream. Text and reasoning parts are deltas."""

    part: MessagePart


@dataclass(frozen=True)
class FinishEvent:
    """Terminal stream event carrying the fully assembled response messages."""

    messages: List[RawTurnMessage]
    chat_id: str
    group_id: Optional[str] = None


StreamEvent = Union[PartEvent, FinishEvent]


class TurnSource(ABC):
    """Produces the response stream of one model for one prompt."""

    @abstractmethod
    def submit(self, prompt: str, model_id: str, context: TurnContext) -> AsyncIterator[StreamEvent]:
        """Start a turn and return its event stream.

        Args:
            prompt: The user's text.
            model_id: The model that should answer.
            context: Chat, group and history for the turn.

        Returns:
            An async iterator of ``PartEvent`` items followed by one ``FinishEvent``.

        Raises:
            TurnSourceError: If the stream cannot be opened or breaks.
        """


class MessageStore(ABC):
    """Authoritative conversation storage.

    Writes are not guaranteed to be idempotent. Every method may raise
    ``StorageError``; the core treats that as a transient outage.
    """

    @abstractmethod
    async def persist(self, chat_id: str, message: Message) -> Message:
        """Write a message and return the stored copy with its durable id and timestamp."""

    @abstractmethod
    async def fetch_tail(self, chat_id: str, k: int) -> List[Message]:
        """Return the ``k`` most recent messages, ordered oldest to newest."""

    @abstractmethod
    async def fetch_all(self, chat_id: str) -> List[Message]:
        """Return the whole conversation, ordered oldest to newest."""

    @abstractmethod
    async def delete_from(self, chat_id: str, cutoff: datetime) -> int:
        """Delete every message created at or after ``cutoff`` and return how many went."""


class LocalCache(ABC):
    """Best-effort client-side scratch space for a conversation's message list."""

    @abstractmethod
    async def read(self, chat_id: str) -> List[Message]:
        """Return the cached list, or an empty list when nothing is cached."""

    @abstractmethod
    async def write(self, chat_id: str, messages: List[Message]) -> None:
        """Replace the cached list for ``chat_id``."""
