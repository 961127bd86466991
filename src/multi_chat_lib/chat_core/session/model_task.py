"""One model's live conversation inside a multi-model chat."""

import asyncio
import uuid
from dataclasses import replace
from typing import List, Optional, Set

from ..base import FinishEvent, MessageStore, PartEvent, TurnContext, TurnSource
from ..exceptions import MessageNotFoundError
from ..grouping import ModelChatSnapshot
from ..logger import get_logger
from ..merging import PartMerger
from ..messages import Message, MessagePart, ReasoningPart, TextPart

logger = get_logger(__name__)


class ModelTask:
    """Owns the alternating message list and the running stream of one model.

    Only this task writes to ``messages``. Other components read it through
    ``snapshot()``. Tasks of different models never wait on each other, and
    stopping one leaves the others untouched.
    """

    def __init__(
        self,
        model_id: str,
        source: TurnSource,
        merger: PartMerger,
        store: Optional[MessageStore] = None,
        provider: Optional[str] = None,
    ):
        """Initialize the task.

        Args:
            model_id: Model this conversation talks to.
            source: Stream producer for new turns.
            merger: Finalizes (and persists) the assistant message of each turn.
            store: Where the user message of each turn is recorded.
            provider: Display name of the model's provider.
        """
        self.model_id = model_id
        self.source = source
        self.merger = merger
        self.store = store
        self.provider = provider
        self.messages: List[Message] = []
        self.is_loading = False
        self.error: Optional[BaseException] = None
        self._task: Optional[asyncio.Task] = None
        self._live_parts: List[MessagePart] = []
        self._live_id = ""
        self._user_index = -1

    def snapshot(self) -> ModelChatSnapshot:
        """Return an immutable view for aggregation."""
        return ModelChatSnapshot(
            model_id=self.model_id,
            messages=tuple(self.messages),
            is_loading=self.is_loading,
            provider=self.provider,
        )

    def start(self, prompt: str, context: TurnContext, user_message: Message) -> asyncio.Task:
        """Append the optimistic user message and start streaming the answer.

        Raises:
            RuntimeError: If a turn is still streaming.
        """
        if self.is_loading:
            raise RuntimeError(f"Model '{self.model_id}' is still answering the previous prompt.")

        context = replace(context, history=tuple(self.messages))
        self.messages.append(user_message)
        self._user_index = len(self.messages) - 1
        self._live_parts = []
        self._live_id = str(uuid.uuid4())
        self.error = None
        self.is_loading = True
        self._task = asyncio.create_task(self._run(prompt, context, user_message), name=f"model-task-{self.model_id}")
        # A task cancelled before its first step never reaches the finally block.
        self._task.add_done_callback(self._on_done)
        return self._task

    def _on_done(self, task: asyncio.Task) -> None:
        self.is_loading = False

    async def _run(self, prompt: str, context: TurnContext, user_message: Message) -> None:
        finished = False
        try:
            await self._record_user_message(context.chat_id, user_message)
            async for event in self.source.submit(prompt, self.model_id, context):
                if isinstance(event, PartEvent):
                    self._apply_part(event.part)
                    self._set_assistant(self._live_message(context.group_id))
                elif isinstance(event, FinishEvent):
                    final = await self.merger.finalize(
                        event.chat_id,
                        event.messages,
                        group_id=event.group_id,
                        model_id=self.model_id,
                        message_id=self._live_id,
                    )
                    self._set_assistant(final)
                    finished = True
            if not finished:
                logger.warning("Stream for model '%s' ended without a finish event; answer not persisted.", self.model_id)
        except asyncio.CancelledError:
            logger.info("Stopped model '%s'; keeping its last merged state.", self.model_id)
            raise
        except Exception as e:
            self.error = e
            logger.error("Stream for model '%s' failed: %s", self.model_id, e, exc_info=True)
        finally:
            self.is_loading = False

    async def _record_user_message(self, chat_id: str, user_message: Message) -> None:
        if self.store is None:
            return
        try:
            await self.store.persist(chat_id, user_message)
        except Exception as e:
            logger.error("Failed to persist user message for chat '%s': %s", chat_id, e, exc_info=True)

    def _apply_part(self, part: MessagePart) -> None:
        # Consecutive text (or reasoning) deltas form one part.
        last = self._live_parts[-1] if self._live_parts else None
        if isinstance(part, TextPart) and isinstance(last, TextPart):
            self._live_parts[-1] = TextPart(text=last.text + part.text)
        elif isinstance(part, ReasoningPart) and isinstance(last, ReasoningPart):
            self._live_parts[-1] = ReasoningPart(text=last.text + part.text)
        else:
            self._live_parts.append(part)

    def _live_message(self, group_id: Optional[str]) -> Message:
        merged = self.merger.merge_parts(self._live_parts)
        return Message(
            id=self._live_id,
            role="assistant",
            content=merged.content,
            parts=merged.parts,
            model_id=self.model_id,
            group_id=group_id,
        )

    def _set_assistant(self, message: Message) -> None:
        index = self._user_index + 1
        if index < len(self.messages):
            self.messages[index] = message
        else:
            self.messages.append(message)

    @property
    def cancelled(self) -> bool:
        """True when the most recent turn was stopped."""
        return self._task is not None and self._task.cancelled()

    def stop(self) -> bool:
        """Cancel the running turn. Returns True if there was one to cancel."""
        if self._task is None or self._task.done():
            return False
        self._task.cancel()
        return True

    async def wait(self) -> None:
        """Wait for the running turn to end, however it ends."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    def find(self, message_id: str) -> Message:
        """Return the message with ``message_id``.

        Raises:
            MessageNotFoundError: If the id is not in the list.
        """
        for message in self.messages:
            if str(message.id) == str(message_id):
                return message
        raise MessageNotFoundError(f"Message '{message_id}' not found for model '{self.model_id}'.")

    def has_group(self, group_id: str) -> bool:
        """True when this model took part in the prompt group ``group_id``."""
        return any(message.group_id == group_id for message in self.messages)

    def truncate_before(self, message_id: str) -> Message:
        """Drop ``message_id`` and everything after it.

        Returns:
            The removed message.

        Raises:
            MessageNotFoundError: If the id is not in the list.
        """
        target = self.find(message_id)
        self.messages = self.messages[: self.messages.index(target)]
        return target

    def truncate_groups(self, group_ids: Set[str]) -> int:
        """Drop the first message of any group in ``group_ids`` and everything after it.

        Returns:
            How many messages were removed.
        """
        for index, message in enumerate(self.messages):
            if message.group_id is not None and message.group_id in group_ids:
                removed = len(self.messages) - index
                self.messages = self.messages[:index]
                return removed
        return 0

    def adopt_identities(self, before: List[Message], after: List[Message]) -> int:
        """Copy reconciled messages into the live list.

        Only slots that still hold the exact object that was reconciled are
        replaced, so a turn that moved on meanwhile is left alone.

        Returns:
            How many messages were replaced.
        """
        replaced = 0
        for index, (old, new) in enumerate(zip(before, after)):
            if old is new or index >= len(self.messages):
                continue
            if self.messages[index] is old:
                self.messages[index] = new
                replaced += 1
        return replaced
