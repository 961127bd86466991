"""Fold the parts of one assistant/tool turn into the canonical message that gets persisted."""

import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from ..base import MessageStore
from ..logger import get_logger
from ..messages import (
    Message,
    MessagePart,
    RawTurnMessage,
    ReasoningDetail,
    ReasoningPart,
    StepBoundaryPart,
    TextPart,
    ToolInvocationPart,
    parse_part,
    parse_turn_parts,
)

logger = get_logger(__name__)

TEXT_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class MergedParts:
    """Result of folding a part sequence.

    Attributes:
        parts: Narrative parts in arrival order followed by one entry per tool call.
        content: Text parts joined with a blank line; empty string when there is no text.
    """

    parts: List[MessagePart]
    content: str


class PartMerger:
    """Converts the parts accumulated during one turn into a single ``Message``.

    The fold itself is pure: merging the same input twice yields equal output.
    Only ``finalize`` touches storage, and it never raises for storage failures.
    """

    def __init__(self, store: Optional[MessageStore] = None, id_factory: Optional[Callable[[], str]] = None):
        """Initialize the merger.

        Args:
            store: Where ``finalize`` persists merged messages. Without a store nothing is written.
            id_factory: Generator for optimistic message ids. Defaults to random UUIDs.
        """
        self.store = store
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def merge_parts(self, parts: Iterable[Union[MessagePart, Mapping[str, Any]]]) -> MergedParts:
        """Fold parts in arrival order.

        Text and step boundaries pass through, reasoning is re-wrapped with a
        single detail block, and tool invocations are deduplicated by
        ``tool_call_id``. A later observation replaces an earlier one only when
        its state ranks at least as high, so a completed result always wins.

        Args:
            parts: Canonical parts or wire dicts, in the order they arrived.

        Returns:
            The merged parts and flattened text content.

        Raises:
            InvalidPartError: If a wire dict has no recognizable type.
        """
        merged: List[MessagePart] = []
        tool_map: Dict[str, ToolInvocationPart] = {}
        text_parts: List[str] = []

        for raw in parts:
            part = parse_part(raw)
            if isinstance(part, TextPart):
                text_parts.append(part.text)
                merged.append(part)
            elif isinstance(part, ReasoningPart):
                merged.append(ReasoningPart(text=part.text, details=[ReasoningDetail(text=part.text)]))
            elif isinstance(part, StepBoundaryPart):
                merged.append(part)
            elif isinstance(part, ToolInvocationPart):
                existing = tool_map.get(part.tool_call_id)
                if existing is None or part.state.outranks_or_equals(existing.state):
                    tool_map[part.tool_call_id] = self._carry_forward(existing, part)
                else:
                    logger.debug(
                        "Keeping '%s' state for tool call '%s' over incoming '%s'.",
                        existing.state.value,
                        part.tool_call_id,
                        part.state.value,
                    )

        merged.extend(tool_map.values())
        return MergedParts(parts=merged, content=TEXT_SEPARATOR.join(text_parts))

    @staticmethod
    def _carry_forward(existing: Optional[ToolInvocationPart], incoming: ToolInvocationPart) -> ToolInvocationPart:
        """Keep the call's name and arguments when a later record omits them.

        Tool-result records usually carry only the result, so the arguments
        seen on the assistant stream would otherwise be lost.
        """
        if existing is None:
            return incoming
        update: Dict[str, Any] = {}
        if incoming.args is None and existing.args is not None:
            update["args"] = existing.args
        if not incoming.tool_name and existing.tool_name:
            update["tool_name"] = existing.tool_name
        return incoming.model_copy(update=update) if update else incoming

    def build_message(
        self,
        raw_messages: Iterable[Union[RawTurnMessage, Mapping[str, Any]]],
        *,
        group_id: Optional[str] = None,
        model_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> Message:
        """Merge the response messages of one turn into an optimistic assistant message.

        Args:
            raw_messages: Assistant and tool messages of the turn, in arrival order.
            group_id: Prompt group the answer belongs to.
            model_id: Model that produced the answer.
            message_id: Id to use; a fresh optimistic id when omitted.

        Returns:
            The canonical assistant message, not yet persisted.
        """
        merged = self.merge_parts(parse_turn_parts(raw_messages))
        return Message(
            id=message_id or self._id_factory(),
            role="assistant",
            content=merged.content,
            parts=merged.parts,
            group_id=group_id,
            model_id=model_id,
        )

    async def finalize(
        self,
        chat_id: str,
        raw_messages: Iterable[Union[RawTurnMessage, Mapping[str, Any]]],
        *,
        group_id: Optional[str] = None,
        model_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> Message:
        """Merge a finished turn and persist it.

        A persistence failure is logged and swallowed: the response has already
        been delivered and must stay usable. The durable id of the stored row
        reaches the client later, through reconciliation.

        Returns:
            The canonical message with its optimistic id.
        """
        message = self.build_message(raw_messages, group_id=group_id, model_id=model_id, message_id=message_id)
        if self.store is None:
            return message

        try:
            stored = await self.store.persist(chat_id, message)
        except Exception as e:
            logger.error("Failed to persist assistant message for chat '%s': %s", chat_id, e, exc_info=True)
            return message

        logger.info("Assistant message saved for chat '%s' (model=%s, id=%s).", chat_id, model_id, stored.id)
        return message
