"""Parsing adapters from wire-shaped message parts to the canonical part models.

Three tool encodings reach the client: the legacy nested ``tool-invocation``
shape, the typed ``tool-<name>`` shape of newer SDK releases, and the
``tool-call``/``tool-result`` records of finished response messages. All of
them are normalized here so the merge and grouping code only ever sees
``ToolInvocationPart``.
"""

from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError

from ..exceptions import InvalidPartError
from ..logger import get_logger
from .models import (
    Message,
    MessagePart,
    ReasoningPart,
    StepBoundaryPart,
    TextPart,
    ToolInvocationPart,
)
from .tool_state import ToolState

logger = get_logger(__name__)

_CANONICAL_PARTS = (TextPart, ReasoningPart, StepBoundaryPart, ToolInvocationPart)


class RawTurnMessage(BaseModel):
    """A response message as emitted by a model stream on finish.

    Attributes:
        role: ``assistant`` or ``tool``; other roles carry nothing to merge.
        content: Plain text or a list of wire-shaped parts.
    """

    role: str
    content: Union[str, List[Any], None] = None


def parse_part(raw: Union[Mapping[str, Any], MessagePart]) -> MessagePart:
    """Normalize one wire part into a canonical ``MessagePart``.

    Args:
        raw: A wire dict, or an already canonical part which is returned unchanged.

    Returns:
        The canonical part.

    Raises:
        InvalidPartError: If the part has no recognizable type or is malformed.
    """
    if isinstance(raw, _CANONICAL_PARTS):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidPartError(f"Message part must be a mapping, got {type(raw).__name__}.")

    part_type = raw.get("type")
    if not isinstance(part_type, str):
        raise InvalidPartError(f"Message part has no type: {dict(raw)!r}")

    try:
        if part_type == "text":
            return TextPart(text=raw.get("text") or "")
        if part_type == "reasoning":
            text = raw.get("text") or raw.get("reasoning") or ""
            return ReasoningPart.model_validate({"text": text, "details": raw.get("details") or []})
        if part_type in ("step-start", "step-boundary"):
            return StepBoundaryPart()
        if part_type == "tool-invocation":
            if "toolInvocation" in raw:
                return _parse_legacy_invocation(raw["toolInvocation"])
            return _tool_part(
                raw.get("toolCallId"),
                raw.get("toolName"),
                raw.get("state"),
                raw.get("args"),
                raw.get("result"),
                raw.get("errorText"),
            )
        if part_type == "tool-call":
            return _tool_part(
                raw.get("toolCallId"),
                raw.get("toolName"),
                ToolState.INPUT_AVAILABLE,
                raw.get("args", raw.get("input")),
            )
        if part_type == "tool-result":
            return _parse_tool_result(raw)
        if part_type.startswith("tool-"):
            return _tool_part(
                raw.get("toolCallId"),
                part_type[len("tool-"):],
                raw.get("state") or ToolState.INPUT_AVAILABLE,
                raw.get("input"),
                raw.get("output"),
                raw.get("errorText") or raw.get("error"),
            )
    except (ValidationError, ValueError) as e:
        raise InvalidPartError(f"Malformed '{part_type}' part: {e}") from e

    raise InvalidPartError(f"Unrecognized message part type: {part_type!r}")


def _parse_legacy_invocation(invocation: Any) -> ToolInvocationPart:
    if not isinstance(invocation, Mapping):
        raise InvalidPartError("Legacy tool-invocation part has no toolInvocation payload.")
    return _tool_part(
        invocation.get("toolCallId"),
        invocation.get("toolName"),
        invocation.get("state"),
        invocation.get("args") or {},
        invocation.get("result"),
        invocation.get("errorText"),
    )


def _parse_tool_result(raw: Mapping[str, Any]) -> ToolInvocationPart:
    result = raw.get("result", raw.get("output"))
    if raw.get("isError"):
        return _tool_part(
            raw.get("toolCallId"),
            raw.get("toolName"),
            ToolState.OUTPUT_ERROR,
            error_text=str(result) if result is not None else None,
        )
    return _tool_part(raw.get("toolCallId"), raw.get("toolName"), ToolState.OUTPUT_AVAILABLE, result=result)


def _tool_part(
    tool_call_id: Any,
    tool_name: Any,
    state: Any,
    args: Any = None,
    result: Any = None,
    error_text: Optional[str] = None,
) -> ToolInvocationPart:
    if not tool_call_id:
        raise InvalidPartError(f"Tool part for '{tool_name}' has no toolCallId.")
    if state is None:
        raise InvalidPartError(f"Tool part '{tool_call_id}' has no state.")
    return ToolInvocationPart(
        tool_call_id=str(tool_call_id),
        tool_name=tool_name or "",
        state=state,
        args=args,
        result=result,
        error_text=error_text,
    )


def parse_turn_parts(messages: Iterable[Union[RawTurnMessage, Mapping[str, Any]]]) -> List[MessagePart]:
    """Flatten the response messages of one turn into canonical parts in arrival order.

    Assistant messages contribute every part (string content becomes one text
    part). Tool messages contribute only their ``tool-result`` records. Other
    roles are ignored.

    Raises:
        InvalidPartError: If a message has no role or any contributing part is unrecognizable.
    """
    parts: List[MessagePart] = []
    for msg in messages:
        if not isinstance(msg, RawTurnMessage):
            try:
                msg = RawTurnMessage.model_validate(msg)
            except ValidationError as e:
                raise InvalidPartError(f"Malformed turn message: {e}") from e

        if msg.role == "assistant":
            if isinstance(msg.content, str):
                if msg.content:
                    parts.append(TextPart(text=msg.content))
                continue
            for raw in msg.content or []:
                parts.append(parse_part(raw))
        elif msg.role == "tool":
            if isinstance(msg.content, str):
                continue
            for raw in msg.content or []:
                if isinstance(raw, Mapping) and raw.get("type") == "tool-result":
                    parts.append(parse_part(raw))
                else:
                    logger.debug("Ignoring non-result entry in tool message: %r", raw)
        else:
            logger.debug("Ignoring '%s' message while collecting turn parts.", msg.role)
    return parts


def parse_message(raw: Mapping[str, Any]) -> Message:
    """Build a ``Message`` from a persisted or cached row.

    Accepts the camelCase wire names, the snake_case attribute names, and the
    row names used by older schemas (``model``, ``message_group_id``). Parts in
    any supported wire shape are normalized.

    Raises:
        InvalidPartError: If one of the parts is unrecognizable.
    """
    data = dict(raw)
    if "model" in data and "modelId" not in data and "model_id" not in data:
        data["modelId"] = data.pop("model")
    for legacy_key in ("message_group_id", "messageGroupId"):
        if legacy_key in data and "groupId" not in data and "group_id" not in data:
            data["groupId"] = data.pop(legacy_key)
    if data.get("id") is not None:
        data["id"] = str(data["id"])
    if isinstance(data.get("parts"), list):
        data["parts"] = [parse_part(part) for part in data["parts"]]
    return Message.model_validate(data)


def dump_message(message: Message) -> dict:
    """Serialize a ``Message`` to its camelCase wire form."""
    return message.to_wire()
