"""Provider-agnostic message models shared by the merge, reconcile and grouping code."""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .tool_state import ToolState

Role = Literal["user", "assistant", "system", "tool"]


class _WireModel(BaseModel):
    """Base for models that travel as camelCase JSON but are used with snake_case names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    def to_wire(self) -> Dict[str, Any]:
        """Dump to a JSON-compatible dict using the camelCase wire names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TextPart(_WireModel):
    """A run of answer text."""

    type: Literal["text"] = "text"
    text: str = ""


class ReasoningDetail(_WireModel):
    """Structured detail block attached to a reasoning part."""

    type: Literal["text"] = "text"
    text: str = ""


class ReasoningPart(_WireModel):
    """Internal deliberation, rendered apart from the final answer.

    Attributes:
        text: The raw reasoning text.
        details: Detail blocks for renderers that expect structured reasoning.
    """

    type: Literal["reasoning"] = "reasoning"
    text: str = ""
    details: List[ReasoningDetail] = Field(default_factory=list)


class StepBoundaryPart(_WireModel):
    """Marks the start of a discrete reasoning/tool step."""

    type: Literal["step-boundary"] = "step-boundary"


class ToolInvocationPart(_WireModel):
    """One observation of a tool call.

    Attributes:
        tool_call_id: Identifier shared by every observation of the same call.
        tool_name: Name of the invoked tool.
        state: Lifecycle state of the call at the time of observation.
        args: Call arguments, once known.
        result: Tool output for ``output-available``.
        error_text: Error description for ``output-error``.
    """

    type: Literal["tool-invocation"] = "tool-invocation"
    tool_call_id: str
    tool_name: str = ""
    state: ToolState
    args: Optional[Any] = None
    result: Optional[Any] = None
    error_text: Optional[str] = None

    @field_validator("state", mode="before")
    @classmethod
    def _normalize_state(cls, value: Any) -> ToolState:
        return ToolState.normalize(value)


MessagePart = Annotated[
    Union[TextPart, ReasoningPart, StepBoundaryPart, ToolInvocationPart],
    Field(discriminator="type"),
]


class Message(_WireModel):
    """One conversational message emitted by a user, assistant, system or tool.

    Attributes:
        id: Client-generated until persistence assigns the durable identifier.
        role: Author of the message.
        created_at: Persisted timestamp, absent while the message is optimistic.
        content: Plain text. Assistant messages also carry it as a flattened copy of their text parts.
        parts: Ordered message parts (assistant/tool messages).
        model_id: Model that produced the message (multi-model mode).
        group_id: Correlates the per-model answers to one user prompt.
    """

    id: str
    role: Role
    created_at: Optional[datetime] = None
    content: Optional[str] = None
    parts: Optional[List[MessagePart]] = None
    model_id: Optional[str] = None
    group_id: Optional[str] = None

    def text_content(self) -> str:
        """Return the flattened text of the message.

        ``content`` wins when non-empty; otherwise the first text part is used.
        """
        if self.content:
            return self.content
        for part in self.parts or []:
            if isinstance(part, TextPart):
                return part.text
        return ""


class TurnResponse(_WireModel):
    """One model's answer inside a display turn."""

    model_id: str
    message: Message
    is_loading: bool = False
    provider: Optional[str] = None


class Turn(_WireModel):
    """A user prompt plus its aligned per-model responses, in insertion order."""

    user_message: Message
    responses: List[TurnResponse] = Field(default_factory=list)

    def response_for(self, model_id: str) -> Optional[TurnResponse]:
        """Return the response attributed to ``model_id``, if any."""
        for response in self.responses:
            if response.model_id == model_id:
                return response
        return None
