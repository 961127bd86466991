"""Tool invocation states and the priority order used when merging them."""

from enum import Enum
from typing import Dict, Union


class ToolState(str, Enum):
    """Lifecycle state of a single tool call.

    The members are ordered by how much they tell about the call. A part in a
    higher state supersedes a part in a lower one when both describe the same
    ``tool_call_id``.
    """

    INPUT_STREAMING = "input-streaming"
    INPUT_AVAILABLE = "input-available"
    OUTPUT_ERROR = "output-error"
    OUTPUT_AVAILABLE = "output-available"

    @property
    def rank(self) -> int:
        """Position of this state in the priority order (higher wins)."""
        return _RANKS[self]

    @property
    def is_terminal(self) -> bool:
        """True when no further updates are expected for the call."""
        return self in (ToolState.OUTPUT_ERROR, ToolState.OUTPUT_AVAILABLE)

    def outranks_or_equals(self, other: "ToolState") -> bool:
        """Return True when a part in this state may replace one in ``other``."""
        return self.rank >= other.rank

    @classmethod
    def normalize(cls, value: Union["ToolState", str]) -> "ToolState":
        """Map a wire state, including the legacy aliases, onto a member.

        Raises:
            ValueError: If the value is not a known state or alias.
        """
        if isinstance(value, ToolState):
            return value
        value = _LEGACY_ALIASES.get(value, value)
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown tool invocation state: {value!r}") from None


_RANKS: Dict[ToolState, int] = {
    ToolState.INPUT_STREAMING: 0,
    ToolState.INPUT_AVAILABLE: 1,
    ToolState.OUTPUT_ERROR: 2,
    ToolState.OUTPUT_AVAILABLE: 3,
}

# Older SDK releases streamed these names.
_LEGACY_ALIASES: Dict[str, str] = {
    "partial-call": ToolState.INPUT_STREAMING.value,
    "call": ToolState.INPUT_AVAILABLE.value,
    "result": ToolState.OUTPUT_AVAILABLE.value,
}
