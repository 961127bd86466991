from itertools import permutations
from unittest.mock import AsyncMock

import pytest

from multi_chat_lib.chat_core import (
    InvalidPartError,
    PartMerger,
    RawTurnMessage,
    ReasoningPart,
    StepBoundaryPart,
    StorageError,
    TextPart,
    ToolInvocationPart,
    ToolState,
)
from multi_chat_lib.chat_impl import InMemoryMessageStore


def _tool(state: str, **kwargs) -> dict:
    return {"type": "tool-invocation", "toolCallId": "t1", "toolName": "calc", "state": state, **kwargs}


def test_narrative_parts_keep_order_and_tools_go_last() -> None:
    merger = PartMerger()

    merged = merger.merge_parts(
        [
            {"type": "step-start"},
            {"type": "reasoning", "text": "let me think"},
            _tool("input-available", args={"a": 1}),
            {"type": "text", "text": "First."},
            {"type": "text", "text": "Second."},
        ]
    )

    assert [type(p) for p in merged.parts] == [
        StepBoundaryPart,
        ReasoningPart,
        TextPart,
        TextPart,
        ToolInvocationPart,
    ]
    assert merged.parts[1].details[0].text == "let me think"
    assert merged.content == "First.\n\nSecond."


def test_content_is_empty_string_without_text() -> None:
    merged = PartMerger().merge_parts([_tool("input-available")])
    assert merged.content == ""


@pytest.mark.parametrize(
    "order",
    list(permutations(["input-streaming", "input-available", "output-available"])),
)
def test_completed_result_wins_in_any_arrival_order(order) -> None:
    parts = [_tool(state, result=3 if state == "output-available" else None) for state in order]

    merged = PartMerger().merge_parts(parts)

    tools = [p for p in merged.parts if isinstance(p, ToolInvocationPart)]
    assert len(tools) == 1
    assert tools[0].state is ToolState.OUTPUT_AVAILABLE
    assert tools[0].result == 3


def test_error_beats_pending_but_not_result() -> None:
    merger = PartMerger()

    errored = merger.merge_parts([_tool("output-error", errorText="bad"), _tool("input-available")])
    assert errored.parts[0].state is ToolState.OUTPUT_ERROR

    resolved = merger.merge_parts([_tool("output-available", result=1), _tool("output-error", errorText="bad")])
    assert resolved.parts[0].state is ToolState.OUTPUT_AVAILABLE


def test_non_terminal_call_keeps_its_last_state() -> None:
    merged = PartMerger().merge_parts([_tool("partial-call"), _tool("call", args={"a": 2})])

    assert merged.parts[0].state is ToolState.INPUT_AVAILABLE
    assert merged.parts[0].args == {"a": 2}


def test_merge_is_idempotent() -> None:
    merger = PartMerger()
    parts = [
        {"type": "text", "text": "Hi"},
        _tool("input-available", args={"a": 1}),
        _tool("output-available", result=2),
    ]

    assert merger.merge_parts(parts) == merger.merge_parts(parts)


def test_unknown_part_type_raises() -> None:
    with pytest.raises(InvalidPartError):
        PartMerger().merge_parts([{"type": "video"}])


def test_build_message_upgrades_call_from_tool_message() -> None:
    merger = PartMerger(id_factory=lambda: "opt-1")

    message = merger.build_message(
        [
            RawTurnMessage(
                role="assistant",
                content=[
                    {"type": "text", "text": "Checking."},
                    {"type": "tool-call", "toolCallId": "t1", "toolName": "calc", "args": {"a": 1}},
                ],
            ),
            RawTurnMessage(
                role="tool",
                content=[{"type": "tool-result", "toolCallId": "t1", "toolName": "calc", "result": 2}],
            ),
        ],
        group_id="g1",
        model_id="gpt-x",
    )

    assert message.id == "opt-1"
    assert message.role == "assistant"
    assert message.content == "Checking."
    assert message.group_id == "g1"
    assert message.model_id == "gpt-x"
    tool = message.parts[-1]
    assert tool.state is ToolState.OUTPUT_AVAILABLE
    assert tool.result == 2
    assert tool.args == {"a": 1}


@pytest.mark.asyncio
async def test_finalize_persists_and_returns_optimistic_message() -> None:
    store = InMemoryMessageStore(start_id=42)
    merger = PartMerger(store)

    message = await merger.finalize(
        "chat-1",
        [{"role": "assistant", "content": "Hello there"}],
        model_id="gpt-x",
        message_id="opt-1",
    )

    rows = await store.fetch_all("chat-1")
    assert message.id == "opt-1"
    assert len(rows) == 1
    assert rows[0].id == "42"
    assert rows[0].content == "Hello there"
    assert rows[0].created_at is not None


@pytest.mark.asyncio
async def test_finalize_swallows_storage_failure() -> None:
    store = AsyncMock()
    store.persist.side_effect = StorageError("database down")
    merger = PartMerger(store)

    message = await merger.finalize("chat-1", [{"role": "assistant", "content": "still here"}], message_id="opt-1")

    store.persist.assert_awaited_once()
    assert message.id == "opt-1"
    assert message.content == "still here"
