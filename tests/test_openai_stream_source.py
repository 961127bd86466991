from typing import Any, AsyncIterator, List

import pytest
from unittest.mock import AsyncMock, MagicMock
from openai import AsyncOpenAI, OpenAIError
from openai.types.chat import ChatCompletionChunk
from openai.types.chat.chat_completion_chunk import (
    Choice,
    ChoiceDelta,
    ChoiceDeltaToolCall,
    ChoiceDeltaToolCallFunction,
)

from multi_chat_lib.chat_core import (
    FinishEvent,
    Message,
    PartEvent,
    PartMerger,
    ReasoningPart,
    SyncSettings,
    TextPart,
    ToolInvocationPart,
    ToolState,
    TurnContext,
    TurnSourceError,
)
from multi_chat_lib.chat_impl import OpenAITurnSource


def _chunk(delta: ChoiceDelta) -> ChatCompletionChunk:
    return ChatCompletionChunk(
        id="chunk",
        choices=[Choice(index=0, delta=delta, finish_reason=None)],
        created=0,
        model="gpt-x",
        object="chat.completion.chunk",
    )


def _tool_delta(call_id: Any, name: Any, arguments: str) -> ChoiceDelta:
    return ChoiceDelta(
        tool_calls=[
            ChoiceDeltaToolCall(
                index=0,
                id=call_id,
                type="function" if call_id else None,
                function=ChoiceDeltaToolCallFunction(name=name, arguments=arguments),
            )
        ]
    )


async def _stream(*chunks: Any) -> AsyncIterator[Any]:
    for chunk in chunks:
        if isinstance(chunk, Exception):
            raise chunk
        yield chunk


async def _collect(source: OpenAITurnSource, context: TurnContext) -> List[Any]:
    return [event async for event in source.submit("What is 2+2?", "gpt-x", context)]


@pytest.fixture
def mock_openai_client() -> Any:
    client = MagicMock(spec=AsyncOpenAI)
    client.chat = MagicMock()
    client.chat.completions = MagicMock()
    client.chat.completions.create = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_text_stream_ends_with_finish_event(mock_openai_client: Any) -> None:
    mock_openai_client.chat.completions.create.return_value = _stream(
        _chunk(ChoiceDelta(role="assistant", content="It is ")),
        _chunk(ChoiceDelta(content="4.")),
    )
    source = OpenAITurnSource(client=mock_openai_client, sys_instruction="You are a helper.")

    events = await _collect(source, TurnContext(chat_id="chat-1", group_id="g1"))

    assert [e.part for e in events[:-1]] == [TextPart(text="It is "), TextPart(text="4.")]
    finish = events[-1]
    assert isinstance(finish, FinishEvent)
    assert (finish.chat_id, finish.group_id) == ("chat-1", "g1")
    assert finish.messages[0].content == [{"type": "text", "text": "It is 4."}]


@pytest.mark.asyncio
async def test_request_includes_system_prompt_and_history(mock_openai_client: Any) -> None:
    mock_openai_client.chat.completions.create.return_value = _stream()
    source = OpenAITurnSource(client=mock_openai_client, sys_instruction="Fallback.", temp=0.2, max_tokens=50)
    history = (
        Message(id="1", role="user", content="Hi"),
        Message(id="2", role="assistant", content="Hello!"),
        Message(id="3", role="assistant", content=""),
        Message(id="4", role="tool", content="ignored"),
    )

    await _collect(source, TurnContext(chat_id="chat-1", history=history, system_prompt="Be brief."))

    kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
    assert kwargs["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello!"},
        {"role": "user", "content": "What is 2+2?"},
    ]
    assert kwargs["model"] == "gpt-x"
    assert kwargs["stream"] is True
    assert kwargs["temperature"] == 0.2
    assert kwargs["max_tokens"] == 50


@pytest.mark.asyncio
async def test_tool_calls_stream_then_become_available(mock_openai_client: Any) -> None:
    mock_openai_client.chat.completions.create.return_value = _stream(
        _chunk(_tool_delta("call_1", "calc", '{"a": ')),
        _chunk(_tool_delta(None, None, "2}")),
    )
    source = OpenAITurnSource(client=mock_openai_client)

    events = await _collect(source, TurnContext(chat_id="chat-1"))

    tool_parts = [e.part for e in events if isinstance(e, PartEvent)]
    assert [p.state for p in tool_parts] == [
        ToolState.INPUT_STREAMING,
        ToolState.INPUT_STREAMING,
        ToolState.INPUT_AVAILABLE,
    ]
    assert tool_parts[-1].args == {"a": 2}

    message = PartMerger().build_message(events[-1].messages)
    assert message.content == ""
    assert isinstance(message.parts[0], ToolInvocationPart)
    assert message.parts[0].tool_name == "calc"
    assert message.parts[0].args == {"a": 2}


@pytest.mark.asyncio
async def test_invalid_tool_arguments_are_kept_raw(mock_openai_client: Any) -> None:
    mock_openai_client.chat.completions.create.return_value = _stream(_chunk(_tool_delta("call_1", "calc", "{broken")))
    source = OpenAITurnSource(client=mock_openai_client)

    events = await _collect(source, TurnContext(chat_id="chat-1"))

    assert events[-2].part.args == "{broken"


@pytest.mark.asyncio
async def test_reasoning_deltas_are_forwarded(mock_openai_client: Any) -> None:
    mock_openai_client.chat.completions.create.return_value = _stream(
        _chunk(ChoiceDelta.model_validate({"reasoning_content": "Adding."})),
        _chunk(ChoiceDelta(content="4")),
    )
    source = OpenAITurnSource(client=mock_openai_client)

    events = await _collect(source, TurnContext(chat_id="chat-1"))

    assert isinstance(events[0].part, ReasoningPart)
    assert events[-1].messages[0].content == [
        {"type": "reasoning", "text": "Adding."},
        {"type": "text", "text": "4"},
    ]


@pytest.mark.asyncio
async def test_request_failure_raises_turn_source_error(mock_openai_client: Any) -> None:
    mock_openai_client.chat.completions.create.side_effect = OpenAIError("quota exceeded")
    source = OpenAITurnSource(client=mock_openai_client)

    with pytest.raises(TurnSourceError, match="quota exceeded"):
        await _collect(source, TurnContext(chat_id="chat-1"))


@pytest.mark.asyncio
async def test_broken_stream_raises_turn_source_error(mock_openai_client: Any) -> None:
    mock_openai_client.chat.completions.create.return_value = _stream(
        _chunk(ChoiceDelta(content="Par")),
        OpenAIError("connection reset"),
    )
    source = OpenAITurnSource(client=mock_openai_client)

    with pytest.raises(TurnSourceError, match="connection reset"):
        await _collect(source, TurnContext(chat_id="chat-1"))


@pytest.mark.asyncio
async def test_from_settings_uses_system_prompt(mock_openai_client: Any) -> None:
    mock_openai_client.chat.completions.create.return_value = _stream()
    source = OpenAITurnSource.from_settings(
        SyncSettings(system_prompt="Answer in one line."), client=mock_openai_client, max_tokens=100
    )

    await _collect(source, TurnContext(chat_id="chat-1"))

    kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
    assert kwargs["messages"][0] == {"role": "system", "content": "Answer in one line."}
    assert kwargs["max_tokens"] == 100


def test_from_settings_builds_client_for_base_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")

    source = OpenAITurnSource.from_settings(SyncSettings(openai_base_url="http://localhost:8080/v1"))

    assert isinstance(source.client, AsyncOpenAI)
    assert str(source.client.base_url).startswith("http://localhost:8080/v1")
    assert source.sys_instruction is None
