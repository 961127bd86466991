import json
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, cast

from openai import AsyncOpenAI, OpenAIError

from multi_chat_lib.chat_core.base import FinishEvent, PartEvent, StreamEvent, TurnContext, TurnSource
from multi_chat_lib.chat_core.config import SyncSettings
from multi_chat_lib.chat_core.exceptions import TurnSourceError
from multi_chat_lib.chat_core.logger import get_logger
from multi_chat_lib.chat_core.messages import (
    Message,
    RawTurnMessage,
    ReasoningPart,
    TextPart,
    ToolInvocationPart,
    ToolState,
)

logger = get_logger(__name__)


class OpenAITurnSource(TurnSource):
    """
    Streams chat completions from OpenAI (or an OpenAI-compatible endpoint) as message parts.
    Tool calls are reported but not executed; their results arrive through the tool layer.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        sys_instruction: Optional[str] = None,
        temp: float = 1.0,
        max_tokens: int = 3000,
    ):
        """
        Initializes the turn source.

        Args:
            client: The initialized AsyncOpenAI client.
            sys_instruction: Fallback system instruction when the turn context carries none.
            temp: The temperature for text generation.
            max_tokens: The maximum number of tokens to generate per turn.
        """
        self.client = client
        self.sys_instruction = sys_instruction
        self.temperature = temp
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(
        cls, settings: SyncSettings, client: Optional[AsyncOpenAI] = None, **kwargs: Any
    ) -> "OpenAITurnSource":
        """
        Builds a turn source from ``SyncSettings``.

        Args:
            settings: Supplies the system instruction and, when no client is given, the base URL.
            client: An existing client. A new ``AsyncOpenAI`` is created when omitted; it reads
                ``OPENAI_API_KEY`` from the environment.
            **kwargs: Passed on to the constructor (``temp``, ``max_tokens``).
        """
        if client is None:
            client = AsyncOpenAI(base_url=settings.openai_base_url)
        return cls(client=client, sys_instruction=settings.system_prompt, **kwargs)

    async def submit(self, prompt: str, model_id: str, context: TurnContext) -> AsyncIterator[StreamEvent]:
        """
        Streams one answer.

        Text and provider reasoning are yielded as deltas. Tool calls are yielded as
        ``input-streaming`` while their arguments arrive and as ``input-available``
        once the stream is complete. The final ``FinishEvent`` carries the assembled
        assistant message in wire form.

        Raises:
            TurnSourceError: If the request fails or the stream breaks.
        """
        messages = self._convert_history(context.history)
        system = context.system_prompt or self.sys_instruction
        if system:
            messages.insert(0, {"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        logger.debug("Opening stream for model '%s' with %d message(s).", model_id, len(messages))
        try:
            stream = await self.client.chat.completions.create(
                model=model_id,
                messages=cast(Iterable[Any], messages),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                stream=True,
            )
        except OpenAIError as e:
            raise TurnSourceError(f"Could not start a turn with model '{model_id}': {e}") from e

        text_chunks: List[str] = []
        reasoning_chunks: List[str] = []
        calls: Dict[int, Dict[str, str]] = {}

        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta

                # Not part of the official schema; reasoning models on compatible endpoints send it.
                reasoning = getattr(delta, "reasoning_content", None) or getattr(delta, "reasoning", None)
                if reasoning:
                    reasoning_chunks.append(reasoning)
                    yield PartEvent(ReasoningPart(text=reasoning))

                if delta.content:
                    text_chunks.append(delta.content)
                    yield PartEvent(TextPart(text=delta.content))

                for call in delta.tool_calls or []:
                    entry = calls.setdefault(call.index, {"id": "", "name": "", "arguments": ""})
                    if call.id:
                        entry["id"] = call.id
                    if call.function is not None:
                        entry["name"] += call.function.name or ""
                        entry["arguments"] += call.function.arguments or ""
                    if entry["id"]:
                        yield PartEvent(
                            ToolInvocationPart(
                                tool_call_id=entry["id"],
                                tool_name=entry["name"],
                                state=ToolState.INPUT_STREAMING,
                            )
                        )
        except OpenAIError as e:
            raise TurnSourceError(f"Stream from model '{model_id}' broke: {e}") from e

        content: List[Dict[str, Any]] = []
        if reasoning_chunks:
            content.append({"type": "reasoning", "text": "".join(reasoning_chunks)})
        if text_chunks:
            content.append({"type": "text", "text": "".join(text_chunks)})

        for entry in calls.values():
            if not entry["id"]:
                logger.warning("Dropping tool call '%s' without an id from model '%s'.", entry["name"], model_id)
                continue
            args = self._decode_arguments(entry["name"], entry["arguments"])
            yield PartEvent(
                ToolInvocationPart(
                    tool_call_id=entry["id"],
                    tool_name=entry["name"],
                    state=ToolState.INPUT_AVAILABLE,
                    args=args,
                )
            )
            content.append({"type": "tool-call", "toolCallId": entry["id"], "toolName": entry["name"], "args": args})

        yield FinishEvent(
            messages=[RawTurnMessage(role="assistant", content=content)],
            chat_id=context.chat_id,
            group_id=context.group_id,
        )

    @staticmethod
    def _convert_history(history: Sequence[Message]) -> List[Dict[str, Any]]:
        """
        Converts generic Message history to OpenAI chat messages.

        Tool messages and messages without text (loading placeholders, failed turns) are skipped.

        Args:
            history: Messages preceding the prompt.

        Returns:
            List of OpenAI message dictionaries.
        """
        openai_history = []
        for msg in history:
            if msg.role == "tool":
                continue
            text = msg.text_content()
            if not text:
                continue
            openai_history.append({"role": msg.role, "content": text})
        return openai_history

    @staticmethod
    def _decode_arguments(tool_name: str, arguments: str) -> Any:
        """Decode streamed JSON arguments, keeping the raw string when they do not parse."""
        if not arguments:
            return {}
        try:
            return json.loads(arguments)
        except json.JSONDecodeError as e:
            logger.warning("Failed to decode arguments for tool '%s': %s", tool_name, e)
            return arguments
