import asyncio
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

import pytest

from multi_chat_lib.chat_core import (
    FinishEvent,
    PartEvent,
    RawTurnMessage,
    StreamEvent,
    TextPart,
    TurnContext,
    TurnSource,
    TurnSourceError,
)
from multi_chat_lib.chat_impl import InMemoryCache, InMemoryMessageStore


class ScriptedTurnSource(TurnSource):
    """
    Turn source that answers every prompt with a canned text, streamed as two deltas.

    A model can be held between the deltas until the test releases it, made to
    fail after the first delta, or made to end without a finish event.
    """

    def __init__(self, answers: Optional[Dict[str, str]] = None) -> None:
        self.answers = answers or {}
        self.calls: List[Tuple[str, str, TurnContext]] = []
        self.failing: set = set()
        self.unfinished: set = set()
        self._gates: Dict[str, asyncio.Event] = {}

    def answer_for(self, prompt: str, model_id: str) -> str:
        return self.answers.get(model_id, f"{model_id} answers {prompt}")

    def hold(self, model_id: str) -> None:
        self._gates[model_id] = asyncio.Event()

    def release(self, model_id: str) -> None:
        self._gates.pop(model_id).set()

    async def submit(self, prompt: str, model_id: str, context: TurnContext) -> AsyncIterator[StreamEvent]:
        self.calls.append((prompt, model_id, context))
        answer = self.answer_for(prompt, model_id)
        half = len(answer) // 2

        yield PartEvent(TextPart(text=answer[:half]))
        if model_id in self.failing:
            raise TurnSourceError(f"{model_id} went away")
        gate = self._gates.get(model_id)
        if gate is not None:
            await gate.wait()
        yield PartEvent(TextPart(text=answer[half:]))

        if model_id in self.unfinished:
            return
        yield FinishEvent(
            messages=[RawTurnMessage(role="assistant", content=[{"type": "text", "text": answer}])],
            chat_id=context.chat_id,
            group_id=context.group_id,
        )


async def _settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def store() -> InMemoryMessageStore:
    return InMemoryMessageStore(start_id=42)


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def source() -> ScriptedTurnSource:
    return ScriptedTurnSource()


@pytest.fixture
def settle() -> Callable[..., Awaitable[None]]:
    """Lets pending tasks run until they block."""
    return _settle
