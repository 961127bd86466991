"""Public facade tying the merger, the reconciler and the aggregator to live model tasks."""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Union

from ..base import LocalCache, MessageStore, TurnContext, TurnSource
from ..config import SyncSettings
from ..exceptions import MessageNotFoundError
from ..grouping import GroupAggregator
from ..logger import get_logger
from ..merging import PartMerger
from ..messages import Message, RawTurnMessage, Turn
from ..reconcile import IdentityMatcher, IdentityReconciler
from .model_task import ModelTask

logger = get_logger(__name__)


@dataclass
class _ChatState:
    tasks: Dict[str, ModelTask] = field(default_factory=dict)
    selected_model_ids: List[str] = field(default_factory=list)
    pending_prompt: str = ""
    persisted: List[Message] = field(default_factory=list)
    background: Set[asyncio.Task] = field(default_factory=set)


class ConversationSync:
    """Keeps optimistic, persisted and per-model streaming state of each chat convergent.

    Example:
        >>> sync = ConversationSync(store=store, source=source, cache=cache)
        >>> await sync.submit("chat-1", "Hello", ["gpt-x", "claude-y"])
        >>> turns = await sync.get_turns("chat-1")
    """

    def __init__(
        self,
        store: MessageStore,
        source: TurnSource,
        cache: Optional[LocalCache] = None,
        settings: Optional[SyncSettings] = None,
        providers: Optional[Mapping[str, str]] = None,
        matcher: Optional[IdentityMatcher] = None,
        aggregator: Optional[GroupAggregator] = None,
    ):
        """Initialize the facade.

        Args:
            store: Authoritative message storage.
            source: Produces model response streams.
            cache: Local scratch copy of single-model conversations.
            settings: Runtime settings. Defaults to ``SyncSettings()``.
            providers: Optional ``model_id -> provider`` lookup for display.
            matcher: Pairing strategy for reconciliation.
            aggregator: Turn grouping. Defaults to a content-keyed ``GroupAggregator``.
        """
        self.store = store
        self.source = source
        self.cache = cache
        self.settings = settings or SyncSettings()
        self.providers: Mapping[str, str] = providers or {}
        self.merger = PartMerger(store)
        self.reconciler = IdentityReconciler(store, cache, matcher, count=self.settings.reconcile_tail_count)
        self.aggregator = aggregator or GroupAggregator(providers=self.providers)
        self._chats: Dict[str, _ChatState] = {}

    def _chat(self, chat_id: str) -> _ChatState:
        if chat_id not in self._chats:
            self._chats[chat_id] = _ChatState()
        return self._chats[chat_id]

    def _task_for(self, state: _ChatState, model_id: str) -> ModelTask:
        if model_id not in state.tasks:
            state.tasks[model_id] = ModelTask(
                model_id,
                self.source,
                self.merger,
                store=self.store,
                provider=self.providers.get(model_id),
            )
        return state.tasks[model_id]

    def get_canonical_message(
        self,
        raw_messages: Iterable[Union[RawTurnMessage, Mapping[str, Any]]],
        *,
        group_id: Optional[str] = None,
        model_id: Optional[str] = None,
    ) -> Message:
        """Merge the raw response messages of one turn without persisting them."""
        return self.merger.build_message(raw_messages, group_id=group_id, model_id=model_id)

    async def submit(self, chat_id: str, prompt: str, model_ids: Sequence[str]) -> str:
        """Fan ``prompt`` out to every model in ``model_ids``.

        Each model gets its own task; none waits on another. Single-model turns
        are written to the cache and reconciled once they finish.

        Returns:
            The group id shared by all answers to this prompt.

        Raises:
            ValueError: If the prompt is blank or no model is selected.
            RuntimeError: If one of the models is still answering.
        """
        if not prompt.strip():
            raise ValueError("Prompt must not be empty.")
        if not model_ids:
            raise ValueError("Select at least one model.")

        state = self._chat(chat_id)
        tasks = [self._task_for(state, model_id) for model_id in dict.fromkeys(model_ids)]
        busy = [task.model_id for task in tasks if task.is_loading]
        if busy:
            raise RuntimeError(f"Models still answering: {', '.join(busy)}")

        group_id = str(uuid.uuid4())
        state.selected_model_ids = [task.model_id for task in tasks]
        state.pending_prompt = prompt
        logger.info("Submitting prompt to %d model(s) in chat '%s' (group=%s).", len(tasks), chat_id, group_id)

        for task in tasks:
            user_message = Message(
                id=str(uuid.uuid4()), role="user", content=prompt, group_id=group_id, model_id=task.model_id
            )
            context = TurnContext(chat_id=chat_id, group_id=group_id, system_prompt=self.settings.system_prompt)
            task.start(prompt, context, user_message)

        if len(tasks) == 1:
            self._spawn(state, self._after_single_turn(chat_id, tasks[0]))
        return group_id

    def _spawn(self, state: _ChatState, coro: Any) -> None:
        background = asyncio.create_task(coro)
        state.background.add(background)
        background.add_done_callback(state.background.discard)

    async def _after_single_turn(self, chat_id: str, task: ModelTask) -> None:
        await task.wait()
        if task.error is not None or task.cancelled:
            return
        await self._write_cache(chat_id, list(task.messages))
        await self.reconcile(chat_id, task.model_id)

    async def _write_cache(self, chat_id: str, messages: List[Message]) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.write(chat_id, messages)
        except Exception as e:
            logger.warning("Could not cache messages for chat '%s': %s", chat_id, e)

    async def reconcile(self, chat_id: str, model_id: Optional[str] = None) -> None:
        """Adopt durable ids and timestamps for the most recent local messages.

        A single-model chat reconciles its live list and the cache. In a chat with
        several models each list is reconciled against the rows stored for its own
        model only: the given model, or every model when none is given. A chat
        without live state reconciles the cached list. Safe to call repeatedly;
        failures are logged and leave local state as it was.
        """
        state = self._chats.get(chat_id)
        if state is None or not state.tasks:
            await self.reconciler.reconcile(chat_id)
            return

        if model_id is not None:
            targets = [state.tasks[model_id]] if model_id in state.tasks else []
        else:
            targets = list(state.tasks.values())

        shared = len(state.tasks) > 1
        for task in targets:
            before = list(task.messages)
            if shared:
                after = await self.reconciler.reconcile_model(
                    chat_id, before, task.model_id, fan_out=len(state.tasks)
                )
            else:
                after = await self.reconciler.reconcile(chat_id, before)
            if after is not before:
                replaced = task.adopt_identities(before, after)
                logger.debug("Reconciled %d message(s) for model '%s' in chat '%s'.", replaced, task.model_id, chat_id)

    async def get_turns(self, chat_id: str) -> List[Turn]:
        """Recompute the display turns of ``chat_id`` from persisted and live state.

        When the store cannot be read the last persisted snapshot is reused.
        """
        state = self._chats.get(chat_id) or _ChatState()
        persisted = await self._load_persisted(chat_id, state)
        return self.aggregator.aggregate(
            persisted,
            [task.snapshot() for task in self._ordered_tasks(state)],
            pending_prompt=state.pending_prompt,
            selected_model_ids=state.selected_model_ids,
        )

    async def _load_persisted(self, chat_id: str, state: _ChatState) -> List[Message]:
        try:
            state.persisted = await self.store.fetch_all(chat_id)
        except Exception as e:
            logger.warning("Could not load persisted messages for chat '%s': %s", chat_id, e, exc_info=True)
        return state.persisted

    @staticmethod
    def _ordered_tasks(state: _ChatState) -> List[ModelTask]:
        selected = [state.tasks[m] for m in state.selected_model_ids if m in state.tasks]
        others = [task for model_id, task in state.tasks.items() if model_id not in state.selected_model_ids]
        return selected + others

    def stop(self, chat_id: str, model_id: Optional[str] = None) -> List[str]:
        """Stop one model, or every selected model that is still answering.

        Returns:
            The models that were stopped.
        """
        state = self._chats.get(chat_id)
        if state is None:
            return []
        if model_id is not None:
            task = state.tasks.get(model_id)
            return [model_id] if task is not None and task.stop() else []
        return [m for m in state.selected_model_ids if m in state.tasks and state.tasks[m].stop()]

    async def wait(self, chat_id: str) -> None:
        """Wait until every model task and follow-up sync of ``chat_id`` has ended."""
        state = self._chats.get(chat_id)
        if state is None:
            return
        await asyncio.gather(*(task.wait() for task in state.tasks.values()))
        while state.background:
            await asyncio.gather(*list(state.background), return_exceptions=True)

    async def edit_message(self, chat_id: str, model_id: str, message_id: str, new_text: str) -> str:
        """Replace a user message and everything after it with a new prompt.

        Every model that answered the edited prompt has its list cut at that
        prompt and receives ``new_text`` as a fresh prompt; later prompts are cut
        from every model's list. Stored rows from the earliest row of the edited
        prompt's group onward are deleted (best effort), as is the cached list of
        a single-model chat. A message without a group only affects ``model_id``
        and is cut at its own reconciled timestamp.

        Returns:
            The group id of the new prompt.

        Raises:
            MessageNotFoundError: If the model or message is unknown.
        """
        state = self._chats.get(chat_id)
        task = state.tasks.get(model_id) if state is not None else None
        if task is None:
            raise MessageNotFoundError(f"No conversation with model '{model_id}' in chat '{chat_id}'.")
        target = task.find(message_id)

        for running in state.tasks.values():
            if running.stop():
                await running.wait()

        persisted = await self._load_persisted(chat_id, state)
        cutoff = self._edit_cutoff(target, persisted)

        if target.group_id is None:
            task.truncate_before(message_id)
            model_ids = [model_id]
        else:
            groups: Set[str] = {target.group_id}
            start = task.messages.index(target)
            groups.update(m.group_id for m in task.messages[start:] if m.group_id is not None)
            if cutoff is not None:
                groups.update(
                    row.group_id
                    for row in persisted
                    if row.group_id is not None and row.created_at is not None and row.created_at >= cutoff
                )
            model_ids = [t.model_id for t in self._ordered_tasks(state) if t.has_group(target.group_id)]
            for other in state.tasks.values():
                other.truncate_groups(groups)

        if len(state.tasks) == 1:
            await self._write_cache(chat_id, list(task.messages))

        if cutoff is None:
            logger.debug("Edited message '%s' has no stored rows; nothing to delete.", message_id)
        else:
            try:
                deleted = await self.store.delete_from(chat_id, cutoff)
                logger.info("Deleted %d persisted message(s) from chat '%s' after edit.", deleted, chat_id)
            except Exception as e:
                logger.warning("Could not delete persisted messages after edit in chat '%s': %s", chat_id, e)

        return await self.submit(chat_id, new_text, model_ids)

    @staticmethod
    def _edit_cutoff(target: Message, persisted: Sequence[Message]) -> Optional[datetime]:
        """Earliest stored row of the edited prompt's group, else the message's own timestamp."""
        if target.group_id is not None:
            stamps = [
                row.created_at
                for row in persisted
                if row.group_id == target.group_id and row.created_at is not None
            ]
            if stamps:
                return min(stamps)
        return target.created_at
