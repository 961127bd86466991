"""Group persisted history and live per-model chats into display turns.

The aggregation is a pure recomputation over snapshots. It keeps no state
between calls and never mutates its inputs, so it can run on every render or
poll tick no matter which model task changed last.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from ..logger import get_logger
from ..messages import Message, Turn, TurnResponse

logger = get_logger(__name__)

LOADING_ID_PREFIX = "loading-"


@dataclass(frozen=True)
class ModelChatSnapshot:
    """Point-in-time view of one model's live conversation.

    Attributes:
        model_id: Model the conversation talks to.
        messages: Alternating ``[user, assistant, user, assistant, ...]`` list.
        is_loading: True while a response is in flight.
        provider: Display name of the model's provider, when known.
    """

    model_id: str
    messages: Sequence[Message]
    is_loading: bool = False
    provider: Optional[str] = None


class GroupKeyStrategy(ABC):
    """Derives the key that ties a user message to its turn."""

    @abstractmethod
    def key_for(self, user_message: Message) -> str:
        """Return the group key, or an empty string when the message cannot be grouped."""


class ContentGroupKey(GroupKeyStrategy):
    """Groups by the flattened text of the user message.

    Every model task sends the same prompt text, and storage keeps one user row
    per model request, so identical text is what ties them together.
    """

    def key_for(self, user_message: Message) -> str:
        return user_message.text_content()


@dataclass
class _Group:
    user_message: Message
    responses: List[TurnResponse] = field(default_factory=list)

    def find(self, model_id: str) -> Optional[int]:
        for index, response in enumerate(self.responses):
            if response.model_id == model_id:
                return index
        return None


class GroupAggregator:
    """Builds the ``Turn`` list for multi-model display.

    Precedence is fixed: a persisted response for ``(turn, model)`` beats a live
    copy, and any finalized response beats a loading placeholder.
    """

    def __init__(
        self,
        key_strategy: Optional[GroupKeyStrategy] = None,
        providers: Optional[Mapping[str, str]] = None,
    ):
        """Initialize the aggregator.

        Args:
            key_strategy: How user messages are keyed. Defaults to ``ContentGroupKey``.
            providers: Optional ``model_id -> provider`` lookup for display.
        """
        self.key_strategy = key_strategy or ContentGroupKey()
        self.providers: Mapping[str, str] = providers or {}

    def aggregate(
        self,
        persisted: Sequence[Message],
        chats: Sequence[ModelChatSnapshot] = (),
        *,
        pending_prompt: str = "",
        selected_model_ids: Sequence[str] = (),
    ) -> List[Turn]:
        """Combine persisted history and live chats into turns.

        Args:
            persisted: Stored messages of the conversation, oldest first.
            chats: Live per-model conversations, in model selection order.
            pending_prompt: Text currently being submitted; gates loading placeholders.
            selected_model_ids: Models selected for the current prompt. Also used to
                attribute legacy assistant rows that carry no model.

        Returns:
            Turns ordered by first appearance of their prompt.
        """
        groups: Dict[str, _Group] = {}
        self._group_persisted(groups, persisted, selected_model_ids)
        for chat in chats:
            self._overlay_live(groups, chat, pending_prompt, selected_model_ids)
        return [Turn(user_message=group.user_message, responses=group.responses) for group in groups.values()]

    def _group_persisted(
        self, groups: Dict[str, _Group], persisted: Sequence[Message], selected_model_ids: Sequence[str]
    ) -> None:
        attached: Dict[str, List[Message]] = {}
        last_user: Optional[Message] = None

        for message in persisted:
            if message.role == "user":
                last_user = message
                key = self.key_strategy.key_for(message)
                if key and key not in groups:
                    groups[key] = _Group(user_message=message)
            elif message.role == "assistant":
                if last_user is None:
                    logger.debug("Dropping assistant message '%s' with no preceding user message.", message.id)
                    continue
                key = self.key_strategy.key_for(last_user)
                if not key:
                    continue
                if key not in groups:
                    groups[key] = _Group(user_message=last_user)
                attached.setdefault(key, []).append(message)

        for key, assistant_messages in attached.items():
            group = groups[key]
            for index, message in enumerate(assistant_messages):
                model_id = message.model_id or self._positional_model(index, selected_model_ids)
                response = TurnResponse(
                    model_id=model_id,
                    message=message,
                    is_loading=False,
                    provider=self.providers.get(model_id),
                )
                existing = group.find(model_id)
                if existing is None:
                    group.responses.append(response)
                else:
                    # Same prompt answered again by the same model: the later row wins.
                    group.responses[existing] = response

    @staticmethod
    def _positional_model(index: int, selected_model_ids: Sequence[str]) -> str:
        model_id = selected_model_ids[index] if index < len(selected_model_ids) else f"model-{index}"
        logger.debug("Assistant row without a stored model; attributing response %d to '%s'.", index, model_id)
        return model_id

    def _overlay_live(
        self,
        groups: Dict[str, _Group],
        chat: ModelChatSnapshot,
        pending_prompt: str,
        selected_model_ids: Sequence[str],
    ) -> None:
        provider = chat.provider or self.providers.get(chat.model_id)
        messages = chat.messages

        for i in range(0, len(messages), 2):
            user_message = messages[i]
            assistant_message = messages[i + 1] if i + 1 < len(messages) else None
            if user_message.role != "user":
                continue

            key = self.key_strategy.key_for(user_message)
            if not key:
                continue
            group = groups.get(key)
            if group is None:
                group = groups[key] = _Group(user_message=user_message)

            existing = group.find(chat.model_id)
            if assistant_message is not None and assistant_message.role == "assistant":
                finalized = TurnResponse(
                    model_id=chat.model_id, message=assistant_message, is_loading=False, provider=provider
                )
                if existing is None:
                    group.responses.append(finalized)
                elif group.responses[existing].is_loading:
                    group.responses[existing] = finalized
            elif (
                chat.is_loading
                and user_message.text_content() == pending_prompt
                and chat.model_id in selected_model_ids
                and existing is None
            ):
                group.responses.append(
                    TurnResponse(
                        model_id=chat.model_id,
                        message=Message(
                            id=f"{LOADING_ID_PREFIX}{chat.model_id}",
                            role="assistant",
                            content="",
                            model_id=chat.model_id,
                        ),
                        is_loading=True,
                        provider=provider,
                    )
                )
