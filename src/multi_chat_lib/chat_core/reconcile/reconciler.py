"""Align optimistic client messages with the rows storage assigned to them."""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Set, Tuple

from ..base import LocalCache, MessageStore
from ..logger import get_logger
from ..messages import Message

logger = get_logger(__name__)


class IdentityMatcher(ABC):
    """Pairs persisted messages with the local messages they correspond to."""

    @abstractmethod
    def pair(self, persisted: Sequence[Message], local: Sequence[Message]) -> List[Tuple[int, int]]:
        """Return ``(persisted_index, local_index)`` pairs. Each local index appears at most once."""


class TailRoleMatcher(IdentityMatcher):
    """Greedy pairing from the most recent end of both lists, keyed on role.

    Content is not compared: storage may rewrite it (sanitizing, markdown
    normalization) while the row is still the same message. Turns alternate
    user/assistant and only the last couple are inspected, so role plus
    recency is enough.
    """

    def pair(self, persisted: Sequence[Message], local: Sequence[Message]) -> List[Tuple[int, int]]:
        pairs: List[Tuple[int, int]] = []
        claimed: Set[int] = set()

        for p_index in range(len(persisted) - 1, -1, -1):
            role = persisted[p_index].role
            for l_index in range(len(local) - 1, -1, -1):
                if l_index in claimed or local[l_index].role != role:
                    continue
                claimed.add(l_index)
                pairs.append((p_index, l_index))
                break
            else:
                logger.debug("No local '%s' message left to pair with persisted id '%s'.", role, persisted[p_index].id)

        return pairs


class IdentityReconciler:
    """Rewrites ids and timestamps of recent local messages to their persisted values.

    Reconciliation is best-effort background sync: lookups and cache writes
    that fail are logged and the local list is left as it was.
    """

    def __init__(
        self,
        store: MessageStore,
        cache: Optional[LocalCache] = None,
        matcher: Optional[IdentityMatcher] = None,
        count: int = 2,
    ):
        """Initialize the reconciler.

        Args:
            store: Source of the persisted tail.
            cache: Local cache that receives the updated list.
            matcher: Pairing strategy. Defaults to ``TailRoleMatcher``.
            count: How many persisted messages to fetch; the last user/assistant pair by default.
        """
        if count < 1:
            raise ValueError("count must be at least 1")
        self.store = store
        self.cache = cache
        self.matcher = matcher or TailRoleMatcher()
        self.count = count

    def apply(self, persisted_tail: Sequence[Message], local: List[Message]) -> Tuple[List[Message], bool]:
        """Pair ``persisted_tail`` against ``local`` and rewrite identities of matched messages.

        Only ``id`` and ``created_at`` change; content is never touched.

        Returns:
            The updated list and whether anything changed. When nothing changed the
            original list object is returned.
        """
        if not persisted_tail or not local:
            return local, False

        updated = list(local)
        changed = False
        for p_index, l_index in self.matcher.pair(persisted_tail, updated):
            stored = persisted_tail[p_index]
            current = updated[l_index]
            if str(current.id) == str(stored.id):
                continue
            logger.debug("Reconciled local '%s' message id '%s' -> '%s'.", current.role, current.id, stored.id)
            updated[l_index] = current.model_copy(update={"id": str(stored.id), "created_at": stored.created_at})
            changed = True

        return (updated, True) if changed else (local, False)

    async def reconcile(self, chat_id: str, local: Optional[List[Message]] = None) -> List[Message]:
        """Reconcile the local list of ``chat_id`` with its persisted tail.

        Args:
            chat_id: Conversation to reconcile.
            local: The in-memory list. Read from the cache when omitted.

        Returns:
            The reconciled list, or the input unchanged when there was nothing to do
            or the persisted tail could not be read.
        """
        if local is None:
            local = await self._read_cache(chat_id)
        if not local:
            logger.debug("No local messages for chat '%s'; nothing to reconcile.", chat_id)
            return local

        tail = await self._fetch_tail(chat_id, self.count)
        if tail is None:
            return local

        updated, changed = self.apply(tail, local)
        if changed and self.cache is not None:
            try:
                await self.cache.write(chat_id, updated)
            except Exception as e:
                logger.warning("Could not write reconciled messages to cache for chat '%s': %s", chat_id, e)
        return updated

    async def reconcile_model(
        self, chat_id: str, local: List[Message], model_id: str, fan_out: int = 1
    ) -> List[Message]:
        """Reconcile one model's list in a chat whose rows several models share.

        The persisted tail is widened by ``fan_out`` (the number of models in the
        chat) and narrowed to rows stored for ``model_id`` within the prompt groups
        present in ``local``, so another model's rows are never paired in. The
        cache is left alone; it only mirrors single-model conversations.

        Returns:
            The reconciled list, or ``local`` unchanged.
        """
        if not local:
            return local
        tail = await self._fetch_tail(chat_id, self.count * max(fan_out, 1))
        if tail is None:
            return local

        groups = {message.group_id for message in local if message.group_id}
        rows = [
            row for row in tail if row.model_id == model_id and (not groups or row.group_id in groups)
        ]
        updated, _ = self.apply(rows[-self.count:], local)
        return updated

    async def _fetch_tail(self, chat_id: str, k: int) -> Optional[List[Message]]:
        try:
            return await self.store.fetch_tail(chat_id, k)
        except Exception as e:
            logger.warning("Could not fetch persisted tail for chat '%s': %s", chat_id, e, exc_info=True)
            return None

    async def _read_cache(self, chat_id: str) -> List[Message]:
        if self.cache is None:
            return []
        try:
            return await self.cache.read(chat_id)
        except Exception as e:
            logger.warning("Could not read cached messages for chat '%s': %s", chat_id, e)
            return []
