"""In-process message store and cache, for tests and single-process embedding."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from multi_chat_lib.chat_core.base import LocalCache, MessageStore
from multi_chat_lib.chat_core.exceptions import CacheError, StorageError
from multi_chat_lib.chat_core.logger import get_logger
from multi_chat_lib.chat_core.messages import Message

logger = get_logger(__name__)


class InMemoryMessageStore(MessageStore):
    """Stores messages per chat and assigns auto-increment ids and UTC timestamps.

    ``fail_next`` makes the next N operations raise ``StorageError``, which is
    how tests simulate an unreachable database.
    """

    def __init__(self, start_id: int = 1):
        self._rows: Dict[str, List[Message]] = {}
        self._next_id = start_id
        self._last_created: Optional[datetime] = None
        self.fail_next = 0

    def _check_available(self, operation: str) -> None:
        if self.fail_next > 0:
            self.fail_next -= 1
            raise StorageError(f"Message store unavailable during {operation}.")

    def _timestamp(self) -> datetime:
        now = datetime.now(timezone.utc)
        # Rows written in the same microsecond still need a strict order for cutoff deletes.
        if self._last_created is not None and now <= self._last_created:
            now = self._last_created + timedelta(microseconds=1)
        self._last_created = now
        return now

    async def persist(self, chat_id: str, message: Message) -> Message:
        self._check_available("persist")
        stored = message.model_copy(update={"id": str(self._next_id), "created_at": self._timestamp()})
        self._next_id += 1
        self._rows.setdefault(chat_id, []).append(stored)
        logger.debug("Stored %s message '%s' in chat '%s'.", stored.role, stored.id, chat_id)
        return stored

    async def fetch_tail(self, chat_id: str, k: int) -> List[Message]:
        self._check_available("fetch_tail")
        if k <= 0:
            return []
        return list(self._rows.get(chat_id, [])[-k:])

    async def fetch_all(self, chat_id: str) -> List[Message]:
        self._check_available("fetch_all")
        return list(self._rows.get(chat_id, []))

    async def delete_from(self, chat_id: str, cutoff: datetime) -> int:
        self._check_available("delete_from")
        rows = self._rows.get(chat_id, [])
        kept = [row for row in rows if row.created_at is None or row.created_at < cutoff]
        self._rows[chat_id] = kept
        return len(rows) - len(kept)


class InMemoryCache(LocalCache):
    """Keeps a copy of each chat's client-side message list."""

    def __init__(self) -> None:
        self._entries: Dict[str, List[Message]] = {}
        self.fail_writes = False

    async def read(self, chat_id: str) -> List[Message]:
        return list(self._entries.get(chat_id, []))

    async def write(self, chat_id: str, messages: List[Message]) -> None:
        if self.fail_writes:
            raise CacheError("Local cache is not writable.")
        self._entries[chat_id] = list(messages)
