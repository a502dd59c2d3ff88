"""
In-memory map of stream keys to their scheduled or live handle.

All mutations happen on the event loop thread. try_reserve() claims the key
before its first await so two concurrent submissions can never both pass.
"""
import logging
from typing import Dict, List, Optional, Union

from .jobs import ActiveStream, Status
from .store import JobStore

logger = logging.getLogger(__name__)


class _Reserved:
    __slots__ = ()

    def __repr__(self):
        return "<reserved>"


RESERVED = _Reserved()


class StreamRegistry:
    def __init__(self, store: JobStore):
        self.store = store
        self._entries: Dict[str, Union[ActiveStream, _Reserved]] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def try_reserve(self, key: str, *, record_id=None) -> bool:
        """
        Claim `key` unless it is held in memory or a persisted record still
        streams on it. `record_id` names a record that may hold the key
        without counting as a conflict (recovery re-arming its own row).
        """
        if key in self._entries:
            return False
        self._entries[key] = RESERVED
        try:
            record = await self.store.find_by_key(key)
        except Exception:
            self._drop_placeholder(key)
            raise
        if record is not None and record.is_streaming and record.id != record_id:
            logger.info("Stream key %s is held by persisted record %s", key, record.id)
            self._drop_placeholder(key)
            return False
        return True

    def _drop_placeholder(self, key: str) -> None:
        if self._entries.get(key) is RESERVED:
            del self._entries[key]

    def commit(self, key: str, handle: ActiveStream) -> None:
        current = self._entries.get(key)
        if current is not RESERVED and current is not handle:
            raise RuntimeError(f"stream key {key!r} was not reserved")
        self._entries[key] = handle

    def release(self, key: str, handle: Optional[ActiveStream] = None) -> bool:
        """
        Drop the entry for `key`. With `handle`, only that exact handle is
        dropped. Returns False when there was nothing to release.
        """
        current = self._entries.get(key)
        if current is None:
            return False
        if handle is not None and current is not handle:
            return False
        del self._entries[key]
        return True

    def lookup(self, key: str) -> Optional[ActiveStream]:
        entry = self._entries.get(key)
        return entry if isinstance(entry, ActiveStream) else None

    def handles(self) -> List[ActiveStream]:
        return [e for e in self._entries.values() if isinstance(e, ActiveStream)]

    def scheduled(self) -> List[ActiveStream]:
        return [h for h in self.handles() if h.status == Status.SCHEDULED]

    def live(self) -> List[ActiveStream]:
        return [h for h in self.handles() if h.status == Status.LIVE]
