"""
Recently-visited article history for one client session.

The history is most-recent-first, has no duplicates and never exceeds its
capacity. It lives in an injected `SessionStorage` (a small get/put/clear
key-value capability) so that browser-like session storage, a cache, or an
in-memory dict can back it interchangeably.
"""

from __future__ import annotations

import json
import logging
from threading import Lock
from collections import OrderedDict
from typing import Dict, List, Optional, Protocol

from ..errors import InvalidInputError

logger = logging.getLogger(__name__)

RECENTLY_VISITED_KEY = "compile-recently-visited"
MAX_RECENT_ARTICLES = 4
MAX_SESSIONS = 10_000


class SessionStorage(Protocol):
    """Key-value storage scoped to one session."""

    def get(self, key: str) -> Optional[str]:
        ...

    def put(self, key: str, value: str) -> None:
        ...

    def clear(self, key: str) -> None:
        ...


class InMemorySessionStorage:
    """Dict-backed `SessionStorage`."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        self._data[key] = value

    def clear(self, key: str) -> None:
        self._data.pop(key, None)


class RecentlyVisitedStore:
    """Bounded most-recent-first list of visited article ids."""

    def __init__(
        self,
        storage: SessionStorage | None = None,
        *,
        capacity: int = MAX_RECENT_ARTICLES,
        key: str = RECENTLY_VISITED_KEY,
    ) -> None:
        if int(capacity) < 0:
            raise ValueError("capacity must be >= 0")
        self.storage: SessionStorage = storage if storage is not None else InMemorySessionStorage()
        self.capacity = int(capacity)
        self.key = str(key)
        self._lock = Lock()

    def _read(self) -> List[str]:
        raw = self.storage.get(self.key)
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("Error reading recently visited articles: %s", exc)
            return []
        if not isinstance(parsed, list):
            logger.warning("Ignoring recently visited value of type %s", type(parsed).__name__)
            return []
        return [str(x) for x in parsed]

    def _write(self, ids: List[str]) -> bool:
        try:
            self.storage.put(self.key, json.dumps(ids))
        except Exception as exc:
            logger.warning("Error storing recently visited articles: %s", exc)
            return False
        return True

    def record_visit(self, item_id: str) -> List[str]:
        """Move `item_id` to the front, evicting the oldest ids past capacity.

        Returns the history as stored; when the write fails that is the
        history from before the visit.
        """
        if not isinstance(item_id, str) or item_id.strip() == "":
            raise InvalidInputError("item_id must be a non-empty string")

        with self._lock:
            recent = [x for x in self._read() if x != item_id]
            updated = [item_id, *recent][: self.capacity]
            if not self._write(updated):
                return self._stored()
            return list(updated)

    def _stored(self) -> List[str]:
        # Storage written by another writer may break the invariants; repair on read.
        seen: set[str] = set()
        out: List[str] = []
        for x in self._read():
            if x not in seen:
                seen.add(x)
                out.append(x)
        return out[: self.capacity]

    def list(self) -> List[str]:
        """Return visited ids, most recent first."""
        with self._lock:
            return self._stored()

    def clear(self) -> None:
        with self._lock:
            try:
                self.storage.clear(self.key)
            except Exception as exc:
                logger.warning("Error clearing recently visited articles: %s", exc)

    def __len__(self) -> int:
        return len(self.list())


class SessionRegistry:
    """Thread-safe map from session id to its `RecentlyVisitedStore`.

    Holds at most `max_sessions` sessions; creating one more drops the least
    recently used session and its history.
    """

    def __init__(self, *, capacity: int = MAX_RECENT_ARTICLES, max_sessions: int = MAX_SESSIONS) -> None:
        if int(max_sessions) < 1:
            raise ValueError("max_sessions must be >= 1")
        self.capacity = int(capacity)
        self.max_sessions = int(max_sessions)
        self._stores: "OrderedDict[str, RecentlyVisitedStore]" = OrderedDict()
        self._lock = Lock()

    def get(self, session_id: str) -> RecentlyVisitedStore:
        """Return the store for `session_id`, creating it on first use."""
        if not isinstance(session_id, str) or session_id.strip() == "":
            raise InvalidInputError("session_id must be a non-empty string")
        evicted: List[str] = []
        with self._lock:
            store = self._stores.get(session_id)
            if store is None:
                store = RecentlyVisitedStore(capacity=self.capacity)
                self._stores[session_id] = store
                while len(self._stores) > self.max_sessions:
                    oldest, _ = self._stores.popitem(last=False)
                    evicted.append(oldest)
            else:
                self._stores.move_to_end(session_id)
        if evicted:
            logger.info("Session registry full (max_sessions=%d); dropped %d idle session(s)", self.max_sessions, len(evicted))
        return store

    def peek(self, session_id: str) -> Optional[RecentlyVisitedStore]:
        """Return the store for `session_id` if it exists, marking it as used."""
        with self._lock:
            store = self._stores.get(session_id)
            if store is not None:
                self._stores.move_to_end(session_id)
            return store

    def discard(self, session_id: str) -> None:
        """End a session and drop its history."""
        with self._lock:
            store = self._stores.pop(session_id, None)
        if store is not None:
            store.clear()

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._stores

    def __len__(self) -> int:
        with self._lock:
            return len(self._stores)
