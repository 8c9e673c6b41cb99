from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass
class SessionEntry:
    session_id: str
    created_at: float
    last_used: float


class SessionStore:
    """Map caller session keys (the OpenAI ``user`` field) to CLI session ids.

    The CLI only accepts UUIDs for ``--session-id``, so arbitrary caller keys
    get a stable UUID4 that is reused until the key sits idle for ``ttl_s``.
    """

    def __init__(self, ttl_s: float = 3600, clock: Callable[[], float] = time.time):
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: Dict[str, SessionEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, entry: SessionEntry, now: float) -> bool:
        return self.ttl_s > 0 and now - entry.last_used > self.ttl_s

    def resolve(self, key: Optional[str]) -> Optional[str]:
        if not key:
            return None
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._expired(entry, now):
                entry = SessionEntry(
                    session_id=str(uuid.uuid4()), created_at=now, last_used=now
                )
                self._entries[key] = entry
            else:
                entry.last_used = now
            return entry.session_id

    def forget(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def cleanup(self) -> int:
        """Drop idle sessions; returns how many were removed."""

        now = self._clock()
        with self._lock:
            stale = [k for k, e in self._entries.items() if self._expired(e, now)]
            for key in stale:
                del self._entries[key]
        return len(stale)
