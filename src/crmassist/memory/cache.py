"""Answer cache keyed by caller, role and normalised question.

Entries expire a fixed time after insertion; reads never refresh them. When
the cache is full the oldest insertion is evicted first.
"""

from __future__ import annotations

import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

_WHITESPACE = re.compile(r"\s+")


def normalize_question(question: str) -> str:
    """Lowercase, collapse whitespace and drop trailing punctuation."""
    return _WHITESPACE.sub(" ", (question or "").strip().lower()).rstrip("?!. ")


@dataclass
class CachedAnswer:
    value: Any
    inserted_at: float


class AnswerCache:
    """TTL and size bounded map with hit/miss counters.

    Args:
        ttl_seconds: Lifetime of an entry after insertion
        max_size: Maximum number of entries kept
        clock: Monotonic seconds source, injectable for tests
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_size: int = 500,
        clock: Callable[[], float] | None = None,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self.clock = clock or time.monotonic
        self._entries: OrderedDict[tuple[str, str, str], CachedAnswer] = OrderedDict()
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(user_id: str, role: str, question: str) -> tuple[str, str, str]:
        return (user_id, role, normalize_question(question))

    def get(self, user_id: str, role: str, question: str) -> Any | None:
        key = self.key(user_id, role, question)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self.clock() - entry.inserted_at >= self.ttl_seconds:
                del self._entries[key]
                entry = None
            if entry is None:
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def put(self, user_id: str, role: str, question: str, value: Any) -> None:
        key = self.key(user_id, role, question)
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = CachedAnswer(value=value, inserted_at=self.clock())
            self._purge_expired()
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def _purge_expired(self) -> None:
        now = self.clock()
        expired = [k for k, e in self._entries.items() if now - e.inserted_at >= self.ttl_seconds]
        for k in expired:
            del self._entries[k]

    def invalidate_user(self, user_id: str) -> int:
        """Drop every entry for ``user_id``; returns how many were removed."""
        with self._lock:
            keys = [k for k in self._entries if k[0] == user_id]
            for k in keys:
                del self._entries[k]
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self.hits + self.misses
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / total, 3) if total else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
