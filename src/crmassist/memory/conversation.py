"""Per-user conversation memory.

Bounded, append-only history of turns keyed by caller identity. Oldest turns
are dropped once a user exceeds ``max_turns``. Concurrent turns for the same
user are last-write-wins; history is advisory context only.
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime
from typing import Callable, Literal

from pydantic import BaseModel, Field


class ConversationTurn(BaseModel):
    """One message in a user's conversation."""

    role: Literal["user", "assistant"]
    content: str
    mode: Literal["COACH", "QUERY"] | None = None
    timestamp: datetime = Field(default_factory=datetime.now)


class ConversationMemory:
    """Thread-safe bounded history store with an injectable clock."""

    def __init__(self, max_turns: int = 10, clock: Callable[[], datetime] | None = None):
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self.max_turns = max_turns
        self.clock = clock or datetime.now
        self._turns: dict[str, deque[ConversationTurn]] = {}
        self._lock = threading.RLock()

    def append(self, user_id: str, turn: ConversationTurn) -> None:
        with self._lock:
            history = self._turns.get(user_id)
            if history is None:
                history = deque(maxlen=self.max_turns)
                self._turns[user_id] = history
            history.append(turn)

    def record(self, user_id: str, role: str, content: str, mode: str | None = None) -> ConversationTurn:
        """Build a turn stamped with the memory's clock and append it."""
        turn = ConversationTurn(role=role, content=content, mode=mode, timestamp=self.clock())
        self.append(user_id, turn)
        return turn

    def recent(self, user_id: str, n: int | None = None) -> list[ConversationTurn]:
        """Most recent ``n`` turns for ``user_id``, oldest first."""
        with self._lock:
            history = list(self._turns.get(user_id, ()))
        if n is None:
            return history
        if n <= 0:
            return []
        return history[-n:]

    def last_mode(self, user_id: str) -> str | None:
        """Mode of the most recent turn that carried one."""
        for turn in reversed(self.recent(user_id)):
            if turn.mode:
                return turn.mode
        return None

    def clear(self, user_id: str | None = None) -> None:
        with self._lock:
            if user_id is None:
                self._turns.clear()
            else:
                self._turns.pop(user_id, None)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(h) for h in self._turns.values())
