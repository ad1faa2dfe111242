"""
In-memory store of paused turns, keyed by session_id.
A turn the provider paused (pause_turn) can be resumed by a later request for the
same session until the entry expires.
"""
from __future__ import annotations

import logging
import time
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL_SEC = 3600


def _now() -> float:
    return time.monotonic()


class PausedTurnStore:
    def __init__(self, ttl_sec: int = DEFAULT_TTL_SEC):
        # session_id -> { "_created_at", "messages", "model", "file_context", ... }
        self._store: dict[str, dict[str, Any]] = {}
        self.ttl_sec = ttl_sec

    def set(self, session_id: str, state: dict[str, Any]) -> None:
        state["_created_at"] = _now()
        self._store[session_id] = state

    def get(self, session_id: str) -> dict[str, Any] | None:
        entry = self._store.get(session_id)
        if not entry:
            return None
        if _now() - entry["_created_at"] > self.ttl_sec:
            logger.info(f"Paused turn for session {session_id} expired")
            del self._store[session_id]
            return None
        return entry

    def pop(self, session_id: str) -> dict[str, Any] | None:
        entry = self.get(session_id)
        if entry is not None:
            self._store.pop(session_id, None)
        return entry
