"""
Durable sink contract and the fire-and-forget runner used to call it.
Persistence failures are logged and never reach the live event stream.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Protocol

logger = logging.getLogger(__name__)


@dataclass
class ToolExecutionRecord:
    execution_id: str
    session_id: str
    tool_use_id: str
    tool_name: str
    args: dict[str, Any]
    result: Any
    success: bool
    error: str | None
    timestamp: datetime
    tool_use_sequence: int
    tool_result_sequence: int

    def to_doc(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "session_id": self.session_id,
            "tool_use_id": self.tool_use_id,
            "tool_name": self.tool_name,
            "args": self.args,
            "result": self.result,
            "success": self.success,
            "error": self.error,
            "timestamp": self.timestamp,
            "tool_use_sequence": self.tool_use_sequence,
            "tool_result_sequence": self.tool_result_sequence,
        }


class PersistenceSink(Protocol):
    async def persist_tool_events(self, session_id: str, records: list[ToolExecutionRecord]) -> None:
        ...

    async def append_event(self, session_id: str, event: dict[str, Any]) -> None:
        ...


class NullPersistenceSink:
    """Sink for deployments without a durable store."""

    async def persist_tool_events(self, session_id: str, records: list[ToolExecutionRecord]) -> None:
        return None

    async def append_event(self, session_id: str, event: dict[str, Any]) -> None:
        return None


@dataclass
class InMemoryPersistenceSink:
    """Process-local sink; durable events are kept ordered by sequence number."""

    tool_batches: list[list[ToolExecutionRecord]] = field(default_factory=list)
    events: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    async def persist_tool_events(self, session_id: str, records: list[ToolExecutionRecord]) -> None:
        self.tool_batches.append(list(records))

    async def append_event(self, session_id: str, event: dict[str, Any]) -> None:
        self.events.setdefault(session_id, []).append(event)

    async def list_events(self, session_id: str, after_sequence: int = 0) -> list[dict[str, Any]]:
        events = [
            e for e in self.events.get(session_id, [])
            if (e.get("sequence_number") or 0) > after_sequence
        ]
        return sorted(events, key=lambda e: e.get("sequence_number") or 0)


class BackgroundTasks:
    """
    Runs coroutines without awaiting them. Failures are logged. Strong references are
    held until each task finishes so the event loop does not drop them.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable[Any], description: str) -> asyncio.Task:
        task = asyncio.create_task(self._guard(coro, description))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _guard(coro: Awaitable[Any], description: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Background {description} failed: {e}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every spawned task; used at shutdown and in tests."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
