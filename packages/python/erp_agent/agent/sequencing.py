"""
Per-session sequence numbers and the emitter that stamps and delivers Agent Events.

Sequence numbers start at 1 and are strictly increasing per session. A batch of
`count` numbers is reserved atomically, so a tool_use/tool_result pair reserved
together is always adjacent.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol

from pymongo import ReturnDocument

import erp_agent as ea

from .context import ExecutionContext
from .events import AgentEventBase, event_payload
from .persistence import BackgroundTasks, NullPersistenceSink, PersistenceSink

logger = logging.getLogger(__name__)

SEQUENCES_COLLECTION = "agent_sequences"


@dataclass(frozen=True)
class SequenceBatch:
    start_sequence: int
    sequences: list[int]


class SequenceReserver(Protocol):
    async def reserve(self, session_id: str, count: int) -> int:
        """Reserve `count` consecutive numbers; return the first."""
        ...


def _check_count(count: int) -> None:
    if count < 1:
        raise ValueError(f"Sequence reservation count must be positive, got {count}")


class InMemorySequenceReserver:
    def __init__(self):
        self._last: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def reserve(self, session_id: str, count: int) -> int:
        _check_count(count)
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            start = self._last.get(session_id, 0) + 1
            self._last[session_id] = start + count - 1
            return start


class MongoSequenceReserver:
    """Atomic $inc per reservation; safe across processes sharing the database."""

    def __init__(self, agent_client: Any):
        self.agent_client = agent_client

    async def reserve(self, session_id: str, count: int) -> int:
        _check_count(count)
        db = ea.common.get_async_db(self.agent_client)
        doc = await db[SEQUENCES_COLLECTION].find_one_and_update(
            {"_id": session_id},
            {"$inc": {"last": count}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return doc["last"] - count + 1


class SequencedEventEmitter:
    def __init__(
        self,
        reserver: SequenceReserver | None = None,
        sink: PersistenceSink | None = None,
        background: BackgroundTasks | None = None,
    ):
        self.reserver = reserver if reserver is not None else InMemorySequenceReserver()
        self.sink = sink if sink is not None else NullPersistenceSink()
        self.background = background if background is not None else BackgroundTasks()

    async def reserve(self, session_id: str, count: int) -> SequenceBatch:
        start = await self.reserver.reserve(session_id, count)
        return SequenceBatch(start_sequence=start, sequences=list(range(start, start + count)))

    def emit(self, ctx: ExecutionContext, event: AgentEventBase) -> None:
        """
        Deliver one event to the request's live callback. No-op without a callback.
        Callback failures are logged and do not propagate.

        A callback that returns an awaitable is awaited on one delivery task per
        context; events emitted meanwhile queue behind it, so a slow consumer still
        sees them in sequence order.
        """
        callback = ctx.callback
        if callback is None:
            return
        if event.sequence_number is None:
            logger.warning(f"Emitting {event.type} for session {event.session_id} without a sequence number")
        if ctx.delivery_task is not None and not ctx.delivery_task.done():
            ctx.pending_deliveries.append(event)
            return
        result = self._invoke(callback, event)
        if result is not None:
            ctx.delivery_task = self.background.spawn(
                self._deliver_in_order(ctx, result, event),
                f"event delivery for session {ctx.session_id}",
            )

    @staticmethod
    def _invoke(callback: Any, event: AgentEventBase) -> Awaitable[Any] | None:
        try:
            result = callback(event)
        except Exception as e:
            logger.error(f"Event callback failed for {event.type} (seq {event.sequence_number}): {e}")
            return None
        return result if inspect.isawaitable(result) else None

    async def _deliver_in_order(self, ctx: ExecutionContext, head: Awaitable[Any], event: AgentEventBase) -> None:
        while True:
            try:
                await head
            except Exception as e:
                logger.error(f"Event callback failed for {event.type} (seq {event.sequence_number}): {e}")
            head = None
            while head is None and ctx.pending_deliveries:
                event = ctx.pending_deliveries.popleft()
                head = self._invoke(ctx.callback, event)
            if head is None:
                return

    async def publish(self, ctx: ExecutionContext, event: AgentEventBase) -> AgentEventBase:
        """Reserve a sequence number, deliver the event, and log it durably when pending."""
        batch = await self.reserve(ctx.session_id, 1)
        event.sequence_number = batch.start_sequence
        self.emit(ctx, event)
        if event.persistence_state == "pending":
            self.background.spawn(
                self.sink.append_event(ctx.session_id, event_payload(event)),
                f"append {event.type} event for session {ctx.session_id}",
            )
        return event
