"""
MongoDB durable sink for agent sessions.
Tool executions go to agent_tool_executions (one insert_many per batch);
pending events go to agent_events with their sequence number.
"""
from __future__ import annotations

import logging
from datetime import datetime, UTC
from typing import Any

import erp_agent as ea

from .persistence import ToolExecutionRecord

logger = logging.getLogger(__name__)

TOOL_EXECUTIONS_COLLECTION = "agent_tool_executions"
EVENTS_COLLECTION = "agent_events"


class MongoPersistenceSink:
    def __init__(self, agent_client: Any):
        self.agent_client = agent_client

    def _db(self):
        return ea.common.get_async_db(self.agent_client)

    async def persist_tool_events(self, session_id: str, records: list[ToolExecutionRecord]) -> None:
        if not records:
            return
        now = datetime.now(UTC)
        docs = [{**r.to_doc(), "created_at": now} for r in records]
        await self._db()[TOOL_EXECUTIONS_COLLECTION].insert_many(docs, ordered=True)
        logger.debug(f"Persisted {len(docs)} tool executions for session {session_id}")

    async def append_event(self, session_id: str, event: dict[str, Any]) -> None:
        doc = {
            "session_id": session_id,
            "event_id": event.get("event_id"),
            "type": event.get("type"),
            "sequence_number": event.get("sequence_number"),
            "payload": event,
            "created_at": datetime.now(UTC),
        }
        await self._db()[EVENTS_COLLECTION].insert_one(doc)

    async def list_events(
        self,
        session_id: str,
        after_sequence: int = 0,
        limit: int = 500,
    ) -> list[dict]:
        """
        Durable events for a session with sequence_number > after_sequence, in sequence order.
        Used by reconnecting clients to catch up.
        """
        coll = self._db()[EVENTS_COLLECTION]
        cursor = coll.find(
            {"session_id": session_id, "sequence_number": {"$gt": after_sequence}},
            projection={"payload": 1},
        ).sort("sequence_number", 1).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [d["payload"] for d in docs]

    async def ensure_indexes(self) -> None:
        db = self._db()
        await db[EVENTS_COLLECTION].create_index(
            [("session_id", 1), ("sequence_number", 1)], unique=True
        )
        await db[TOOL_EXECUTIONS_COLLECTION].create_index([("session_id", 1), ("tool_use_id", 1)])
