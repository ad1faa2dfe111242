"""
Records which context files an assistant message used: files the user attached
("direct") and files the response cited ("citation"). A file is recorded once
per message; a cited attachment only counts as direct.
"""
from __future__ import annotations

import logging
from datetime import datetime, UTC
from typing import Any, Literal, Protocol

import erp_agent as ea

from .file_context import FileContext

logger = logging.getLogger(__name__)

FILE_USAGE_COLLECTION = "message_file_attachments"

UsageType = Literal["direct", "citation"]


class FileUsageRecorder(Protocol):
    async def record_usage(
        self, session_id: str, message_id: str, file_ids: list[str], usage_type: UsageType
    ) -> None:
        ...


def usage_batches(file_context: FileContext, matched_file_ids: list[str]) -> list[tuple[UsageType, list[str]]]:
    direct = [f.file_id for f in file_context.files] if file_context.source == "attachment" else []
    cited = [file_id for file_id in matched_file_ids if file_id not in direct]
    batches: list[tuple[UsageType, list[str]]] = []
    if direct:
        batches.append(("direct", direct))
    if cited:
        batches.append(("citation", cited))
    return batches


async def record_file_usage(
    recorder: FileUsageRecorder,
    session_id: str,
    message_id: str,
    file_context: FileContext,
    matched_file_ids: list[str],
) -> None:
    for usage_type, file_ids in usage_batches(file_context, matched_file_ids):
        await recorder.record_usage(session_id, message_id, file_ids, usage_type)


class MongoFileUsageRecorder:
    def __init__(self, agent_client: Any):
        self.agent_client = agent_client

    async def record_usage(
        self, session_id: str, message_id: str, file_ids: list[str], usage_type: UsageType
    ) -> None:
        if not file_ids:
            return
        now = datetime.now(UTC)
        docs = [
            {
                "session_id": session_id,
                "message_id": message_id,
                "file_id": file_id,
                "usage_type": usage_type,
                "created_at": now,
            }
            for file_id in file_ids
        ]
        db = ea.common.get_async_db(self.agent_client)
        await db[FILE_USAGE_COLLECTION].insert_many(docs, ordered=False)
        logger.debug(f"Recorded {len(docs)} {usage_type} file uses for message {message_id}")
