"""
Agent Events delivered to the live callback and, for pending events, to the durable log.

Every event carries a sequence number reserved for its session just before emission.
Pending events are appended to the durable log; transient events are live-only.
"""
from __future__ import annotations

from datetime import datetime, UTC
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

import erp_agent as ea


def _now() -> datetime:
    return datetime.now(UTC)


class CitedFile(BaseModel):
    file_id: str
    file_name: str | None = None
    source: Literal["attachment", "semantic_search", "citation"]
    score: float | None = None


class AgentEventBase(BaseModel):
    event_id: str = Field(default_factory=lambda: ea.common.create_id())
    session_id: str
    timestamp: datetime = Field(default_factory=_now)
    sequence_number: int | None = None
    correlation_id: str | None = None


class ToolUseEvent(AgentEventBase):
    type: Literal["tool_use"] = "tool_use"
    persistence_state: Literal["pending"] = "pending"
    tool_name: str
    tool_use_id: str
    args: dict[str, Any] = Field(default_factory=dict)


class ToolResultEvent(AgentEventBase):
    type: Literal["tool_result"] = "tool_result"
    persistence_state: Literal["pending"] = "pending"
    tool_name: str
    tool_use_id: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    success: bool
    error: str | None = None


class ThinkingChunkEvent(AgentEventBase):
    type: Literal["thinking_chunk"] = "thinking_chunk"
    persistence_state: Literal["transient"] = "transient"
    content: str
    block_index: int


class MessageChunkEvent(AgentEventBase):
    type: Literal["message_chunk"] = "message_chunk"
    persistence_state: Literal["transient"] = "transient"
    content: str
    block_index: int


class MessageEvent(AgentEventBase):
    type: Literal["message"] = "message"
    persistence_state: Literal["pending"] = "pending"
    message_id: str
    role: Literal["assistant"] = "assistant"
    content: str
    stop_reason: str | None = None
    citations: list[dict[str, Any]] | None = None


class TurnPausedEvent(AgentEventBase):
    type: Literal["turn_paused"] = "turn_paused"
    persistence_state: Literal["pending"] = "pending"
    message_id: str
    content: str
    reason: str


class ContentRefusedEvent(AgentEventBase):
    type: Literal["content_refused"] = "content_refused"
    persistence_state: Literal["pending"] = "pending"
    message_id: str
    content: str
    reason: str


class CompleteEvent(AgentEventBase):
    type: Literal["complete"] = "complete"
    persistence_state: Literal["transient"] = "transient"
    reason: Literal["success", "max_turns", "paused"]
    message_id: str | None = None
    stop_reason: str | None = None
    token_usage: dict[str, int] = Field(default_factory=dict)
    tools_used: list[str] = Field(default_factory=list)
    cited_files: list[CitedFile] | None = None


class ErrorEvent(AgentEventBase):
    type: Literal["error"] = "error"
    persistence_state: Literal["transient"] = "transient"
    error: str
    code: str = "agent_error"


AgentEvent = Annotated[
    Union[
        ToolUseEvent,
        ToolResultEvent,
        ThinkingChunkEvent,
        MessageChunkEvent,
        MessageEvent,
        TurnPausedEvent,
        ContentRefusedEvent,
        CompleteEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

agent_event_adapter: TypeAdapter = TypeAdapter(AgentEvent)


def event_payload(event: AgentEventBase) -> dict[str, Any]:
    """JSON-ready dict for transport or storage. Unset optional fields are omitted."""
    return event.model_dump(mode="json", exclude_none=True)


def parse_event(payload: dict[str, Any]) -> AgentEventBase:
    return agent_event_adapter.validate_python(payload)
