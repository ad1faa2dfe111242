"""
Per-request execution context and tool invocation de-duplication.
One context per request; never shared between requests.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Callable

import erp_agent as ea
from erp_agent.llm.signals import Usage

logger = logging.getLogger(__name__)

# Receives every Agent Event for the request, in sequence order.
EventCallback = Callable[[Any], Any]


@dataclass
class ExecutionContext:
    session_id: str
    user_id: str | None = None
    callback: EventCallback | None = None
    execution_id: str = field(default_factory=lambda: ea.common.create_id())
    enable_thinking: bool = False
    thinking_budget: int = 10000
    auto_approve: bool = False
    auto_approved_tools: set[str] | None = None
    # tool_use_id -> ISO timestamp of first sighting
    seen_tool_ids: dict[str, str] = field(default_factory=dict)
    # tool_use_id -> ToolOutcome
    tool_results: dict[str, Any] = field(default_factory=dict)
    tools_used: list[str] = field(default_factory=list)
    turn_count: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    started_at: float = field(default_factory=time.monotonic)
    # Awaitables returned by an async callback, delivered one at a time in sequence order
    pending_deliveries: deque = field(default_factory=deque, repr=False)
    delivery_task: asyncio.Task | None = field(default=None, repr=False)

    def add_usage(self, usage: Usage | None) -> None:
        if usage is None:
            return
        self.input_tokens += usage.input_tokens
        self.output_tokens += usage.output_tokens
        self.reasoning_tokens += usage.reasoning_tokens

    def token_usage(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "reasoning_tokens": self.reasoning_tokens,
        }

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


@dataclass(frozen=True)
class DuplicateCheck:
    is_duplicate: bool
    first_seen_at: str


def check_and_mark(ctx: ExecutionContext, tool_use_id: str) -> DuplicateCheck:
    """
    Record tool_use_id as seen. The first call reports is_duplicate=False;
    later calls report True with the original timestamp, which never changes.
    """
    first_seen_at = ctx.seen_tool_ids.get(tool_use_id)
    if first_seen_at is not None:
        logger.debug(f"Duplicate tool invocation {tool_use_id} (first seen {first_seen_at})")
        return DuplicateCheck(is_duplicate=True, first_seen_at=first_seen_at)
    now = datetime.now(UTC).isoformat()
    ctx.seen_tool_ids[tool_use_id] = now
    return DuplicateCheck(is_duplicate=False, first_seen_at=now)
