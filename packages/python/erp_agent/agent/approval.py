"""
Human approval for mutating tools.
Keyed by approval_id; a request that is not resolved before the timeout is denied.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import Any, Callable, Protocol

import erp_agent as ea

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECS = 300.0


class ApprovalGate(Protocol):
    async def request_approval(self, session_id: str, tool_name: str, tool_input: dict[str, Any]) -> bool:
        ...


@dataclass
class PendingApproval:
    approval_id: str
    session_id: str
    tool_name: str
    tool_input: dict[str, Any]
    created_at: datetime
    expires_at: datetime
    future: asyncio.Future = field(repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "approval_id": self.approval_id,
            "session_id": self.session_id,
            "tool_name": self.tool_name,
            "tool_input": self.tool_input,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


class PendingApprovalGate:
    """
    Suspends the requesting tool until resolve() is called for its approval_id.
    on_request is told about each new approval so the transport can ask the user.
    """

    def __init__(
        self,
        timeout_secs: float = DEFAULT_TIMEOUT_SECS,
        on_request: Callable[[PendingApproval], Any] | None = None,
    ):
        self.timeout_secs = timeout_secs
        self.on_request = on_request
        self._pending: dict[str, PendingApproval] = {}

    async def request_approval(self, session_id: str, tool_name: str, tool_input: dict[str, Any]) -> bool:
        now = datetime.now(UTC)
        pending = PendingApproval(
            approval_id=ea.common.create_id(),
            session_id=session_id,
            tool_name=tool_name,
            tool_input=tool_input,
            created_at=now,
            expires_at=now + timedelta(seconds=self.timeout_secs),
            future=asyncio.get_running_loop().create_future(),
        )
        self._pending[pending.approval_id] = pending
        logger.info(f"Approval {pending.approval_id} requested for {tool_name} in session {session_id}")
        try:
            if self.on_request is not None:
                notified = self.on_request(pending)
                if inspect.isawaitable(notified):
                    await notified
            approved = await asyncio.wait_for(pending.future, timeout=self.timeout_secs)
        except asyncio.TimeoutError:
            logger.warning(f"Approval {pending.approval_id} for {tool_name} expired after {self.timeout_secs}s")
            return False
        except Exception as e:
            logger.error(f"Approval {pending.approval_id} for {tool_name} failed: {e}")
            return False
        finally:
            self._pending.pop(pending.approval_id, None)
        logger.info(f"Approval {pending.approval_id} for {tool_name}: {'approved' if approved else 'denied'}")
        return bool(approved)

    def resolve(self, approval_id: str, approved: bool) -> bool:
        """Answer a pending approval. Returns False if it is unknown, expired or already answered."""
        pending = self._pending.get(approval_id)
        if pending is None or pending.future.done():
            return False
        pending.future.set_result(approved)
        return True

    def pending_for_session(self, session_id: str) -> list[PendingApproval]:
        return [p for p in self._pending.values() if p.session_id == session_id]

    def deny_all(self, session_id: str) -> int:
        """Deny every outstanding approval for a session (e.g. the client disconnected)."""
        denied = 0
        for p in self.pending_for_session(session_id):
            if self.resolve(p.approval_id, False):
                denied += 1
        return denied


class StaticApprovalGate:
    """Answers every request the same way. For headless runs."""

    def __init__(self, approve: bool):
        self.approve = approve

    async def request_approval(self, session_id: str, tool_name: str, tool_input: dict[str, Any]) -> bool:
        return self.approve
