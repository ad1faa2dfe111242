"""
Runs the tool invocations of one turn: de-duplicate, gate mutating tools on approval,
execute, then emit each tool_use immediately followed by its tool_result.
The batch's records go to the durable sink in one fire-and-forget call.
"""
from __future__ import annotations

import logging
from datetime import datetime, UTC

from .approval import ApprovalGate
from .blocks import ToolInvocationBlock
from .context import ExecutionContext, check_and_mark
from .events import ToolResultEvent, ToolUseEvent
from .persistence import ToolExecutionRecord
from .sequencing import SequencedEventEmitter
from .tool_registry import ToolCatalog, ToolOutcome

logger = logging.getLogger(__name__)

APPROVAL_DENIED_MESSAGE = "Operation cancelled by user - approval denied"


def _tool_auto_approved(
    catalog: ToolCatalog,
    tool_name: str,
    auto_approve: bool,
    auto_approved_tools: set[str] | None,
) -> bool:
    """True if this tool should run without asking the user."""
    if catalog.is_read_only_tool(tool_name):
        return True
    if auto_approve:
        return True
    if auto_approved_tools and tool_name in auto_approved_tools:
        return True
    return False


class ToolExecutionCoordinator:
    def __init__(
        self,
        catalog: ToolCatalog,
        emitter: SequencedEventEmitter,
        approval_gate: ApprovalGate,
    ):
        self.catalog = catalog
        self.emitter = emitter
        self.approval_gate = approval_gate

    async def _approved(self, invocation: ToolInvocationBlock, ctx: ExecutionContext) -> ToolOutcome | None:
        """None when the tool may run, otherwise the denial outcome."""
        if _tool_auto_approved(self.catalog, invocation.name, ctx.auto_approve, ctx.auto_approved_tools):
            return None
        try:
            approved = await self.approval_gate.request_approval(
                ctx.session_id, invocation.name, invocation.input
            )
        except Exception as e:
            logger.error(f"Approval gate failed for {invocation.name} ({invocation.tool_use_id}): {e}")
            return ToolOutcome(success=False, error=f"Error during approval: {e}")
        if not approved:
            logger.info(f"Tool {invocation.name} ({invocation.tool_use_id}) denied")
            return ToolOutcome(success=False, error=APPROVAL_DENIED_MESSAGE)
        return None

    async def _run(self, invocation: ToolInvocationBlock, ctx: ExecutionContext) -> ToolOutcome:
        denied = await self._approved(invocation, ctx)
        if denied is not None:
            return denied
        return await self.catalog.execute(invocation.name, ctx, invocation.input)

    async def process_executions(
        self,
        raw_executions: list[ToolInvocationBlock] | None,
        ctx: ExecutionContext,
    ) -> list[str]:
        """
        Execute this turn's tool invocations in order. Returns the names of the tools
        that produced a tool_use/tool_result pair; duplicates are skipped silently.
        """
        if not raw_executions:
            return []

        executed: list[str] = []
        records: list[ToolExecutionRecord] = []
        for invocation in raw_executions:
            if check_and_mark(ctx, invocation.tool_use_id).is_duplicate:
                continue

            outcome = await self._run(invocation, ctx)
            ctx.tool_results[invocation.tool_use_id] = outcome

            timestamp = datetime.now(UTC)
            batch = await self.emitter.reserve(ctx.session_id, 2)
            use_seq, result_seq = batch.sequences
            tool_use = ToolUseEvent(
                session_id=ctx.session_id,
                timestamp=timestamp,
                sequence_number=use_seq,
                correlation_id=invocation.tool_use_id,
                tool_name=invocation.name,
                tool_use_id=invocation.tool_use_id,
                args=invocation.input,
            )
            tool_result = ToolResultEvent(
                session_id=ctx.session_id,
                timestamp=timestamp,
                sequence_number=result_seq,
                correlation_id=invocation.tool_use_id,
                tool_name=invocation.name,
                tool_use_id=invocation.tool_use_id,
                args=invocation.input,
                result=outcome.result,
                success=outcome.success,
                error=outcome.error,
            )
            self.emitter.emit(ctx, tool_use)
            self.emitter.emit(ctx, tool_result)

            records.append(ToolExecutionRecord(
                execution_id=ctx.execution_id,
                session_id=ctx.session_id,
                tool_use_id=invocation.tool_use_id,
                tool_name=invocation.name,
                args=invocation.input,
                result=outcome.result,
                success=outcome.success,
                error=outcome.error,
                timestamp=timestamp,
                tool_use_sequence=use_seq,
                tool_result_sequence=result_seq,
            ))
            executed.append(invocation.name)
            ctx.tools_used.append(invocation.name)

        if records:
            self.emitter.background.spawn(
                self.emitter.sink.persist_tool_events(ctx.session_id, records),
                f"persist {len(records)} tool executions for session {ctx.session_id}",
            )
        return executed
