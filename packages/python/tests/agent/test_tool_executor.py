"""Tests for the tool execution coordinator."""
import pytest
from unittest.mock import AsyncMock, MagicMock

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from erp_agent.agent.approval import StaticApprovalGate
from erp_agent.agent.blocks import ToolInvocationBlock
from erp_agent.agent.context import ExecutionContext
from erp_agent.agent.persistence import InMemoryPersistenceSink
from erp_agent.agent.tool_executor import APPROVAL_DENIED_MESSAGE, ToolExecutionCoordinator
from fakes import make_catalog, make_emitter, of_type


def invocation(tool_use_id, name, tool_input=None, index=0):
    return ToolInvocationBlock(index=index, tool_use_id=tool_use_id, name=name, input=tool_input or {})


@pytest.fixture
def events():
    return []


@pytest.fixture
def ctx(events):
    return ExecutionContext(session_id="s1", user_id="u1", callback=events.append)


def make_coordinator(gate=None, sink=None):
    emitter = make_emitter(sink)
    return ToolExecutionCoordinator(make_catalog(), emitter, gate or StaticApprovalGate(True)), emitter


@pytest.mark.asyncio
async def test_two_read_only_tools_emit_adjacent_pairs(ctx, events):
    sink = MagicMock()
    sink.persist_tool_events = AsyncMock()
    coordinator, emitter = make_coordinator(sink=sink)

    names = await coordinator.process_executions(
        [invocation("A", "list_customers", {"limit": 1}), invocation("B", "list_customers", index=1)],
        ctx,
    )
    await emitter.background.drain()

    assert names == ["list_customers", "list_customers"]
    assert [(e.type, e.tool_use_id) for e in events] == [
        ("tool_use", "A"), ("tool_result", "A"), ("tool_use", "B"), ("tool_result", "B"),
    ]
    seqs = [e.sequence_number for e in events]
    assert seqs[1] == seqs[0] + 1 and seqs[3] == seqs[2] + 1
    assert seqs == sorted(seqs)
    assert events[0].timestamp == events[1].timestamp
    assert events[2].timestamp == events[3].timestamp
    assert events[1].success is True
    assert events[1].args == {"limit": 1}
    sink.persist_tool_events.assert_awaited_once()
    session_id, records = sink.persist_tool_events.call_args.args
    assert session_id == "s1"
    assert [r.tool_use_id for r in records] == ["A", "B"]
    assert records[0].tool_use_sequence == seqs[0]
    assert records[0].tool_result_sequence == seqs[1]


@pytest.mark.asyncio
async def test_duplicate_invocation_is_skipped(ctx, events):
    coordinator, _ = make_coordinator()
    await coordinator.process_executions([invocation("A", "list_customers")], ctx)
    first_seen = ctx.seen_tool_ids["A"]

    names = await coordinator.process_executions([invocation("A", "list_customers")], ctx)

    assert names == []
    assert len(of_type(events, "tool_use")) == 1
    assert ctx.seen_tool_ids["A"] == first_seen


@pytest.mark.asyncio
async def test_repeat_within_one_batch_runs_once(ctx, events):
    coordinator, _ = make_coordinator()
    names = await coordinator.process_executions(
        [invocation("A", "list_customers"), invocation("A", "list_customers", index=1)], ctx
    )
    assert names == ["list_customers"]
    assert len(events) == 2


@pytest.mark.asyncio
async def test_empty_input(ctx, events):
    sink = MagicMock()
    sink.persist_tool_events = AsyncMock()
    coordinator, emitter = make_coordinator(sink=sink)
    assert await coordinator.process_executions([], ctx) == []
    assert await coordinator.process_executions(None, ctx) == []
    await emitter.background.drain()
    assert events == []
    sink.persist_tool_events.assert_not_called()


@pytest.mark.asyncio
async def test_callback_failure_does_not_stop_batch():
    callback = MagicMock(side_effect=[RuntimeError("boom"), None, None, None])
    ctx = ExecutionContext(session_id="s1", callback=callback)
    coordinator, _ = make_coordinator()
    names = await coordinator.process_executions(
        [invocation("A", "list_customers"), invocation("B", "list_customers", index=1)], ctx
    )
    assert names == ["list_customers", "list_customers"]
    assert callback.call_count == 4


@pytest.mark.asyncio
async def test_tool_failure_becomes_failed_result(ctx, events):
    coordinator, _ = make_coordinator()
    names = await coordinator.process_executions([invocation("A", "get_ledger")], ctx)
    assert names == ["get_ledger"]
    result = of_type(events, "tool_result")[0]
    assert result.success is False
    assert result.error == "ledger service unavailable"
    assert ctx.tool_results["A"].success is False


@pytest.mark.asyncio
async def test_denied_mutating_tool_is_not_run(ctx, events):
    gate = MagicMock()
    gate.request_approval = AsyncMock(return_value=False)
    coordinator, _ = make_coordinator(gate=gate)
    handler = AsyncMock()
    coordinator.catalog.register("create_invoice", handler)

    await coordinator.process_executions([invocation("A", "create_invoice", {"customer_id": "C1"})], ctx)

    gate.request_approval.assert_awaited_once_with("s1", "create_invoice", {"customer_id": "C1"})
    handler.assert_not_called()
    result = of_type(events, "tool_result")[0]
    assert result.success is False
    assert result.error == APPROVAL_DENIED_MESSAGE


@pytest.mark.asyncio
async def test_gate_error_counts_as_denial(ctx, events):
    gate = MagicMock()
    gate.request_approval = AsyncMock(side_effect=RuntimeError("approval service down"))
    coordinator, _ = make_coordinator(gate=gate)
    await coordinator.process_executions([invocation("A", "create_invoice")], ctx)
    result = of_type(events, "tool_result")[0]
    assert result.success is False
    assert "Error during approval" in result.error


@pytest.mark.asyncio
async def test_approved_mutating_tool_runs(ctx, events):
    coordinator, _ = make_coordinator(gate=StaticApprovalGate(True))
    await coordinator.process_executions([invocation("A", "create_invoice", {"customer_id": "C1"})], ctx)
    result = of_type(events, "tool_result")[0]
    assert result.success is True
    assert result.result == {"invoice_id": "INV-1", "customer_id": "C1"}


@pytest.mark.asyncio
async def test_read_only_and_auto_approved_tools_skip_gate(events):
    gate = MagicMock()
    gate.request_approval = AsyncMock(return_value=False)
    coordinator, _ = make_coordinator(gate=gate)

    ctx = ExecutionContext(session_id="s1", callback=events.append, auto_approved_tools={"create_invoice"})
    await coordinator.process_executions(
        [invocation("A", "list_customers"), invocation("B", "create_invoice", index=1)], ctx
    )
    ctx2 = ExecutionContext(session_id="s1", callback=events.append, auto_approve=True)
    await coordinator.process_executions([invocation("C", "create_invoice")], ctx2)

    gate.request_approval.assert_not_called()
    assert all(e.success for e in of_type(events, "tool_result"))


@pytest.mark.asyncio
async def test_persistence_failure_is_contained(ctx, events):
    sink = MagicMock()
    sink.persist_tool_events = AsyncMock(side_effect=RuntimeError("db down"))
    coordinator, emitter = make_coordinator(sink=sink)
    names = await coordinator.process_executions([invocation("A", "list_customers")], ctx)
    await emitter.background.drain()
    assert names == ["list_customers"]
    assert len(events) == 2


@pytest.mark.asyncio
async def test_records_reach_in_memory_sink(ctx):
    sink = InMemoryPersistenceSink()
    coordinator, emitter = make_coordinator(sink=sink)
    await coordinator.process_executions([invocation("A", "list_customers")], ctx)
    await emitter.background.drain()
    assert len(sink.tool_batches) == 1
    assert sink.tool_batches[0][0].execution_id == ctx.execution_id
