"""Tests for reassembling streamed content blocks."""
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from erp_agent.agent.blocks import (
    ContentBlockAccumulator,
    ReasoningBlock,
    TextBlock,
    ToolInvocationBlock,
    text_of,
    tool_invocations,
)
from erp_agent.llm.signals import BlockDelta, BlockKind, BlockStart, BlockStop, DeltaKind


def test_text_deltas_concatenate_in_order():
    acc = ContentBlockAccumulator()
    acc.apply(BlockStart(index=0, kind=BlockKind.TEXT))
    for part in ["Open ", "invoices: ", "3"]:
        acc.apply(BlockDelta(index=0, kind=DeltaKind.TEXT, text=part))
    acc.apply(BlockStop(index=0))
    blocks = acc.finalize()
    assert len(blocks) == 1
    assert isinstance(blocks[0], TextBlock)
    assert blocks[0].text == "Open invoices: 3"


def test_tool_input_parsed_from_partial_json():
    acc = ContentBlockAccumulator()
    acc.apply(BlockStart(index=0, kind=BlockKind.TOOL_INVOCATION, tool_use_id="toolu_1", tool_name="create_invoice"))
    acc.apply(BlockDelta(index=0, kind=DeltaKind.PARTIAL_JSON, text='{"customer_id": "C'))
    acc.apply(BlockDelta(index=0, kind=DeltaKind.PARTIAL_JSON, text='1", "amount": 12.5}'))
    block = acc.complete_block(0)
    assert isinstance(block, ToolInvocationBlock)
    assert block.input == {"customer_id": "C1", "amount": 12.5}
    assert block.raw_input == '{"customer_id": "C1", "amount": 12.5}'


def test_invalid_tool_json_yields_empty_input():
    acc = ContentBlockAccumulator()
    acc.apply(BlockStart(index=0, kind=BlockKind.TOOL_INVOCATION, tool_use_id="toolu_1", tool_name="x"))
    acc.apply(BlockDelta(index=0, kind=DeltaKind.PARTIAL_JSON, text='{"broken": '))
    block = acc.complete_block(0)
    assert block.input == {}
    assert block.raw_input == '{"broken": '


def test_missing_tool_id_gets_fallback():
    acc = ContentBlockAccumulator()
    acc.apply(BlockStart(index=0, kind=BlockKind.TOOL_INVOCATION, tool_use_id=None, tool_name="list_customers"))
    acc.apply(BlockStart(index=1, kind=BlockKind.TOOL_INVOCATION, tool_use_id="", tool_name="list_customers"))
    acc.apply(BlockStop(index=0))
    acc.apply(BlockStop(index=1))
    first, second = acc.finalize()
    assert first.tool_use_id.startswith("toolu_fallback_")
    assert second.tool_use_id.startswith("toolu_fallback_")
    assert first.tool_use_id != second.tool_use_id


def test_delta_for_unknown_index_is_dropped():
    acc = ContentBlockAccumulator()
    acc.apply(BlockStart(index=0, kind=BlockKind.TEXT))
    assert acc.apply(BlockDelta(index=7, kind=DeltaKind.TEXT, text="stray")) is None
    acc.apply(BlockDelta(index=0, kind=DeltaKind.TEXT, text="kept"))
    acc.apply(BlockStop(index=0))
    assert text_of(acc.finalize()) == "kept"


def test_delta_after_stop_is_dropped():
    acc = ContentBlockAccumulator()
    acc.apply(BlockStart(index=0, kind=BlockKind.TEXT))
    acc.apply(BlockDelta(index=0, kind=DeltaKind.TEXT, text="done"))
    acc.apply(BlockStop(index=0))
    acc.apply(BlockDelta(index=0, kind=DeltaKind.TEXT, text=" late"))
    assert text_of(acc.finalize()) == "done"


def test_mismatched_delta_kind_is_dropped():
    acc = ContentBlockAccumulator()
    acc.apply(BlockStart(index=0, kind=BlockKind.TEXT))
    assert acc.apply(BlockDelta(index=0, kind=DeltaKind.PARTIAL_JSON, text="{}")) is None


def test_finalize_orders_by_index_and_closes_open_blocks():
    acc = ContentBlockAccumulator()
    acc.apply(BlockStart(index=2, kind=BlockKind.TOOL_INVOCATION, tool_use_id="toolu_2", tool_name="list_customers"))
    acc.apply(BlockStart(index=0, kind=BlockKind.REASONING))
    acc.apply(BlockDelta(index=0, kind=DeltaKind.REASONING, text="thinking"))
    acc.apply(BlockDelta(index=0, kind=DeltaKind.SIGNATURE, text="sig"))
    acc.apply(BlockStop(index=0))
    acc.apply(BlockStart(index=1, kind=BlockKind.TEXT))
    acc.apply(BlockDelta(index=1, kind=DeltaKind.TEXT, text="answer"))
    # index 1 and 2 never stopped
    blocks = acc.finalize()
    assert [b.index for b in blocks] == [0, 1, 2]
    assert isinstance(blocks[0], ReasoningBlock)
    assert blocks[0].signature == "sig"
    assert [b.tool_use_id for b in tool_invocations(blocks)] == ["toolu_2"]


def test_duplicate_start_keeps_first_block():
    acc = ContentBlockAccumulator()
    acc.apply(BlockStart(index=0, kind=BlockKind.TEXT))
    acc.apply(BlockDelta(index=0, kind=DeltaKind.TEXT, text="a"))
    assert acc.apply(BlockStart(index=0, kind=BlockKind.REASONING)) is None
    acc.apply(BlockStop(index=0))
    assert isinstance(acc.finalize()[0], TextBlock)


def test_citation_deltas_feed_citation_accumulator():
    acc = ContentBlockAccumulator()
    acc.apply(BlockStart(index=0, kind=BlockKind.TEXT))
    citation = {"type": "char_location", "document_title": "q3_report.pdf", "cited_text": "Revenue"}
    acc.apply(BlockDelta(index=0, kind=DeltaKind.CITATION, citation=citation))
    acc.apply(BlockStop(index=0))
    block = acc.finalize()[0]
    assert block.citations == [citation]
    assert acc.citations.for_block(0) == [citation]
    assert acc.citations.references() == ["q3_report.pdf"]
