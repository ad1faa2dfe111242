"""
Reassembles a streamed turn into ordered content blocks.

Blocks are keyed by the provider's block index. Deltas for an index that was
never started (or already stopped) are logged and dropped.
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Union

from erp_agent.llm.signals import (
    BlockDelta,
    BlockKind,
    BlockStart,
    BlockStop,
    DeltaKind,
)

from .citations import CitationAccumulator

logger = logging.getLogger(__name__)


@dataclass
class TextBlock:
    index: int
    text: str = ""
    citations: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ReasoningBlock:
    index: int
    text: str = ""
    signature: str | None = None


@dataclass
class ToolInvocationBlock:
    index: int
    tool_use_id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    raw_input: str = ""


ContentBlock = Union[TextBlock, ReasoningBlock, ToolInvocationBlock]


def _fallback_tool_use_id() -> str:
    return f"toolu_fallback_{uuid.uuid4().hex[:24]}"


def _parse_tool_input(raw: str, block: ToolInvocationBlock) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON input for tool {block.name} ({block.tool_use_id}): {e}")
        return {}
    if not isinstance(parsed, dict):
        logger.warning(f"Tool {block.name} ({block.tool_use_id}) input is not an object; using empty input")
        return {}
    return parsed


class ContentBlockAccumulator:
    def __init__(self, citations: CitationAccumulator | None = None):
        self.citations = citations if citations is not None else CitationAccumulator()
        self._open: dict[int, ContentBlock] = {}
        self._done: dict[int, ContentBlock] = {}
        self._json: dict[int, list[str]] = {}

    def start_block(self, signal: BlockStart) -> ContentBlock | None:
        index = signal.index
        if index in self._open or index in self._done:
            logger.warning(f"Block {index} started twice; ignoring the second start")
            return None
        block: ContentBlock
        if signal.kind == BlockKind.TEXT:
            block = TextBlock(index=index)
        elif signal.kind == BlockKind.REASONING:
            block = ReasoningBlock(index=index)
        elif signal.kind == BlockKind.TOOL_INVOCATION:
            tool_use_id = signal.tool_use_id
            if not tool_use_id:
                tool_use_id = _fallback_tool_use_id()
                logger.warning(f"Tool block {index} ({signal.tool_name}) has no id; using {tool_use_id}")
            block = ToolInvocationBlock(index=index, tool_use_id=tool_use_id, name=signal.tool_name or "")
            self._json[index] = []
        else:
            logger.warning(f"Unknown block kind {signal.kind!r} at index {index}")
            return None
        self._open[index] = block
        return block

    def append_delta(self, signal: BlockDelta) -> ContentBlock | None:
        block = self._open.get(signal.index)
        if block is None:
            logger.warning(f"Dropping {signal.kind} delta for unknown block index {signal.index}")
            return None

        if signal.kind == DeltaKind.TEXT and isinstance(block, TextBlock):
            block.text += signal.text
        elif signal.kind == DeltaKind.CITATION and isinstance(block, TextBlock):
            if signal.citation:
                block.citations.append(signal.citation)
                self.citations.add(signal.index, signal.citation)
        elif signal.kind == DeltaKind.REASONING and isinstance(block, ReasoningBlock):
            block.text += signal.text
        elif signal.kind == DeltaKind.SIGNATURE and isinstance(block, ReasoningBlock):
            block.signature = (block.signature or "") + signal.text
        elif signal.kind == DeltaKind.PARTIAL_JSON and isinstance(block, ToolInvocationBlock):
            self._json[signal.index].append(signal.text)
        else:
            logger.warning(
                f"Dropping {signal.kind} delta that does not apply to {type(block).__name__} {signal.index}"
            )
            return None
        return block

    def complete_block(self, index: int) -> ContentBlock | None:
        block = self._open.pop(index, None)
        if block is None:
            logger.warning(f"Stop for unknown block index {index}")
            return None
        if isinstance(block, ToolInvocationBlock):
            block.raw_input = "".join(self._json.pop(index, []))
            block.input = _parse_tool_input(block.raw_input, block)
        self._done[index] = block
        return block

    def apply(self, signal: BlockStart | BlockDelta | BlockStop) -> ContentBlock | None:
        if isinstance(signal, BlockStart):
            return self.start_block(signal)
        if isinstance(signal, BlockDelta):
            return self.append_delta(signal)
        return self.complete_block(signal.index)

    def finalize(self) -> list[ContentBlock]:
        """Complete anything still open and return all blocks ordered by index."""
        for index in sorted(self._open):
            logger.warning(f"Block {index} was never stopped; completing at stream end")
            self.complete_block(index)
        return [self._done[i] for i in sorted(self._done)]


def text_of(blocks: list[ContentBlock]) -> str:
    return "".join(b.text for b in blocks if isinstance(b, TextBlock))


def tool_invocations(blocks: list[ContentBlock]) -> list[ToolInvocationBlock]:
    return [b for b in blocks if isinstance(b, ToolInvocationBlock)]
