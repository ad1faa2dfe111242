"""
Translate litellm streaming chunks (OpenAI delta format) into StreamSignals.

litellm reports text in `delta.content`, reasoning in `delta.reasoning_content`
(Anthropic thinking, o-series), tool calls as indexed fragments in
`delta.tool_calls`, and usage on the last chunk when include_usage is set.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator

from .signals import (
    BlockDelta,
    BlockKind,
    BlockStart,
    BlockStop,
    DeltaKind,
    StreamEnd,
    StreamSignal,
    StreamStart,
    TurnDelta,
    Usage,
    parse_stop_reason,
)

logger = logging.getLogger(__name__)

__all__ = ["StreamTranslator", "translate_stream", "extract_usage"]


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def extract_usage(usage: Any) -> Usage | None:
    """Normalize a litellm/OpenAI/Anthropic usage object."""
    if not usage:
        return None
    input_tokens = _get(usage, "prompt_tokens") or _get(usage, "input_tokens") or 0
    output_tokens = _get(usage, "completion_tokens") or _get(usage, "output_tokens") or 0
    details = _get(usage, "completion_tokens_details")
    reasoning_tokens = _get(details, "reasoning_tokens") or 0
    prompt_details = _get(usage, "prompt_tokens_details")
    cache_read = _get(prompt_details, "cached_tokens") or _get(usage, "cache_read_input_tokens") or 0
    cache_write = _get(usage, "cache_creation_input_tokens") or 0
    return Usage(
        input_tokens=int(input_tokens),
        output_tokens=int(output_tokens),
        reasoning_tokens=int(reasoning_tokens),
        cache_read_tokens=int(cache_read),
        cache_write_tokens=int(cache_write),
    )


@dataclass
class _ToolTracker:
    tool_use_id: str | None = None
    name: str | None = None
    block_index: int | None = None
    pending_args: str = ""


class StreamTranslator:
    """
    Stateful translator for one streamed turn. Call feed() per chunk and
    finish() once the provider stream is exhausted.
    """

    def __init__(self):
        self._started = False
        self._next_index = 0
        self._open: tuple[BlockKind, int] | None = None
        self._tools: dict[int, _ToolTracker] = {}
        self._finish_reason: str | None = None
        self._usage: Usage | None = None

    def _allocate_index(self) -> int:
        index = self._next_index
        self._next_index += 1
        return index

    def _close_open(self) -> list[StreamSignal]:
        if self._open is None:
            return []
        _, index = self._open
        self._open = None
        return [BlockStop(index=index)]

    def _text_like(self, kind: BlockKind, delta_kind: DeltaKind, text: str) -> list[StreamSignal]:
        out: list[StreamSignal] = []
        if self._open is None or self._open[0] != kind:
            out.extend(self._close_open())
            index = self._allocate_index()
            self._open = (kind, index)
            out.append(BlockStart(index=index, kind=kind))
        out.append(BlockDelta(index=self._open[1], kind=delta_kind, text=text))
        return out

    def _signatures(self, delta: Any) -> list[StreamSignal]:
        blocks = _get(delta, "thinking_blocks") or []
        if self._open is None or self._open[0] != BlockKind.REASONING:
            return []
        out: list[StreamSignal] = []
        for b in blocks:
            signature = _get(b, "signature")
            if signature:
                out.append(BlockDelta(index=self._open[1], kind=DeltaKind.SIGNATURE, text=signature))
        return out

    def _tool_calls(self, tool_calls: list[Any]) -> list[StreamSignal]:
        out: list[StreamSignal] = []
        for tc in tool_calls:
            tc_index = _get(tc, "index")
            if tc_index is None:
                tc_index = len(self._tools)
            tracker = self._tools.setdefault(tc_index, _ToolTracker())
            tc_id = _get(tc, "id")
            if tc_id and not tracker.tool_use_id:
                tracker.tool_use_id = tc_id
            function = _get(tc, "function")
            name = _get(function, "name")
            if name and not tracker.name:
                tracker.name = name
            args = _get(function, "arguments") or ""

            if tracker.block_index is None and tracker.name:
                out.extend(self._close_open())
                tracker.block_index = self._allocate_index()
                out.append(BlockStart(
                    index=tracker.block_index,
                    kind=BlockKind.TOOL_INVOCATION,
                    tool_use_id=tracker.tool_use_id,
                    tool_name=tracker.name,
                ))
                if tracker.pending_args:
                    out.append(BlockDelta(
                        index=tracker.block_index, kind=DeltaKind.PARTIAL_JSON, text=tracker.pending_args
                    ))
                    tracker.pending_args = ""

            if args:
                if tracker.block_index is None:
                    # Name not seen yet; hold fragments until the block can start
                    tracker.pending_args += args
                else:
                    out.append(BlockDelta(index=tracker.block_index, kind=DeltaKind.PARTIAL_JSON, text=args))
        return out

    def feed(self, chunk: Any) -> list[StreamSignal]:
        out: list[StreamSignal] = []
        if not self._started:
            self._started = True
            out.append(StreamStart(
                message_id=_get(chunk, "id") or None,
                model=_get(chunk, "model"),
                usage=None,
            ))

        choices = _get(chunk, "choices") or []
        if choices:
            choice = choices[0]
            delta = _get(choice, "delta")
            if delta is not None:
                reasoning = (
                    _get(delta, "reasoning_content")
                    or _get(delta, "thinking")
                    or _get(delta, "reasoning")
                )
                if isinstance(reasoning, str) and reasoning:
                    out.extend(self._text_like(BlockKind.REASONING, DeltaKind.REASONING, reasoning))
                out.extend(self._signatures(delta))

                content = _get(delta, "content")
                if isinstance(content, str) and content:
                    out.extend(self._text_like(BlockKind.TEXT, DeltaKind.TEXT, content))

                tool_calls = _get(delta, "tool_calls")
                if tool_calls:
                    out.extend(self._tool_calls(tool_calls))

            finish_reason = _get(choice, "finish_reason")
            if finish_reason:
                self._finish_reason = finish_reason

        usage = extract_usage(_get(chunk, "usage"))
        if usage is not None:
            self._usage = usage
        return out

    def finish(self) -> list[StreamSignal]:
        out: list[StreamSignal] = []
        if not self._started:
            out.append(StreamStart(message_id=None))
            self._started = True
        out.extend(self._close_open())
        for tc_index, tracker in sorted(self._tools.items()):
            if tracker.block_index is None:
                logger.warning(f"Dropping tool call fragment {tc_index} without a tool name")
                continue
            out.append(BlockStop(index=tracker.block_index))
        out.append(TurnDelta(stop_reason=parse_stop_reason(self._finish_reason), usage=self._usage))
        out.append(StreamEnd())
        return out


async def translate_stream(chunks: AsyncIterator[Any]) -> AsyncIterator[StreamSignal]:
    """Async generator of StreamSignals for one litellm streaming response."""
    translator = StreamTranslator()
    async for chunk in chunks:
        for signal in translator.feed(chunk):
            yield signal
    for signal in translator.finish():
        yield signal
