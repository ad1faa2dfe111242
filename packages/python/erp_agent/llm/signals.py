"""
Stream signals produced by a language-model provider for one turn.

A turn is: StreamStart, then any number of BlockStart / BlockDelta / BlockStop
keyed by block index, then TurnDelta (stop reason + final usage), then StreamEnd.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

__all__ = [
    "BlockKind",
    "DeltaKind",
    "StopReason",
    "Usage",
    "StreamStart",
    "BlockStart",
    "BlockDelta",
    "BlockStop",
    "TurnDelta",
    "StreamEnd",
    "StreamSignal",
    "parse_stop_reason",
]


class BlockKind(str, Enum):
    TEXT = "text"
    REASONING = "reasoning"
    TOOL_INVOCATION = "tool_invocation"


class DeltaKind(str, Enum):
    TEXT = "text"
    REASONING = "reasoning"
    SIGNATURE = "signature"
    PARTIAL_JSON = "partial_json"
    CITATION = "citation"


class StopReason(str, Enum):
    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"
    PAUSE_TURN = "pause_turn"
    REFUSAL = "refusal"


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0


@dataclass
class StreamStart:
    message_id: str | None
    model: str | None = None
    usage: Usage | None = None


@dataclass
class BlockStart:
    index: int
    kind: BlockKind
    tool_use_id: str | None = None
    tool_name: str | None = None


@dataclass
class BlockDelta:
    index: int
    kind: DeltaKind
    text: str = ""
    citation: dict[str, Any] | None = None


@dataclass
class BlockStop:
    index: int


@dataclass
class TurnDelta:
    # Known values are StopReason members; anything else arrives as the raw string.
    stop_reason: StopReason | str | None
    usage: Usage | None = None


@dataclass
class StreamEnd:
    pass


StreamSignal = Union[StreamStart, BlockStart, BlockDelta, BlockStop, TurnDelta, StreamEnd]


def parse_stop_reason(raw: str | None) -> StopReason | str | None:
    """Map a provider finish reason onto StopReason; unknown values pass through as strings."""
    if raw is None:
        return None
    mapped = _FINISH_REASONS.get(raw)
    if mapped is not None:
        return mapped
    try:
        return StopReason(raw)
    except ValueError:
        return raw


# OpenAI-style finish reasons as reported by litellm
_FINISH_REASONS: dict[str, StopReason] = {
    "stop": StopReason.END_TURN,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "length": StopReason.MAX_TOKENS,
    "content_filter": StopReason.REFUSAL,
}
