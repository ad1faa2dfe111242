"""
Language-model provider seam for the turn loop.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol

from .llm import agent_completion_stream, apply_prompt_caching, build_thinking_param
from .signals import StreamSignal
from .stream import translate_stream

logger = logging.getLogger(__name__)

__all__ = ["ProviderRequest", "LLMProvider", "LiteLLMProvider"]


@dataclass
class ProviderRequest:
    model: str
    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]] = field(default_factory=list)
    max_tokens: int | None = None
    enable_thinking: bool = False
    thinking_budget: int = 10000


class LLMProvider(Protocol):
    async def open_stream(self, request: ProviderRequest) -> AsyncIterator[StreamSignal]:
        """
        Open one streamed turn. Raising here is a stream setup failure;
        raising while iterating is a mid-stream failure.
        """
        ...


class LiteLLMProvider:
    def __init__(self, api_key: str | None = None, prompt_caching: bool = True):
        self.api_key = api_key
        self.prompt_caching = prompt_caching

    async def open_stream(self, request: ProviderRequest) -> AsyncIterator[StreamSignal]:
        messages = request.messages
        if self.prompt_caching:
            messages = apply_prompt_caching(messages)
        thinking = build_thinking_param(request.model, request.enable_thinking, request.thinking_budget)
        logger.debug(
            f"Opening stream model={request.model} messages={len(messages)} "
            f"tools={len(request.tools)} thinking={thinking is not None}"
        )
        response = await agent_completion_stream(
            model=request.model,
            messages=messages,
            api_key=self.api_key,
            max_tokens=request.max_tokens,
            tools=request.tools or None,
            thinking=thinking,
        )
        return translate_stream(response)
