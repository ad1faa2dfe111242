"""Tests for the litellm streaming provider (litellm is mocked)."""
from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, patch

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from erp_agent.llm.llm import (
    apply_prompt_caching,
    build_thinking_param,
    get_temperature,
    is_retryable_error,
)
from erp_agent.llm.provider import LiteLLMProvider, ProviderRequest
from erp_agent.llm.signals import StopReason, StreamEnd, StreamStart, TurnDelta


def test_is_retryable_error():
    assert is_retryable_error(Exception("503 Service Unavailable"))
    assert is_retryable_error(Exception("Anthropic model is overloaded"))
    assert is_retryable_error(Exception("Rate limit exceeded"))
    assert not is_retryable_error(Exception("invalid api key"))
    assert not is_retryable_error("503")


def test_get_temperature():
    assert get_temperature("claude-sonnet-4-20250514") == 0.1
    assert get_temperature("claude-sonnet-4-20250514", thinking_enabled=True) == 1.0
    assert get_temperature("o3-mini") == 1.0
    assert get_temperature("gpt-4o") == 0.1
    assert get_temperature("gemini/gemini-2.0-flash") == 1.0


def test_build_thinking_param():
    assert build_thinking_param("claude-sonnet-4-20250514", False, 4096) is None
    with patch("erp_agent.llm.llm.litellm.supports_reasoning", return_value=True):
        assert build_thinking_param("claude-sonnet-4-20250514", True, 4096) == {
            "type": "enabled", "budget_tokens": 4096
        }
    with patch("erp_agent.llm.llm.litellm.supports_reasoning", return_value=False):
        assert build_thinking_param("gpt-4o", True, 4096) is None
    with patch("erp_agent.llm.llm.litellm.supports_reasoning", side_effect=Exception("unknown model")):
        assert build_thinking_param("my-custom-model", True, 100) == {"type": "enabled", "budget_tokens": 100}


def test_apply_prompt_caching_marks_system_message_only():
    messages = [{"role": "system", "content": "You are an ERP assistant."}, {"role": "user", "content": "hi"}]
    cached = apply_prompt_caching(messages)
    assert cached[0]["content"][0]["cache_control"] == {"type": "ephemeral"}
    assert cached[0]["content"][0]["text"] == "You are an ERP assistant."
    assert cached[1] == messages[1]
    assert messages[0]["content"] == "You are an ERP assistant."


async def _chunks():
    yield SimpleNamespace(
        id="chatcmpl-9",
        model="claude-sonnet-4-20250514",
        usage=None,
        choices=[SimpleNamespace(delta=SimpleNamespace(content="Hello"), finish_reason=None)],
    )
    yield SimpleNamespace(
        id="chatcmpl-9",
        model="claude-sonnet-4-20250514",
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3),
        choices=[SimpleNamespace(delta=SimpleNamespace(), finish_reason="stop")],
    )


@pytest.mark.asyncio
async def test_litellm_provider_streams_signals():
    with patch("erp_agent.llm.llm.litellm.acompletion", new_callable=AsyncMock) as acompletion:
        acompletion.return_value = _chunks()
        provider = LiteLLMProvider(api_key="test-key")
        request = ProviderRequest(
            model="claude-sonnet-4-20250514",
            messages=[{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}],
            tools=[{"type": "function", "function": {"name": "list_customers", "parameters": {}}}],
            max_tokens=1000,
        )
        stream = await provider.open_stream(request)
        signals = [s async for s in stream]

    kwargs = acompletion.call_args.kwargs
    assert kwargs["stream"] is True
    assert kwargs["stream_options"] == {"include_usage": True}
    assert kwargs["api_key"] == "test-key"
    assert kwargs["tool_choice"] == "auto"
    assert kwargs["max_tokens"] == 1000
    assert "thinking" not in kwargs
    assert kwargs["messages"][0]["content"][0]["cache_control"] == {"type": "ephemeral"}

    assert isinstance(signals[0], StreamStart) and signals[0].message_id == "chatcmpl-9"
    turn = [s for s in signals if isinstance(s, TurnDelta)][0]
    assert turn.stop_reason == StopReason.END_TURN
    assert turn.usage.input_tokens == 12
    assert isinstance(signals[-1], StreamEnd)


@pytest.mark.asyncio
async def test_litellm_provider_setup_error_propagates():
    with patch("erp_agent.llm.llm.litellm.acompletion", new_callable=AsyncMock) as acompletion:
        acompletion.side_effect = ValueError("invalid api key")
        provider = LiteLLMProvider(prompt_caching=False)
        with pytest.raises(ValueError):
            await provider.open_stream(ProviderRequest(model="gpt-4o", messages=[]))
