import logging
from typing import Optional, Dict, Any, List, Union

import litellm
import stamina

logger = logging.getLogger(__name__)

# Drop unsupported provider/model params automatically (e.g., O-series temperature)
litellm.drop_params = True

__all__ = [
    "is_o_series_model",
    "get_temperature",
    "is_retryable_error",
    "build_thinking_param",
    "apply_prompt_caching",
    "agent_completion_stream",
]


def is_o_series_model(model_name: str) -> bool:
    """Return True for OpenAI O-series models (e.g., o1, o1-mini, o3, o4-mini)."""
    if not model_name:
        return False
    name = model_name.strip().lower()
    # O-series models start with 'o' (not to be confused with gpt-4o which starts with 'gpt')
    return name.startswith("o") and not name.startswith("gpt")


def get_temperature(model: str, thinking_enabled: bool = False) -> float:
    """
    Get the temperature setting for a given model.

    Args:
        model: The model name
        thinking_enabled: Extended thinking requires temperature 1

    Returns:
        float: Temperature value (1.0 for thinking, o-series or gemini models, 0.1 otherwise)
    """
    if thinking_enabled:
        return 1.0
    if not model:
        return 0.1

    if is_o_series_model(model):
        return 1.0
    if model.strip().lower().startswith("gemini/"):
        return 1.0
    return 0.1


def is_retryable_error(exception) -> bool:
    """
    Check if an exception is retryable based on error patterns.

    Args:
        exception: The exception to check

    Returns:
        bool: True if the exception is retryable, False otherwise
    """
    if not isinstance(exception, Exception):
        return False

    error_message = str(exception).lower()

    retryable_patterns = [
        "503",
        "529",
        "model is overloaded",
        "overloaded",
        "unavailable",
        "rate limit",
        "timeout",
        "connection error",
        "internal server error",
        "service unavailable",
        "temporarily unavailable"
    ]

    for pattern in retryable_patterns:
        if pattern in error_message:
            return True

    return False


def build_thinking_param(model: str, enable_thinking: bool, budget_tokens: int) -> Optional[Dict[str, Any]]:
    """Return the litellm `thinking` parameter, or None when thinking is off or unsupported."""
    if not enable_thinking:
        return None
    supports = getattr(litellm, "supports_reasoning", None)
    if supports is not None:
        try:
            if not supports(model=model):
                logger.info(f"Model {model} does not support reasoning; thinking disabled")
                return None
        except Exception as e:
            # Unknown models are not in litellm's model map; let the provider decide
            logger.debug(f"supports_reasoning lookup failed for {model}: {e}")
    return {"type": "enabled", "budget_tokens": budget_tokens}


def apply_prompt_caching(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Mark the system message as an ephemeral cache breakpoint.
    Providers without prompt caching ignore cache_control.
    """
    out = []
    for m in messages:
        if m.get("role") == "system" and isinstance(m.get("content"), str):
            out.append({
                "role": "system",
                "content": [
                    {"type": "text", "text": m["content"], "cache_control": {"type": "ephemeral"}}
                ],
            })
        else:
            out.append(m)
    return out


@stamina.retry(on=is_retryable_error)
async def _litellm_astream_with_retry(
    model: str,
    messages: list,
    api_key: Optional[str] = None,
    max_tokens: Optional[int] = None,
    tools: Optional[List[Dict]] = None,
    tool_choice: Optional[Union[str, Dict]] = None,
    thinking: Optional[Dict[str, Any]] = None,
):
    """
    Open a streaming LLM call with stamina retry mechanism.
    Only stream setup is retried; a stream that fails mid-way is not restarted.

    Returns:
        The litellm stream wrapper (async iterator of chunks)

    Raises:
        Exception: If the call fails after all retries
    """
    params = {
        "model": model,
        "messages": messages,
        "temperature": get_temperature(model, thinking_enabled=thinking is not None),
        "stream": True,
        "stream_options": {"include_usage": True},
    }
    if api_key:
        params["api_key"] = api_key
    if max_tokens:
        params["max_tokens"] = max_tokens
    if tools:
        params["tools"] = tools
        params["tool_choice"] = tool_choice if tool_choice is not None else "auto"
    if thinking is not None:
        params["thinking"] = thinking

    return await litellm.acompletion(**params)


async def agent_completion_stream(
    model: str,
    messages: list,
    api_key: Optional[str] = None,
    max_tokens: Optional[int] = None,
    tools: Optional[List[Dict]] = None,
    tool_choice: Optional[Union[str, Dict]] = None,
    thinking: Optional[Dict[str, Any]] = None,
):
    """
    Public wrapper for the agent turn loop. Opens one streaming completion with optional tools.
    """
    return await _litellm_astream_with_retry(
        model=model,
        messages=messages,
        api_key=api_key,
        max_tokens=max_tokens,
        tools=tools,
        tool_choice=tool_choice,
        thinking=thinking,
    )
