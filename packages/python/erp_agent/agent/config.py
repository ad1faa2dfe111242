"""
Agent settings from the environment.
"""
from __future__ import annotations

import logging
import os
from typing import Literal

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
MAX_TURNS = 20


def _get_int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _get_float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _get_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class AgentSettings(BaseModel):
    model: str = DEFAULT_MODEL
    max_turns: int = MAX_TURNS
    max_tokens: int = 16000
    thinking_budget: int = 10000
    approval_timeout_secs: float = 300.0
    semantic_search_threshold: float = 0.7
    semantic_search_max_files: int = 3
    paused_turn_ttl_secs: int = 3600
    # Token budget for file content placed in the prompt
    max_context_tokens: int = 100000
    max_context_chunks: int = 5
    # What to do with a stop reason outside the known set
    unknown_stop_reason: Literal["end_turn", "fail"] = "end_turn"
    prompt_caching: bool = True

    @classmethod
    def from_env(cls) -> "AgentSettings":
        unknown = os.getenv("AGENT_UNKNOWN_STOP_REASON", "end_turn").strip().lower()
        if unknown not in ("end_turn", "fail"):
            logger.warning(f"Ignoring AGENT_UNKNOWN_STOP_REASON={unknown!r}; using end_turn")
            unknown = "end_turn"
        return cls(
            model=os.getenv("AGENT_MODEL", DEFAULT_MODEL),
            max_turns=_get_int_env("AGENT_MAX_TURNS", MAX_TURNS),
            max_tokens=_get_int_env("AGENT_MAX_TOKENS", 16000),
            thinking_budget=_get_int_env("AGENT_THINKING_BUDGET", 10000),
            approval_timeout_secs=_get_float_env("AGENT_APPROVAL_TIMEOUT_SECS", 300.0),
            semantic_search_threshold=_get_float_env("AGENT_SEMANTIC_SEARCH_THRESHOLD", 0.7),
            semantic_search_max_files=_get_int_env("AGENT_SEMANTIC_SEARCH_MAX_FILES", 3),
            paused_turn_ttl_secs=_get_int_env("AGENT_PAUSED_TURN_TTL_SECS", 3600),
            max_context_tokens=_get_int_env("AGENT_MAX_CONTEXT_TOKENS", 100000),
            max_context_chunks=_get_int_env("AGENT_MAX_CONTEXT_CHUNKS", 5),
            unknown_stop_reason=unknown,
            prompt_caching=_get_bool_env("AGENT_PROMPT_CACHING", True),
        )
