"""Tests for environment-driven agent settings."""
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from erp_agent.agent.config import AgentSettings, DEFAULT_MODEL, MAX_TURNS


def test_defaults(monkeypatch):
    for name in (
        "AGENT_MODEL", "AGENT_MAX_TURNS", "AGENT_THINKING_BUDGET", "AGENT_UNKNOWN_STOP_REASON", "AGENT_MAX_CONTEXT_TOKENS",
    ):
        monkeypatch.delenv(name, raising=False)
    settings = AgentSettings.from_env()
    assert settings.model == DEFAULT_MODEL
    assert settings.max_turns == MAX_TURNS == 20
    assert settings.thinking_budget == 10000
    assert settings.approval_timeout_secs == 300.0
    assert settings.max_context_tokens == 100000
    assert settings.unknown_stop_reason == "end_turn"


def test_overrides(monkeypatch):
    monkeypatch.setenv("AGENT_MAX_TURNS", "5")
    monkeypatch.setenv("AGENT_SEMANTIC_SEARCH_THRESHOLD", "0.5")
    monkeypatch.setenv("AGENT_UNKNOWN_STOP_REASON", "FAIL")
    monkeypatch.setenv("AGENT_PROMPT_CACHING", "false")
    monkeypatch.setenv("AGENT_MAX_CONTEXT_TOKENS", "2000")
    settings = AgentSettings.from_env()
    assert settings.max_turns == 5
    assert settings.semantic_search_threshold == 0.5
    assert settings.unknown_stop_reason == "fail"
    assert settings.prompt_caching is False
    assert settings.max_context_tokens == 2000


def test_bad_values_fall_back(monkeypatch):
    monkeypatch.setenv("AGENT_MAX_TURNS", "lots")
    monkeypatch.setenv("AGENT_UNKNOWN_STOP_REASON", "explode")
    settings = AgentSettings.from_env()
    assert settings.max_turns == 20
    assert settings.unknown_stop_reason == "end_turn"
