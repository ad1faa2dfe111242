"""
Wiring for a process-wide turn loop controller.
"""
from __future__ import annotations

import logging
from typing import Any, Callable

from erp_agent.kb.search import MongoSemanticFileSearch
from erp_agent.llm.provider import LiteLLMProvider, LLMProvider

from .agent_loop import TurnLoopController
from .approval import ApprovalGate, PendingApproval, PendingApprovalGate
from .config import AgentSettings
from .event_store import MongoPersistenceSink
from .file_content import MongoContentRetriever
from .file_context import FileContextPreparer, MongoFileResolver
from .file_usage import MongoFileUsageRecorder
from .persistence import BackgroundTasks, InMemoryPersistenceSink
from .sequencing import InMemorySequenceReserver, MongoSequenceReserver, SequencedEventEmitter
from .session import PausedTurnStore
from .tool_executor import ToolExecutionCoordinator
from .tool_registry import ToolCatalog

logger = logging.getLogger(__name__)


def create_controller(
    catalog: ToolCatalog,
    agent_client: Any = None,
    settings: AgentSettings | None = None,
    provider: LLMProvider | None = None,
    approval_gate: ApprovalGate | None = None,
    on_approval_request: Callable[[PendingApproval], Any] | None = None,
    api_key: str | None = None,
) -> TurnLoopController:
    """
    Build a controller. With agent_client, events, tool executions and sequence numbers
    live in MongoDB and file context comes from the user's files; without it everything
    stays in process memory and file context is disabled.
    """
    settings = settings or AgentSettings.from_env()
    background = BackgroundTasks()
    if agent_client is not None:
        sink = MongoPersistenceSink(agent_client)
        reserver = MongoSequenceReserver(agent_client)
        preparer = FileContextPreparer(
            resolver=MongoFileResolver(agent_client),
            search=MongoSemanticFileSearch(agent_client),
            threshold=settings.semantic_search_threshold,
            max_files=settings.semantic_search_max_files,
            content_retriever=MongoContentRetriever(agent_client, max_chunks=settings.max_context_chunks),
            max_context_tokens=settings.max_context_tokens,
        )
        usage_recorder = MongoFileUsageRecorder(agent_client)
    else:
        logger.info("No database client; using in-memory persistence and sequence numbers")
        sink = InMemoryPersistenceSink()
        reserver = InMemorySequenceReserver()
        usage_recorder = None
        preparer = FileContextPreparer(
            threshold=settings.semantic_search_threshold,
            max_files=settings.semantic_search_max_files,
        )

    emitter = SequencedEventEmitter(reserver=reserver, sink=sink, background=background)
    if approval_gate is None:
        approval_gate = PendingApprovalGate(
            timeout_secs=settings.approval_timeout_secs,
            on_request=on_approval_request,
        )
    coordinator = ToolExecutionCoordinator(catalog, emitter, approval_gate)
    return TurnLoopController(
        provider=provider or LiteLLMProvider(api_key=api_key, prompt_caching=settings.prompt_caching),
        coordinator=coordinator,
        emitter=emitter,
        file_context=preparer,
        paused_turns=PausedTurnStore(ttl_sec=settings.paused_turn_ttl_secs),
        settings=settings,
        usage_recorder=usage_recorder,
    )
