"""Tests for controller wiring."""
from unittest.mock import MagicMock

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from erp_agent.agent.approval import PendingApprovalGate
from erp_agent.agent.config import AgentSettings
from erp_agent.agent.event_store import MongoPersistenceSink
from erp_agent.agent.factory import create_controller
from erp_agent.agent.file_content import MongoContentRetriever
from erp_agent.agent.file_usage import MongoFileUsageRecorder
from erp_agent.agent.persistence import InMemoryPersistenceSink
from erp_agent.agent.sequencing import InMemorySequenceReserver, MongoSequenceReserver
from erp_agent.llm.provider import LiteLLMProvider
from fakes import make_catalog


def test_in_memory_wiring():
    controller = create_controller(make_catalog(), settings=AgentSettings(approval_timeout_secs=30))
    assert isinstance(controller.provider, LiteLLMProvider)
    assert isinstance(controller.emitter.sink, InMemoryPersistenceSink)
    assert isinstance(controller.emitter.reserver, InMemorySequenceReserver)
    gate = controller.coordinator.approval_gate
    assert isinstance(gate, PendingApprovalGate) and gate.timeout_secs == 30
    assert controller.file_context.resolver is None
    assert controller.usage_recorder is None


def test_mongo_wiring_shares_one_emitter():
    client = MagicMock()
    client.env = "test"
    controller = create_controller(make_catalog(), agent_client=client, settings=AgentSettings())
    assert isinstance(controller.emitter.sink, MongoPersistenceSink)
    assert isinstance(controller.emitter.reserver, MongoSequenceReserver)
    assert controller.coordinator.emitter is controller.emitter
    assert controller.file_context.search is not None
    assert isinstance(controller.file_context.content_retriever, MongoContentRetriever)
    assert isinstance(controller.usage_recorder, MongoFileUsageRecorder)
