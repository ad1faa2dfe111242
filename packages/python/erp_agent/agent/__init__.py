# ERP agent: streaming turn loop, tool execution, approvals, sequenced events.
# Transports construct one controller per process (create_controller) and call run()/resume().

from .agent_loop import (
    AgentOptions,
    AgentResult,
    TurnLoopController,
    TurnState,
    run_agent_turn,
)
from .approval import PendingApprovalGate, StaticApprovalGate
from .config import AgentSettings
from .context import ExecutionContext, check_and_mark
from .errors import AgentError, AgentInternalError, AgentValidationError, AttachmentNotFoundError, ProviderStreamError
from .events import AgentEvent, CitedFile, event_payload, parse_event
from .factory import create_controller
from .sequencing import SequencedEventEmitter
from .tool_executor import ToolExecutionCoordinator
from .tool_registry import ToolCatalog, ToolOutcome

__all__ = [
    "AgentOptions",
    "AgentResult",
    "TurnLoopController",
    "TurnState",
    "run_agent_turn",
    "PendingApprovalGate",
    "StaticApprovalGate",
    "AgentSettings",
    "ExecutionContext",
    "check_and_mark",
    "AgentError",
    "AgentInternalError",
    "AgentValidationError",
    "AttachmentNotFoundError",
    "ProviderStreamError",
    "AgentEvent",
    "CitedFile",
    "event_payload",
    "parse_event",
    "create_controller",
    "SequencedEventEmitter",
    "ToolExecutionCoordinator",
    "ToolCatalog",
    "ToolOutcome",
]
