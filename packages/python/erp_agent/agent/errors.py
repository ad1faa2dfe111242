"""
Failures that abort a whole agent request. Tool, callback, persistence and
approval failures never raise out of the component that sees them.
"""


class AgentError(Exception):
    """Base class for request-fatal agent errors."""

    code = "agent_error"


class AgentValidationError(AgentError):
    code = "validation_error"


class AttachmentNotFoundError(AgentValidationError):
    code = "attachment_not_found"

    def __init__(self, file_id: str):
        super().__init__(f"Attached file {file_id} not found or not accessible")
        self.file_id = file_id


class ProviderStreamError(AgentError):
    """Stream setup failed, the stream broke mid-way, or it violated the signal protocol."""

    code = "provider_error"


class UnknownStopReasonError(ProviderStreamError):
    code = "unknown_stop_reason"


class AgentInternalError(AgentError):
    """An infrastructure failure (sequence store, file store, ...) that aborted the request."""

    code = "internal_error"
