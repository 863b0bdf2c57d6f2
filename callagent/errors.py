"""Error taxonomy for the conversation core.

Each error carries the HTTP status the app layer reports and whether the
caller may retry the same request unchanged.
"""

from __future__ import annotations


class CallAgentError(Exception):
    """Base class for errors surfaced to callers of the core."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SessionNotFound(CallAgentError):
    status_code = 404

    def __init__(self, session_id: str) -> None:
        super().__init__("Session not found")
        self.session_id = session_id


class AgentNotFound(CallAgentError):
    status_code = 404

    def __init__(self, agent_id: str) -> None:
        super().__init__("Agent not found")
        self.agent_id = agent_id


class PayloadValidationError(CallAgentError):
    """Malformed request payload. Raised before any state is touched."""

    status_code = 400


class PersistenceFailure(CallAgentError):
    """The session store could not record a computed turn."""

    status_code = 503
    retryable = True


class ConcurrentUpdateError(CallAgentError):
    """The session changed between read and conditional write."""

    status_code = 409
    retryable = True

    def __init__(self, session_id: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Session {session_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.session_id = session_id
        self.expected_version = expected_version
        self.actual_version = actual_version
