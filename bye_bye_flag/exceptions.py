"""Exception taxonomy for bye-bye-flag.

Run-scoped errors (``RunAbortError`` and subclasses) end the whole run.
Task-scoped errors are recorded against a single flag and never stop the
scheduler on their own.
"""

from typing import Optional


class ByeByeFlagError(Exception):
    """Base exception for all bye-bye-flag errors."""

    pass


class RunAbortError(ByeByeFlagError):
    """Exception that aborts the whole run."""

    pass


class ConfigError(RunAbortError):
    """Exception raised for a missing or invalid configuration."""

    pass


class PrerequisiteError(RunAbortError):
    """Exception raised when required tooling or setup is unavailable."""

    pass


class ReviewDiscoveryError(RunAbortError):
    """Exception raised when review history cannot be retrieved."""

    pass


class WorkspaceSetupError(ByeByeFlagError):
    """Exception raised when a workspace cannot be created."""

    pass


class AgentError(ByeByeFlagError):
    """Exception raised for a failed agent invocation."""

    pass


class AgentTimeoutError(AgentError):
    """Exception raised when the agent exceeds its wall-clock timeout."""

    pass


class AgentParseError(AgentError):
    """Exception raised when agent output cannot be turned into a result."""

    def __init__(self, message: str, preview: str = ""):
        super().__init__(message)
        self.preview = preview


class ReviewBlocked(ByeByeFlagError):
    """Exception raised when an open or declined review already exists.

    Callers turn this into a refused result; it is never a failure.
    """

    def __init__(self, message: str, record: Optional[object] = None):
        super().__init__(message)
        self.record = record


class FetchError(RunAbortError):
    """Exception raised when the flag source cannot be queried."""

    pass
