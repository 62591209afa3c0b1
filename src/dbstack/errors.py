"""Domain errors for dbstack."""

from typing import Optional


class StackError(RuntimeError):
    """Raised when a workflow cannot continue safely."""


class ConfigurationError(StackError):
    """Raised when a precondition fails before any runtime side effect."""


class ReadinessTimeoutError(StackError):
    """Raised when the database does not become ready within the attempt ceiling."""

    def __init__(self, message: str, logs: Optional[str] = None):
        super().__init__(message)
        self.logs = logs or ""
