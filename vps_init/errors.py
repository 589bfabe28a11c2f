"""
Exception hierarchy for vps_init.

Every error carries a Severity so the orchestrator can decide whether a failed
step aborts the run, degrades it, or is simply noted.
"""

from enum import Enum
from typing import Optional


class Severity(str, Enum):
    """How a failure affects the rest of the run."""

    FATAL = "fatal"
    DEGRADED = "degraded"
    BEST_EFFORT = "best_effort"


# ----------------------------------------------------------------
# Custom Exceptions
# ----------------------------------------------------------------
class SetupError(Exception):
    """Base exception for setup errors."""

    default_severity: Severity = Severity.DEGRADED

    def __init__(self, message: str, severity: Optional[Severity] = None) -> None:
        super().__init__(message)
        self.severity = severity or self.default_severity

    @property
    def is_fatal(self) -> bool:
        return self.severity == Severity.FATAL

    def escalate(self) -> "SetupError":
        """Mark this error as fatal and return it (for re-raising)."""
        self.severity = Severity.FATAL
        return self


class InsufficientPrivilegeError(SetupError):
    """Raised when the run lacks root privileges."""

    default_severity = Severity.FATAL


class ConfigurationError(SetupError):
    """Raised when configuration input is invalid."""

    default_severity = Severity.FATAL


class ValidationError(SetupError):
    """Raised when an input for an optional step fails validation."""

    pass


class ExecutionError(SetupError):
    """Raised when command execution fails or times out."""

    pass


class WriteError(SetupError):
    """Raised when a managed file cannot be backed up, written or removed."""

    def __init__(
        self, path: str, reason: str, severity: Optional[Severity] = None
    ) -> None:
        super().__init__(f"Cannot write {path}: {reason}", severity)
        self.path = path
        self.reason = reason


class UnsupportedKernelError(SetupError):
    """Raised when the running kernel is too old for the requested tuning."""

    def __init__(self, release: str, minimum: str) -> None:
        super().__init__(
            f"Kernel {release} does not support BBR (requires {minimum}+)"
        )
        self.release = release
        self.minimum = minimum
