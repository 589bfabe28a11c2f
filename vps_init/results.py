"""
Result values returned by steps and file operations.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional


class Status(str, Enum):
    """Outcome of a step or file operation."""

    APPLIED = "applied"
    UNCHANGED = "unchanged"
    REMOVED = "removed"
    SKIPPED = "skipped"
    UNSUPPORTED_KERNEL = "unsupported_kernel"
    FAILED = "failed"


@dataclass
class StepResult:
    """What a step did, plus any degraded conditions it ran into."""

    status: Status
    message: str = ""
    paths: List[Path] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    detail: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.status in (Status.UNSUPPORTED_KERNEL, Status.FAILED) or bool(
            self.warnings
        )
