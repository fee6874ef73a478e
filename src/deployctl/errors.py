"""Error taxonomy for provisioning runs."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ResourceDescriptor, VerificationResult


class DeployError(RuntimeError):
    """Base class for deployctl domain errors."""


class PlanningError(DeployError):
    """Raised for invalid or missing parameters before any host mutation."""


class ActionError(DeployError):
    """Raised when one external mutation fails; triggers a full rollback."""

    def __init__(self, descriptor: ResourceDescriptor, cause: BaseException | str) -> None:
        """Store the failing descriptor alongside the underlying cause."""
        self.descriptor = descriptor
        self.cause = cause
        super().__init__(f"{descriptor.label()} failed: {cause}")


class VerificationTimeout(DeployError):
    """Raised when a verification probe exhausts its retry budget."""

    def __init__(self, result: VerificationResult) -> None:
        """Keep the probe result so reports can show attempts and status."""
        self.result = result
        super().__init__(f"Verification failed: {result.describe()}")


class UndoWarning(DeployError):
    """Non-fatal failure while reversing a single action."""

    def __init__(self, descriptor: ResourceDescriptor, cause: BaseException | str) -> None:
        """Store the descriptor that could not be cleanly undone."""
        self.descriptor = descriptor
        self.cause = cause
        super().__init__(f"could not undo {descriptor.label()}: {cause}")


class RunInterrupted(BaseException):
    """Raised from a signal handler so the executor can roll back."""

    def __init__(self, signum: int) -> None:
        """Record the signal that interrupted the run."""
        self.signum = signum
        super().__init__(f"interrupted by signal {signum}")


__all__ = [
    "ActionError",
    "DeployError",
    "PlanningError",
    "RunInterrupted",
    "UndoWarning",
    "VerificationTimeout",
]
