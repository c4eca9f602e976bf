"""
Error taxonomy for the delegation engine.

StagingError, SpawnError and ChildFailure are fatal and abort the
invocation.  CleanupError is only ever logged.
"""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from build_delegate.core.invoker import ChildResult


class DelegateError(Exception):
    """Base class for every engine failure."""

    kind = "DELEGATE_ERROR"


class StagingError(DelegateError):
    """Naming, copying or manifest rewriting failed."""

    kind = "STAGING_ERROR"

    def __init__(self, message: str, path: Optional[Path] = None):
        self.path = path
        if path is not None:
            message = f"{message}: {path}"
        super().__init__(message)


class SpawnError(DelegateError):
    """The toolchain process could not be started."""

    kind = "SPAWN_ERROR"

    def __init__(self, message: str, command: Sequence[str]):
        self.command = list(command)
        super().__init__(f"{message} (command: {' '.join(self.command)})")


class ChildFailure(DelegateError):
    """The toolchain ran but exited non-zero, was signalled or timed out."""

    kind = "CHILD_FAILURE"

    def __init__(self, result: ChildResult):
        self.result = result
        super().__init__(result.describe())

    @property
    def stderr(self) -> bytes:
        return self.result.stderr

    def exit_status(self) -> int:
        """Process exit code the engine should report for this failure."""
        if self.result.returncode is not None and self.result.returncode > 0:
            return self.result.returncode
        if self.result.signal_number is not None:
            return 128 + self.result.signal_number
        return 1


class CleanupError(DelegateError):
    """Removing the staged directory failed.  Never raised out of the engine."""

    kind = "CLEANUP_ERROR"

    def __init__(self, message: str, path: Path):
        self.path = path
        super().__init__(f"{message}: {path}")
