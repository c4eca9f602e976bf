"""
ToolInvoker — run the toolchain against the staged root.

The child is an owned resource (ToolProcess) moving through
SPAWNED → RUNNING → EXITED.  While it runs, termination signals the
engine receives are forwarded to the child's process group, so aborting
the outer build never leaves a toolchain process behind.
"""
from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum, unique
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Sequence

from build_delegate.core.errors import ChildFailure, SpawnError

logger = logging.getLogger(__name__)

_POSIX = os.name == "posix"

FORWARDED_SIGNALS: List[int] = [signal.SIGTERM, signal.SIGINT]
if hasattr(signal, "SIGHUP"):
    FORWARDED_SIGNALS.append(signal.SIGHUP)


@unique
class ChildStatus(str, Enum):
    SUCCESS = "SUCCESS"
    EXIT_CODE = "EXIT_CODE"
    SIGNALED = "SIGNALED"
    TIMEOUT = "TIMEOUT"


@unique
class ProcessState(str, Enum):
    SPAWNED = "SPAWNED"
    RUNNING = "RUNNING"
    EXITED = "EXITED"


@dataclass
class ChildResult:
    """Outcome of one toolchain run."""
    command: List[str]
    status: ChildStatus
    returncode: Optional[int]
    stdout_lines: List[bytes] = field(default_factory=list)
    stderr: bytes = b""
    signal_number: Optional[int] = None
    forwarded_signal: Optional[int] = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == ChildStatus.SUCCESS

    def describe(self) -> str:
        cmd = " ".join(self.command)
        if self.status == ChildStatus.TIMEOUT:
            return f"Toolchain timed out: {cmd}"
        if self.status == ChildStatus.SIGNALED:
            return f"Toolchain terminated by signal {self.signal_number}: {cmd}"
        if self.status == ChildStatus.EXIT_CODE:
            return f"Toolchain exited with code {self.returncode}: {cmd}"
        return f"Toolchain succeeded: {cmd}"


def split_lines(data: bytes) -> List[bytes]:
    """Split captured stdout into lines, keeping line endings intact."""
    return data.splitlines(keepends=True)


class ToolProcess:
    """A spawned toolchain process owned by one invocation."""

    def __init__(self, command: Sequence[str], cwd: Path, env: Mapping[str, str]):
        self.command = list(command)
        self.cwd = cwd
        self.env = dict(env)
        self.state: Optional[ProcessState] = None
        self.forwarded_signal: Optional[int] = None
        self._pending_signal: Optional[int] = None
        self._proc: Optional[subprocess.Popen] = None

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc is not None else None

    def spawn(self) -> None:
        try:
            self._proc = subprocess.Popen(
                self.command,
                cwd=str(self.cwd),
                env=self.env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=_POSIX,
            )
        except OSError as e:
            raise SpawnError(f"Failed to start toolchain ({e.strerror or e})", self.command) from e
        self.state = ProcessState.SPAWNED
        logger.debug("Spawned toolchain pid=%d in %s", self._proc.pid, self.cwd)
        if self._pending_signal is not None:
            signum, self._pending_signal = self._pending_signal, None
            self.forward_signal(signum)

    def forward_signal(self, signum: int, frame=None) -> None:
        """Signal handler: pass *signum* on to the child's process group."""
        if self._proc is None:
            if self.state is None:
                # Not spawned yet; delivered as soon as spawn() has a pid.
                logger.warning("Signal %d received before the toolchain started", signum)
                self._pending_signal = signum
            return
        if self._proc.poll() is not None:
            return
        self.forwarded_signal = signum
        logger.warning("Forwarding signal %d to toolchain pid=%d", signum, self._proc.pid)
        _signal_group(self._proc, signum)

    def wait(self, timeout: Optional[float] = None) -> ChildResult:
        """Wait for the child to exit and collect both of its streams."""
        if self._proc is None:
            raise RuntimeError("ToolProcess.wait() called before spawn()")
        self.state = ProcessState.RUNNING
        t0 = time.monotonic()
        timed_out = False

        try:
            try:
                out, err = self._proc.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                timed_out = True
                logger.error("Toolchain exceeded %ss, killing pid=%d", timeout, self._proc.pid)
                _signal_group(self._proc, signal.SIGKILL if _POSIX else signal.SIGTERM)
                out, err = self._proc.communicate()
        finally:
            if self._proc.poll() is None:
                # Interrupted by an exception before the child was reaped.
                _signal_group(self._proc, signal.SIGKILL if _POSIX else signal.SIGTERM)
                self._proc.wait()
            self.state = ProcessState.EXITED

        duration = int((time.monotonic() - t0) * 1000)
        rc = self._proc.returncode

        signal_number = None
        if timed_out:
            status = ChildStatus.TIMEOUT
        elif rc == 0:
            status = ChildStatus.SUCCESS
        elif rc < 0:
            status = ChildStatus.SIGNALED
            signal_number = -rc
        else:
            status = ChildStatus.EXIT_CODE

        return ChildResult(
            command=self.command,
            status=status,
            returncode=rc,
            stdout_lines=split_lines(out or b""),
            stderr=err or b"",
            signal_number=signal_number,
            forwarded_signal=self.forwarded_signal,
            duration_ms=duration,
        )

    # ── Signal handler bookkeeping ────────────────────────────────────

    @contextmanager
    def forwarding_signals(self) -> Iterator["ToolProcess"]:
        """Forward termination signals to the child for the duration of the block."""
        previous = self._install_handlers()
        try:
            yield self
        finally:
            self._restore_handlers(previous)

    def _install_handlers(self) -> Dict[int, object]:
        previous: Dict[int, object] = {}
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread; signal forwarding disabled")
            return previous
        for signum in FORWARDED_SIGNALS:
            try:
                previous[signum] = signal.signal(signum, self.forward_signal)
            except (OSError, ValueError):
                logger.debug("Cannot install handler for signal %d", signum)
        return previous

    @staticmethod
    def _restore_handlers(previous: Dict[int, object]) -> None:
        for signum, handler in previous.items():
            # None means the previous handler was not installed from Python.
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)


def _signal_group(proc: subprocess.Popen, signum: int) -> None:
    # The child was started with start_new_session=True, so its pid is
    # also its process group id.
    if _POSIX:
        try:
            os.killpg(proc.pid, signum)
            return
        except ProcessLookupError:
            return
        except OSError:
            pass
    try:
        proc.send_signal(signum)
    except OSError:
        pass


def invoke_toolchain(
    command: Sequence[str],
    cwd: Path,
    env: Mapping[str, str],
    timeout: Optional[float] = None,
) -> ChildResult:
    """
    Run *command* in *cwd* with exactly *env* and capture both streams.

    Raises
    ------
    SpawnError
        The process could not be started.
    ChildFailure
        The process exited non-zero, was signalled or timed out.
    """
    proc = ToolProcess(command, cwd, env)
    with proc.forwarding_signals():
        proc.spawn()
        result = proc.wait(timeout=timeout)
    logger.info(
        "Toolchain finished: status=%s rc=%s lines=%d (%d ms)",
        result.status.value, result.returncode, len(result.stdout_lines), result.duration_ms,
    )
    if not result.ok:
        raise ChildFailure(result)
    return result
