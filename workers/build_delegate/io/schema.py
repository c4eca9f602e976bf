"""
Schema — Pydantic models for the delegate invocation report.

One output file:
  delegate_report.json — how far one invocation got and how it ended.

Runtime contract fields (present in every output):
  package_name, delegate_version, profile_id, schema_version.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum, unique
from typing import List, Optional

from pydantic import BaseModel, Field

from build_delegate import DELEGATE_VERSION, PACKAGE_NAME, SCHEMA_VERSION


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Invocation state machine ─────────────────────────────────────────────────

@unique
class InvocationState(str, Enum):
    START = "START"
    NAMED = "NAMED"
    STAGED = "STAGED"
    ENVIRONMENT_COMPUTED = "ENVIRONMENT_COMPUTED"
    INVOKED = "INVOKED"
    RELAYED = "RELAYED"
    CLEANED_UP = "CLEANED_UP"


# ── Child outcome ────────────────────────────────────────────────────────────

class ChildOutcome(BaseModel):
    """Summary of the toolchain run (captured bytes are not persisted)."""
    command: List[str]
    status: str              # SUCCESS | EXIT_CODE | SIGNALED | TIMEOUT
    returncode: Optional[int] = None
    signal_number: Optional[int] = None
    forwarded_signal: Optional[int] = None
    directive_count: int = 0
    stderr_bytes: int = 0
    duration_ms: int = 0


# ── Top-level output ─────────────────────────────────────────────────────────

class InvocationReport(BaseModel):
    """
    delegate_report.json — one engine invocation.
    """
    package_name: str = PACKAGE_NAME
    delegate_version: str = DELEGATE_VERSION
    schema_version: str = SCHEMA_VERSION
    profile_id: str

    source_root: str
    staged_root: Optional[str] = None
    staged_files: List[str] = Field(default_factory=list)
    manifest_qualified: bool = False
    kept: bool = False

    state: InvocationState = InvocationState.START
    last_state: InvocationState = InvocationState.START   # before CLEANED_UP
    failed: bool = False
    error_kind: Optional[str] = None
    error_message: Optional[str] = None

    build: Optional[ChildOutcome] = None   # build step of the two-step mode
    child: Optional[ChildOutcome] = None

    started_at: str = Field(default_factory=now_iso)
    finished_at: Optional[str] = None

    def advance(self, state: InvocationState) -> None:
        self.state = state
        if state != InvocationState.CLEANED_UP:
            self.last_state = state
