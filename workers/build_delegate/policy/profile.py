"""
Profile — toolchain-specific knobs for the delegation engine.

The profile encapsulates every opinion about the outer orchestrator and
the nested toolchain (directive syntax, reserved variable prefix, which
variables leak the parent's configuration) so that core staging,
forwarding and invocation logic stays toolchain-agnostic.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Dict, FrozenSet, Tuple


@dataclass(frozen=True)
class DelegateProfile:
    """Describes the orchestrator protocol and how to isolate the nested build."""

    # Identity
    profile_id: str

    # Orchestrator protocol
    directive_prefix: str = "cargo:"
    rerun_directive: str = "rerun-if-changed"
    reserved_prefix: str = "CARGO"
    # names the parent project's root, which staging must stay out of
    project_dir_var: str = "CARGO_MANIFEST_DIR"

    # Toolchain
    toolchain_var: str = "CARGO"
    default_toolchain: str = "cargo"
    build_args: Tuple[str, ...] = ("build",)
    # where the build step leaves the helper executable, relative to the staged root
    artifact_dir: str = "target/debug"
    manifest_name: str = "Cargo.toml"

    # Staging
    staging_prefix: str = "build-script"
    excluded_dirs: FrozenSet[str] = frozenset()

    # Environment
    passthrough_vars: Tuple[str, ...] = ()
    # fnmatch-style patterns for variables that carry the parent's flags
    scrubbed_patterns: Tuple[str, ...] = ()
    # variable name -> path relative to the staged root
    scope_vars: Dict[str, str] = field(default_factory=dict)

    def rerun_line(self, path: str) -> str:
        return f"{self.directive_prefix}{self.rerun_directive}={path}"

    def is_reserved(self, name: str) -> bool:
        return name == self.reserved_prefix or name.startswith(self.reserved_prefix + "_")

    def is_scrubbed(self, name: str) -> bool:
        if name in self.scope_vars:
            return False
        return any(fnmatchcase(name, pattern) for pattern in self.scrubbed_patterns)

    @classmethod
    def cargo(cls) -> DelegateProfile:
        """The default profile: cargo build scripts delegating to a cargo crate."""
        return cls(
            profile_id="cargo-build-script",
            excluded_dirs=frozenset({"target"}),
            passthrough_vars=(
                # host
                "PATH",
                "HOME",
                "TEMP",
                "TMP",
                "TMPDIR",
                "SYSTEMROOT",  # LLVM dll initialization on Windows
                "SSH_AUTH_SOCK",
                "RUSTUP_HOME",
                "RUSTUP_TOOLCHAIN",
                # build-script metadata
                "OUT_DIR",
                "TARGET",
                "HOST",
                "NUM_JOBS",
                "OPT_LEVEL",
                "DEBUG",
                "PROFILE",
            ),
            scrubbed_patterns=(
                "RUSTFLAGS",
                "RUSTDOCFLAGS",
                "CARGO_ENCODED_*",
                "CARGO_MAKEFLAGS",
                # [build] table: target triple, rustc wrappers, flags, jobs
                "CARGO_BUILD_*",
                # [target.<triple>] tables
                "CARGO_TARGET_*_RUSTFLAGS",
                "CARGO_TARGET_*_RUSTDOCFLAGS",
                "CARGO_TARGET_*_LINKER",
                "CARGO_TARGET_*_RUNNER",
                # [profile.<name>] tables
                "CARGO_PROFILE_*",
            ),
            scope_vars={
                "CARGO_TARGET_DIR": "target",
                "CARGO_BUILD_TARGET_DIR": "target",
            },
        )
