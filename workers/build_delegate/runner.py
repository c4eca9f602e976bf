"""
Delegate runner — top-level orchestration: sub-project → relayed directives.

This module ties naming, staging, environment forwarding, invocation and
relay together into a single ``run_delegated_build`` function that an
outer build step can call programmatically or through the CLI.

stdout is reserved for directives; everything else goes to stderr.
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import BinaryIO, List, Mapping, Optional, Sequence

from build_delegate.config import Settings
from build_delegate.core.cleanup import staged_directory
from build_delegate.core.environment import forward_environment, scope_escapes
from build_delegate.core.errors import (
    ChildFailure,
    DelegateError,
    SpawnError,
    StagingError,
)
from build_delegate.core.invoker import ChildResult, invoke_toolchain
from build_delegate.core.manifest import qualify_manifest_paths
from build_delegate.core.naming import check_staging_root
from build_delegate.core.relay import relay_diagnostics, relay_directives
from build_delegate.core.stager import emit_rerun_directive, stage_tree
from build_delegate.io.schema import ChildOutcome, InvocationReport, InvocationState, now_iso
from build_delegate.io.writer import write_report
from build_delegate.policy.profile import DelegateProfile

logger = logging.getLogger(__name__)


# ── Helpers ──────────────────────────────────────────────────────────────────

def default_command(
    environ: Mapping[str, str],
    settings: Settings,
    profile: DelegateProfile,
) -> List[str]:
    """Build command used when the caller does not supply one."""
    program = (
        settings.BUILD_DELEGATE_TOOLCHAIN
        or environ.get(profile.toolchain_var)
        or profile.default_toolchain
    )
    return [program, *profile.build_args]


def helper_executable(staged_root: Path, source_root: Path, profile: DelegateProfile) -> Path:
    """Executable the build step leaves in the staged root, named after the sub-project."""
    name = source_root.resolve().name
    if os.name == "nt":
        name += ".exe"
    return staged_root / profile.artifact_dir / name


def _invoke_step(
    command: Sequence[str],
    cwd: Path,
    env: Mapping[str, str],
    timeout: Optional[int],
    stderr: BinaryIO,
) -> ChildResult:
    logger.info("Running %s in %s", " ".join(command), cwd)
    try:
        result = invoke_toolchain(command, cwd, env, timeout=timeout)
    except ChildFailure as failure:
        relay_diagnostics(failure.stderr, stderr)
        raise
    relay_diagnostics(result.stderr, stderr)
    return result


def _outcome(result: ChildResult) -> ChildOutcome:
    return ChildOutcome(
        command=result.command,
        status=result.status.value,
        returncode=result.returncode,
        signal_number=result.signal_number,
        forwarded_signal=result.forwarded_signal,
        directive_count=len(result.stdout_lines),
        stderr_bytes=len(result.stderr),
        duration_ms=result.duration_ms,
    )


# ── Public API ───────────────────────────────────────────────────────────────

def run_delegated_build(
    source_root: Path,
    command: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
    settings: Optional[Settings] = None,
    profile: Optional[DelegateProfile] = None,
    stdout: Optional[BinaryIO] = None,
    stderr: Optional[BinaryIO] = None,
    report_dir: Optional[Path] = None,
) -> InvocationReport:
    """
    Run the delegated sub-project at *source_root* in isolation.

    Parameters
    ----------
    source_root : Path
        Root of the sub-project (unstaged).
    command : Sequence[str], optional
        Single command run inside the staged root, whose stdout is relayed.
        When omitted, the sub-project is built in the staged root with
        ``[$CARGO, "build"]`` and the resulting helper executable is then
        run from *source_root* with the unmodified *environ*.
    environ : Mapping[str, str], optional
        Ambient environment snapshot.  Defaults to ``os.environ``.
    settings : Settings, optional
        Engine settings.  Defaults to settings read from *environ*.
    profile : DelegateProfile, optional
        Orchestrator/toolchain profile.  Defaults to DelegateProfile.cargo().
    stdout, stderr : BinaryIO, optional
        Directive and diagnostic streams.  Default to the process streams.
    report_dir : Path, optional
        Directory to write delegate_report.json.  If None, no report is
        written.

    Returns
    -------
    InvocationReport

    Raises
    ------
    StagingError, SpawnError, ChildFailure
        Fatal; the outer build must abort.  The staged root is removed
        before the exception propagates.
    """
    source_root = Path(source_root)
    if environ is None:
        environ = dict(os.environ)
    if profile is None:
        profile = DelegateProfile.cargo()
    if settings is None:
        settings = Settings.from_environ(environ)
    if stdout is None:
        stdout = sys.stdout.buffer
    if stderr is None:
        stderr = sys.stderr.buffer
    run_helper = command is None
    if command is None:
        command = default_command(environ, settings, profile)
    timeout = settings.BUILD_DELEGATE_TIMEOUT

    report = InvocationReport(
        profile_id=profile.profile_id,
        source_root=str(source_root),
        kept=settings.BUILD_DELEGATE_KEEP_STAGING,
    )

    # The orchestrator must watch the sub-project even when staging fails.
    emit_rerun_directive(source_root, stdout, profile)

    try:
        projects = [source_root]
        if environ.get(profile.project_dir_var):
            projects.append(Path(environ[profile.project_dir_var]))
        check_staging_root(settings.staging_root, projects)

        with staged_directory(
            settings.staging_root,
            seed=source_root.resolve().name,
            prefix=profile.staging_prefix,
            keep=settings.BUILD_DELEGATE_KEEP_STAGING,
            max_attempts=settings.BUILD_DELEGATE_MAX_NAME_ATTEMPTS,
        ) as staged_root:
            report.staged_root = str(staged_root)
            report.advance(InvocationState.NAMED)

            # ── Step 1: stage ────────────────────────────────────────
            report.staged_files = stage_tree(source_root, staged_root, profile)
            if settings.BUILD_DELEGATE_QUALIFY_MANIFEST:
                report.manifest_qualified = qualify_manifest_paths(
                    staged_root / profile.manifest_name,
                    source_root.resolve(),
                )
            report.advance(InvocationState.STAGED)

            # ── Step 2: environment ──────────────────────────────────
            env = forward_environment(environ, staged_root, profile)
            escaped = scope_escapes(env, staged_root, profile)
            if escaped:
                raise StagingError(
                    f"Forwarded scope variables escape the staged root ({', '.join(sorted(escaped))})",
                    staged_root,
                )
            report.advance(InvocationState.ENVIRONMENT_COMPUTED)

            # ── Step 3: invoke ───────────────────────────────────────
            result = _invoke_step(command, staged_root, env, timeout, stderr)
            lines = list(result.stdout_lines)
            if run_helper:
                # The helper sees the parent's CARGO_MANIFEST_DIR and cwd,
                # not the staged copy's.
                report.build = _outcome(result)
                helper = helper_executable(staged_root, source_root, profile)
                result = _invoke_step([str(helper)], source_root, dict(environ), timeout, stderr)
                lines.extend(result.stdout_lines)
            report.child = _outcome(result)
            report.advance(InvocationState.INVOKED)

            # ── Step 4: relay ────────────────────────────────────────
            relay_directives(lines, stdout)
            report.advance(InvocationState.RELAYED)

    except DelegateError as e:
        if isinstance(e, ChildFailure):
            report.child = _outcome(e.result)
        report.failed = True
        report.error_kind = e.kind
        report.error_message = str(e)
        logger.error("Delegated build failed at %s: %s", report.last_state.value, e)
        raise
    finally:
        report.advance(InvocationState.CLEANED_UP)
        report.finished_at = now_iso()
        if report_dir is not None:
            path = write_report(report, report_dir)
            logger.info("Wrote delegate report to %s", path)

    return report


# ── CLI ──────────────────────────────────────────────────────────────────────

def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for build_delegate."""
    parser = argparse.ArgumentParser(
        description="build_delegate — build a sub-project in isolation and relay its directives",
    )
    parser.add_argument(
        "source_root",
        type=Path,
        help="Path to the delegated sub-project",
    )
    parser.add_argument(
        "--report-dir",
        type=Path,
        default=None,
        help="Directory to write delegate_report.json",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Command to run in the staged copy instead of building and running the helper (after --)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]

    try:
        run_delegated_build(
            args.source_root,
            command=command or None,
            report_dir=args.report_dir,
        )
    except ChildFailure as e:
        logger.error("%s", e)
        return e.exit_status()
    except SpawnError as e:
        logger.error("%s", e)
        return 127
    except StagingError as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
