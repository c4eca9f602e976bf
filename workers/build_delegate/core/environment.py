"""
Environment forwarding for the nested toolchain.

Toolchains resolve configuration by walking up from the working
directory, which the staged root already cuts off from the parent
project.  The second route is explicit variables: flag variables carry
the parent's toolchain flags and scope variables point the nested build
back into the parent's tree.  Flag variables are dropped and scope
variables are re-rooted at the staged directory.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Mapping

from build_delegate.policy.profile import DelegateProfile


def forward_environment(
    environ: Mapping[str, str],
    staged_root: Path,
    profile: DelegateProfile,
) -> Dict[str, str]:
    """Compute the child environment from the ambient *environ* snapshot."""
    env: Dict[str, str] = {}

    for name, value in environ.items():
        if profile.is_reserved(name):
            env[name] = value

    for name in profile.passthrough_vars:
        if name in environ:
            env[name] = environ[name]

    for name in [n for n in env if profile.is_scrubbed(n)]:
        del env[name]

    for name, rel in profile.scope_vars.items():
        env[name] = str(staged_root / rel)

    return env


def scope_escapes(env: Mapping[str, str], staged_root: Path, profile: DelegateProfile) -> Dict[str, str]:
    """Return the scope variables in *env* that do not lie under *staged_root*."""
    root = staged_root.resolve()
    escaped: Dict[str, str] = {}
    for name in profile.scope_vars:
        if name not in env:
            continue
        value = Path(env[name]).resolve()
        if value != root and root not in value.parents:
            escaped[name] = env[name]
    return escaped
