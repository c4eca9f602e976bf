"""
Staging path naming.

Every invocation gets its own directory under the staging root.  The
segment name mixes the seed with a nanosecond timestamp and a random
token, and the directory is claimed with an exclusive ``mkdir`` so two
processes can never end up sharing one, without any locking.
"""
from __future__ import annotations

import logging
import re
import secrets
import time
from pathlib import Path
from typing import Iterable

from build_delegate.core.errors import StagingError

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_seed(seed: str) -> str:
    """Reduce *seed* to characters that are safe in a single path segment."""
    cleaned = _UNSAFE.sub("_", seed).strip("._")
    return cleaned or "crate"


def check_staging_root(root: Path, projects: Iterable[Path]) -> None:
    """
    Refuse a staging *root* that equals or lies under any of *projects*.

    A root inside the sub-project would be copied into itself, and a root
    anywhere under the parent project is found again by the toolchain's
    upward configuration search.
    """
    resolved = root.resolve()
    for project in projects:
        tree = project.resolve()
        if resolved == tree or tree in resolved.parents:
            raise StagingError(f"Staging root lies inside the project tree {tree}", root)


def candidate_name(prefix: str, seed: str) -> str:
    return f"{prefix}-{sanitize_seed(seed)}-{time.time_ns()}-{secrets.token_hex(4)}"


def staging_path(
    root: Path,
    seed: str,
    prefix: str = "build-script",
    max_attempts: int = 16,
) -> Path:
    """
    Create and return a fresh, empty directory under *root*.

    Parameters
    ----------
    root : Path
        Staging root (created if missing).
    seed : str
        Identifying name of the sub-project, mixed into the segment name.
    prefix : str
        Leading segment, identifies directories owned by this engine.
    max_attempts : int
        Number of names tried before giving up.

    Raises
    ------
    StagingError
        If the root cannot be created or every candidate name is taken.
    """
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StagingError(f"Cannot create staging root ({e.strerror})", root) from e

    for attempt in range(1, max_attempts + 1):
        path = root / candidate_name(prefix, seed)
        try:
            path.mkdir(exist_ok=False)
        except FileExistsError:
            logger.debug("Staging name collision on attempt %d: %s", attempt, path)
            continue
        except OSError as e:
            raise StagingError(f"Cannot create staging directory ({e.strerror})", path) from e
        return path

    raise StagingError(
        f"No free staging directory after {max_attempts} attempts", root
    )
