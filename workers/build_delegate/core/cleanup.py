"""
Cleanup — scoped ownership of the staged root.

``staged_directory`` names the directory on entry and removes it on
every exit path.  Removal failures are logged as CleanupError and never
replace the invocation's own result or exception.
"""
from __future__ import annotations

import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from build_delegate.core.errors import CleanupError
from build_delegate.core.naming import staging_path

logger = logging.getLogger(__name__)


def remove_staged_root(path: Path, root: Path) -> bool:
    """
    Recursively remove *path*, which must lie strictly under *root*.

    Returns True when the directory is gone afterwards.
    """
    resolved_root = root.resolve()
    resolved = path.resolve()
    if resolved == resolved_root or resolved_root not in resolved.parents:
        err = CleanupError(f"Refusing to remove directory outside staging root {root}", path)
        logger.error("%s", err)
        return False

    logger.info("Removing build crate staging dir: %s", path)
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return True
    except OSError as e:
        err = CleanupError(f"Couldn't clean up build dir ({e.strerror or e})", path)
        logger.warning("%s", err)
        return False
    return True


@contextmanager
def staged_directory(
    root: Path,
    seed: str,
    prefix: str = "build-script",
    keep: bool = False,
    max_attempts: int = 16,
) -> Iterator[Path]:
    """Yield a fresh staging directory under *root*; remove it on exit unless *keep*."""
    path = staging_path(root, seed, prefix=prefix, max_attempts=max_attempts)
    try:
        yield path
    finally:
        if keep:
            logger.warning("Keeping staged copy for debugging: %s", path)
        else:
            remove_staged_root(path, root)
