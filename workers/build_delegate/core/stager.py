"""
Stager — copy the sub-project into its staged root.

Symlinks are followed: a link to a file is staged as a regular file with
the target's content, a link to a directory as a real directory.
Dangling links and directory links that loop back onto one of their own
ancestors are rejected with StagingError.

Only the top level of the sub-project is checked against the profile's
excluded directories, which is where the toolchain keeps its build
artifacts.
"""
from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import BinaryIO, FrozenSet, List

from build_delegate.core.errors import StagingError
from build_delegate.policy.profile import DelegateProfile

logger = logging.getLogger(__name__)


def emit_rerun_directive(
    source_root: Path,
    stream: BinaryIO,
    profile: DelegateProfile,
) -> bytes:
    """Write the change-detection directive for the unstaged *source_root*."""
    line = (profile.rerun_line(str(source_root)) + "\n").encode("utf-8")
    stream.write(line)
    stream.flush()
    return line


def stage_tree(
    source_root: Path,
    staged_root: Path,
    profile: DelegateProfile,
) -> List[str]:
    """
    Copy *source_root* into the existing *staged_root*.

    Returns the sorted POSIX relative paths of every file copied.
    """
    if not source_root.is_dir():
        raise StagingError("Sub-project source root is not a directory", source_root)

    logger.info("Copying build crate source from %s to %s", source_root, staged_root)

    copied: List[str] = []
    try:
        real_root = source_root.resolve(strict=True)
    except OSError as e:
        raise StagingError(f"Cannot resolve source root ({e.strerror})", source_root) from e

    _copy_dir(
        source_root,
        staged_root,
        rel=Path(),
        ancestors=frozenset({real_root}),
        excluded=profile.excluded_dirs,
        copied=copied,
    )
    copied.sort()
    logger.debug("Staged %d files into %s", len(copied), staged_root)
    return copied


def _copy_dir(
    src: Path,
    dst: Path,
    rel: Path,
    ancestors: FrozenSet[Path],
    excluded: FrozenSet[str],
    copied: List[str],
) -> None:
    try:
        entries = sorted(os.scandir(src), key=lambda e: e.name)
    except OSError as e:
        raise StagingError(f"Cannot list directory ({e.strerror})", src) from e

    for entry in entries:
        item = Path(entry.path)
        target = dst / entry.name
        item_rel = rel / entry.name

        if rel == Path() and entry.name in excluded and entry.is_dir():
            logger.debug("Skipping build-artifact directory: %s", item)
            continue

        if entry.is_symlink() and not item.exists():
            raise StagingError("Dangling symlink in sub-project", item)

        try:
            if entry.is_dir():
                real = item.resolve(strict=True)
                if real in ancestors:
                    raise StagingError("Symlink cycle in sub-project", item)
                target.mkdir()
                _copy_dir(item, target, item_rel, ancestors | {real}, excluded, copied)
            else:
                shutil.copyfile(item, target)
                shutil.copymode(item, target)
                copied.append(item_rel.as_posix())
        except StagingError:
            raise
        except OSError as e:
            raise StagingError(f"Cannot stage entry ({e.strerror})", item) from e
