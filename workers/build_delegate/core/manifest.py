"""
Manifest path qualification.

The staged manifest no longer sits next to the sub-project, so relative
``path = "..."`` entries (path dependencies, lib/bin paths) would resolve
inside the staging directory.  They are rewritten to be rooted at the
original source root.

This is a textual rewrite over the common spellings, not a manifest
parser.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path

from build_delegate.core.errors import StagingError

logger = logging.getLogger(__name__)

# path = "x", path="x", path = 'x', path='x'; the value must not already be
# absolute (POSIX root, UNC/backslash root, or Windows drive letter).
_RELATIVE_PATH_KEY = re.compile(
    r"""(?P<key>\bpath\s*=\s*)(?P<quote>["'])(?![/\\]|[A-Za-z]:[/\\])"""
)


def qualify_manifest_paths_in_text(manifest_text: str, base_dir: Path) -> str:
    """Prefix every relative ``path`` value in *manifest_text* with *base_dir*."""
    base = base_dir.as_posix().rstrip("/")
    return _RELATIVE_PATH_KEY.sub(
        lambda m: f"{m.group('key')}{m.group('quote')}{base}/",
        manifest_text,
    )


def qualify_manifest_paths(manifest_path: Path, base_dir: Path) -> bool:
    """
    Rewrite *manifest_path* in place.

    Returns False when there is no manifest to rewrite.
    """
    if not manifest_path.is_file():
        logger.debug("No manifest at %s, skipping path qualification", manifest_path)
        return False

    try:
        text = manifest_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise StagingError(f"Can't read manifest ({e})", manifest_path) from e

    qualified = qualify_manifest_paths_in_text(text, base_dir)
    if qualified == text:
        return True

    try:
        manifest_path.write_text(qualified, encoding="utf-8")
    except OSError as e:
        raise StagingError(f"Failed to write qualified manifest ({e.strerror})", manifest_path) from e

    logger.debug("Qualified relative paths in %s against %s", manifest_path, base_dir)
    return True
