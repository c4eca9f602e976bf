"""
DirectiveRelay — byte-exact passthrough of the child's output.

Each stdout line is already a directive in the orchestrator's protocol,
so lines are written as captured: same bytes, same order, same line
endings.
"""
from __future__ import annotations

from typing import BinaryIO, Iterable


def relay_directives(lines: Iterable[bytes], stream: BinaryIO) -> int:
    """Write every captured stdout line to *stream*.  Returns the line count."""
    count = 0
    for line in lines:
        stream.write(line)
        count += 1
    stream.flush()
    return count


def relay_diagnostics(data: bytes, stream: BinaryIO) -> int:
    """Write the captured diagnostic bytes to *stream*.  Returns the byte count."""
    if data:
        stream.write(data)
    stream.flush()
    return len(data)
