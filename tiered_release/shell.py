"""Shell and git utilities.

Provides a thin wrapper around subprocess calls for git operations, plus the
output formatting helpers used by every command.
"""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path

from .errors import GitError, GitTimeoutError

# Lock contention from a concurrent git process; worth retrying.
_TRANSIENT_MARKERS = ("index.lock", "Unable to create", "shallow.lock")


def git(
    *args: str,
    cwd: Path | str | None = None,
    check: bool = True,
    timeout: float | None = None,
) -> str:
    """Run a git command and return stdout.

    Args:
        *args: Arguments to pass to git (e.g., "status", "--short").
        cwd: Repository to run in. Defaults to the current directory.
        check: If True (default), raise GitError on non-zero exit. Set to
               False for commands that may legitimately fail (e.g., tag lookup).
        timeout: Seconds before the subprocess is killed.

    Returns:
        Stripped stdout from the git command.

    Raises:
        GitError: Non-zero exit with check=True. ``transient`` is set when
            stderr points at lock contention.
        GitTimeoutError: The command exceeded ``timeout``.
    """
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        raise GitTimeoutError(args, timeout or 0) from exc
    if check and result.returncode != 0:
        transient = any(marker in result.stderr for marker in _TRANSIENT_MARKERS)
        raise GitError(args, result.returncode, result.stderr, transient=transient)
    return result.stdout.strip()


def step(msg: str) -> None:
    """Print a visually distinct step header.

    Used to separate major phases of the release in terminal output.
    """
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}")


def warn(msg: str) -> None:
    """Print a warning to stderr without stopping."""
    print(f"WARNING: {msg}", file=sys.stderr)


def print_table(header: tuple[str, ...], rows: list[tuple[str, ...]]) -> None:
    """Print rows as left-aligned columns sized to their widest cell."""
    widths = [len(title) for title in header]
    for row in rows:
        widths = [max(width, len(cell)) for width, cell in zip(widths, row)]
    for row in (header, *rows):
        print("  " + "  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip())
