"""Version-control operations used by the rollback strategy.

Only tracked-file modifications are ever discarded; untracked files are
left alone.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


def _run_git(args: list[str], cwd: Path | None = None) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["git", *args],
        cwd=str(cwd) if cwd else None,
        capture_output=True,
        text=True,
    )


def is_work_tree(cwd: Path | None = None) -> bool:
    """Check if the directory is inside a git working tree."""
    try:
        result = _run_git(["rev-parse", "--is-inside-work-tree"], cwd)
    except FileNotFoundError:
        logger.warning("git executable not found")
        return False
    return result.returncode == 0 and result.stdout.strip() == "true"


def has_uncommitted_changes(cwd: Path | None = None) -> bool:
    """Check if the working tree has any uncommitted changes."""
    try:
        result = _run_git(["status", "--porcelain"], cwd)
    except FileNotFoundError:
        return False
    if result.returncode != 0:
        return False
    return bool(result.stdout.strip())


def discard_tracked_changes(cwd: Path | None = None) -> None:
    """Unstage everything, then restore tracked files to HEAD.

    Raises:
        subprocess.CalledProcessError: If the checkout fails.
    """
    # Nothing staged is not an error here
    reset = _run_git(["reset", "HEAD", "--"], cwd)
    if reset.returncode != 0:
        logger.debug("git reset returned %d: %s", reset.returncode, reset.stderr.strip())

    subprocess.run(
        ["git", "checkout", "--", "."],
        cwd=str(cwd) if cwd else None,
        capture_output=True,
        text=True,
        check=True,
    )
