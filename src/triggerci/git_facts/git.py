# git.py
# Small, focused wrapper around the Git CLI.
# Local runs use it to describe the current checkout as a push Event, and the
# checkout action uses repo_root() as its default source.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: if git exits non-zero.
        FileNotFoundError: if git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def repo_root(cwd: Optional[str] = None) -> Path:
    """Return the absolute path to the root of the current Git repository."""
    # `git rev-parse --show-toplevel` prints the repo root directory
    # regardless of where the command is run from inside the repo.
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str] = None) -> str:
    """Return the full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> Optional[str]:
    """
    Return the checked-out branch name, or None when HEAD is detached.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    # a detached HEAD is reported literally as "HEAD"
    return None if name == "HEAD" else name


def remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    """Return the configured URL of a remote."""
    return _git(["remote", "get-url", remote], cwd=cwd)
