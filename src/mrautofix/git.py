"""Working-tree inspection through the ``git`` CLI.

Only read-only commands are issued: the auto-fix engine needs to know which
branch is checked out and whether the tree is dirty, nothing more. Commits
and pushes are left to the user.
"""

from __future__ import annotations

import logging
import subprocess  # noqa: S404

logger = logging.getLogger(__name__)


class GitError(Exception):
    """Raised when a git command fails."""

    def __init__(self, message: str, stderr: str = "", returncode: int = 1) -> None:
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode


class GitNotFoundError(GitError):
    """Raised when git is not installed."""

    def __init__(self) -> None:
        super().__init__("git not found on PATH. Install git to enable auto-fix.")


def run_git(*args: str, cwd: str | None = None) -> str:
    """Run a git command and return stdout.

    Raises:
        GitNotFoundError: If git is not installed.
        GitError: If the command exits non-zero or *cwd* does not exist.
    """
    cmd = ["git", *args]
    logger.debug("Running: %s (cwd=%s)", " ".join(cmd), cwd)
    try:
        result = subprocess.run(  # noqa: S603
            cmd,
            capture_output=True,
            text=True,
            check=False,
            cwd=cwd,
        )
    except FileNotFoundError as exc:
        if exc.filename == "git":
            raise GitNotFoundError from None
        msg = f"Working directory does not exist: {cwd}"
        raise GitError(msg) from exc
    except NotADirectoryError as exc:
        msg = f"Working directory is not a directory: {cwd}"
        raise GitError(msg) from exc

    if result.returncode != 0:
        raise GitError(
            result.stderr.strip() or f"git {args[0]} failed",
            stderr=result.stderr,
            returncode=result.returncode,
        )
    return result.stdout


def detect_current_branch(cwd: str | None = None) -> str:
    """Return the checked-out branch name.

    Raises:
        GitError: On a detached HEAD or outside a repository.
    """
    branch = run_git("rev-parse", "--abbrev-ref", "HEAD", cwd=cwd).strip()
    if not branch or branch == "HEAD":
        msg = "HEAD is detached; no branch is checked out"
        raise GitError(msg)
    return branch


def has_uncommitted_changes(cwd: str | None = None) -> bool:
    """True when ``git status --porcelain`` reports anything."""
    return bool(run_git("status", "--porcelain", cwd=cwd).strip())
