"""Tests for git working-tree inspection."""

from __future__ import annotations

import subprocess
from unittest.mock import patch

import pytest

from mrautofix.git import GitError, GitNotFoundError, detect_current_branch, has_uncommitted_changes, run_git


def _completed(stdout: str = "", stderr: str = "", returncode: int = 0) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=["git"], returncode=returncode, stdout=stdout, stderr=stderr)


class TestRunGit:
    def test_returns_stdout(self):
        with patch("subprocess.run", return_value=_completed("ok\n")) as mock_run:
            assert run_git("status", cwd="/repo") == "ok\n"
        assert mock_run.call_args.args[0] == ["git", "status"]
        assert mock_run.call_args.kwargs["cwd"] == "/repo"

    def test_nonzero_exit(self):
        with (
            patch("subprocess.run", return_value=_completed(stderr="fatal: not a git repository\n", returncode=128)),
            pytest.raises(GitError, match="not a git repository") as exc_info,
        ):
            run_git("status")
        assert exc_info.value.returncode == 128

    def test_git_not_installed(self):
        error = FileNotFoundError(2, "No such file or directory", "git")
        with patch("subprocess.run", side_effect=error), pytest.raises(GitNotFoundError):
            run_git("status")

    def test_missing_working_directory(self):
        error = FileNotFoundError(2, "No such file or directory", "/missing")
        with patch("subprocess.run", side_effect=error), pytest.raises(GitError, match="does not exist"):
            run_git("status", cwd="/missing")


class TestDetectCurrentBranch:
    def test_branch(self):
        with patch("subprocess.run", return_value=_completed("feature/x\n")):
            assert detect_current_branch() == "feature/x"

    def test_detached_head(self):
        with patch("subprocess.run", return_value=_completed("HEAD\n")), pytest.raises(GitError, match="detached"):
            detect_current_branch()


class TestHasUncommittedChanges:
    def test_clean(self):
        with patch("subprocess.run", return_value=_completed("")):
            assert has_uncommitted_changes() is False

    def test_dirty(self):
        with patch("subprocess.run", return_value=_completed(" M src/app.py\n")):
            assert has_uncommitted_changes() is True
