"""Line-based file patching for auto-fixes.

Files are read and written as UTF-8 with newline translation disabled, and
split on ``"\\n"`` only, so an edit followed by its inverse reproduces the
original bytes exactly.

Each change is written as soon as it is applied. When a later change of the
same fix fails, the earlier writes stay on disk; there is no rollback.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from mrautofix.models import ChangeType, FixExecutionResult

if TYPE_CHECKING:
    from mrautofix.models import CodeChange, CommentAnalysis

logger = logging.getLogger(__name__)


class PatchError(Exception):
    """Raised when a code change cannot be applied."""


def _read_lines(path: Path) -> list[str]:
    with path.open(encoding="utf-8", newline="") as f:
        return f.read().split("\n")


def _write_lines(path: Path, lines: list[str]) -> None:
    with path.open("w", encoding="utf-8", newline="") as f:
        f.write("\n".join(lines))


def _check_range(change: CodeChange) -> None:
    start, end = change.start_line, change.end_line
    if start is not None and start < 1:
        msg = f"Invalid line range in {change.file_path}: start line {start} is before line 1"
        raise PatchError(msg)
    if start is not None and end is not None and end < start:
        msg = f"Invalid line range in {change.file_path}: {start}-{end}"
        raise PatchError(msg)


def _splice(lines: list[str], change: CodeChange) -> list[str]:
    """Return *lines* with *change* applied."""
    start, end, new_code = change.start_line, change.end_line, change.new_code

    if change.change_type == ChangeType.REPLACE:
        if start is None or end is None or new_code is None:
            msg = "Replace operation requires start_line, end_line, and new_code"
            raise PatchError(msg)
        _check_range(change)
        if change.original_code:
            actual = "\n".join(lines[start - 1 : end])
            if actual.strip() != change.original_code.strip():
                msg = f"Original code mismatch in {change.file_path}:{start}-{end}"
                raise PatchError(msg)
        return [*lines[: start - 1], *new_code.split("\n"), *lines[end:]]

    if change.change_type == ChangeType.INSERT:
        if start is None or new_code is None:
            msg = "Insert operation requires start_line and new_code"
            raise PatchError(msg)
        _check_range(change)
        return [*lines[: start - 1], *new_code.split("\n"), *lines[start - 1 :]]

    if change.change_type == ChangeType.DELETE:
        if start is None or end is None:
            msg = "Delete operation requires start_line and end_line"
            raise PatchError(msg)
        _check_range(change)
        return [*lines[: start - 1], *lines[end:]]

    msg = f"Unsupported change type: {change.change_type}"
    raise PatchError(msg)


def apply_code_change(change: CodeChange, working_directory: str | Path | None = None) -> None:
    """Apply one change to its file and write the file back.

    Raises:
        PatchError: Missing file, missing fields, bad range, pre-image
            mismatch, or unsupported change type. The file is untouched.
    """
    path = Path(working_directory) / change.file_path if working_directory else Path(change.file_path)
    if not path.is_file():
        msg = f"File does not exist: {path}"
        raise PatchError(msg)

    lines = _splice(_read_lines(path), change)
    _write_lines(path, lines)
    logger.info("Applied %s to %s:%s", change.change_type, change.file_path, change.start_line or "?")


def apply_fix(analysis: CommentAnalysis, working_directory: str | Path | None = None) -> FixExecutionResult:
    """Apply every change of the analysis's fix decision, in order.

    Raises:
        PatchError: On the first change that fails, wrapped with the file path.
            Changes applied before it remain on disk.
    """
    decision = analysis.auto_fix_decision
    if decision is None:
        msg = f"Comment {analysis.id} has no fix decision"
        raise PatchError(msg)

    logger.info("Applying %s fix for comment %s: %s", decision.fix_type, analysis.id, decision.fix_reason)
    applied: list[CodeChange] = []
    for change in decision.code_changes:
        try:
            apply_code_change(change, working_directory)
        except (PatchError, OSError, UnicodeDecodeError) as exc:
            msg = f"Failed to apply change to {change.file_path}: {exc}"
            raise PatchError(msg) from exc
        applied.append(change)

    return FixExecutionResult(
        success=True,
        comment_id=analysis.id,
        file_path=decision.affected_files[0] if decision.affected_files else "unknown",
        change_description=decision.fix_reason,
        applied_changes=applied,
    )
