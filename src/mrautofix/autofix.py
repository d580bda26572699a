"""Auto-fix engine: decide which proposed fixes may be applied, then apply them.

A fix only reaches the file system after passing every gate, in order:

1. auto-fix is enabled
2. the classifier proposed a fix (``should_fix``)
3. the session quota is not exhausted
4. the thread is not resolved
5. the estimated risk is within ``risk_threshold``
6. the fix confidence reaches ``confidence_threshold``
7. every touched file has an allowed extension and is outside the excluded paths
8. no human approval is required

Before any of that, the checkout must be on the merge request's source
branch. The session counter lives on the service instance; a new
:class:`AutoFixService` starts a new session.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from fastmcp.utilities.async_utils import call_sync_fn_in_threadpool

from mrautofix.git import GitError, detect_current_branch, has_uncommitted_changes
from mrautofix.models import (
    AutoFixResults,
    FixExecutionResult,
    FixType,
    GitStatus,
    SessionSummary,
    SkippedItem,
)
from mrautofix.patcher import PatchError, apply_fix

if TYPE_CHECKING:
    from mrautofix.config import AutoFixConfig
    from mrautofix.models import AutoFixDecision, CommentAnalysis, MergeRequestRef

logger = logging.getLogger(__name__)

REASON_SESSION_LIMIT = "Session limit reached ({limit} fixes)"
REASON_RESOLVED = "Thread is resolved"
REASON_RISK = "Risk too high ({risk})"
REASON_CONFIDENCE = "Confidence too low ({percent}%)"
REASON_FILE_SCOPE = "Restricted file types or excluded paths"
REASON_APPROVAL = "Requires human approval"


def _percent(value: float) -> int:
    return round(value * 100)


class AutoFixService:
    """Applies classifier-proposed fixes under the policy in :class:`AutoFixConfig`."""

    def __init__(self, config: AutoFixConfig) -> None:
        self.config = config
        self.fixes_applied_this_session = 0

    # -- Gates -----------------------------------------------------------------

    @staticmethod
    def is_candidate(analysis: CommentAnalysis) -> bool:
        return analysis.auto_fix_decision is not None and analysis.auto_fix_decision.should_fix

    def _resolve_workdir(self, working_directory: str | None) -> str | None:
        return working_directory or self.config.working_directory

    def _extension_allowed(self, file_path: str) -> bool:
        if not self.config.allowed_file_types:
            return True
        return Path(file_path).suffix.lower() in self.config.allowed_file_types

    def _path_excluded(self, file_path: str, base: Path) -> bool:
        try:
            resolved = (base / file_path).resolve()
        except (ValueError, OSError) as exc:
            logger.warning("Unresolvable path %r in proposed fix: %s", file_path, exc)
            return True
        if not resolved.is_relative_to(base):
            return True
        for excluded in self.config.excluded_paths:
            if file_path.startswith(excluded):
                return True
            if resolved.is_relative_to((base / excluded).resolve()):
                return True
        return False

    def _touched_files(self, decision: AutoFixDecision) -> list[str]:
        files = list(decision.affected_files)
        files.extend(change.file_path for change in decision.code_changes if change.file_path not in files)
        return files

    def _requires_approval(self, decision: AutoFixDecision) -> bool:
        if decision.requires_approval:
            return True
        if decision.fix_type == FixType.SIMPLE_REFACTOR and self.config.require_approval_for_refactors:
            return True
        return decision.fix_type == FixType.BUG_FIX and self.config.require_approval_for_bug_fixes

    def evaluate(self, analysis: CommentAnalysis, working_directory: str | None = None) -> str | None:
        """Return why the analysis's fix must be skipped, or ``None`` if it may be applied.

        The first failing gate wins. Analyses without a proposed fix are not
        candidates and always get a reason.
        """
        decision = analysis.auto_fix_decision
        if decision is None or not decision.should_fix:
            return "No fix proposed"

        if self.fixes_applied_this_session >= self.config.max_fixes_per_session:
            return REASON_SESSION_LIMIT.format(limit=self.config.max_fixes_per_session)

        if analysis.thread_metadata is not None and analysis.thread_metadata.is_resolved:
            return REASON_RESOLVED

        if decision.estimated_risk.index > self.config.risk_threshold.index:
            return REASON_RISK.format(risk=decision.estimated_risk.value)

        if decision.confidence < self.config.confidence_threshold:
            return REASON_CONFIDENCE.format(percent=_percent(decision.confidence))

        base = Path(self._resolve_workdir(working_directory) or Path.cwd()).resolve()
        if any(
            not self._extension_allowed(path) or self._path_excluded(path, base)
            for path in self._touched_files(decision)
        ):
            return REASON_FILE_SCOPE

        if self._requires_approval(decision):
            return REASON_APPROVAL

        return None

    # -- Git safety ------------------------------------------------------------

    def get_git_status(self, merge_request: MergeRequestRef, working_directory: str | None = None) -> GitStatus:
        """Compare the checked-out branch with the MR source branch.

        Any git failure yields a wrong-branch status, which blocks fixing.
        """
        workdir = self._resolve_workdir(working_directory)
        try:
            current = detect_current_branch(workdir)
            dirty = has_uncommitted_changes(workdir)
        except GitError as exc:
            logger.warning("Git status check failed in %s: %s", workdir or ".", exc)
            return GitStatus(
                is_on_correct_branch=False,
                current_branch="unknown",
                expected_branch=merge_request.source_branch or "unknown",
                has_uncommitted_changes=False,
            )
        return GitStatus(
            is_on_correct_branch=bool(merge_request.source_branch) and current == merge_request.source_branch,
            current_branch=current,
            expected_branch=merge_request.source_branch,
            has_uncommitted_changes=dirty,
        )

    # -- Processing --------------------------------------------------------------

    async def process_comment_analyses(
        self,
        analyses: list[CommentAnalysis],
        merge_request: MergeRequestRef,
        working_directory: str | None = None,
    ) -> AutoFixResults:
        """Evaluate every analysis and apply the fixes that pass all gates.

        Fixes are applied one at a time in analysis order. A failed fix is
        recorded and processing moves on to the next one.
        """
        workdir = self._resolve_workdir(working_directory)
        git_status = await call_sync_fn_in_threadpool(self.get_git_status, merge_request, workdir)
        results = AutoFixResults(git_status=git_status)

        if not self.config.enabled:
            logger.info("Auto-fix is disabled")
            return results

        if not git_status.is_on_correct_branch:
            logger.warning(
                "Auto-fix skipped: not on the MR branch (expected %s, current %s)",
                git_status.expected_branch,
                git_status.current_branch,
            )
            return results

        if git_status.has_uncommitted_changes:
            logger.warning("Uncommitted changes detected in %s; fixes will mix with them", workdir or ".")

        logger.info(
            "Auto-fix session: %d/%d applied, risk<=%s, confidence>=%.2f, dry_run=%s",
            self.fixes_applied_this_session,
            self.config.max_fixes_per_session,
            self.config.risk_threshold,
            self.config.confidence_threshold,
            self.config.dry_run,
        )

        for analysis in analyses:
            if not self.is_candidate(analysis):
                continue

            reason = self.evaluate(analysis, workdir)
            if reason is not None:
                logger.info("Skipping fix for comment %s: %s", analysis.id, reason)
                results.skipped_fixes.append(SkippedItem(analysis=analysis, reason=reason))
                continue

            results.planned_fixes.append(analysis)
            if self.config.dry_run:
                logger.info("Dry run: fix for comment %s would touch %s", analysis.id, analysis.auto_fix_decision.affected_files)
                continue

            results.applied_fixes.append(await self._apply(analysis, workdir))

        logger.info(
            "Auto-fix done: %d planned, %d executed, %d skipped",
            len(results.planned_fixes),
            len(results.applied_fixes),
            len(results.skipped_fixes),
        )
        return results

    async def _apply(self, analysis: CommentAnalysis, workdir: str | None) -> FixExecutionResult:
        decision = analysis.auto_fix_decision
        try:
            result = await call_sync_fn_in_threadpool(apply_fix, analysis, workdir)
        except PatchError as exc:
            logger.warning("Fix for comment %s failed: %s", analysis.id, exc)
            return FixExecutionResult(
                success=False,
                comment_id=analysis.id,
                file_path=decision.affected_files[0] if decision.affected_files else "unknown",
                change_description=decision.fix_reason,
                error=str(exc),
                applied_changes=[],
            )
        self.fixes_applied_this_session += 1
        logger.info("Fix applied for comment %s to %s", analysis.id, result.file_path)
        return result

    def get_session_summary(self) -> SessionSummary:
        limit = self.config.max_fixes_per_session
        return SessionSummary(
            fixes_applied=self.fixes_applied_this_session,
            remaining_fixes=max(0, limit - self.fixes_applied_this_session),
            session_limit=limit,
        )
