"""Automatic replies to review comments.

Runs beside the auto-fix engine with the same shape: gates, a per-instance
session quota, and a dry-run mode. Posting failures are recorded as results,
never raised.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mrautofix.models import (
    AutoResponseResults,
    ReplySessionSummary,
    ResponseExecutionResult,
    ResponseType,
    SkippedItem,
)

if TYPE_CHECKING:
    from mrautofix.config import AutoResponseConfig
    from mrautofix.feedback import MergeRequestSource
    from mrautofix.models import AutoResponseDecision, CommentAnalysis

logger = logging.getLogger(__name__)

_PLACEHOLDER_DISCUSSION_IDS = frozenset({"", "unknown", "fallback-analysis", "claude-api-fallback"})


class AutoResponseService:
    def __init__(self, config: AutoResponseConfig, source: MergeRequestSource) -> None:
        self.config = config
        self.source = source
        self.responses_posted_this_session = 0

    def _requires_approval(self, decision: AutoResponseDecision) -> bool:
        if decision.requires_approval:
            return True
        if decision.response_type == ResponseType.DISAGREEMENT and self.config.require_approval_for_disagreements:
            return True
        if decision.response_type == ResponseType.ANSWER_QUESTION and self.config.require_approval_for_answers:
            return True
        return decision.confidence < self.config.confidence_threshold

    def evaluate(self, analysis: CommentAnalysis) -> str | None:
        """Return why no reply may be posted, or ``None`` if one may."""
        decision = analysis.auto_response_decision
        if decision is None or not decision.should_respond:
            return "No response proposed"
        if self.responses_posted_this_session >= self.config.max_responses_per_session:
            return f"Session limit reached ({self.config.max_responses_per_session} responses)"
        if analysis.thread_metadata is not None and analysis.thread_metadata.is_resolved:
            return "Thread is resolved"
        if self._requires_approval(decision):
            return "Requires human approval"
        return None

    async def process_comment_analyses(
        self,
        analyses: list[CommentAnalysis],
        project_id: str,
        merge_request_iid: int,
    ) -> AutoResponseResults:
        results = AutoResponseResults()
        if not self.config.enabled:
            logger.info("Auto-response is disabled")
            return results

        for analysis in analyses:
            decision = analysis.auto_response_decision
            if decision is None or not decision.should_respond:
                continue

            reason = self.evaluate(analysis)
            if reason is not None:
                logger.info("Skipping response to comment %s: %s", analysis.id, reason)
                results.skipped_responses.append(SkippedItem(analysis=analysis, reason=reason))
                continue

            results.planned_responses.append(analysis)
            if self.config.dry_run:
                logger.info("Dry run: would reply to comment %s (%s)", analysis.id, decision.response_type)
                continue

            result = await self._post(analysis, project_id, merge_request_iid)
            if result.success:
                self.responses_posted_this_session += 1
            results.executed_responses.append(result)

        logger.info(
            "Auto-response done: %d planned, %d posted, %d skipped",
            len(results.planned_responses),
            sum(1 for r in results.executed_responses if r.success),
            len(results.skipped_responses),
        )
        return results

    async def _post(self, analysis: CommentAnalysis, project_id: str, merge_request_iid: int) -> ResponseExecutionResult:
        decision = analysis.auto_response_decision
        discussion_id = analysis.thread_metadata.discussion_id if analysis.thread_metadata else ""
        if discussion_id in _PLACEHOLDER_DISCUSSION_IDS:
            logger.warning("Not replying to comment %s: invalid discussion ID %r", analysis.id, discussion_id)
            return ResponseExecutionResult(
                success=False,
                error=f"Invalid or placeholder discussion ID: {discussion_id}",
                response_content=decision.response_content,
                discussion_id=discussion_id,
            )

        try:
            note = await self.source.create_note(project_id, merge_request_iid, discussion_id, decision.response_content)
        except Exception as exc:
            logger.warning("Failed to post reply to discussion %s: %s", discussion_id, exc)
            return ResponseExecutionResult(
                success=False,
                error=str(exc),
                response_content=decision.response_content,
                discussion_id=discussion_id,
            )

        note_id = note.get("id") if isinstance(note, dict) else None
        return ResponseExecutionResult(
            success=True,
            note_id=str(note_id) if note_id is not None else None,
            response_content=decision.response_content,
            discussion_id=discussion_id,
        )

    def get_session_summary(self) -> ReplySessionSummary:
        limit = self.config.max_responses_per_session
        return ReplySessionSummary(
            responses_posted=self.responses_posted_this_session,
            remaining_responses=max(0, limit - self.responses_posted_this_session),
            session_limit=limit,
        )
