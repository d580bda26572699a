"""Merge request feedback orchestration.

One run: resolve the merge request, fetch its discussions (and diffs when
available), split notes into actionable and context-only, classify the
requested window of actionable notes in batches, filter the results, then
hand them to the auto-response and auto-fix engines.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from fastmcp.utilities.async_utils import call_sync_fn_in_threadpool
from pydantic import BaseModel, Field

from mrautofix.autofix import AutoFixService
from mrautofix.autoresponse import AutoResponseService
from mrautofix.classifier import AnalysisContext, CommentClassifier, HeuristicClassifier, create_analysis_summary
from mrautofix.config import Config
from mrautofix.filters import filter_analyses
from mrautofix.git import GitError, detect_current_branch
from mrautofix.models import (
    AppliedFilters,
    CommentAnalysis,
    CommentCategory,
    MergeRequestRef,
    MrFeedbackAnalysis,
    MrWithAnalysis,
    PaginationInfo,
    RiskLevel,
)
from mrautofix.scheduler import analyze_in_batches
from mrautofix.threads import build_thread_context, get_thread_summary, partition_notes

if TYPE_CHECKING:
    from fastmcp.server.context import Context

    from mrautofix.models import Discussion
    from mrautofix.threads import NoteWithContext

logger = logging.getLogger(__name__)

_REASONING_LIMIT = 200
_BODY_LIMIT = 100
_DECISION_REASON_LIMIT = 100
_RESPONSE_CONTENT_LIMIT = 200
_LIST_LIMIT = 3


class FeedbackError(Exception):
    """Raised when a feedback run cannot proceed (no project, no merge request)."""


class MergeRequestSource(ABC):
    """Where merge requests, their discussions and diffs come from."""

    @abstractmethod
    async def get_merge_request(self, project_id: str, iid: int | str) -> MergeRequestRef: ...

    @abstractmethod
    async def find_merge_request_for_branch(self, project_id: str, branch: str) -> MergeRequestRef | None: ...

    @abstractmethod
    async def list_discussions(self, project_id: str, iid: int | str) -> list[Discussion]: ...

    @abstractmethod
    async def get_diffs(self, project_id: str, iid: int | str) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def create_note(self, project_id: str, iid: int | str, discussion_id: str, body: str) -> dict[str, Any]: ...


class AnalyzeRequest(BaseModel):
    """Parameters of one feedback analysis run."""

    project_id: str | None = Field(default=None, description="Project ID or path; falls back to config/GITLAB_PROJECT_ID")
    merge_request_iid: int | None = Field(default=None, description="MR IID; when omitted the MR is found by branch")
    branch_name: str | None = Field(default=None, description="Source branch; defaults to the checked-out branch")
    working_directory: str | None = Field(default=None, description="Checkout used for branch detection and fixes")
    max_comments: int | None = Field(default=None, ge=1, le=100, description="Window size (default from config)")
    offset: int = Field(default=0, ge=0, description="Zero-based offset into the actionable notes")
    category_filter: list[CommentCategory] | None = Field(default=None, description="Only keep these categories")
    min_severity: int | None = Field(default=None, ge=1, le=10, description="Only keep analyses at or above this severity")
    risk_threshold: RiskLevel | None = Field(default=None, description="Only keep analyses at or below this risk")
    summary_only: bool = Field(default=False, description="Condensed output; skips auto-response and auto-fix")
    include_resolved: bool = Field(default=False, description="Treat notes of resolved threads as actionable")


def _truncate(text: str, limit: int) -> str:
    return text[:limit]


def condense_analysis(analysis: CommentAnalysis) -> CommentAnalysis:
    """Trim long texts and lists for summary-only output."""
    update: dict[str, Any] = {
        "reasoning": _truncate(analysis.reasoning, _REASONING_LIMIT),
        "body": _truncate(analysis.body, _BODY_LIMIT),
        "suggested_response": None,
        "agreement_assessment": None,
        "risk_assessment": None,
        "question_assessment": None,
    }
    if analysis.auto_response_decision is not None:
        decision = analysis.auto_response_decision
        update["auto_response_decision"] = decision.model_copy(
            update={
                "response_reason": _truncate(decision.response_reason, _DECISION_REASON_LIMIT),
                "response_content": _truncate(decision.response_content, _RESPONSE_CONTENT_LIMIT),
            }
        )
    if analysis.auto_fix_decision is not None:
        decision = analysis.auto_fix_decision
        update["auto_fix_decision"] = decision.model_copy(
            update={
                "fix_reason": _truncate(decision.fix_reason, _DECISION_REASON_LIMIT),
                "code_changes": decision.code_changes[:_LIST_LIMIT],
                "prerequisites": decision.prerequisites[:_LIST_LIMIT],
            }
        )
    return analysis.model_copy(update=update)


class MrFeedbackService:
    """Runs feedback analysis for merge requests.

    The service owns one :class:`AutoFixService` and one
    :class:`AutoResponseService` for its whole lifetime, so their session
    quotas span every run until :meth:`reconfigure` starts a new session.
    """

    def __init__(
        self,
        source: MergeRequestSource,
        classifier: CommentClassifier | None = None,
        config: Config | None = None,
    ) -> None:
        self.source = source
        self.classifier = classifier or HeuristicClassifier()
        self.reconfigure(config or Config())

    def reconfigure(
        self,
        config: Config,
        *,
        source: MergeRequestSource | None = None,
        classifier: CommentClassifier | None = None,
    ) -> None:
        """Apply a new configuration; fix and reply quotas start over.

        *source* and *classifier* replace the current ones when given.
        """
        if source is not None:
            self.source = source
        if classifier is not None:
            self.classifier = classifier
        self.config = config
        self.auto_fix = AutoFixService(config.auto_fix)
        self.auto_response = AutoResponseService(config.auto_response, self.source)

    # -- Merge request resolution ------------------------------------------------

    def resolve_project_id(self, explicit: str | None = None) -> str:
        project_id = self.config.gitlab.effective_project_id(explicit)
        if not project_id:
            msg = "Project ID is required. Pass project_id, set [gitlab] project_id, or set GITLAB_PROJECT_ID."
            raise FeedbackError(msg)
        return project_id

    def _workdir(self, working_directory: str | None) -> str | None:
        return working_directory or self.config.auto_fix.working_directory

    async def find_merge_request_for_branch(
        self,
        project_id: str | None = None,
        branch_name: str | None = None,
        working_directory: str | None = None,
    ) -> MergeRequestRef:
        """Find the open merge request whose source is *branch_name* (default: current branch)."""
        project = self.resolve_project_id(project_id)
        branch = branch_name
        if not branch:
            try:
                branch = await call_sync_fn_in_threadpool(detect_current_branch, self._workdir(working_directory))
            except GitError as exc:
                msg = f"Cannot detect the current branch: {exc}. Pass branch_name or merge_request_iid."
                raise FeedbackError(msg) from exc

        merge_request = await self.source.find_merge_request_for_branch(project, branch)
        if merge_request is None:
            msg = f"No open merge request found for branch '{branch}' in project {project}"
            raise FeedbackError(msg)
        return merge_request

    async def _resolve_merge_request(self, request: AnalyzeRequest, project_id: str) -> MergeRequestRef:
        if request.merge_request_iid is not None:
            return await self.source.get_merge_request(project_id, request.merge_request_iid)
        return await self.find_merge_request_for_branch(project_id, request.branch_name, request.working_directory)

    async def _fetch_diffs(self, project_id: str, iid: int) -> list[dict[str, Any]] | None:
        try:
            return await self.source.get_diffs(project_id, iid)
        except Exception as exc:
            logger.warning("Could not fetch diffs for MR !%s, analyzing without them: %s", iid, exc)
            return None

    # -- Analysis ------------------------------------------------------------------

    async def _run(
        self,
        request: AnalyzeRequest,
        ctx: Context | None = None,
    ) -> tuple[MrFeedbackAnalysis, list[dict[str, Any]] | None]:
        project_id = self.resolve_project_id(request.project_id)
        merge_request = await self._resolve_merge_request(request, project_id)
        logger.info("Analyzing feedback for MR !%s (%s)", merge_request.iid, merge_request.title)

        discussions = await self.source.list_discussions(project_id, merge_request.iid)
        diffs = await self._fetch_diffs(project_id, merge_request.iid)
        if ctx:
            await ctx.info(f"Fetched {len(discussions)} discussion(s) for MR !{merge_request.iid}")

        partition = partition_notes(discussions, include_resolved=request.include_resolved)
        total_available = len(partition.actionable)
        max_comments = request.max_comments or self.config.analysis.default_max_comments

        async def analyze(item: NoteWithContext) -> CommentAnalysis:
            context = AnalysisContext(
                title=merge_request.title,
                description=merge_request.description,
                source_branch=merge_request.source_branch,
                target_branch=merge_request.target_branch,
                diffs=diffs,
                thread_context=build_thread_context(item.thread_metadata),
            )
            logger.debug("Classifying note %s: %s", item.note.id, get_thread_summary(item.thread_metadata))
            return await self.classifier.analyze_comment(item.note, context)

        logger.info(
            "%d actionable and %d context-only note(s); classifier: %s",
            total_available,
            len(partition.context_only),
            self.classifier.name,
        )
        analyses = await analyze_in_batches(
            partition.actionable,
            analyze,
            offset=request.offset,
            max_comments=max_comments,
            batch_size=self.config.analysis.batch_size,
            batch_delay=self.config.analysis.batch_delay_seconds,
            ctx=ctx,
        )

        filtered = filter_analyses(
            analyses,
            category_filter=request.category_filter,
            min_severity=request.min_severity,
            risk_threshold=request.risk_threshold,
        )

        summary = create_analysis_summary(filtered)
        summary.total_original_comments = total_available
        summary.total_filtered_comments = len(filtered)
        summary.pagination_info = PaginationInfo(
            offset=request.offset,
            max_comments=max_comments,
            has_more=request.offset + max_comments < total_available,
            total_available=total_available,
        )
        summary.applied_filters = AppliedFilters(
            category_filter=request.category_filter,
            min_severity=request.min_severity,
            risk_threshold=request.risk_threshold,
            include_resolved=request.include_resolved,
        )
        summary.thread_statistics = partition.stats

        if request.summary_only:
            condensed = merge_request.model_copy(update={"description": ""})
            result = MrFeedbackAnalysis(
                merge_request=condensed,
                comment_analysis=[condense_analysis(a) for a in filtered],
                summary=summary,
            )
            return result, diffs

        result = MrFeedbackAnalysis(merge_request=merge_request, comment_analysis=filtered, summary=summary)

        try:
            result.auto_response_results = await self.auto_response.process_comment_analyses(
                filtered, project_id, merge_request.iid
            )
        except Exception as exc:
            logger.warning("Auto-response processing failed: %s", exc)

        try:
            result.auto_fix_results = await self.auto_fix.process_comment_analyses(
                filtered, merge_request, self._workdir(request.working_directory)
            )
        except Exception as exc:
            logger.warning("Auto-fix processing failed: %s", exc)

        return result, diffs

    async def analyze_mr_feedback(self, request: AnalyzeRequest, ctx: Context | None = None) -> MrFeedbackAnalysis:
        """Analyze the merge request's review feedback.

        Raises:
            FeedbackError: Missing project ID or no merge request for the branch.
            GitLabError: Fetching the merge request or its discussions failed.
        """
        result, _diffs = await self._run(request, ctx)
        return result

    async def get_mr_with_analysis(self, request: AnalyzeRequest, ctx: Context | None = None) -> MrWithAnalysis:
        """Like :meth:`analyze_mr_feedback`, plus the merge request's raw diffs."""
        result, diffs = await self._run(request, ctx)
        return MrWithAnalysis(**dict(result), diffs=diffs)
