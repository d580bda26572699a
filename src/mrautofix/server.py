"""FastMCP server for mrautofix.

Exposes tools that triage GitLab merge request feedback and, when enabled,
apply safe fixes to the local checkout.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Annotated
from urllib.parse import unquote, urlparse

from fastmcp import FastMCP
from fastmcp.server.dependencies import get_context
from fastmcp.server.lifespan import lifespan
from fastmcp.server.middleware.error_handling import ErrorHandlingMiddleware
from fastmcp.server.middleware.logging import LoggingMiddleware
from fastmcp.server.middleware.timing import TimingMiddleware
from pydantic import Field

from mrautofix import gitlab_api
from mrautofix.claude import create_classifier
from mrautofix.config import get_config, get_config_path, load_config, register_reload_callback, set_config
from mrautofix.feedback import AnalyzeRequest, FeedbackError, MrFeedbackService
from mrautofix.models import (
    CommentCategory,
    ConfigInfo,
    MergeRequestLookupResult,
    MrFeedbackAnalysis,
    MrWithAnalysis,
    RiskLevel,
    SessionSummary,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastmcp.server.context import Context

    from mrautofix.config import Config

logger = logging.getLogger(__name__)

_service: MrFeedbackService | None = None


async def _get_workspace_cwd(ctx: Context | None = None) -> str | None:
    """Resolve the user's checkout directory.

    Priority:
    1. MCP roots sent by the client (per window).
    2. ``MRAF_WORKSPACE`` env var.
    3. ``None``: the server's process cwd is used.
    """
    if ctx is not None:
        try:
            roots = await ctx.list_roots()
        except Exception as exc:
            logger.warning("MCP roots request failed: %s: %s", type(exc).__name__, exc)
            roots = []
        if roots:
            parsed = urlparse(str(roots[0].uri))
            if parsed.scheme == "file" and parsed.path:
                path = unquote(parsed.path)
                logger.info("Workspace from MCP roots: %s", path)
                return path
            logger.warning("MCP root URI has unsupported scheme %r (expected 'file')", parsed.scheme)

    env_ws = os.environ.get("MRAF_WORKSPACE")
    if env_ws:
        logger.debug("Workspace from MRAF_WORKSPACE: %s", env_ws)
        return env_ws
    return None


def _build_source(config: Config) -> gitlab_api.GitLabSource:
    return gitlab_api.GitLabSource(gitlab_api.GitLabClient(config.gitlab.effective_api_url()))


def get_service() -> MrFeedbackService:
    """Return the process-wide feedback service, creating it on first use."""
    global _service  # noqa: PLW0603
    config = get_config()
    if _service is None:
        _service = MrFeedbackService(
            _build_source(config),
            classifier=create_classifier(config.classifier),
            config=config,
        )
    return _service


def reset_service() -> None:
    """Drop the service so the next call builds a fresh one (for testing)."""
    global _service  # noqa: PLW0603
    _service = None


def _on_config_reload(config: Config) -> None:
    if _service is None:
        return
    source = None
    if config.gitlab.effective_api_url() != _service.config.gitlab.effective_api_url():
        logger.info("GitLab URL changed to %s, reconnecting", config.gitlab.effective_api_url())
        source = _build_source(config)
    classifier = None
    if config.classifier != _service.config.classifier:
        classifier = create_classifier(config.classifier)
    logger.info("Config changed, starting a new auto-fix session")
    _service.reconfigure(config, source=source, classifier=classifier)


@lifespan
async def startup(server: FastMCP) -> AsyncIterator[dict[str, object] | None]:  # noqa: ARG001
    """Load configuration and check that a GitLab token can be found."""
    config, config_path = load_config(os.environ.get("MRAF_WORKSPACE"))
    set_config(config, config_path=config_path)
    register_reload_callback(_on_config_reload)
    try:
        await gitlab_api.get_token()
    except gitlab_api.GitLabAuthError:
        logger.warning("No GitLab token found; tools will fail until GITLAB_TOKEN is set")
    yield {}


mcp = FastMCP(
    "mrautofix",
    lifespan=startup,
    instructions="""\
Triage GitLab merge request review feedback and apply safe automatic fixes.

## Workflow

1. `analyze_mr_feedback(summary_only=true)` for a quick overview of what reviewers said.
   Notes in resolved threads are context only unless `include_resolved=true`.
2. Page through the rest with `offset` while `summary.pagination_info.has_more` is true.
3. Narrow with `category_filter`, `min_severity` and `risk_threshold`.
4. Run without `summary_only` to let the auto-fix and auto-response engines act.
   Both are disabled and in dry-run mode unless `.mrautofix.toml` enables them.
5. `auto_fix_session_status()` shows how many fixes are left in this session.

## Auto-fix safety

Fixes are only applied when the local checkout is on the merge request's source
branch. Skipped fixes come back with a reason; do not retry a skip caused by
configuration. Call `show_config` to see the active limits.
""",
)


def _recovery_error(exc: Exception, *, tool_name: str, merge_request_iid: int | None = None) -> str:
    """Build an actionable error message with recovery hints."""
    msg = str(exc)
    low = msg.lower()

    if isinstance(exc, gitlab_api.GitLabAuthError):
        return f"{tool_name} failed: GitLab authentication problem. {msg}"

    if isinstance(exc, gitlab_api.GitLabError) and "rate limit" in low:
        return f"{tool_name} failed: GitLab API rate limit hit. Wait 60 seconds and retry."

    if "not found" in low or "404" in msg:
        hints = [f"{tool_name} failed: resource not found. {msg}."]
        if merge_request_iid is not None:
            hints.append(f"Verify MR !{merge_request_iid} exists in the project.")
        hints.append("Check project_id (numeric ID or 'group/project').")
        return " ".join(hints)

    if isinstance(exc, FeedbackError) and "project id" in low:
        return f"{tool_name} failed: {msg} Call show_config() to inspect the active settings."

    if isinstance(exc, FeedbackError) and "branch" in low:
        return (
            f"{tool_name} failed: {msg} "
            "Pass merge_request_iid or branch_name explicitly, or set MRAF_WORKSPACE in your MCP client config."
        )

    return f"{tool_name} failed: {msg}."


mcp.add_middleware(ErrorHandlingMiddleware(include_traceback=True, transform_errors=True))
mcp.add_middleware(TimingMiddleware())
mcp.add_middleware(LoggingMiddleware(include_payloads=True, max_payload_length=500))


async def _build_request(working_directory: str | None, ctx: Context, **params: object) -> AnalyzeRequest:
    cwd = working_directory or await _get_workspace_cwd(ctx)
    return AnalyzeRequest(working_directory=cwd, **params)


@mcp.tool(tags={"query"})
async def analyze_mr_feedback(  # noqa: PLR0913, PLR0917
    merge_request_iid: int | None = None,
    branch_name: str | None = None,
    project_id: str | None = None,
    working_directory: str | None = None,
    max_comments: Annotated[int | None, Field(ge=1, le=100)] = None,
    offset: Annotated[int, Field(ge=0)] = 0,
    category_filter: list[CommentCategory] | None = None,
    min_severity: Annotated[int | None, Field(ge=1, le=10)] = None,
    risk_threshold: RiskLevel | None = None,
    summary_only: bool = False,
    include_resolved: bool = False,
) -> MrFeedbackAnalysis:
    """Classify a merge request's review comments and run auto-response/auto-fix.

    The merge request is found by ``merge_request_iid``, else by ``branch_name``,
    else by the branch checked out in the workspace.

    Args:
        merge_request_iid: MR IID within the project.
        branch_name: Source branch to look up when no IID is given.
        project_id: Numeric project ID or ``group/project``. Defaults to config / GITLAB_PROJECT_ID.
        working_directory: Checkout used for branch detection and fixes. Defaults to the workspace.
        max_comments: How many actionable comments to analyze (1-100, default 20).
        offset: Skip this many actionable comments (pagination).
        category_filter: Keep only these categories.
        min_severity: Keep only comments at or above this severity (1-10).
        risk_threshold: Keep only comments at or below this risk level.
        summary_only: Condensed output; auto-response and auto-fix are not run.
        include_resolved: Analyze comments in resolved threads as actionable.

    Returns:
        Per-comment analyses, a summary with pagination info, and engine results.
    """
    try:
        ctx = get_context()
        request = await _build_request(
            working_directory,
            ctx,
            merge_request_iid=merge_request_iid,
            branch_name=branch_name,
            project_id=project_id,
            max_comments=max_comments,
            offset=offset,
            category_filter=category_filter,
            min_severity=min_severity,
            risk_threshold=risk_threshold,
            summary_only=summary_only,
            include_resolved=include_resolved,
        )
        return await get_service().analyze_mr_feedback(request, ctx=ctx)
    except Exception as exc:
        logger.exception("analyze_mr_feedback failed for MR !%s", merge_request_iid)
        return MrFeedbackAnalysis(
            error=_recovery_error(exc, tool_name="analyze_mr_feedback", merge_request_iid=merge_request_iid)
        )
    except asyncio.CancelledError:
        logger.warning("analyze_mr_feedback cancelled for MR !%s", merge_request_iid)
        return MrFeedbackAnalysis(error="Cancelled")


@mcp.tool(tags={"query"})
async def get_mr_with_analysis(
    merge_request_iid: int | None = None,
    branch_name: str | None = None,
    project_id: str | None = None,
    working_directory: str | None = None,
) -> MrWithAnalysis:
    """Full feedback analysis plus the merge request's raw diffs.

    Args:
        merge_request_iid: MR IID within the project.
        branch_name: Source branch to look up when no IID is given.
        project_id: Numeric project ID or ``group/project``.
        working_directory: Checkout used for branch detection and fixes.
    """
    try:
        ctx = get_context()
        request = await _build_request(
            working_directory,
            ctx,
            merge_request_iid=merge_request_iid,
            branch_name=branch_name,
            project_id=project_id,
        )
        return await get_service().get_mr_with_analysis(request, ctx=ctx)
    except Exception as exc:
        logger.exception("get_mr_with_analysis failed for MR !%s", merge_request_iid)
        return MrWithAnalysis(
            error=_recovery_error(exc, tool_name="get_mr_with_analysis", merge_request_iid=merge_request_iid)
        )
    except asyncio.CancelledError:
        logger.warning("get_mr_with_analysis cancelled for MR !%s", merge_request_iid)
        return MrWithAnalysis(error="Cancelled")


@mcp.tool(tags={"query", "discovery"})
async def find_merge_request_for_branch(
    branch_name: str | None = None,
    project_id: str | None = None,
    working_directory: str | None = None,
) -> MergeRequestLookupResult:
    """Find the open merge request for a branch (default: the checked-out branch).

    Args:
        branch_name: Source branch name.
        project_id: Numeric project ID or ``group/project``.
        working_directory: Checkout used to detect the current branch.
    """
    try:
        ctx = get_context()
        cwd = working_directory or await _get_workspace_cwd(ctx)
        merge_request = await get_service().find_merge_request_for_branch(project_id, branch_name, cwd)
        return MergeRequestLookupResult(merge_request=merge_request)
    except Exception as exc:
        logger.exception("find_merge_request_for_branch failed for %s", branch_name or "current branch")
        return MergeRequestLookupResult(error=_recovery_error(exc, tool_name="find_merge_request_for_branch"))


@mcp.tool(tags={"discovery"})
def auto_fix_session_status() -> SessionSummary:
    """How many automatic fixes and replies were made this session and how many remain."""
    service = get_service()
    summary = service.auto_fix.get_session_summary()
    return summary.model_copy(update={"replies": service.auto_response.get_session_summary()})


@mcp.tool(tags={"discovery"})
def show_config() -> ConfigInfo:
    """Show the active mrautofix configuration and where it was loaded from."""
    config = get_config()
    path = get_config_path()

    fix = config.auto_fix
    if fix.enabled:
        mode = "dry-run" if fix.dry_run else "live"
        fix_text = (
            f"Auto-fix: enabled ({mode}), up to {fix.max_fixes_per_session} fixes per session, "
            f"risk <= {fix.risk_threshold}, confidence >= {fix.confidence_threshold:.0%}."
        )
    else:
        fix_text = "Auto-fix: disabled."

    reply = config.auto_response
    if reply.enabled:
        mode = "dry-run" if reply.dry_run else "live"
        reply_text = f"Auto-response: enabled ({mode}), up to {reply.max_responses_per_session} replies per session."
    else:
        reply_text = "Auto-response: disabled."

    classifier = config.classifier
    if classifier.provider == "heuristic" or not classifier.api_key():
        classifier_text = "Classifier: keyword heuristics, which propose no fixes or replies."
    else:
        classifier_text = f"Classifier: {classifier.model}."

    project = config.gitlab.effective_project_id() or "not set"
    parts = [
        f"GitLab: {config.gitlab.effective_api_url()} (project {project}).",
        f"Analysis: batches of {config.analysis.batch_size}, {config.analysis.batch_delay_seconds}s apart.",
        classifier_text,
        fix_text,
        reply_text,
    ]
    return ConfigInfo(
        config=config.model_dump(mode="json"),
        source=str(path) if path else "defaults",
        explanation=" ".join(parts),
    )


@mcp.prompt
def triage_merge_request() -> str:
    """Step-by-step triage of the current merge request's review feedback."""
    return """\
Triage the review feedback on the merge request for the current branch:

1. Call `analyze_mr_feedback(summary_only=true)` and report the category counts,
   high-priority comments and validity rate.
2. While `summary.pagination_info.has_more` is true, call again with a larger `offset`.
3. For security and critical comments, read the full analysis
   (`analyze_mr_feedback(category_filter=["security", "critical"])`) and propose a fix.
4. If auto-fix results are present, list applied fixes and every skipped fix with its reason.
5. Finish with `auto_fix_session_status()` so the user knows the remaining fix budget.
"""
