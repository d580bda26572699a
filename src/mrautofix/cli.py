"""CLI for mrautofix, built on cyclopts (same framework as FastMCP's CLI)."""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Annotated

import cyclopts

app = cyclopts.App(
    name="mrautofix",
    help="mrautofix: GitLab merge request feedback triage and auto-fix MCP server.",
)

_KNOWN_ENV_VARS = (
    "GITLAB_TOKEN",
    "GITLAB_PERSONAL_ACCESS_TOKEN",
    "GITLAB_API_URL",
    "GITLAB_PROJECT_ID",
    "MRAF_WORKSPACE",
    "ANTHROPIC_API_KEY",
)
_MASK_MIN_LENGTH = 4


@app.default
def serve() -> None:
    """Run the mrautofix MCP server (default command)."""
    from mrautofix.server import mcp  # noqa: PLC0415

    mcp.run()


@app.command(name="check-env")
def check_env() -> None:
    """Show the GitLab-related environment, validate the config file and check the token."""
    print("mrautofix check-env")
    print("=" * 40)

    print("\nEnvironment:\n")
    for key in _KNOWN_ENV_VARS:
        value = os.environ.get(key)
        print(f"  {key} = {_mask_value(key, value) if value else '(not set)'}")

    print("\n" + "-" * 40)
    print("Validating configuration...\n")
    try:
        from mrautofix.config import load_config  # noqa: PLC0415

        config, path = load_config(os.environ.get("MRAF_WORKSPACE"))
    except ValueError as exc:
        print(f"❌ Configuration error: {exc}")
        sys.exit(1)

    print(f"  Source: {path or 'defaults'}")
    print(f"  GitLab: {config.gitlab.effective_api_url()} (project {config.gitlab.effective_project_id() or 'not set'})")
    fix = config.auto_fix
    print(
        f"  Auto-fix: {'enabled' if fix.enabled else 'disabled'}"
        f"{' (dry-run)' if fix.dry_run else ''}, risk <= {fix.risk_threshold}, "
        f"confidence >= {fix.confidence_threshold}, {fix.max_fixes_per_session} per session"
    )
    reply = config.auto_response
    print(f"  Auto-response: {'enabled' if reply.enabled else 'disabled'}{' (dry-run)' if reply.dry_run else ''}")
    classifier = config.classifier
    if classifier.provider != "heuristic" and classifier.api_key():
        print(f"  Classifier: {classifier.model}")
    else:
        print("  Classifier: keyword heuristics (no fixes or replies proposed)")

    print("\n" + "-" * 40)
    print("Checking GitLab token...\n")
    from mrautofix import gitlab_api  # noqa: PLC0415

    try:
        asyncio.run(gitlab_api.get_token())
    except gitlab_api.GitLabAuthError as exc:
        print(f"  ❌ {exc}")
    else:
        print("  ✅ GitLab token found")
    print()


@app.command(name="config")
def config_cmd(*, init: bool = False) -> None:
    """Manage ``.mrautofix.toml``.

    Parameters
    ----------
    init
        Write a commented template to the current directory.
    """
    from mrautofix.config import init_config  # noqa: PLC0415

    if init:
        init_config()
        return
    print("Nothing to do. Use --init to create .mrautofix.toml.")


@app.command(name="analyze")
def analyze(  # noqa: PLR0913
    merge_request_iid: Annotated[int | None, cyclopts.Parameter(name=["--mr", "-m"])] = None,
    *,
    branch: str | None = None,
    project: str | None = None,
    max_comments: int | None = None,
    offset: int = 0,
    min_severity: int | None = None,
    summary_only: bool = False,
    include_resolved: bool = False,
) -> None:
    """Run one feedback analysis and print the result as JSON.

    Parameters
    ----------
    merge_request_iid
        MR IID; omitted means the MR of ``--branch`` or of the checked-out branch.
    branch
        Source branch to look up.
    project
        Project ID or ``group/project``.
    max_comments
        Window size (1-100).
    offset
        Skip this many actionable comments.
    min_severity
        Keep only comments at or above this severity.
    summary_only
        Condensed output without auto-fix or auto-response.
    include_resolved
        Treat comments in resolved threads as actionable.
    """
    from mrautofix import gitlab_api  # noqa: PLC0415
    from mrautofix.config import load_config, set_config  # noqa: PLC0415
    from mrautofix.claude import create_classifier  # noqa: PLC0415
    from mrautofix.feedback import AnalyzeRequest, MrFeedbackService  # noqa: PLC0415

    workdir = os.environ.get("MRAF_WORKSPACE") or str(Path.cwd())
    config, path = load_config(workdir)
    set_config(config, config_path=path)

    request = AnalyzeRequest(
        merge_request_iid=merge_request_iid,
        branch_name=branch,
        project_id=project,
        working_directory=workdir,
        max_comments=max_comments,
        offset=offset,
        min_severity=min_severity,
        summary_only=summary_only,
        include_resolved=include_resolved,
    )
    source = gitlab_api.GitLabSource(gitlab_api.GitLabClient(config.gitlab.effective_api_url()))
    service = MrFeedbackService(source, classifier=create_classifier(config.classifier), config=config)
    result = asyncio.run(service.analyze_mr_feedback(request))
    print(result.model_dump_json(indent=2, exclude_none=True))


def _mask_value(key: str, value: str) -> str:
    """Mask tokens and API keys, keeping the first and last two characters."""
    if not key.lower().endswith(("token", "_key")):
        return value
    if len(value) > _MASK_MIN_LENGTH:
        return value[:2] + "*" * (len(value) - _MASK_MIN_LENGTH) + value[-2:]
    return "****"
