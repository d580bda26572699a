"""Unit tests for server helpers (error hints, workspace resolution, service lifecycle)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from mrautofix import server
from mrautofix.classifier import HeuristicClassifier
from mrautofix.claude import ClaudeClassifier
from mrautofix.config import AutoFixConfig, ClassifierConfig, Config, GitLabConfig, set_config
from mrautofix.feedback import FeedbackError
from mrautofix.gitlab_api import GitLabAuthError, GitLabError, GitLabSource
from mrautofix.server import _get_workspace_cwd, _on_config_reload, _recovery_error, get_service


class TestRecoveryError:
    def test_auth(self):
        msg = _recovery_error(GitLabAuthError("bad token"), tool_name="analyze_mr_feedback")
        assert msg.startswith("analyze_mr_feedback failed: GitLab authentication problem.")
        assert "GITLAB_TOKEN" in msg

    def test_rate_limit(self):
        msg = _recovery_error(GitLabError("GitLab API rate limit exceeded: slow down", 429), tool_name="t")
        assert "Wait 60 seconds" in msg

    def test_not_found_mentions_mr(self):
        msg = _recovery_error(GitLabError("GitLab resource not found (404): x", 404), tool_name="t", merge_request_iid=12)
        assert "Verify MR !12 exists" in msg
        assert "project_id" in msg

    def test_missing_project(self):
        msg = _recovery_error(FeedbackError("Project ID is required."), tool_name="t")
        assert "show_config()" in msg

    def test_branch_detection(self):
        msg = _recovery_error(FeedbackError("Cannot detect the current branch: detached"), tool_name="t")
        assert "MRAF_WORKSPACE" in msg

    def test_generic(self):
        assert _recovery_error(RuntimeError("boom"), tool_name="t") == "t failed: boom."


class TestGetWorkspaceCwd:
    async def test_from_roots(self):
        root = MagicMock()
        root.uri = "file:///home/dev/my%20project"
        ctx = MagicMock()
        ctx.list_roots = AsyncMock(return_value=[root])
        assert await _get_workspace_cwd(ctx) == "/home/dev/my project"

    async def test_roots_failure_falls_back_to_env(self, monkeypatch):
        monkeypatch.setenv("MRAF_WORKSPACE", "/work")
        ctx = MagicMock()
        ctx.list_roots = AsyncMock(side_effect=RuntimeError("no roots"))
        assert await _get_workspace_cwd(ctx) == "/work"

    async def test_non_file_root_ignored(self):
        root = MagicMock()
        root.uri = "https://example.com/repo"
        ctx = MagicMock()
        ctx.list_roots = AsyncMock(return_value=[root])
        assert await _get_workspace_cwd(ctx) is None

    async def test_nothing(self):
        assert await _get_workspace_cwd(None) is None


class TestServiceLifecycle:
    def test_service_is_shared(self):
        first = get_service()
        assert get_service() is first
        assert isinstance(first.source, GitLabSource)

    def test_uses_configured_instance(self):
        set_config(Config(gitlab=GitLabConfig(api_url="https://gitlab.example.com")))
        assert get_service().source.client.base_url == "https://gitlab.example.com/api/v4"

    def test_reload_starts_new_session(self):
        service = get_service()
        service.auto_fix.fixes_applied_this_session = 2
        _on_config_reload(Config(auto_fix=AutoFixConfig(max_fixes_per_session=9)))
        assert server.get_service() is service
        assert service.auto_fix.fixes_applied_this_session == 0
        assert service.auto_fix.config.max_fixes_per_session == 9

    def test_reload_without_service_is_noop(self):
        _on_config_reload(Config())
        assert server._service is None

    def test_reload_reconnects_when_gitlab_url_changes(self):
        service = get_service()
        old_source = service.source
        _on_config_reload(Config(gitlab=GitLabConfig(api_url="https://gitlab.internal")))

        assert service.source is not old_source
        assert service.source.client.base_url == "https://gitlab.internal/api/v4"
        assert service.auto_response.source is service.source

    def test_reload_keeps_source_for_same_url(self):
        service = get_service()
        old_source = service.source
        _on_config_reload(Config(auto_fix=AutoFixConfig(max_fixes_per_session=3)))
        assert service.source is old_source


class TestClassifierSelection:
    def test_heuristic_without_api_key(self):
        assert isinstance(get_service().classifier, HeuristicClassifier)

    def test_claude_when_api_key_is_set(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        classifier = get_service().classifier
        assert isinstance(classifier, ClaudeClassifier)
        assert classifier.name == "anthropic:claude-sonnet-4-20250514"

    def test_reload_switches_classifier(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        service = get_service()
        _on_config_reload(Config(classifier=ClassifierConfig(provider="heuristic")))
        assert isinstance(service.classifier, HeuristicClassifier)

