"""Global test fixtures for mrautofix."""

from __future__ import annotations

import pytest

from mrautofix import cache, gitlab_api, server
from mrautofix.config import Config, set_config


@pytest.fixture(autouse=True)
def _default_config(monkeypatch: pytest.MonkeyPatch):
    """Reset config, caches and the shared service before every test.

    A committed .mrautofix.toml or a developer's GitLab env vars would
    otherwise leak into tests that expect defaults.
    """
    for var in ("GITLAB_API_URL", "GITLAB_PROJECT_ID", "MRAF_WORKSPACE", "ANTHROPIC_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    set_config(Config())
    cache.responses.clear()
    gitlab_api.reset_token()
    server.reset_service()
    yield
    set_config(Config())
    cache.responses.clear()
    gitlab_api.reset_token()
    server.reset_service()
