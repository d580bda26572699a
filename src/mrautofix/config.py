"""Configuration system.

Loads ``.mrautofix.toml`` from the project root (walking up to ``.git``),
validates with Pydantic, and provides sensible defaults so zero-config still works.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mrautofix.models import RiskLevel

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".mrautofix.toml"

_DEFAULT_ALLOWED_FILE_TYPES = [".ts", ".js", ".tsx", ".jsx", ".py", ".java", ".cpp", ".c", ".h"]
_DEFAULT_EXCLUDED_PATHS = ["node_modules", ".git", "dist", "build"]


class GitLabConfig(BaseModel):
    """Connection settings for the GitLab API."""

    model_config = ConfigDict(extra="ignore")

    api_url: str = Field(default="https://gitlab.com", description="GitLab instance base URL (without /api/v4)")
    project_id: str = Field(default="", description="Default project ID or 'group/project' path")

    def effective_api_url(self) -> str:
        """``GITLAB_API_URL`` wins over the file setting."""
        return (os.environ.get("GITLAB_API_URL") or self.api_url).rstrip("/")

    def effective_project_id(self, explicit: str | None = None) -> str:
        """Resolve the project ID: explicit argument, then config, then ``GITLAB_PROJECT_ID``."""
        return (explicit or self.project_id or os.environ.get("GITLAB_PROJECT_ID", "")).strip()


class AnalysisConfig(BaseModel):
    """Batching and pagination defaults for comment analysis."""

    model_config = ConfigDict(extra="ignore")

    batch_size: int = Field(default=10, ge=1, description="Notes analyzed concurrently per batch")
    batch_delay_seconds: float = Field(default=1.0, ge=0, description="Pause between batches")
    default_max_comments: int = Field(default=20, ge=1, le=100, description="Window size when the caller gives none")


class ClassifierConfig(BaseModel):
    """Which classifier turns notes into analyses.

    ``auto`` uses Claude when ``ANTHROPIC_API_KEY`` is set and the keyword
    heuristics otherwise. Only Claude proposes fixes and replies.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    provider: Literal["auto", "anthropic", "heuristic"] = Field(default="auto", description="Classifier backend")
    model: str = Field(default="claude-sonnet-4-20250514", description="Anthropic model name")
    max_tokens: int = Field(default=2000, ge=256, le=16000, description="Response token budget per note")
    temperature: float = Field(default=0.1, ge=0, le=1)
    diff_char_limit: int = Field(default=6000, ge=0, description="Diff text included in each prompt (0 = file list only)")

    def api_key(self) -> str:
        return os.environ.get("ANTHROPIC_API_KEY", "").strip()


class AutoFixConfig(BaseModel):
    """Policy for applying classifier-proposed fixes without a human."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    enabled: bool = Field(default=False, description="Enable automatic code fixes")
    dry_run: bool = Field(default=True, description="Plan fixes but never write them to disk")
    max_fixes_per_session: int = Field(default=5, ge=0, le=20, description="Fixes allowed per service session")
    risk_threshold: RiskLevel = Field(default=RiskLevel.LOW, description="Highest estimated risk that may be auto-applied")
    confidence_threshold: float = Field(default=0.8, ge=0, le=1, description="Minimum fix confidence (0-1)")
    allowed_file_types: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_ALLOWED_FILE_TYPES),
        description="File extensions that may be edited (empty = all)",
    )
    excluded_paths: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_EXCLUDED_PATHS),
        description="Paths that are never edited",
    )
    require_approval_for_refactors: bool = Field(default=True, description="simple_refactor fixes need a human")
    require_approval_for_bug_fixes: bool = Field(default=True, description="bug_fix fixes need a human")
    working_directory: str | None = Field(default=None, description="Checkout to edit (defaults to the workspace)")

    @field_validator("allowed_file_types")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in value]


class AutoResponseConfig(BaseModel):
    """Policy for posting classifier-proposed replies."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    enabled: bool = Field(default=False, description="Enable automatic replies")
    dry_run: bool = Field(default=True, description="Plan replies but never post them")
    max_responses_per_session: int = Field(default=5, ge=0, le=50, description="Replies allowed per service session")
    require_approval_for_disagreements: bool = Field(default=True, description="Disagreements need a human")
    require_approval_for_answers: bool = Field(default=False, description="Answers to questions need a human")
    confidence_threshold: float = Field(default=0.7, ge=0, le=1, description="Replies below this confidence need a human")


class Config(BaseModel):
    """Top-level mrautofix configuration."""

    model_config = ConfigDict(extra="ignore")

    gitlab: GitLabConfig = Field(default_factory=GitLabConfig, description="GitLab connection settings")
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig, description="Batching settings")
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig, description="Comment classifier")
    auto_fix: AutoFixConfig = Field(default_factory=AutoFixConfig, description="Automatic fix policy")
    auto_response: AutoResponseConfig = Field(default_factory=AutoResponseConfig, description="Automatic reply policy")


def _collect_unknown_keys(
    data: dict[str, Any],
    model_cls: type[BaseModel],
    prefix: str = "",
) -> list[str]:
    """Recursively find keys in *data* that don't match any field in *model_cls*.

    Returns dotted key paths like ``auto_fix.max_fixes``.
    """
    known = set(model_cls.model_fields)
    unknown: list[str] = []

    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if key not in known:
            unknown.append(dotted)
            continue
        annotation = model_cls.model_fields[key].annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel) and isinstance(value, dict):
            unknown.extend(_collect_unknown_keys(value, annotation, prefix=f"{dotted}."))

    return unknown


def _find_config_file(start: Path) -> Path | None:
    """Walk up from *start* looking for ``.mrautofix.toml``, stopping at ``.git`` root."""
    current = start.resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        if current.parent == current:
            return None
        if (current / ".git").exists():
            return None
        current = current.parent


def _parse_config_file(config_path: Path) -> tuple[Config, dict[str, Any]]:
    raw = config_path.read_text(encoding="utf-8")
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {config_path}: {exc}"
        raise ValueError(msg) from exc

    try:
        config = Config.model_validate(data)
    except Exception as exc:
        msg = f"Invalid config in {config_path}: {exc}"
        raise ValueError(msg) from exc
    return config, data


def load_config(cwd: str | Path | None = None) -> tuple[Config, Path | None]:
    """Load configuration from ``.mrautofix.toml``.

    Walks up from *cwd* (defaulting to the current directory) looking for the
    config file.  If not found, returns a ``Config`` with all defaults.

    Returns:
        (config, config_path): the parsed config and the file path (or None
        if no config file was found).

    Raises ``ValueError`` on invalid TOML or validation errors so the server
    can refuse to start with a broken config.
    """
    start = Path(cwd) if cwd else Path.cwd()
    config_path = _find_config_file(start)

    if config_path is None:
        logger.info("No %s found, using defaults", CONFIG_FILENAME)
        return Config(), None

    logger.info("Loading config from %s", config_path)
    config, data = _parse_config_file(config_path)

    for key in _collect_unknown_keys(data, Config):
        logger.warning("Unknown config key '%s' in %s, ignored", key, config_path)

    return config, config_path


# -- Active config, refreshed when the file changes ----------------------------

_Signature = tuple[int, int]


def _signature(path: Path) -> _Signature | None:
    try:
        stat = path.stat()
    except OSError:
        return None
    return stat.st_mtime_ns, stat.st_size


class _ActiveConfig:
    """The config tools see, plus the file it came from.

    The file's (mtime, size) pair is compared on every read; a change
    re-parses it and notifies listeners, which is how the server starts a
    new fix/reply session after an edit.
    """

    def __init__(self) -> None:
        self.config = Config()
        self.path: Path | None = None
        self.signature: _Signature | None = None
        self.listeners: list[Callable[[Config], None]] = []

    def activate(self, config: Config, path: Path | None) -> None:
        self.config = config
        self.path = path
        self.signature = _signature(path) if path else None

    def _publish(self, config: Config) -> None:
        self.config = config
        for listener in self.listeners:
            try:
                listener(config)
            except Exception:
                logger.exception("Config listener %r failed", listener)

    def current(self) -> Config:
        if self.path is None:
            return self.config

        signature = _signature(self.path)
        if signature == self.signature:
            return self.config
        previous, self.signature = self.signature, signature

        if signature is None:
            logger.warning("%s was removed; using default settings", self.path)
            self._publish(Config())
        elif previous is None:
            logger.info("%s appeared, loading it", self.path)
            self._reload()
        else:
            logger.info("%s was edited, reloading", self.path)
            self._reload()
        return self.config

    def _reload(self) -> None:
        try:
            config, _data = _parse_config_file(self.path)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring edit, previous settings stay active: %s", exc)
            return
        self._publish(config)


_active = _ActiveConfig()


def get_config() -> Config:
    """Return the active configuration, re-reading the file if it changed.

    A removed file means defaults; an edit that no longer parses is ignored
    until the next change.
    """
    return _active.current()


def set_config(config: Config, *, config_path: Path | None = None) -> None:
    """Make *config* active. With *config_path*, later edits to that file are picked up."""
    _active.activate(config, config_path)


def get_config_path() -> Path | None:
    return _active.path


def register_reload_callback(callback: Callable[[Config], None]) -> None:
    """Call *callback* with the new ``Config`` whenever the file is re-read or removed."""
    if callback not in _active.listeners:
        _active.listeners.append(callback)


# -- Template for ``mrautofix config --init`` ----------------------------------

DEFAULT_CONFIG_TEMPLATE = """\
# .mrautofix.toml: configuration for mrautofix
# All settings are optional. Omitted values use the defaults shown here.
# Place this file in your project root (next to .git/).

[gitlab]
api_url = "https://gitlab.com"    # GITLAB_API_URL overrides this
project_id = ""                   # e.g. "group/project"; GITLAB_PROJECT_ID is the fallback

[analysis]
batch_size = 10                   # Notes analyzed concurrently per batch
batch_delay_seconds = 1.0         # Pause between batches (rate limit for the classifier)
default_max_comments = 20

[classifier]
provider = "auto"                 # auto (Claude if ANTHROPIC_API_KEY is set), anthropic, heuristic
model = "claude-sonnet-4-20250514"
max_tokens = 2000
temperature = 0.1
diff_char_limit = 6000            # Diff text sent with each comment

[auto_fix]
enabled = false
dry_run = true                    # Plan fixes without touching files
max_fixes_per_session = 5
risk_threshold = "low"            # very_low, low, medium, high, very_high
confidence_threshold = 0.8
allowed_file_types = [".ts", ".js", ".tsx", ".jsx", ".py", ".java", ".cpp", ".c", ".h"]
excluded_paths = ["node_modules", ".git", "dist", "build"]
require_approval_for_refactors = true
require_approval_for_bug_fixes = true

[auto_response]
enabled = false
dry_run = true
max_responses_per_session = 5
require_approval_for_disagreements = true
require_approval_for_answers = false
confidence_threshold = 0.7
"""


def init_config(cwd: Path | None = None) -> Path:
    """Create a new ``.mrautofix.toml`` in the given directory.

    Raises ``SystemExit(1)`` if the file already exists.
    """
    target = (cwd or Path.cwd()) / CONFIG_FILENAME
    if target.exists():
        print(f"Error: {CONFIG_FILENAME} already exists in {target.parent}")  # noqa: T201
        raise SystemExit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    print(f"Created {target}")  # noqa: T201
    return target
