"""Claude-backed comment classification.

:class:`ClaudeClassifier` asks an Anthropic model for a JSON verdict per note:
category, severity, assessments, and the auto-response and auto-fix
decisions the engines act on. Any API or parsing failure falls back to the
keyword heuristics, which never propose fixes.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any

from anthropic import APIError, AsyncAnthropic
from pydantic import BaseModel, ValidationError

from mrautofix.classifier import AnalysisContext, CommentClassifier, HeuristicClassifier
from mrautofix.models import (
    AgreementAssessment,
    AutoFixDecision,
    AutoResponseDecision,
    CommentAnalysis,
    CommentCategory,
    QuestionAssessment,
    RiskAssessment,
)

if TYPE_CHECKING:
    from mrautofix.config import ClassifierConfig
    from mrautofix.models import Note

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_DIFF_FILES_LISTED = 20

SYSTEM_PROMPT = """\
You are a senior software engineer triaging merge request review comments.
For each comment you judge what it asks for, whether you agree, how risky the
change is, whether a short reply is warranted, and whether the change is small
and mechanical enough to apply automatically. Answer with one JSON object and
nothing else."""

RESPONSE_SCHEMA = """\
{
  "category": "critical | functional | security | style | minor | question",
  "severity": 1-10,
  "confidence": 0.0-1.0,
  "is_valid": true | false,
  "reasoning": "why you categorized it this way",
  "suggested_response": "a reply the MR author could post",
  "agreement_assessment": {
    "agrees_with_suggestion": true | false,
    "agreement_confidence": 0.0-1.0,
    "agreement_reasoning": "...",
    "alternative_approach": "optional, when you disagree",
    "additional_considerations": ["..."]
  },
  "risk_assessment": {
    "impact_scope": "local | module | system | global",
    "change_complexity": "trivial | simple | moderate | complex | extensive",
    "test_coverage": "none | minimal | partial | good | comprehensive",
    "risk_score": 1-10,
    "risk_factors": ["..."],
    "mitigation_strategies": ["..."]
  },
  "question_assessment": null or {
    "is_question": true,
    "can_answer_question": true | false,
    "answer_confidence": 0.0-1.0,
    "question_type": "clarification | implementation | architecture | behavior | general",
    "suggested_answer": "...",
    "requires_code_analysis": true | false
  },
  "auto_response_decision": {
    "should_respond": true | false,
    "response_type": "disagreement | clarification_request | answer_question | none",
    "response_reason": "...",
    "response_content": "the reply to post",
    "confidence": 0.0-1.0,
    "requires_approval": true | false
  },
  "auto_fix_decision": {
    "should_fix": true | false,
    "fix_type": "style | simple_refactor | bug_fix | optimization | none",
    "fix_reason": "...",
    "confidence": 0.0-1.0,
    "estimated_risk": "very_low | low | medium | high | very_high",
    "affected_files": ["path/relative/to/repo.py"],
    "code_changes": [
      {
        "file_path": "path/relative/to/repo.py",
        "change_type": "replace | insert | delete",
        "start_line": 1,
        "end_line": 1,
        "original_code": "exact current text of lines start_line..end_line",
        "new_code": "replacement text (for insert: inserted before start_line)",
        "description": "..."
      }
    ],
    "requires_approval": true | false,
    "prerequisites": ["..."]
  }
}"""

FIX_RULES = """\
Rules for auto_fix_decision:
- Only propose a fix when the comment asks for a concrete, local edit you can
  see in the diff. Otherwise set should_fix to false and code_changes to [].
- Line numbers are 1-based and inclusive, in the file as it is on the source
  branch. original_code must match those lines exactly.
- Never touch generated, vendored or build output files.
- Set requires_approval for anything beyond style or naming edits."""


def _diff_summary(diffs: list[dict[str, Any]], char_limit: int) -> str:
    lines: list[str] = []
    for diff in diffs[:_DIFF_FILES_LISTED]:
        path = diff.get("new_path") or diff.get("old_path") or "unknown"
        body = diff.get("diff") or ""
        added = sum(1 for line in body.splitlines() if line.startswith("+") and not line.startswith("+++"))
        removed = sum(1 for line in body.splitlines() if line.startswith("-") and not line.startswith("---"))
        lines.append(f"- {path} (+{added}/-{removed})")
    if len(diffs) > _DIFF_FILES_LISTED:
        lines.append(f"- ... and {len(diffs) - _DIFF_FILES_LISTED} more files")

    if char_limit <= 0:
        return "\n".join(lines)

    budget = char_limit
    excerpts: list[str] = []
    for diff in diffs:
        body = diff.get("diff") or ""
        if not body or budget <= 0:
            continue
        chunk = body[:budget]
        budget -= len(chunk)
        excerpts.append(f"--- {diff.get('new_path') or diff.get('old_path')}\n{chunk}")
    if excerpts:
        lines.append("\nDiff excerpts:\n" + "\n".join(excerpts))
    return "\n".join(lines)


def build_prompt(note: Note, context: AnalysisContext, *, diff_char_limit: int = 6000) -> str:
    """Render the user message for one note."""
    parts = [
        "MERGE REQUEST",
        f"Title: {context.title or 'N/A'}",
        f"Description: {context.description or 'N/A'}",
        f"Branches: {context.source_branch or '?'} -> {context.target_branch or '?'}",
    ]
    if context.diffs:
        parts.append(f"Changed files:\n{_diff_summary(context.diffs, diff_char_limit)}")
    if context.thread_context:
        parts.extend([
            "",
            context.thread_context,
            "The comment below continues this thread; read it in that light.",
        ])
    parts.extend([
        "",
        "COMMENT",
        f"Author: {note.author}",
        note.body,
        "",
        "Respond with a JSON object of this shape:",
        RESPONSE_SCHEMA,
        "",
        FIX_RULES,
    ])
    return "\n".join(parts)


def _clamp(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


def _section(payload: dict[str, Any], key: str, model: type[BaseModel]) -> Any:
    raw = payload.get(key)
    if not isinstance(raw, dict):
        return None
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        logger.debug("Dropping malformed %s: %s", key, exc)
        return None


def parse_analysis(text: str, note: Note) -> CommentAnalysis:
    """Turn the model's reply into a :class:`CommentAnalysis`.

    The outermost ``{...}`` is parsed so stray prose around the JSON is
    tolerated. Out-of-range scores are clamped, an unknown category becomes
    ``minor``, and a malformed nested section is dropped on its own.

    Raises:
        ValueError: No JSON object could be decoded.
    """
    match = _JSON_OBJECT.search(text)
    payload = json.loads(match.group(0) if match else text)
    if not isinstance(payload, dict):
        msg = f"Expected a JSON object, got {type(payload).__name__}"
        raise ValueError(msg)  # noqa: TRY004

    try:
        category = CommentCategory(payload.get("category"))
    except ValueError:
        category = CommentCategory.MINOR

    return CommentAnalysis(
        id=note.id,
        body=note.body,
        author=note.author,
        category=category,
        severity=int(_clamp(payload.get("severity"), 1, 10, 5)),
        confidence=_clamp(payload.get("confidence"), 0, 1, 0.7),
        is_valid=payload.get("is_valid") is not False,
        reasoning=str(payload.get("reasoning") or "AI analysis completed"),
        suggested_response=payload.get("suggested_response") or None,
        agreement_assessment=_section(payload, "agreement_assessment", AgreementAssessment),
        risk_assessment=_section(payload, "risk_assessment", RiskAssessment),
        question_assessment=_section(payload, "question_assessment", QuestionAssessment),
        auto_response_decision=_section(payload, "auto_response_decision", AutoResponseDecision),
        auto_fix_decision=_section(payload, "auto_fix_decision", AutoFixDecision),
    )


class ClaudeClassifier(CommentClassifier):
    """Classifies notes with an Anthropic model, falling back to heuristics on failure."""

    def __init__(
        self,
        config: ClassifierConfig,
        client: AsyncAnthropic | None = None,
        fallback: CommentClassifier | None = None,
    ) -> None:
        self.config = config
        self.client = client or AsyncAnthropic(api_key=config.api_key() or None)
        self.fallback = fallback or HeuristicClassifier()

    @property
    def name(self) -> str:
        return f"anthropic:{self.config.model}"

    async def _complete(self, prompt: str) -> str:
        message = await self.client.messages.create(
            model=self.config.model,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )
        if message.stop_reason == "max_tokens":
            logger.warning("Reply for a note hit max_tokens=%d; raise [classifier] max_tokens", self.config.max_tokens)
        return "".join(getattr(block, "text", "") for block in message.content)

    async def analyze_comment(self, note: Note, context: AnalysisContext) -> CommentAnalysis:
        prompt = build_prompt(note, context, diff_char_limit=self.config.diff_char_limit)
        try:
            return parse_analysis(await self._complete(prompt), note)
        except (APIError, ValueError) as exc:
            logger.warning("Claude analysis of note %s failed, using %s: %s", note.id, self.fallback.name, exc)
            return await self.fallback.analyze_comment(note, context)


def create_classifier(config: ClassifierConfig) -> CommentClassifier:
    """Build the classifier ``[classifier] provider`` asks for."""
    if config.provider == "heuristic":
        return HeuristicClassifier()
    if not config.api_key():
        if config.provider == "anthropic":
            logger.warning("[classifier] provider is 'anthropic' but ANTHROPIC_API_KEY is not set; using heuristics")
        return HeuristicClassifier()
    logger.info("Classifying comments with %s", config.model)
    return ClaudeClassifier(config)
