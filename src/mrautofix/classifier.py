"""Comment classification.

:class:`CommentClassifier` is the seam for anything that turns a note into a
:class:`CommentAnalysis`. :class:`HeuristicClassifier` is the built-in
keyword-based implementation: it categorizes and scores notes but never
proposes fixes or replies, so it is always safe to run.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from mrautofix.models import (
    AgreementAssessment,
    AnalysisSummary,
    AutoResponseDecision,
    CommentAnalysis,
    CommentCategory,
    Note,
    QuestionAssessment,
    ResponseType,
    RiskAssessment,
)

logger = logging.getLogger(__name__)

HIGH_PRIORITY_SEVERITY = 7
_MAX_HEURISTIC_RISK = 8


class AnalysisContext(BaseModel):
    """Merge request and thread context handed to a classifier with each note."""

    title: str = ""
    description: str = ""
    source_branch: str = ""
    target_branch: str = ""
    diffs: list[dict[str, Any]] | None = Field(default=None, description="Raw MR diffs, if they could be fetched")
    thread_context: str = Field(default="", description="Rendered preceding notes of the thread")


class CommentClassifier(ABC):
    """Turns one review note into a :class:`CommentAnalysis`."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier used in logs."""

    @abstractmethod
    async def analyze_comment(self, note: Note, context: AnalysisContext) -> CommentAnalysis:
        """Classify *note*. May raise; the scheduler degrades failures per note."""


# (category, severity, confidence, reasoning, keywords)
_KEYWORD_RULES: list[tuple[CommentCategory, int, float, str, tuple[str, ...]]] = [
    (
        CommentCategory.SECURITY,
        9,
        0.9,
        "Contains security-related keywords",
        ("security", "vulnerable", "exploit", "xss", "sql injection", "csrf", "authentication", "authorization"),
    ),
    (CommentCategory.CRITICAL, 8, 0.8, "Mentions bugs, errors, or crashes", ("bug", "error", "crash")),
    (CommentCategory.FUNCTIONAL, 6, 0.7, "Performance or optimization related", ("performance", "optimization")),
    (CommentCategory.STYLE, 2, 0.9, "Style or formatting related", ("style", "format", "lint")),
]

_SUGGESTED_RESPONSES = {
    CommentCategory.SECURITY: (
        "Thanks for catching this security concern. I'll address this immediately "
        "and ensure proper security measures are in place."
    ),
    CommentCategory.CRITICAL: (
        "You're absolutely right. This is a critical issue and I'll fix it right away. Thanks for the detailed feedback."
    ),
    CommentCategory.FUNCTIONAL: "Good point about the performance impact. I'll implement the optimization you suggested.",
    CommentCategory.STYLE: "Thanks for the style feedback. I'll update the formatting to match our coding standards.",
    CommentCategory.QUESTION: "Good question! Let me clarify the approach I took here...",
}
_DEFAULT_RESPONSE = "Thanks for the feedback. I'll address this in the next iteration."


def suggested_response(category: CommentCategory) -> str:
    return _SUGGESTED_RESPONSES.get(category, _DEFAULT_RESPONSE)


def _categorize(body: str) -> tuple[CommentCategory, int, float, str]:
    lowered = body.lower()
    for category, severity, confidence, reasoning, keywords in _KEYWORD_RULES:
        if any(keyword in lowered for keyword in keywords):
            return category, severity, confidence, reasoning
    if "?" in body or lowered.startswith(("why", "how")):
        return CommentCategory.QUESTION, 4, 0.8, "Appears to be a question"
    return CommentCategory.MINOR, 3, 0.7, ""


def _risk_assessment(category: CommentCategory, severity: int) -> RiskAssessment:
    if category == CommentCategory.SECURITY:
        scope, complexity = "system", "moderate"
        factors = ["Security implications", "Potential breaking changes"]
    elif category == CommentCategory.CRITICAL:
        scope, complexity = "module", "moderate"
        factors = ["Functional impact", "Regression risk"]
    else:
        scope, complexity = "local", "simple"
        factors = ["Low impact change"]
    return RiskAssessment(
        impact_scope=scope,
        change_complexity=complexity,
        test_coverage="partial",
        risk_score=min(severity, _MAX_HEURISTIC_RISK),
        risk_factors=factors,
        mitigation_strategies=[
            "Thorough testing before deployment",
            "Code review by domain expert",
            "Gradual rollout if applicable",
        ],
    )


class HeuristicClassifier(CommentClassifier):
    """Keyword-based classification that needs no external service."""

    @property
    def name(self) -> str:
        return "heuristic"

    async def analyze_comment(self, note: Note, context: AnalysisContext) -> CommentAnalysis:  # noqa: ARG002
        category, severity, confidence, reasoning = _categorize(note.body)
        question = None
        if category == CommentCategory.QUESTION:
            question = QuestionAssessment(
                is_question=True,
                can_answer_question=False,
                answer_confidence=0.2,
                question_type="general",
                requires_code_analysis=True,
            )

        return CommentAnalysis(
            id=note.id,
            body=note.body,
            author=note.author,
            category=category,
            severity=severity,
            confidence=confidence,
            is_valid=True,
            reasoning=reasoning,
            suggested_response=suggested_response(category),
            agreement_assessment=AgreementAssessment(
                agrees_with_suggestion=True,
                agreement_confidence=0.6,
                agreement_reasoning="Heuristic analysis cannot judge agreement in detail",
                additional_considerations=[
                    "Consider consulting with domain experts",
                    "Review similar patterns in codebase",
                ],
            ),
            risk_assessment=_risk_assessment(category, severity),
            question_assessment=question,
            auto_response_decision=AutoResponseDecision(
                should_respond=False,
                response_type=ResponseType.NONE,
                response_reason="Heuristic analysis does not make response decisions",
                response_content="",
                confidence=0.0,
                requires_approval=True,
            ),
        )


def create_analysis_summary(analyses: list[CommentAnalysis]) -> AnalysisSummary:
    """Aggregate counts over *analyses* (pagination and filters are added by the caller)."""
    total = len(analyses)
    counts: dict[str, int] = {}
    for analysis in analyses:
        counts[analysis.category.value] = counts.get(analysis.category.value, 0) + 1

    valid = sum(1 for a in analyses if a.is_valid)
    average = sum(a.severity for a in analyses) / total if total else 0.0
    return AnalysisSummary(
        total_comments=total,
        category_counts=counts,
        average_severity=round(average, 1),
        high_priority_comments=sum(1 for a in analyses if a.severity >= HIGH_PRIORITY_SEVERITY),
        valid_comments=valid,
        validity_rate=round(valid / total, 2) if total else 0.0,
    )
