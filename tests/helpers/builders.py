"""Builders for notes, discussions and analyses, plus in-memory fakes."""

from __future__ import annotations

from typing import Any

from mrautofix.classifier import AnalysisContext, CommentClassifier
from mrautofix.feedback import MergeRequestSource
from mrautofix.models import (
    AutoFixDecision,
    CodeChange,
    CommentAnalysis,
    CommentCategory,
    Discussion,
    FixType,
    MergeRequestRef,
    Note,
    RiskAssessment,
    RiskLevel,
    ThreadMetadata,
)


def make_note(note_id: int | str = 1, body: str = "Please rename this", author: str = "alice", **kwargs: Any) -> Note:
    return Note.model_validate({"id": note_id, "body": body, "author": {"username": author}, **kwargs})


def make_discussion(discussion_id: str, notes: list[Note], *, individual_note: bool = False) -> Discussion:
    return Discussion(id=discussion_id, individual_note=individual_note, notes=notes)


def make_mr(iid: int = 7, source_branch: str = "feature/x", **kwargs: Any) -> MergeRequestRef:
    return MergeRequestRef.model_validate({
        "iid": iid,
        "title": "Add widget",
        "source_branch": source_branch,
        "target_branch": "main",
        "web_url": f"https://gitlab.example.com/group/proj/-/merge_requests/{iid}",
        "author": {"username": "bob"},
        **kwargs,
    })


def make_fix(  # noqa: PLR0913
    *,
    should_fix: bool = True,
    fix_type: FixType = FixType.STYLE,
    confidence: float = 0.95,
    risk: RiskLevel = RiskLevel.VERY_LOW,
    files: list[str] | None = None,
    changes: list[CodeChange] | None = None,
    requires_approval: bool = False,
) -> AutoFixDecision:
    files = files if files is not None else ["src/app.py"]
    return AutoFixDecision(
        should_fix=should_fix,
        fix_type=fix_type,
        fix_reason="Rename variable",
        confidence=confidence,
        estimated_risk=risk,
        affected_files=files,
        code_changes=changes or [],
        requires_approval=requires_approval,
    )


def make_analysis(  # noqa: PLR0913
    analysis_id: str = "1",
    *,
    category: CommentCategory = CommentCategory.STYLE,
    severity: int = 3,
    risk_score: int | None = None,
    fix: AutoFixDecision | None = None,
    resolved: bool = False,
    discussion_id: str = "d1",
    **kwargs: Any,
) -> CommentAnalysis:
    values: dict[str, Any] = {
        "id": analysis_id,
        "body": "Please rename this",
        "author": "alice",
        "category": category,
        "severity": severity,
        "confidence": 0.9,
        "is_valid": True,
        "reasoning": "test",
        "risk_assessment": RiskAssessment(risk_score=risk_score) if risk_score is not None else None,
        "thread_metadata": ThreadMetadata(discussion_id=discussion_id, is_resolved=resolved),
        "auto_fix_decision": fix,
    }
    values.update(kwargs)
    return CommentAnalysis(**values)


class FakeSource(MergeRequestSource):
    """In-memory merge request source that records posted notes."""

    def __init__(
        self,
        merge_request: MergeRequestRef | None = None,
        discussions: list[Discussion] | None = None,
        diffs: list[dict[str, Any]] | None = None,
        *,
        diffs_error: Exception | None = None,
    ) -> None:
        self.merge_request = merge_request or make_mr()
        self.discussions = discussions or []
        self.diffs = diffs or []
        self.diffs_error = diffs_error
        self.posted: list[tuple[str, str]] = []

    async def get_merge_request(self, project_id: str, iid: int | str) -> MergeRequestRef:
        return self.merge_request

    async def find_merge_request_for_branch(self, project_id: str, branch: str) -> MergeRequestRef | None:
        return self.merge_request if branch == self.merge_request.source_branch else None

    async def list_discussions(self, project_id: str, iid: int | str) -> list[Discussion]:
        return self.discussions

    async def get_diffs(self, project_id: str, iid: int | str) -> list[dict[str, Any]]:
        if self.diffs_error:
            raise self.diffs_error
        return self.diffs

    async def create_note(self, project_id: str, iid: int | str, discussion_id: str, body: str) -> dict[str, Any]:
        self.posted.append((discussion_id, body))
        return {"id": 900 + len(self.posted), "body": body}


class ScriptedClassifier(CommentClassifier):
    """Returns canned analyses by note ID; raises for IDs listed in ``failing``."""

    def __init__(
        self,
        analyses: dict[str, CommentAnalysis] | None = None,
        failing: set[str] | None = None,
    ) -> None:
        self.analyses = analyses or {}
        self.failing = failing or set()
        self.contexts: list[AnalysisContext] = []

    @property
    def name(self) -> str:
        return "scripted"

    async def analyze_comment(self, note: Note, context: AnalysisContext) -> CommentAnalysis:
        self.contexts.append(context)
        if note.id in self.failing:
            msg = f"classifier exploded on {note.id}"
            raise RuntimeError(msg)
        if note.id in self.analyses:
            return self.analyses[note.id]
        return CommentAnalysis(
            id=note.id,
            body=note.body,
            author=note.author,
            category=CommentCategory.MINOR,
            severity=3,
            confidence=0.7,
            is_valid=True,
        )
