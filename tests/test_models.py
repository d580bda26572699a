"""Tests for model coercion at the GitLab boundary."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from mrautofix.models import CommentAnalysis, Discussion, MergeRequestRef, Note, RiskLevel


class TestNote:
    def test_coerces_gitlab_payload(self):
        note = Note.model_validate({
            "id": 123,
            "body": None,
            "author": {"username": "alice", "name": "Alice"},
            "system": False,
            "created_at": "2026-02-06T10:00:00Z",
        })
        assert note.id == "123"
        assert note.body == ""
        assert note.author == "alice"
        assert note.created_at is not None

    def test_missing_author(self):
        assert Note.model_validate({"id": 1, "author": None}).author == "unknown"


class TestDiscussion:
    def test_nested_notes(self):
        discussion = Discussion.model_validate({"id": "abc", "notes": [{"id": 1}, {"id": 2}]})
        assert [n.id for n in discussion.notes] == ["1", "2"]


class TestMergeRequestRef:
    def test_null_description(self):
        mr = MergeRequestRef.model_validate({"iid": 3, "description": None, "author": {"username": "bob"}})
        assert mr.description == ""
        assert mr.author == "bob"


class TestRiskLevel:
    def test_ordering(self):
        assert [level.index for level in RiskLevel] == [0, 1, 2, 3, 4]
        assert RiskLevel.LOW.index < RiskLevel.HIGH.index


class TestCommentAnalysis:
    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            CommentAnalysis(id="1", category="style", severity=2, confidence=1.5, is_valid=True)
