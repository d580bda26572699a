"""Tests for post-analysis filtering."""

from __future__ import annotations

import pytest
from helpers.builders import make_analysis

from mrautofix.filters import filter_analyses, risk_bucket
from mrautofix.models import CommentCategory, RiskLevel


class TestRiskBucket:
    @pytest.mark.parametrize(
        ("score", "expected"),
        [
            (1, RiskLevel.VERY_LOW),
            (2, RiskLevel.VERY_LOW),
            (3, RiskLevel.LOW),
            (4, RiskLevel.LOW),
            (6, RiskLevel.MEDIUM),
            (8, RiskLevel.HIGH),
            (9, RiskLevel.VERY_HIGH),
            (10, RiskLevel.VERY_HIGH),
        ],
    )
    def test_buckets(self, score, expected):
        assert risk_bucket(score) == expected


class TestFilterAnalyses:
    def test_no_filters_returns_everything(self):
        analyses = [make_analysis("1"), make_analysis("2")]
        assert filter_analyses(analyses) == analyses

    def test_category_filter(self):
        analyses = [
            make_analysis("1", category=CommentCategory.STYLE),
            make_analysis("2", category=CommentCategory.SECURITY),
        ]
        result = filter_analyses(analyses, category_filter=[CommentCategory.SECURITY])
        assert [a.id for a in result] == ["2"]

    def test_empty_category_filter_is_ignored(self):
        analyses = [make_analysis("1")]
        assert filter_analyses(analyses, category_filter=[]) == analyses

    def test_min_severity_is_inclusive(self):
        analyses = [make_analysis("1", severity=4), make_analysis("2", severity=5), make_analysis("3", severity=9)]
        result = filter_analyses(analyses, min_severity=5)
        assert [a.id for a in result] == ["2", "3"]

    def test_risk_threshold(self):
        analyses = [
            make_analysis("1", risk_score=2),
            make_analysis("2", risk_score=5),
            make_analysis("3", risk_score=9),
        ]
        result = filter_analyses(analyses, risk_threshold=RiskLevel.MEDIUM)
        assert [a.id for a in result] == ["1", "2"]

    def test_missing_risk_assessment_passes(self):
        analyses = [make_analysis("1"), make_analysis("2", risk_score=10)]
        result = filter_analyses(analyses, risk_threshold=RiskLevel.VERY_LOW)
        assert [a.id for a in result] == ["1"]

    def test_filters_combine_and_keep_order(self):
        analyses = [
            make_analysis("1", category=CommentCategory.SECURITY, severity=9, risk_score=3),
            make_analysis("2", category=CommentCategory.STYLE, severity=9),
            make_analysis("3", category=CommentCategory.SECURITY, severity=2),
            make_analysis("4", category=CommentCategory.SECURITY, severity=8),
        ]
        result = filter_analyses(
            analyses,
            category_filter=[CommentCategory.SECURITY],
            min_severity=5,
            risk_threshold=RiskLevel.LOW,
        )
        assert [a.id for a in result] == ["1", "4"]
