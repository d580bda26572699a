"""Post-analysis filtering: category, minimum severity, risk ceiling."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mrautofix.models import RiskLevel

if TYPE_CHECKING:
    from mrautofix.models import CommentAnalysis, CommentCategory

logger = logging.getLogger(__name__)


def risk_bucket(score: int) -> RiskLevel:
    """Map a 1-10 risk score onto the five-level scale."""
    if score <= 2:  # noqa: PLR2004
        return RiskLevel.VERY_LOW
    if score <= 4:  # noqa: PLR2004
        return RiskLevel.LOW
    if score <= 6:  # noqa: PLR2004
        return RiskLevel.MEDIUM
    if score <= 8:  # noqa: PLR2004
        return RiskLevel.HIGH
    return RiskLevel.VERY_HIGH


def _within_risk(analysis: CommentAnalysis, threshold: RiskLevel) -> bool:
    if analysis.risk_assessment is None:
        return True
    return risk_bucket(analysis.risk_assessment.risk_score).index <= threshold.index


def filter_analyses(
    analyses: list[CommentAnalysis],
    *,
    category_filter: list[CommentCategory] | None = None,
    min_severity: int | None = None,
    risk_threshold: RiskLevel | None = None,
) -> list[CommentAnalysis]:
    """Apply category, then severity, then risk filters; each is skipped when unset.

    Analyses without a risk assessment always pass the risk filter.
    """
    result = list(analyses)

    if category_filter:
        before = len(result)
        allowed = set(category_filter)
        result = [a for a in result if a.category in allowed]
        logger.info("Category filter: %d -> %d", before, len(result))

    if min_severity is not None:
        before = len(result)
        result = [a for a in result if a.severity >= min_severity]
        logger.info("Severity filter (>= %d): %d -> %d", min_severity, before, len(result))

    if risk_threshold is not None:
        before = len(result)
        result = [a for a in result if _within_risk(a, risk_threshold)]
        logger.info("Risk filter (<= %s): %d -> %d", risk_threshold, before, len(result))

    return result
