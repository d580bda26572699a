"""Batched, rate-limited analysis of actionable notes.

Batches run one after another; every note inside a batch is analyzed
concurrently. A failing note is replaced with a degraded analysis so one
bad comment never sinks the run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from mrautofix.models import CommentAnalysis, CommentCategory

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastmcp.server.context import Context

    from mrautofix.threads import NoteWithContext

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_BATCH_DELAY = 1.0


def degraded_analysis(item: NoteWithContext) -> CommentAnalysis:
    """Placeholder analysis for a note whose classification failed."""
    return CommentAnalysis(
        id=item.note.id,
        body=item.note.body,
        author=item.note.author,
        category=CommentCategory.MINOR,
        severity=1,
        confidence=0.1,
        is_valid=False,
        reasoning="Analysis failed due to error",
        suggested_response="Analysis failed - manual review required",
        thread_metadata=item.thread_metadata,
    )


def select_window(items: list[NoteWithContext], offset: int, max_comments: int) -> list[NoteWithContext]:
    return items[offset : offset + max_comments]


async def _analyze_one(
    item: NoteWithContext,
    analyze: Callable[[NoteWithContext], Awaitable[CommentAnalysis]],
) -> CommentAnalysis:
    try:
        analysis = await analyze(item)
    except Exception as exc:
        logger.warning("Failed to analyze note %s by %s: %s", item.note.id, item.note.author, exc)
        return degraded_analysis(item)
    return analysis.model_copy(update={"thread_metadata": item.thread_metadata})


async def analyze_in_batches(  # noqa: PLR0913
    items: list[NoteWithContext],
    analyze: Callable[[NoteWithContext], Awaitable[CommentAnalysis]],
    *,
    offset: int = 0,
    max_comments: int = 20,
    batch_size: int = DEFAULT_BATCH_SIZE,
    batch_delay: float = DEFAULT_BATCH_DELAY,
    ctx: Context | None = None,
) -> list[CommentAnalysis]:
    """Analyze ``items[offset:offset + max_comments]`` in batches.

    Output order always equals input order: every result is written into
    the slot of the note it belongs to. ``batch_delay`` seconds pass between
    consecutive batches, never after the last one.
    """
    window = select_window(items, offset, max_comments)
    total = len(window)
    if not window:
        return []

    batches = [window[start : start + batch_size] for start in range(0, total, batch_size)]
    logger.info("Analyzing %d notes in %d batch(es) of up to %d", total, len(batches), batch_size)

    slots: list[CommentAnalysis | None] = [None] * total
    done = 0
    for number, batch in enumerate(batches, start=1):
        logger.info("Processing batch %d/%d (%d notes)", number, len(batches), len(batch))
        results = await asyncio.gather(*(_analyze_one(item, analyze) for item in batch))
        for position, analysis in enumerate(results, start=done):
            slots[position] = analysis
        done += len(batch)

        if ctx:
            await ctx.report_progress(progress=done, total=total)
        if number < len(batches):
            logger.debug("Waiting %.1fs before next batch", batch_delay)
            await asyncio.sleep(batch_delay)

    if ctx:
        await ctx.info(f"Analyzed {total} comment(s) in {len(batches)} batch(es)")
    return [analysis for analysis in slots if analysis is not None]
