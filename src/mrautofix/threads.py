"""Thread resolution analysis for GitLab discussions.

Every note gets a :class:`ThreadMetadata` describing the discussion it lives
in. Notes in unresolved threads are *actionable*; notes in resolved threads
are kept as context only unless the caller explicitly asks for them.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field

from mrautofix.models import (
    ConversationFlowEntry,
    ConversationRole,
    Discussion,
    Note,
    ThreadMetadata,
    ThreadStatistics,
)

logger = logging.getLogger(__name__)

_QUESTION_MARKERS = ("?", "can you", "could you", "what do you mean", "clarify", "explain")
_CONTEXT_BODY_LIMIT = 150

_ROLE_MARKERS = {
    ConversationRole.INITIATOR: "🎯",
    ConversationRole.RESPONDER: "💬",
    ConversationRole.CLARIFIER: "❓",
    ConversationRole.RESOLVER: "✅",
}


class NoteWithContext(BaseModel):
    """A note paired with the metadata of its thread."""

    model_config = ConfigDict(frozen=True)

    note: Note
    discussion_id: str
    thread_metadata: ThreadMetadata


class NotePartition(BaseModel):
    actionable: list[NoteWithContext] = Field(default_factory=list, description="Notes to analyze, in discussion order")
    context_only: list[NoteWithContext] = Field(default_factory=list, description="Notes of resolved threads")
    stats: ThreadStatistics = Field(default_factory=ThreadStatistics)


def _conversation_role(notes: list[Note], index: int) -> ConversationRole:
    if index == 0:
        return ConversationRole.INITIATOR

    note = notes[index]
    previous = notes[index - 1]
    if note.resolved and not previous.resolved:
        return ConversationRole.RESOLVER
    if note.system:
        return ConversationRole.RESPONDER

    body = note.body.lower()
    if any(marker in body for marker in _QUESTION_MARKERS):
        return ConversationRole.CLARIFIER
    if previous.author != note.author:
        return ConversationRole.RESPONDER
    return ConversationRole.CLARIFIER


def analyze_discussion_thread(discussion: Discussion) -> list[ThreadMetadata]:
    """Return one :class:`ThreadMetadata` per note, indexed by note position.

    A thread is resolved when it has at least one resolvable note and every
    resolvable note is resolved.
    """
    notes = discussion.notes
    resolvable = [note for note in notes if note.resolvable]
    is_resolved = bool(resolvable) and all(note.resolved for note in resolvable)
    user_notes = sum(1 for note in notes if not note.system)

    flow = [
        ConversationFlowEntry(
            note_id=note.id,
            author=note.author,
            body=note.body,
            is_system_note=note.system,
            note_position=index,
            is_resolved=note.resolved,
            conversation_role=_conversation_role(notes, index),
        )
        for index, note in enumerate(notes)
    ]

    return [
        ThreadMetadata(
            discussion_id=discussion.id,
            is_resolved=is_resolved,
            total_notes=len(notes),
            user_notes=user_notes,
            is_individual_note=discussion.individual_note,
            thread_position=index,
            conversation_flow=flow,
        )
        for index in range(len(notes))
    ]


def should_analyze_for_action(meta: ThreadMetadata, *, include_resolved: bool = False) -> bool:
    """Actionable unless the thread is resolved and resolved threads were not requested."""
    return include_resolved or not meta.is_resolved


def partition_notes(discussions: list[Discussion], *, include_resolved: bool = False) -> NotePartition:
    """Split every non-system note into actionable and context-only buckets.

    Order follows discussion order, then note order. System notes are
    counted but never returned.
    """
    partition = NotePartition()
    stats = partition.stats
    stats.discussions = len(discussions)

    for discussion in discussions:
        metadata = analyze_discussion_thread(discussion)
        if metadata and metadata[0].is_resolved:
            stats.resolved_threads += 1

        for note, meta in zip(discussion.notes, metadata, strict=True):
            stats.total_notes += 1
            if note.system:
                stats.system_notes += 1
                continue
            item = NoteWithContext(note=note, discussion_id=discussion.id, thread_metadata=meta)
            if should_analyze_for_action(meta, include_resolved=include_resolved):
                partition.actionable.append(item)
            else:
                partition.context_only.append(item)

    stats.actionable_notes = len(partition.actionable)
    stats.context_only_notes = len(partition.context_only)
    logger.info(
        "Partitioned %d notes: %d system, %d actionable, %d context-only (%d/%d threads resolved)",
        stats.total_notes,
        stats.system_notes,
        stats.actionable_notes,
        stats.context_only_notes,
        stats.resolved_threads,
        stats.discussions,
    )
    return partition


def build_thread_context(meta: ThreadMetadata) -> str:
    """Render the notes preceding this one as context for the classifier.

    Empty for single-note threads and for the first note of a thread.
    """
    if len(meta.conversation_flow) <= 1:
        return ""
    previous = meta.conversation_flow[: meta.thread_position]
    if not previous:
        return ""

    lines = []
    for entry in previous:
        body = entry.body[:_CONTEXT_BODY_LIMIT]
        if len(entry.body) > _CONTEXT_BODY_LIMIT:
            body += "..."
        lines.append(f'{_ROLE_MARKERS[entry.conversation_role]} {entry.author}: "{body}"')
    return f"Thread Conversation Context ({len(previous)} previous messages):\n" + "\n".join(lines)


def get_thread_summary(meta: ThreadMetadata) -> str:
    """Short human-readable label such as ``🔄 Active thread (3 notes)``."""
    if meta.is_individual_note:
        return "📝 Resolved note" if meta.is_resolved else "📝 Individual note"

    status = "✅ Resolved" if meta.is_resolved else "🔄 Active"
    if meta.user_notes == meta.total_notes:
        count = f"{meta.total_notes} notes"
    else:
        count = f"{meta.user_notes}/{meta.total_notes} user notes"
    return f"{status} thread ({count})"
