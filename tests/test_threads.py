"""Tests for discussion thread analysis and note partitioning."""

from __future__ import annotations

from helpers.builders import make_discussion, make_note

from mrautofix.models import ConversationRole
from mrautofix.threads import (
    analyze_discussion_thread,
    build_thread_context,
    get_thread_summary,
    partition_notes,
    should_analyze_for_action,
)


class TestAnalyzeDiscussionThread:
    def test_one_metadata_per_note(self):
        discussion = make_discussion("d1", [make_note(1), make_note(2, author="bob"), make_note(3)])
        metadata = analyze_discussion_thread(discussion)
        assert [m.thread_position for m in metadata] == [0, 1, 2]
        assert all(m.discussion_id == "d1" for m in metadata)
        assert all(len(m.conversation_flow) == 3 for m in metadata)

    def test_resolved_when_every_resolvable_note_resolved(self):
        discussion = make_discussion(
            "d1",
            [make_note(1, resolvable=True, resolved=True), make_note(2, resolvable=True, resolved=True)],
        )
        assert all(m.is_resolved for m in analyze_discussion_thread(discussion))

    def test_unresolved_when_any_resolvable_note_open(self):
        discussion = make_discussion(
            "d1",
            [make_note(1, resolvable=True, resolved=True), make_note(2, resolvable=True, resolved=False)],
        )
        assert not any(m.is_resolved for m in analyze_discussion_thread(discussion))

    def test_no_resolvable_notes_is_unresolved(self):
        discussion = make_discussion("d1", [make_note(1, resolved=True)])
        assert analyze_discussion_thread(discussion)[0].is_resolved is False

    def test_counts_user_and_system_notes(self):
        discussion = make_discussion("d1", [make_note(1), make_note(2, system=True, body="added 1 commit")])
        meta = analyze_discussion_thread(discussion)[0]
        assert meta.total_notes == 2
        assert meta.user_notes == 1

    def test_individual_note_flag(self):
        discussion = make_discussion("d1", [make_note(1)], individual_note=True)
        assert analyze_discussion_thread(discussion)[0].is_individual_note is True


class TestConversationRoles:
    def _roles(self, notes):
        flow = analyze_discussion_thread(make_discussion("d1", notes))[0].conversation_flow
        return [entry.conversation_role for entry in flow]

    def test_first_note_is_initiator(self):
        assert self._roles([make_note(1)]) == [ConversationRole.INITIATOR]

    def test_reply_from_other_author_is_responder(self):
        roles = self._roles([make_note(1, author="alice"), make_note(2, body="Done", author="bob")])
        assert roles[1] == ConversationRole.RESPONDER

    def test_question_is_clarifier(self):
        roles = self._roles([make_note(1, author="alice"), make_note(2, body="Why though?", author="bob")])
        assert roles[1] == ConversationRole.CLARIFIER

    def test_follow_up_from_same_author_is_clarifier(self):
        roles = self._roles([make_note(1, author="alice"), make_note(2, body="Also this", author="alice")])
        assert roles[1] == ConversationRole.CLARIFIER

    def test_newly_resolved_note_is_resolver(self):
        roles = self._roles([make_note(1), make_note(2, body="Fixed", author="bob", resolved=True)])
        assert roles[1] == ConversationRole.RESOLVER

    def test_system_note_is_responder(self):
        roles = self._roles([make_note(1), make_note(2, body="can you see this?", system=True)])
        assert roles[1] == ConversationRole.RESPONDER


class TestPartitionNotes:
    def test_splits_actionable_and_context_only(self):
        open_thread = make_discussion("open", [make_note(1, resolvable=True), make_note(2, author="bob")])
        resolved = make_discussion("done", [make_note(3, resolvable=True, resolved=True)])
        partition = partition_notes([open_thread, resolved])

        assert [item.note.id for item in partition.actionable] == ["1", "2"]
        assert [item.note.id for item in partition.context_only] == ["3"]
        assert partition.stats.discussions == 2
        assert partition.stats.resolved_threads == 1

    def test_system_notes_are_counted_but_dropped(self):
        discussion = make_discussion("d1", [make_note(1), make_note(2, system=True)])
        partition = partition_notes([discussion])
        assert [item.note.id for item in partition.actionable] == ["1"]
        assert partition.stats.total_notes == 2
        assert partition.stats.system_notes == 1
        assert partition.stats.actionable_notes == 1
        assert partition.stats.context_only_notes == 0

    def test_include_resolved_makes_resolved_notes_actionable(self):
        resolved = make_discussion("done", [make_note(3, resolvable=True, resolved=True)])
        partition = partition_notes([resolved], include_resolved=True)
        assert [item.note.id for item in partition.actionable] == ["3"]
        assert partition.context_only == []

    def test_preserves_discussion_then_note_order(self):
        first = make_discussion("a", [make_note(10), make_note(11, author="bob")])
        second = make_discussion("b", [make_note(5)])
        partition = partition_notes([first, second])
        assert [item.note.id for item in partition.actionable] == ["10", "11", "5"]
        assert [item.discussion_id for item in partition.actionable] == ["a", "a", "b"]

    def test_empty(self):
        partition = partition_notes([])
        assert partition.actionable == []
        assert partition.stats.discussions == 0


class TestShouldAnalyzeForAction:
    def test_resolved_is_not_actionable(self):
        meta = analyze_discussion_thread(make_discussion("d", [make_note(1, resolvable=True, resolved=True)]))[0]
        assert should_analyze_for_action(meta) is False
        assert should_analyze_for_action(meta, include_resolved=True) is True


class TestBuildThreadContext:
    def test_empty_for_single_note(self):
        meta = analyze_discussion_thread(make_discussion("d", [make_note(1)]))[0]
        assert build_thread_context(meta) == ""

    def test_empty_for_thread_root(self):
        meta = analyze_discussion_thread(make_discussion("d", [make_note(1), make_note(2, author="bob")]))[0]
        assert build_thread_context(meta) == ""

    def test_renders_previous_messages(self):
        notes = [make_note(1, body="Rename x", author="alice"), make_note(2, body="Why?", author="bob"), make_note(3)]
        meta = analyze_discussion_thread(make_discussion("d", notes))[2]
        context = build_thread_context(meta)
        assert context.startswith("Thread Conversation Context (2 previous messages):\n")
        assert '🎯 alice: "Rename x"' in context
        assert '❓ bob: "Why?"' in context

    def test_truncates_long_bodies(self):
        notes = [make_note(1, body="x" * 200), make_note(2, author="bob")]
        meta = analyze_discussion_thread(make_discussion("d", notes))[1]
        context = build_thread_context(meta)
        assert '"' + "x" * 150 + '..."' in context


class TestGetThreadSummary:
    def test_individual_note(self):
        meta = analyze_discussion_thread(make_discussion("d", [make_note(1)], individual_note=True))[0]
        assert get_thread_summary(meta) == "📝 Individual note"

    def test_resolved_individual_note(self):
        discussion = make_discussion("d", [make_note(1, resolvable=True, resolved=True)], individual_note=True)
        assert get_thread_summary(analyze_discussion_thread(discussion)[0]) == "📝 Resolved note"

    def test_active_thread(self):
        meta = analyze_discussion_thread(make_discussion("d", [make_note(1), make_note(2, author="bob")]))[0]
        assert get_thread_summary(meta) == "🔄 Active thread (2 notes)"

    def test_resolved_thread_with_system_note(self):
        notes = [make_note(1, resolvable=True, resolved=True), make_note(2, system=True)]
        meta = analyze_discussion_thread(make_discussion("d", notes))[0]
        assert get_thread_summary(meta) == "✅ Resolved thread (1/2 user notes)"
