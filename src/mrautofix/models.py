"""Pydantic models for mrautofix."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _username(value: Any) -> Any:
    """Coerce GitLab ``{"username": ...}`` author objects to the username string."""
    if isinstance(value, dict):
        return value.get("username") or "unknown"
    if value is None:
        return "unknown"
    return value


# -- Enums ---------------------------------------------------------------------


class RiskLevel(StrEnum):
    """Estimated risk of a change, ordered from safest to riskiest."""

    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"

    @property
    def index(self) -> int:
        """Position in the ordered scale (``very_low`` = 0)."""
        return list(RiskLevel).index(self)


class CommentCategory(StrEnum):
    CRITICAL = "critical"
    FUNCTIONAL = "functional"
    SECURITY = "security"
    STYLE = "style"
    MINOR = "minor"
    QUESTION = "question"


class ConversationRole(StrEnum):
    INITIATOR = "initiator"
    RESPONDER = "responder"
    CLARIFIER = "clarifier"
    RESOLVER = "resolver"


class FixType(StrEnum):
    STYLE = "style"
    SIMPLE_REFACTOR = "simple_refactor"
    BUG_FIX = "bug_fix"
    OPTIMIZATION = "optimization"
    NONE = "none"


class ChangeType(StrEnum):
    """Kinds of line edits a classifier may propose.

    ``move`` is accepted on input but the patch executor refuses it.
    """

    REPLACE = "replace"
    INSERT = "insert"
    DELETE = "delete"
    MOVE = "move"


class ResponseType(StrEnum):
    DISAGREEMENT = "disagreement"
    CLARIFICATION_REQUEST = "clarification_request"
    ANSWER_QUESTION = "answer_question"
    NONE = "none"


# -- GitLab boundary models ----------------------------------------------------


class Note(BaseModel):
    """A single note (comment) inside a GitLab discussion."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(description="GitLab note ID")
    body: str = Field(default="", description="Note body text")
    author: str = Field(default="unknown", description="GitLab username of the note author")
    system: bool = Field(default=False, description="True for bot-authored status notes (e.g. 'added 1 commit')")
    resolvable: bool = Field(default=False, description="Whether the note can be resolved")
    resolved: bool = Field(default=False, description="Whether the note is resolved")
    created_at: datetime | None = Field(default=None, description="When the note was posted")

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("author", mode="before")
    @classmethod
    def _author_username(cls, value: Any) -> Any:
        return _username(value)

    @field_validator("body", mode="before")
    @classmethod
    def _body_default(cls, value: Any) -> Any:
        return value or ""


class Discussion(BaseModel):
    """A GitLab discussion: an ordered list of notes with a shared resolution state."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(description="GitLab discussion ID")
    individual_note: bool = Field(default=False, description="True for standalone notes outside a thread")
    notes: list[Note] = Field(default_factory=list, description="Notes in posting order")

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        return str(value) if value is not None else "unknown"


class MergeRequestRef(BaseModel):
    """The subset of a GitLab merge request the pipeline relies on."""

    model_config = ConfigDict(extra="ignore")

    iid: int = Field(description="Project-scoped merge request IID")
    title: str = Field(default="", description="Merge request title")
    description: str = Field(default="", description="Merge request description")
    source_branch: str = Field(default="", description="Branch the changes come from")
    target_branch: str = Field(default="", description="Branch the changes merge into")
    web_url: str = Field(default="", description="Merge request URL")
    author: str = Field(default="unknown", description="GitLab username of the MR author")
    state: str = Field(default="", description="opened, merged, closed, ...")

    @field_validator("author", mode="before")
    @classmethod
    def _author_username(cls, value: Any) -> Any:
        return _username(value)

    @field_validator("description", mode="before")
    @classmethod
    def _description_default(cls, value: Any) -> Any:
        return value or ""


# -- Thread metadata -----------------------------------------------------------


class ConversationFlowEntry(BaseModel):
    """One note's place in a thread's conversation."""

    model_config = ConfigDict(frozen=True)

    note_id: str = Field(description="Note ID")
    author: str = Field(description="Note author username")
    body: str = Field(default="", description="Note body")
    is_system_note: bool = Field(default=False, description="Whether this is a system note")
    note_position: int = Field(description="Zero-based position in the thread")
    is_resolved: bool = Field(default=False, description="Whether this note is resolved")
    conversation_role: ConversationRole = Field(description="Role the note plays in the conversation")


class ThreadMetadata(BaseModel):
    """Per-note view of the discussion a note belongs to. Immutable once computed."""

    model_config = ConfigDict(frozen=True)

    discussion_id: str = Field(description="ID of the discussion the note belongs to")
    is_resolved: bool = Field(default=False, description="Whether the whole thread is resolved")
    total_notes: int = Field(default=1, description="Total notes in the thread, system notes included")
    user_notes: int = Field(default=1, description="Non-system notes in the thread")
    is_individual_note: bool = Field(default=False, description="Standalone note rather than a threaded discussion")
    thread_position: int = Field(default=0, description="Position of this note in the thread (0 = root)")
    conversation_flow: list[ConversationFlowEntry] = Field(default_factory=list, description="Every note of the thread, in order")


# -- Classifier output ---------------------------------------------------------


class RiskAssessment(BaseModel):
    impact_scope: str = Field(default="local", description="local, module, system or global")
    change_complexity: str = Field(default="simple", description="trivial .. extensive")
    test_coverage: str = Field(default="partial", description="none .. comprehensive")
    risk_score: int = Field(ge=1, le=10, description="Risk on a 1-10 scale")
    risk_factors: list[str] = Field(default_factory=list)
    mitigation_strategies: list[str] = Field(default_factory=list)


class AgreementAssessment(BaseModel):
    agrees_with_suggestion: bool = True
    agreement_confidence: float = Field(default=0.0, ge=0, le=1)
    agreement_reasoning: str = ""
    alternative_approach: str | None = None
    additional_considerations: list[str] = Field(default_factory=list)


class QuestionAssessment(BaseModel):
    is_question: bool = True
    can_answer_question: bool = False
    answer_confidence: float = Field(default=0.0, ge=0, le=1)
    question_type: str = Field(default="general", description="clarification, implementation, architecture, behavior or general")
    suggested_answer: str | None = None
    requires_code_analysis: bool = False


class AutoResponseDecision(BaseModel):
    """Whether and how to reply to a comment automatically."""

    should_respond: bool = Field(default=False, description="Whether a reply is recommended")
    response_type: ResponseType = Field(default=ResponseType.NONE, description="Kind of reply")
    response_reason: str = Field(default="", description="Why a reply is (not) recommended")
    response_content: str = Field(default="", description="Reply body to post")
    confidence: float = Field(default=0.0, ge=0, le=1, description="Confidence in the reply (0-1)")
    requires_approval: bool = Field(default=True, description="Whether a human must approve before posting")


class CodeChange(BaseModel):
    """One line-range edit. Line numbers are 1-indexed and inclusive."""

    file_path: str = Field(description="Path relative to the working directory")
    change_type: ChangeType = Field(description="replace, insert, delete (move is rejected when applied)")
    start_line: int | None = Field(default=None, description="First line of the range")
    end_line: int | None = Field(default=None, description="Last line of the range (inclusive)")
    original_code: str | None = Field(default=None, description="Expected pre-image of the range, compared trimmed")
    new_code: str | None = Field(default=None, description="Replacement or inserted code")
    description: str = Field(default="", description="Human-readable summary of the edit")


class AutoFixDecision(BaseModel):
    """A classifier's proposal for fixing a comment automatically."""

    should_fix: bool = Field(default=False, description="Whether an automatic fix is proposed")
    fix_type: FixType = Field(default=FixType.NONE, description="Kind of fix")
    fix_reason: str = Field(default="", description="Why the fix is proposed")
    confidence: float = Field(default=0.0, ge=0, le=1, description="Confidence in the fix (0-1)")
    estimated_risk: RiskLevel = Field(default=RiskLevel.MEDIUM, description="Estimated risk of applying the fix")
    affected_files: list[str] = Field(default_factory=list, description="Files the fix touches")
    code_changes: list[CodeChange] = Field(default_factory=list, description="Edits, applied in order")
    requires_approval: bool = Field(default=False, description="Whether a human must approve the fix")
    prerequisites: list[str] = Field(default_factory=list, description="Requirements before applying the fix")


class CommentAnalysis(BaseModel):
    """Classifier verdict for a single note."""

    id: str = Field(description="Note ID")
    body: str = Field(default="", description="Note body")
    author: str = Field(default="unknown", description="Note author username")
    category: CommentCategory = Field(description="Comment category")
    severity: int = Field(description="Severity, 1 (trivial) to 10 (critical)")
    confidence: float = Field(ge=0, le=1, description="Classifier confidence (0-1)")
    is_valid: bool = Field(description="Whether the feedback is considered valid")
    reasoning: str = Field(default="", description="Why the classifier decided this")
    suggested_response: str | None = Field(default=None, description="Suggested reply text")
    agreement_assessment: AgreementAssessment | None = None
    risk_assessment: RiskAssessment | None = None
    question_assessment: QuestionAssessment | None = None
    thread_metadata: ThreadMetadata | None = Field(default=None, description="Thread context of the note")
    auto_response_decision: AutoResponseDecision | None = None
    auto_fix_decision: AutoFixDecision | None = None


# -- Auto-fix / auto-response results ------------------------------------------


class GitStatus(BaseModel):
    """Working-tree state checked once before any fix is applied."""

    is_on_correct_branch: bool = Field(description="Whether the checkout is on the MR source branch")
    current_branch: str = Field(description="Checked-out branch ('unknown' if detection failed)")
    expected_branch: str = Field(description="MR source branch")
    has_uncommitted_changes: bool = Field(default=False, description="Reported only; does not block fixing")


class FixExecutionResult(BaseModel):
    success: bool = Field(description="Whether every change of the fix was applied")
    comment_id: str = Field(description="ID of the comment the fix addresses")
    file_path: str = Field(description="Primary affected file")
    change_description: str = Field(default="", description="Fix reason")
    error: str | None = Field(default=None, description="Error message if the fix failed")
    applied_changes: list[CodeChange] = Field(default_factory=list, description="Changes written to disk")


class SkippedItem(BaseModel):
    analysis: CommentAnalysis
    reason: str = Field(description="Why the candidate was not applied")


class AutoFixResults(BaseModel):
    planned_fixes: list[CommentAnalysis] = Field(default_factory=list, description="Analyses that passed every gate")
    applied_fixes: list[FixExecutionResult] = Field(default_factory=list, description="Execution results (successes and failures)")
    skipped_fixes: list[SkippedItem] = Field(default_factory=list, description="Candidates stopped by a gate")
    git_status: GitStatus


class ResponseExecutionResult(BaseModel):
    success: bool
    note_id: str | None = None
    error: str | None = None
    response_content: str = ""
    discussion_id: str = ""


class AutoResponseResults(BaseModel):
    planned_responses: list[CommentAnalysis] = Field(default_factory=list)
    executed_responses: list[ResponseExecutionResult] = Field(default_factory=list)
    skipped_responses: list[SkippedItem] = Field(default_factory=list)


class ReplySessionSummary(BaseModel):
    """Auto-response quota usage for the current service session."""

    responses_posted: int = Field(description="Replies posted since the session started")
    remaining_responses: int = Field(description="Replies still allowed in this session")
    session_limit: int = Field(description="max_responses_per_session")


class SessionSummary(BaseModel):
    """Auto-fix quota usage for the current service session."""

    fixes_applied: int = Field(description="Fixes applied since the session started")
    remaining_fixes: int = Field(description="Fixes still allowed in this session")
    session_limit: int = Field(description="max_fixes_per_session")
    replies: ReplySessionSummary | None = Field(default=None, description="Auto-response quota of the same session")


# -- Orchestration output ------------------------------------------------------


class PaginationInfo(BaseModel):
    offset: int = Field(description="Zero-based offset into the actionable notes")
    max_comments: int = Field(description="Window size")
    has_more: bool = Field(description="Whether actionable notes remain past this window")
    total_available: int = Field(description="Number of actionable notes")


class AppliedFilters(BaseModel):
    category_filter: list[CommentCategory] | None = None
    min_severity: int | None = None
    risk_threshold: RiskLevel | None = None
    include_resolved: bool = False


class ThreadStatistics(BaseModel):
    """Counts gathered while partitioning notes."""

    discussions: int = Field(default=0, description="Discussions fetched")
    resolved_threads: int = Field(default=0, description="Discussions that are fully resolved")
    total_notes: int = Field(default=0, description="Every note seen, system notes included")
    system_notes: int = Field(default=0, description="System notes (never analyzed)")
    actionable_notes: int = Field(default=0, description="Notes eligible for analysis")
    context_only_notes: int = Field(default=0, description="Notes kept for context only")


class AnalysisSummary(BaseModel):
    total_comments: int = 0
    category_counts: dict[str, int] = Field(default_factory=dict)
    average_severity: float = 0.0
    high_priority_comments: int = Field(default=0, description="Analyses with severity >= 7")
    valid_comments: int = 0
    validity_rate: float = 0.0
    total_original_comments: int | None = Field(default=None, description="Actionable notes before pagination")
    total_filtered_comments: int | None = Field(default=None, description="Analyses left after filtering")
    pagination_info: PaginationInfo | None = None
    applied_filters: AppliedFilters | None = None
    thread_statistics: ThreadStatistics | None = None


class MrFeedbackAnalysis(BaseModel):
    """Result of one feedback analysis run."""

    merge_request: MergeRequestRef | None = Field(default=None, description="The analyzed merge request")
    comment_analysis: list[CommentAnalysis] = Field(default_factory=list, description="Filtered analyses, in note order")
    summary: AnalysisSummary = Field(default_factory=AnalysisSummary)
    auto_response_results: AutoResponseResults | None = None
    auto_fix_results: AutoFixResults | None = None
    error: str | None = Field(default=None, description="Error message if the request failed")


class MrWithAnalysis(MrFeedbackAnalysis):
    diffs: list[dict[str, Any]] | None = Field(default=None, description="Raw merge request diffs")


class MergeRequestLookupResult(BaseModel):
    merge_request: MergeRequestRef | None = None
    error: str | None = Field(default=None, description="Error message if the request failed")


class ConfigInfo(BaseModel):
    """Active mrautofix configuration with metadata."""

    config: dict = Field(description="Full configuration as a dictionary")
    source: str = Field(default="defaults", description="Path of the loaded config file, or 'defaults'")
    explanation: str = Field(default="", description="Human-readable summary of the active settings")
