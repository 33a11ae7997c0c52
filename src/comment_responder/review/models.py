"""Domain models for comment review tasks, runs and captured output."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable comment task lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    REJECTED = "rejected"


class RunStatus(str, Enum):
    """Execution states of one runner attempt."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class ChunkStream(str, Enum):
    """Which pipe a captured line came from."""

    STDOUT = "stdout"
    STDERR = "stderr"


class AuditOutcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    REJECTED = "rejected"


@dataclass(slots=True)
class CommentContext:
    """Optional quoted context attached to a comment."""

    selected_text: str | None = None
    anchor_block_id: str | None = None
    anchor_context_before: str | None = None
    anchor_context_after: str | None = None
    reply_to_comment_id: str | None = None
    reply_to_comment_text: str | None = None
    reply_to_ai_reply_markdown: str | None = None


@dataclass(slots=True)
class SubmitComment:
    """Reader submission before validation."""

    subject_id: str
    entry_type: str
    comment_text: str
    fingerprint: str
    context: CommentContext | None = None
    client_ip: str | None = None
    ip_region: str | None = None


@dataclass(slots=True)
class CommentTaskCreate:
    """Validated payload written as a new pending task."""

    subject_id: str
    entry_type: str
    comment_text: str
    fingerprint: str
    context: CommentContext
    client_ip: str | None = None
    ip_region: str | None = None


@dataclass(slots=True)
class CommentTaskPatch:
    """Operator edits to a task that has not started running."""

    comment_text: str | None = None
    admin_note: str | None = None
    context: CommentContext | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view for CLI, API and worker logic."""

    task_id: str
    subject_id: str
    entry_type: str
    comment_text: str
    context: CommentContext
    fingerprint: str
    client_ip: str | None
    ip_region: str | None
    status: TaskStatus
    attempt_count: int
    failure_reason: str | None
    admin_note: str | None
    created_at: datetime
    updated_at: datetime
    approved_at: datetime | None
    completed_at: datetime | None

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe snapshot used as audit before/after state."""

        payload = asdict(self)
        payload["status"] = self.status.value
        for key in ("created_at", "updated_at", "approved_at", "completed_at"):
            value = payload[key]
            payload[key] = value.isoformat() if value is not None else None
        return payload


@dataclass(slots=True)
class AuditEntryView:
    """One recorded transition attempt."""

    log_id: int
    task_id: str
    action: str
    operator: str
    outcome: AuditOutcome
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    detail: str | None
    created_at: datetime


@dataclass(slots=True)
class RunView:
    """One execution attempt of the external runner."""

    run_id: str
    task_id: str
    status: RunStatus
    runner_program: str
    runner_args: list[str]
    exit_code: int | None
    final_reply_markdown: str | None
    failure_reason: str | None
    started_at: datetime
    updated_at: datetime
    completed_at: datetime | None


@dataclass(slots=True)
class RunChunkView:
    """One captured output line."""

    chunk_id: str
    run_id: str
    task_id: str
    stream: ChunkStream
    sequence: int
    content: str
    created_at: datetime


@dataclass(slots=True)
class PublishedReplyWrite:
    """Reply produced by a successful run, ready to publish."""

    comment_id: str
    author_hash: str
    author_name: str
    author_avatar_seed: str
    ai_reply_markdown: str


@dataclass(slots=True)
class PublishedReplyView:
    comment_id: str
    task_id: str
    subject_id: str
    author_name: str
    author_avatar_seed: str
    author_hash: str
    comment_text: str
    context: CommentContext
    ai_reply_markdown: str
    ip_region: str | None
    published_at: datetime


@dataclass(slots=True)
class TaskDetails:
    """Task with its audit trail and run history."""

    task: TaskView
    audit: list[AuditEntryView]
    runs: list[RunView]
