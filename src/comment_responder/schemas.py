"""HTTP request and response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from comment_responder.review.models import (
    AuditOutcome,
    ChunkStream,
    CommentContext,
    RunStatus,
    TaskStatus,
)


class ContextFields(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    selected_text: str | None = None
    anchor_block_id: str | None = None
    anchor_context_before: str | None = None
    anchor_context_after: str | None = None
    reply_to_comment_id: str | None = None
    reply_to_comment_text: str | None = None
    reply_to_ai_reply_markdown: str | None = None

    def to_context(self) -> CommentContext:
        return CommentContext(**self.model_dump(include=set(ContextFields.model_fields)))


class SubmitCommentRequest(ContextFields):
    subject_id: str
    entry_type: str
    comment_text: str
    fingerprint: str | None = None


class OperatorActionRequest(BaseModel):
    admin_note: str | None = None


class TaskPatchRequest(BaseModel):
    comment_text: str | None = None
    admin_note: str | None = None
    context: ContextFields | None = None


class CleanupRequest(BaseModel):
    status: TaskStatus | None = None
    before: datetime | None = None


class CleanupResponse(BaseModel):
    deleted: int


class SubjectCreate(BaseModel):
    subject_id: str = Field(min_length=1)
    title: str | None = None


class SubjectRead(BaseModel):
    subject_id: str
    title: str | None = None


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    task_id: str
    subject_id: str
    entry_type: str
    comment_text: str
    context: ContextFields
    status: TaskStatus
    attempt_count: int
    failure_reason: str | None
    admin_note: str | None
    ip_region: str | None
    created_at: datetime
    updated_at: datetime
    approved_at: datetime | None
    completed_at: datetime | None


class SubmitCommentResponse(BaseModel):
    task_id: str
    status: TaskStatus


class AuditRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    log_id: int
    task_id: str
    action: str
    operator: str
    outcome: AuditOutcome
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    detail: str | None
    created_at: datetime


class RunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


class ChunkRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    chunk_id: str
    run_id: str
    task_id: str
    stream: ChunkStream
    sequence: int
    content: str
    created_at: datetime


class PublishedRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    comment_id: str
    task_id: str
    subject_id: str
    author_name: str
    author_avatar_seed: str
    comment_text: str
    context: ContextFields
    ai_reply_markdown: str
    ip_region: str | None
    published_at: datetime


class TaskDetailsRead(BaseModel):
    task: TaskRead
    audit: list[AuditRead]
    runs: list[RunRead]
    published: PublishedRead | None = None


class AiOutputRead(BaseModel):
    task_id: str
    run_id: str | None
    runs: list[RunRead]
    chunks: list[ChunkRead]


class StatsRead(BaseModel):
    counts: dict[str, int]
    total: int
    queue_depth: int
    worker_running: bool
