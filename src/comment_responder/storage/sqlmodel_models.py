"""SQLModel ORM tables for the comment review store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class Subject(SQLModel, table=True):
    __tablename__ = "subjects"  # type: ignore[bad-override]

    subject_id: str = Field(primary_key=True)
    title: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CommentTask(SQLModel, table=True):
    __tablename__ = "comment_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_comment_tasks_status_created", "status", "created_at"),
        Index("idx_comment_tasks_subject_created", "subject_id", "created_at"),
    )

    task_id: str = Field(primary_key=True)
    subject_id: str
    entry_type: str
    comment_text: str = Field(sa_column=Column(Text, nullable=False))
    selected_text: str | None = Field(default=None, sa_column=Column(Text))
    anchor_block_id: str | None = None
    anchor_context_before: str | None = Field(default=None, sa_column=Column(Text))
    anchor_context_after: str | None = Field(default=None, sa_column=Column(Text))
    reply_to_comment_id: str | None = None
    reply_to_comment_text: str | None = Field(default=None, sa_column=Column(Text))
    reply_to_ai_reply_markdown: str | None = Field(default=None, sa_column=Column(Text))
    fingerprint: str = Field(index=True)
    client_ip: str | None = None
    ip_region: str | None = None
    status: str = Field(index=True)
    attempt_count: int = Field(default=0)
    failure_reason: str | None = Field(default=None, sa_column=Column(Text))
    admin_note: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    approved_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class CommentAuditLog(SQLModel, table=True):
    __tablename__ = "comment_audit_logs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_comment_audit_logs_task_time", "task_id", "created_at"),)

    log_id: int | None = Field(default=None, primary_key=True)
    task_id: str
    action: str = Field(index=True)
    operator: str
    outcome: str
    before_json: str | None = Field(default=None, sa_column=Column(Text))
    after_json: str | None = Field(default=None, sa_column=Column(Text))
    detail: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CommentAiRun(SQLModel, table=True):
    __tablename__ = "comment_ai_runs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_comment_ai_runs_task_started", "task_id", "started_at"),)

    run_id: str = Field(primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("comment_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    status: str = Field(index=True)
    runner_program: str
    runner_args_json: str = Field(sa_column=Column(Text, nullable=False))
    exit_code: int | None = None
    final_reply_markdown: str | None = Field(default=None, sa_column=Column(Text))
    failure_reason: str | None = Field(default=None, sa_column=Column(Text))
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class CommentAiRunChunk(SQLModel, table=True):
    __tablename__ = "comment_ai_run_chunks"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("run_id", "sequence", name="uq_comment_ai_run_chunks_run_sequence"),
    )

    chunk_id: str = Field(primary_key=True)
    run_id: str = Field(
        sa_column=Column(
            ForeignKey("comment_ai_runs.run_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    task_id: str = Field(index=True)
    stream: str
    sequence: int
    content: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class PublishedComment(SQLModel, table=True):
    __tablename__ = "comment_published"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_comment_published_subject_time", "subject_id", "published_at"),)

    comment_id: str = Field(primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("comment_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
    )
    subject_id: str
    author_name: str
    author_avatar_seed: str
    author_hash: str
    comment_text: str = Field(sa_column=Column(Text, nullable=False))
    selected_text: str | None = Field(default=None, sa_column=Column(Text))
    anchor_block_id: str | None = None
    anchor_context_before: str | None = Field(default=None, sa_column=Column(Text))
    anchor_context_after: str | None = Field(default=None, sa_column=Column(Text))
    reply_to_comment_id: str | None = None
    reply_to_comment_text: str | None = Field(default=None, sa_column=Column(Text))
    reply_to_ai_reply_markdown: str | None = Field(default=None, sa_column=Column(Text))
    ai_reply_markdown: str = Field(sa_column=Column(Text, nullable=False))
    ip_region: str | None = None
    published_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
