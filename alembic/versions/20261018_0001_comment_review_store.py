"""Create comment review tables: subjects, tasks, audit, runs, chunks, published."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "subjects",
        sa.Column("subject_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("subject_id"),
    )

    op.create_table(
        "comment_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("subject_id", sa.String(), nullable=False),
        sa.Column("entry_type", sa.String(), nullable=False),
        sa.Column("comment_text", sa.Text(), nullable=False),
        sa.Column("selected_text", sa.Text(), nullable=True),
        sa.Column("anchor_block_id", sa.String(), nullable=True),
        sa.Column("anchor_context_before", sa.Text(), nullable=True),
        sa.Column("anchor_context_after", sa.Text(), nullable=True),
        sa.Column("reply_to_comment_id", sa.String(), nullable=True),
        sa.Column("reply_to_comment_text", sa.Text(), nullable=True),
        sa.Column("reply_to_ai_reply_markdown", sa.Text(), nullable=True),
        sa.Column("fingerprint", sa.String(), nullable=False),
        sa.Column("client_ip", sa.String(), nullable=True),
        sa.Column("ip_region", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("admin_note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_comment_tasks_fingerprint", "comment_tasks", ["fingerprint"])
    op.create_index("ix_comment_tasks_status", "comment_tasks", ["status"])
    op.create_index(
        "idx_comment_tasks_status_created",
        "comment_tasks",
        ["status", "created_at"],
    )
    op.create_index(
        "idx_comment_tasks_subject_created",
        "comment_tasks",
        ["subject_id", "created_at"],
    )

    op.create_table(
        "comment_audit_logs",
        sa.Column("log_id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("operator", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("before_json", sa.Text(), nullable=True),
        sa.Column("after_json", sa.Text(), nullable=True),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("log_id"),
    )
    op.create_index("ix_comment_audit_logs_action", "comment_audit_logs", ["action"])
    op.create_index(
        "idx_comment_audit_logs_task_time",
        "comment_audit_logs",
        ["task_id", "created_at"],
    )

    op.create_table(
        "comment_ai_runs",
        sa.Column("run_id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("runner_program", sa.String(), nullable=False),
        sa.Column("runner_args_json", sa.Text(), nullable=False),
        sa.Column("exit_code", sa.Integer(), nullable=True),
        sa.Column("final_reply_markdown", sa.Text(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["task_id"], ["comment_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("run_id"),
    )
    op.create_index("ix_comment_ai_runs_status", "comment_ai_runs", ["status"])
    op.create_index(
        "idx_comment_ai_runs_task_started",
        "comment_ai_runs",
        ["task_id", "started_at"],
    )

    op.create_table(
        "comment_ai_run_chunks",
        sa.Column("chunk_id", sa.String(), nullable=False),
        sa.Column("run_id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("stream", sa.String(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["run_id"], ["comment_ai_runs.run_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("chunk_id"),
        sa.UniqueConstraint("run_id", "sequence", name="uq_comment_ai_run_chunks_run_sequence"),
    )
    op.create_index("ix_comment_ai_run_chunks_task_id", "comment_ai_run_chunks", ["task_id"])

    op.create_table(
        "comment_published",
        sa.Column("comment_id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("subject_id", sa.String(), nullable=False),
        sa.Column("author_name", sa.String(), nullable=False),
        sa.Column("author_avatar_seed", sa.String(), nullable=False),
        sa.Column("author_hash", sa.String(), nullable=False),
        sa.Column("comment_text", sa.Text(), nullable=False),
        sa.Column("selected_text", sa.Text(), nullable=True),
        sa.Column("anchor_block_id", sa.String(), nullable=True),
        sa.Column("anchor_context_before", sa.Text(), nullable=True),
        sa.Column("anchor_context_after", sa.Text(), nullable=True),
        sa.Column("reply_to_comment_id", sa.String(), nullable=True),
        sa.Column("reply_to_comment_text", sa.Text(), nullable=True),
        sa.Column("reply_to_ai_reply_markdown", sa.Text(), nullable=True),
        sa.Column("ai_reply_markdown", sa.Text(), nullable=False),
        sa.Column("ip_region", sa.String(), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["comment_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("comment_id"),
        sa.UniqueConstraint("task_id"),
    )
    op.create_index(
        "idx_comment_published_subject_time",
        "comment_published",
        ["subject_id", "published_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_comment_published_subject_time", table_name="comment_published")
    op.drop_table("comment_published")
    op.drop_index("ix_comment_ai_run_chunks_task_id", table_name="comment_ai_run_chunks")
    op.drop_table("comment_ai_run_chunks")
    op.drop_index("idx_comment_ai_runs_task_started", table_name="comment_ai_runs")
    op.drop_index("ix_comment_ai_runs_status", table_name="comment_ai_runs")
    op.drop_table("comment_ai_runs")
    op.drop_index("idx_comment_audit_logs_task_time", table_name="comment_audit_logs")
    op.drop_index("ix_comment_audit_logs_action", table_name="comment_audit_logs")
    op.drop_table("comment_audit_logs")
    op.drop_index("idx_comment_tasks_subject_created", table_name="comment_tasks")
    op.drop_index("idx_comment_tasks_status_created", table_name="comment_tasks")
    op.drop_index("ix_comment_tasks_status", table_name="comment_tasks")
    op.drop_index("ix_comment_tasks_fingerprint", table_name="comment_tasks")
    op.drop_table("comment_tasks")
    op.drop_table("subjects")
