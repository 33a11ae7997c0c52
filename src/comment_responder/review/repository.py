"""Persistent store for comment tasks, audit trail, runs and captured output."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from comment_responder.review.errors import ConflictError, NotFoundError
from comment_responder.review.models import (
    AuditEntryView,
    AuditOutcome,
    ChunkStream,
    CommentContext,
    CommentTaskCreate,
    CommentTaskPatch,
    PublishedReplyView,
    PublishedReplyWrite,
    RunChunkView,
    RunStatus,
    RunView,
    TaskDetails,
    TaskStatus,
    TaskView,
)
from comment_responder.review.state_machine import is_allowed, transition_values
from comment_responder.storage.alembic_runner import upgrade_head
from comment_responder.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware,
    to_utc_aware_optional,
    utc_now,
)
from comment_responder.storage.sqlmodel_models import (
    CommentAiRun,
    CommentAiRunChunk,
    CommentAuditLog,
    CommentTask,
    PublishedComment,
    Subject,
)

EDITABLE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.APPROVED, TaskStatus.FAILED})


class ReviewRepository:
    """Comment review persistence facade backed by SQLModel + SQLite.

    Every public method opens its own short session, so one instance can be
    shared between request handlers, the worker thread and stream readers.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.db_path)

    # -- subjects -------------------------------------------------------------

    def add_subject(self, subject_id: str, *, title: str | None = None) -> None:
        """Register a subject comments may refer to; re-adding updates the title."""

        with Session(self.engine) as session:
            row = session.get(Subject, subject_id)
            if row is None:
                row = Subject(
                    subject_id=subject_id,
                    title=title,
                    created_at=to_db_datetime(utc_now()),
                )
            else:
                row.title = title
            session.add(row)
            session.commit()

    def subject_exists(self, subject_id: str) -> bool:
        with Session(self.engine) as session:
            return session.get(Subject, subject_id) is not None

    def list_subjects(self) -> list[tuple[str, str | None]]:
        with Session(self.engine) as session:
            rows = session.exec(select(Subject).order_by(col(Subject.subject_id).asc())).all()
        return [(row.subject_id, row.title) for row in rows]

    # -- tasks ----------------------------------------------------------------

    def create_task(self, payload: CommentTaskCreate, *, operator: str = "reader") -> TaskView:
        """Insert a pending task and its `created` audit entry in one transaction."""

        now = to_db_datetime(utc_now())
        task_id = str(uuid4())
        context = payload.context
        with Session(self.engine) as session:
            row = CommentTask(
                task_id=task_id,
                subject_id=payload.subject_id,
                entry_type=payload.entry_type,
                comment_text=payload.comment_text,
                selected_text=context.selected_text,
                anchor_block_id=context.anchor_block_id,
                anchor_context_before=context.anchor_context_before,
                anchor_context_after=context.anchor_context_after,
                reply_to_comment_id=context.reply_to_comment_id,
                reply_to_comment_text=context.reply_to_comment_text,
                reply_to_ai_reply_markdown=context.reply_to_ai_reply_markdown,
                fingerprint=payload.fingerprint,
                client_ip=payload.client_ip,
                ip_region=payload.ip_region,
                status=TaskStatus.PENDING.value,
                attempt_count=0,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            created = _to_task_view(row)
            self._add_audit(
                session=session,
                task_id=task_id,
                action="created",
                operator=operator,
                outcome=AuditOutcome.APPLIED,
                before=None,
                after=created,
            )
            session.commit()
        return created

    def get_task(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(CommentTask, task_id)
            return _to_task_view(row) if row is not None else None

    def require_task(self, task_id: str) -> TaskView:
        task = self.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Comment task not found: {task_id}")
        return task

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        subject_id: str | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, newest first, optionally filtered."""

        with Session(self.engine) as session:
            statement = select(CommentTask)
            if status is not None:
                statement = statement.where(CommentTask.status == status.value)
            if subject_id is not None:
                statement = statement.where(CommentTask.subject_id == subject_id)
            statement = statement.order_by(col(CommentTask.created_at).desc()).limit(limit)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def count_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        subject_id: str | None = None,
    ) -> int:
        with Session(self.engine) as session:
            statement = select(func.count()).select_from(CommentTask)
            if status is not None:
                statement = statement.where(CommentTask.status == status.value)
            if subject_id is not None:
                statement = statement.where(CommentTask.subject_id == subject_id)
            return int(session.exec(statement).one())

    def status_breakdown(self) -> dict[str, int]:
        """Task counts per status; every known status is present."""

        counts = {status.value: 0 for status in TaskStatus}
        with Session(self.engine) as session:
            rows = session.exec(
                select(CommentTask.status, func.count()).group_by(CommentTask.status),
            ).all()
        for status, count in rows:
            counts[status] = int(count)
        return counts

    def get_task_details(self, task_id: str) -> TaskDetails | None:
        task = self.get_task(task_id)
        if task is None:
            return None
        return TaskDetails(
            task=task,
            audit=self.list_audit_entries(task_id=task_id, limit=500),
            runs=self.list_runs(task_id=task_id, limit=100),
        )

    def transition(  # noqa: PLR0913
        self,
        task_id: str,
        target: TaskStatus,
        *,
        operator: str,
        action: str,
        reason: str | None = None,
        admin_note: str | None = None,
        expected: frozenset[TaskStatus] | None = None,
    ) -> TaskView:
        task, _ = self.apply_transition(
            task_id,
            target,
            operator=operator,
            action=action,
            reason=reason,
            admin_note=admin_note,
            expected=expected,
        )
        return task

    def apply_transition(  # noqa: PLR0913
        self,
        task_id: str,
        target: TaskStatus,
        *,
        operator: str,
        action: str,
        reason: str | None = None,
        admin_note: str | None = None,
        expected: frozenset[TaskStatus] | None = None,
    ) -> tuple[TaskView, bool]:
        """Move a task to `target` with a compare-and-set on its current status.

        A target equal to the current status is a no-op. `expected` narrows the
        statuses the move may start from. Every call, including rejected ones,
        leaves exactly one audit entry. Returns the task and whether it changed.
        """

        with Session(self.engine) as session:
            row = session.get(CommentTask, task_id)
            if row is None:
                raise NotFoundError(f"Comment task not found: {task_id}")
            before = _to_task_view(row)

            if before.status == target:
                self._add_audit(
                    session=session,
                    task_id=task_id,
                    action=action,
                    operator=operator,
                    outcome=AuditOutcome.NOOP,
                    before=before,
                    after=before,
                )
                session.commit()
                return before, False

            if not is_allowed(before.status, target) or (
                expected is not None and before.status not in expected
            ):
                detail = (
                    f"Invalid comment task transition: {before.status.value} -> {target.value}"
                )
                self._reject(
                    session,
                    before=before,
                    action=action,
                    operator=operator,
                    detail=detail,
                )
                raise ConflictError(detail)

            values = transition_values(
                target=target,
                now=to_db_datetime(utc_now()),
                attempt_count=row.attempt_count,
                approved_at=row.approved_at,
                failure_reason=reason,
                admin_note=admin_note,
            )
            result = session.exec(
                sa_update(CommentTask)
                .where(
                    col(CommentTask.task_id) == task_id,
                    col(CommentTask.status) == before.status.value,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                detail = (
                    "Task state changed concurrently while moving to "
                    f"{target.value}; please retry (task_id={task_id})."
                )
                self._reject(
                    session,
                    before=before,
                    action=action,
                    operator=operator,
                    detail=detail,
                )
                raise ConflictError(detail)

            session.refresh(row)
            after = _to_task_view(row)
            self._add_audit(
                session=session,
                task_id=task_id,
                action=action,
                operator=operator,
                outcome=AuditOutcome.APPLIED,
                before=before,
                after=after,
                detail=reason,
            )
            session.commit()
            return after, True

    def patch_task(self, task_id: str, patch: CommentTaskPatch, *, operator: str) -> TaskView:
        """Edit text, context or note of a task that is not running or finished."""

        with Session(self.engine) as session:
            row = session.get(CommentTask, task_id)
            if row is None:
                raise NotFoundError(f"Comment task not found: {task_id}")
            before = _to_task_view(row)
            if before.status not in EDITABLE_STATUSES:
                detail = f"Comment task cannot be edited in status {before.status.value}"
                self._reject(
                    session,
                    before=before,
                    action="patched",
                    operator=operator,
                    detail=detail,
                )
                raise ConflictError(detail)

            values: dict[str, object] = {"updated_at": to_db_datetime(utc_now())}
            if patch.comment_text is not None:
                values["comment_text"] = patch.comment_text
            if patch.admin_note is not None:
                values["admin_note"] = patch.admin_note.strip() or None
            if patch.context is not None:
                values.update(_context_columns(patch.context))

            result = session.exec(
                sa_update(CommentTask)
                .where(
                    col(CommentTask.task_id) == task_id,
                    col(CommentTask.status) == before.status.value,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                detail = f"Task state changed concurrently while editing (task_id={task_id})."
                self._reject(
                    session,
                    before=before,
                    action="patched",
                    operator=operator,
                    detail=detail,
                )
                raise ConflictError(detail)

            session.refresh(row)
            after = _to_task_view(row)
            self._add_audit(
                session=session,
                task_id=task_id,
                action="patched",
                operator=operator,
                outcome=AuditOutcome.APPLIED,
                before=before,
                after=after,
            )
            session.commit()
            return after

    def delete_task(self, task_id: str, *, operator: str) -> None:
        """Delete a non-running task with its runs, chunks and published reply."""

        with Session(self.engine) as session:
            row = session.get(CommentTask, task_id)
            if row is None:
                raise NotFoundError(f"Comment task not found: {task_id}")
            before = _to_task_view(row)
            if before.status == TaskStatus.RUNNING:
                detail = "Comment task is running and cannot be deleted"
                self._reject(
                    session,
                    before=before,
                    action="deleted",
                    operator=operator,
                    detail=detail,
                )
                raise ConflictError(detail)
            if not self._delete_task_rows(session, before=before, operator=operator):
                session.rollback()
                detail = f"Task state changed concurrently while deleting (task_id={task_id})."
                self._reject(
                    session,
                    before=before,
                    action="deleted",
                    operator=operator,
                    detail=detail,
                )
                raise ConflictError(detail)
            session.commit()

    def cleanup_tasks(
        self,
        *,
        operator: str,
        status: TaskStatus | None = None,
        before: datetime | None = None,
    ) -> int:
        """Delete non-running tasks matching every given filter; no filter deletes nothing."""

        if status is None and before is None:
            return 0
        if status == TaskStatus.RUNNING:
            raise ConflictError("Running comment tasks cannot be cleaned up")

        with Session(self.engine) as session:
            statement = select(CommentTask).where(
                CommentTask.status != TaskStatus.RUNNING.value,
            )
            if status is not None:
                statement = statement.where(CommentTask.status == status.value)
            if before is not None:
                statement = statement.where(
                    col(CommentTask.created_at) < to_db_datetime(before),
                )
            candidates = [_to_task_view(row) for row in session.exec(statement).all()]
            deleted = 0
            for candidate in candidates:
                if self._delete_task_rows(session, before=candidate, operator=operator):
                    deleted += 1
            session.commit()
        return deleted

    def _delete_task_rows(self, session: Session, *, before: TaskView, operator: str) -> bool:
        task_id = before.task_id
        result = session.exec(
            sa_delete(CommentTask).where(
                col(CommentTask.task_id) == task_id,
                col(CommentTask.status) == before.status.value,
            ),
        )
        if result.rowcount != 1:
            return False
        session.exec(sa_delete(CommentAiRunChunk).where(col(CommentAiRunChunk.task_id) == task_id))
        session.exec(sa_delete(CommentAiRun).where(col(CommentAiRun.task_id) == task_id))
        session.exec(sa_delete(PublishedComment).where(col(PublishedComment.task_id) == task_id))
        self._add_audit(
            session=session,
            task_id=task_id,
            action="deleted",
            operator=operator,
            outcome=AuditOutcome.APPLIED,
            before=before,
            after=None,
        )
        return True

    # -- audit ----------------------------------------------------------------

    def list_audit_entries(
        self,
        *,
        task_id: str | None = None,
        action: str | None = None,
        limit: int = 100,
    ) -> list[AuditEntryView]:
        """Audit entries in the order they were written."""

        with Session(self.engine) as session:
            statement = select(CommentAuditLog)
            if task_id is not None:
                statement = statement.where(CommentAuditLog.task_id == task_id)
            if action is not None:
                statement = statement.where(CommentAuditLog.action == action)
            statement = statement.order_by(col(CommentAuditLog.log_id).desc()).limit(limit)
            rows = list(session.exec(statement).all())
        rows.reverse()
        return [_to_audit_view(row) for row in rows]

    def _reject(
        self,
        session: Session,
        *,
        before: TaskView,
        action: str,
        operator: str,
        detail: str,
    ) -> None:
        self._add_audit(
            session=session,
            task_id=before.task_id,
            action=action,
            operator=operator,
            outcome=AuditOutcome.REJECTED,
            before=before,
            after=None,
            detail=detail,
        )
        session.commit()

    def _add_audit(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        action: str,
        operator: str,
        outcome: AuditOutcome,
        before: TaskView | None,
        after: TaskView | None,
        detail: str | None = None,
    ) -> None:
        session.add(
            CommentAuditLog(
                task_id=task_id,
                action=action,
                operator=operator,
                outcome=outcome.value,
                before_json=_snapshot_json(before),
                after_json=_snapshot_json(after),
                detail=detail,
                created_at=to_db_datetime(utc_now()),
            ),
        )

    # -- runs -----------------------------------------------------------------

    def create_run(
        self,
        *,
        run_id: str,
        task_id: str,
        runner_program: str,
        runner_args: list[str],
    ) -> RunView:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = CommentAiRun(
                run_id=run_id,
                task_id=task_id,
                status=RunStatus.RUNNING.value,
                runner_program=runner_program,
                runner_args_json=json.dumps(runner_args, ensure_ascii=False),
                started_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_run_view(row)

    def finalize_run(
        self,
        run_id: str,
        *,
        status: RunStatus,
        exit_code: int | None = None,
        failure_reason: str | None = None,
        final_reply_markdown: str | None = None,
    ) -> bool:
        """Close a run once; later calls on a completed run return False."""

        if status == RunStatus.RUNNING:
            raise ValueError("Runs can only be finalized as success or failed")
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(CommentAiRun)
                .where(
                    col(CommentAiRun.run_id) == run_id,
                    col(CommentAiRun.completed_at).is_(None),
                )
                .values(
                    status=status.value,
                    exit_code=exit_code,
                    failure_reason=failure_reason,
                    final_reply_markdown=final_reply_markdown,
                    updated_at=now,
                    completed_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def fail_unfinished_runs(self, *, reason: str) -> int:
        """Mark every run left in `running` as failed; returns how many."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(CommentAiRun)
                .where(
                    col(CommentAiRun.status) == RunStatus.RUNNING.value,
                    col(CommentAiRun.completed_at).is_(None),
                )
                .values(
                    status=RunStatus.FAILED.value,
                    failure_reason=reason,
                    updated_at=now,
                    completed_at=now,
                ),
            )
            session.commit()
            return int(result.rowcount or 0)

    def get_run(self, run_id: str) -> RunView | None:
        with Session(self.engine) as session:
            row = session.get(CommentAiRun, run_id)
            return _to_run_view(row) if row is not None else None

    def list_runs(
        self,
        *,
        task_id: str | None = None,
        status: RunStatus | None = None,
        limit: int = 50,
    ) -> list[RunView]:
        """Runs newest first."""

        with Session(self.engine) as session:
            statement = select(CommentAiRun)
            if task_id is not None:
                statement = statement.where(CommentAiRun.task_id == task_id)
            if status is not None:
                statement = statement.where(CommentAiRun.status == status.value)
            statement = statement.order_by(
                col(CommentAiRun.started_at).desc(),
                col(CommentAiRun.run_id).desc(),
            ).limit(limit)
            rows = session.exec(statement).all()
        return [_to_run_view(row) for row in rows]

    def latest_run(self, task_id: str) -> RunView | None:
        runs = self.list_runs(task_id=task_id, limit=1)
        return runs[0] if runs else None

    # -- chunks ---------------------------------------------------------------

    def append_chunk(  # noqa: PLR0913
        self,
        *,
        run_id: str,
        task_id: str,
        stream: ChunkStream,
        sequence: int,
        content: str,
    ) -> RunChunkView:
        with Session(self.engine) as session:
            row = CommentAiRunChunk(
                chunk_id=f"{run_id}-{sequence}",
                run_id=run_id,
                task_id=task_id,
                stream=stream.value,
                sequence=sequence,
                content=content,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_chunk_view(row)

    def list_chunks(
        self,
        run_id: str,
        *,
        after_sequence: int = -1,
        limit: int | None = None,
    ) -> list[RunChunkView]:
        """Chunks of one run with sequence greater than `after_sequence`, in order."""

        with Session(self.engine) as session:
            statement = (
                select(CommentAiRunChunk)
                .where(
                    CommentAiRunChunk.run_id == run_id,
                    col(CommentAiRunChunk.sequence) > after_sequence,
                )
                .order_by(col(CommentAiRunChunk.sequence).asc())
            )
            if limit is not None:
                statement = statement.limit(limit)
            rows = session.exec(statement).all()
        return [_to_chunk_view(row) for row in rows]

    # -- published replies ----------------------------------------------------

    def upsert_published_reply(
        self,
        task: TaskView,
        reply: PublishedReplyWrite,
    ) -> PublishedReplyView:
        """Publish the reply for `task`, replacing an earlier one for the same task."""

        now = to_db_datetime(utc_now())
        context = task.context
        with Session(self.engine) as session:
            row = session.exec(
                select(PublishedComment).where(PublishedComment.task_id == task.task_id),
            ).one_or_none()
            if row is None:
                row = PublishedComment(
                    comment_id=reply.comment_id,
                    task_id=task.task_id,
                    subject_id=task.subject_id,
                    author_name=reply.author_name,
                    author_avatar_seed=reply.author_avatar_seed,
                    author_hash=reply.author_hash,
                    comment_text=task.comment_text,
                    ai_reply_markdown=reply.ai_reply_markdown,
                    published_at=now,
                )
            row.subject_id = task.subject_id
            row.author_name = reply.author_name
            row.author_avatar_seed = reply.author_avatar_seed
            row.author_hash = reply.author_hash
            row.comment_text = task.comment_text
            row.selected_text = context.selected_text
            row.anchor_block_id = context.anchor_block_id
            row.anchor_context_before = context.anchor_context_before
            row.anchor_context_after = context.anchor_context_after
            row.reply_to_comment_id = context.reply_to_comment_id
            row.reply_to_comment_text = context.reply_to_comment_text
            row.reply_to_ai_reply_markdown = context.reply_to_ai_reply_markdown
            row.ai_reply_markdown = reply.ai_reply_markdown
            row.ip_region = task.ip_region
            row.published_at = now
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_published_view(row)

    def get_published_reply(self, task_id: str) -> PublishedReplyView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(PublishedComment).where(PublishedComment.task_id == task_id),
            ).one_or_none()
            return _to_published_view(row) if row is not None else None

    def list_published_replies(
        self,
        *,
        subject_id: str | None = None,
        limit: int = 50,
    ) -> list[PublishedReplyView]:
        with Session(self.engine) as session:
            statement = select(PublishedComment)
            if subject_id is not None:
                statement = statement.where(PublishedComment.subject_id == subject_id)
            statement = statement.order_by(col(PublishedComment.published_at).desc()).limit(limit)
            rows = session.exec(statement).all()
        return [_to_published_view(row) for row in rows]


def _snapshot_json(task: TaskView | None) -> str | None:
    if task is None:
        return None
    return json.dumps(task.snapshot(), ensure_ascii=False, sort_keys=True)


def _load_snapshot(raw: str | None) -> dict[str, object] | None:
    if not raw:
        return None
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else None


def _context_columns(context: CommentContext) -> dict[str, str | None]:
    return {
        "selected_text": context.selected_text,
        "anchor_block_id": context.anchor_block_id,
        "anchor_context_before": context.anchor_context_before,
        "anchor_context_after": context.anchor_context_after,
        "reply_to_comment_id": context.reply_to_comment_id,
        "reply_to_comment_text": context.reply_to_comment_text,
        "reply_to_ai_reply_markdown": context.reply_to_ai_reply_markdown,
    }


def _to_task_view(row: CommentTask) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        subject_id=row.subject_id,
        entry_type=row.entry_type,
        comment_text=row.comment_text,
        context=CommentContext(
            selected_text=row.selected_text,
            anchor_block_id=row.anchor_block_id,
            anchor_context_before=row.anchor_context_before,
            anchor_context_after=row.anchor_context_after,
            reply_to_comment_id=row.reply_to_comment_id,
            reply_to_comment_text=row.reply_to_comment_text,
            reply_to_ai_reply_markdown=row.reply_to_ai_reply_markdown,
        ),
        fingerprint=row.fingerprint,
        client_ip=row.client_ip,
        ip_region=row.ip_region,
        status=TaskStatus(row.status),
        attempt_count=row.attempt_count,
        failure_reason=row.failure_reason,
        admin_note=row.admin_note,
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
        approved_at=to_utc_aware_optional(row.approved_at),
        completed_at=to_utc_aware_optional(row.completed_at),
    )


def _to_audit_view(row: CommentAuditLog) -> AuditEntryView:
    return AuditEntryView(
        log_id=row.log_id or 0,
        task_id=row.task_id,
        action=row.action,
        operator=row.operator,
        outcome=AuditOutcome(row.outcome),
        before=_load_snapshot(row.before_json),
        after=_load_snapshot(row.after_json),
        detail=row.detail,
        created_at=to_utc_aware(row.created_at),
    )


def _to_run_view(row: CommentAiRun) -> RunView:
    args = json.loads(row.runner_args_json) if row.runner_args_json else []
    return RunView(
        run_id=row.run_id,
        task_id=row.task_id,
        status=RunStatus(row.status),
        runner_program=row.runner_program,
        runner_args=[str(item) for item in args] if isinstance(args, list) else [],
        exit_code=row.exit_code,
        final_reply_markdown=row.final_reply_markdown,
        failure_reason=row.failure_reason,
        started_at=to_utc_aware(row.started_at),
        updated_at=to_utc_aware(row.updated_at),
        completed_at=to_utc_aware_optional(row.completed_at),
    )


def _to_chunk_view(row: CommentAiRunChunk) -> RunChunkView:
    return RunChunkView(
        chunk_id=row.chunk_id,
        run_id=row.run_id,
        task_id=row.task_id,
        stream=ChunkStream(row.stream),
        sequence=row.sequence,
        content=row.content,
        created_at=to_utc_aware(row.created_at),
    )


def _to_published_view(row: PublishedComment) -> PublishedReplyView:
    return PublishedReplyView(
        comment_id=row.comment_id,
        task_id=row.task_id,
        subject_id=row.subject_id,
        author_name=row.author_name,
        author_avatar_seed=row.author_avatar_seed,
        author_hash=row.author_hash,
        comment_text=row.comment_text,
        context=CommentContext(
            selected_text=row.selected_text,
            anchor_block_id=row.anchor_block_id,
            anchor_context_before=row.anchor_context_before,
            anchor_context_after=row.anchor_context_after,
            reply_to_comment_id=row.reply_to_comment_id,
            reply_to_comment_text=row.reply_to_comment_text,
            reply_to_ai_reply_markdown=row.reply_to_ai_reply_markdown,
        ),
        ai_reply_markdown=row.ai_reply_markdown,
        ip_region=row.ip_region,
        published_at=to_utc_aware(row.published_at),
    )
