"""Submission validation and operator actions over comment tasks."""

from __future__ import annotations

import logging
from datetime import datetime

from comment_responder.config import SubmissionSettings
from comment_responder.review.dispatch import WorkerQueue
from comment_responder.review.errors import (
    DispatchError,
    InvalidArgumentError,
    NotFoundError,
)
from comment_responder.review.models import (
    CommentContext,
    CommentTaskCreate,
    CommentTaskPatch,
    SubmitComment,
    TaskStatus,
    TaskView,
)
from comment_responder.review.rate_limit import RateLimiter
from comment_responder.review.repository import ReviewRepository

logger = logging.getLogger(__name__)

RUNNABLE_FROM = frozenset({TaskStatus.PENDING, TaskStatus.APPROVED, TaskStatus.FAILED})
RETRYABLE_FROM = frozenset({TaskStatus.FAILED})


class ReviewService:
    """Single entry point used by the HTTP API and the CLI."""

    def __init__(
        self,
        *,
        repository: ReviewRepository,
        queue: WorkerQueue,
        settings: SubmissionSettings,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.repository = repository
        self.queue = queue
        self.settings = settings
        self.rate_limiter = rate_limiter or RateLimiter(settings.rate_limit_seconds)

    def submit(self, submission: SubmitComment, now: datetime | None = None) -> TaskView:
        """Validate a reader comment and store it as a pending task.

        Raises:
            InvalidArgumentError: malformed subject, entry type, body or fingerprint.
            NotFoundError: the subject is not known.
            RateLimitedError: the fingerprint submitted too recently.
        """

        subject_id = submission.subject_id.strip()
        if not subject_id:
            raise InvalidArgumentError("subject_id is required")
        if not self.repository.subject_exists(subject_id):
            raise NotFoundError(f"Subject not found: {subject_id}")

        entry_type = submission.entry_type.strip()
        if entry_type not in self.settings.entry_types:
            allowed = ", ".join(self.settings.entry_types)
            raise InvalidArgumentError(f"entry_type must be one of: {allowed}")

        comment_text = self._validate_body(submission.comment_text)

        fingerprint = submission.fingerprint.strip()
        if not fingerprint:
            raise InvalidArgumentError("client fingerprint is required")
        self.rate_limiter.check(fingerprint, now)

        task = self.repository.create_task(
            CommentTaskCreate(
                subject_id=subject_id,
                entry_type=entry_type,
                comment_text=comment_text,
                fingerprint=fingerprint,
                context=normalize_context(submission.context),
                client_ip=_optional(submission.client_ip),
                ip_region=_optional(submission.ip_region),
            ),
        )
        logger.info("Comment task %s submitted for subject %s", task.task_id, subject_id)
        return task

    # -- operator transitions -------------------------------------------------

    def approve(self, task_id: str, *, operator: str, admin_note: str | None = None) -> TaskView:
        return self.repository.transition(
            task_id,
            TaskStatus.APPROVED,
            operator=operator,
            action="approve",
            admin_note=admin_note,
        )

    def approve_and_run(
        self,
        task_id: str,
        *,
        operator: str,
        admin_note: str | None = None,
    ) -> TaskView:
        """Move the task to `running` and hand it to the worker.

        Calling it on a task that is already running changes nothing and does
        not enqueue it again.
        """

        task, applied = self.repository.apply_transition(
            task_id,
            TaskStatus.RUNNING,
            operator=operator,
            action="approve_and_run",
            admin_note=admin_note,
            expected=RUNNABLE_FROM,
        )
        if applied:
            self._dispatch(task, operator=operator)
        return task

    def retry(self, task_id: str, *, operator: str) -> TaskView:
        task, applied = self.repository.apply_transition(
            task_id,
            TaskStatus.RUNNING,
            operator=operator,
            action="retry",
            expected=RETRYABLE_FROM,
        )
        if applied:
            self._dispatch(task, operator=operator)
        return task

    def reject(self, task_id: str, *, operator: str, admin_note: str | None = None) -> TaskView:
        return self.repository.transition(
            task_id,
            TaskStatus.REJECTED,
            operator=operator,
            action="reject",
            admin_note=admin_note,
        )

    def patch(self, task_id: str, patch: CommentTaskPatch, *, operator: str) -> TaskView:
        normalized = CommentTaskPatch(
            comment_text=(
                self._validate_body(patch.comment_text) if patch.comment_text is not None else None
            ),
            admin_note=patch.admin_note,
            context=normalize_context(patch.context) if patch.context is not None else None,
        )
        return self.repository.patch_task(task_id, normalized, operator=operator)

    def delete(self, task_id: str, *, operator: str) -> None:
        self.repository.delete_task(task_id, operator=operator)
        logger.info("Comment task %s deleted by %s", task_id, operator)

    def cleanup(
        self,
        *,
        operator: str,
        status: TaskStatus | None = None,
        before: datetime | None = None,
    ) -> int:
        deleted = self.repository.cleanup_tasks(operator=operator, status=status, before=before)
        if deleted:
            logger.info("Cleaned up %d comment tasks", deleted)
        return deleted

    def status_breakdown(self) -> dict[str, int]:
        return self.repository.status_breakdown()

    def _dispatch(self, task: TaskView, *, operator: str) -> None:
        try:
            self.queue.enqueue(task.task_id)
        except DispatchError as error:
            logger.warning("Dispatch of comment task %s failed: %s", task.task_id, error)
            self.repository.transition(
                task.task_id,
                TaskStatus.FAILED,
                operator=operator,
                action="dispatch_failed",
                reason=f"dispatch failed: {error}",
            )
            raise

    def _validate_body(self, raw: str) -> str:
        text = raw.strip()
        if not text:
            raise InvalidArgumentError("comment_text must not be empty")
        if len(text) > self.settings.max_comment_chars:
            raise InvalidArgumentError(
                f"comment_text exceeds {self.settings.max_comment_chars} characters",
            )
        return text


def normalize_context(context: CommentContext | None) -> CommentContext:
    """Trim every context field and turn blanks into None."""

    if context is None:
        return CommentContext()
    return CommentContext(
        selected_text=_optional(context.selected_text),
        anchor_block_id=_optional(context.anchor_block_id),
        anchor_context_before=_optional(context.anchor_context_before),
        anchor_context_after=_optional(context.anchor_context_after),
        reply_to_comment_id=_optional(context.reply_to_comment_id),
        reply_to_comment_text=_optional(context.reply_to_comment_text),
        reply_to_ai_reply_markdown=_optional(context.reply_to_ai_reply_markdown),
    )


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None
