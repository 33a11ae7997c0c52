"""Allowed comment task transitions and their side effects."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from comment_responder.review.errors import ConflictError
from comment_responder.review.models import TaskStatus

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.APPROVED, TaskStatus.RUNNING, TaskStatus.REJECTED}),
    TaskStatus.APPROVED: frozenset({TaskStatus.RUNNING}),
    TaskStatus.RUNNING: frozenset({TaskStatus.DONE, TaskStatus.FAILED}),
    TaskStatus.FAILED: frozenset({TaskStatus.RUNNING, TaskStatus.REJECTED}),
    TaskStatus.DONE: frozenset(),
    TaskStatus.REJECTED: frozenset(),
}

TERMINAL_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.REJECTED})


def is_allowed(current: TaskStatus, target: TaskStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_allowed(current: TaskStatus, target: TaskStatus) -> None:
    if not is_allowed(current, target):
        raise ConflictError(
            f"Invalid comment task transition: {current.value} -> {target.value}",
        )


def transition_values(  # noqa: PLR0913
    *,
    target: TaskStatus,
    now: datetime,
    attempt_count: int,
    approved_at: datetime | None,
    failure_reason: str | None = None,
    admin_note: str | None = None,
) -> dict[str, Any]:
    """Column updates applied together with a status change.

    Entering `running` bumps the attempt counter and clears the previous
    failure and completion; `done` and `rejected` stamp completion.
    """

    values: dict[str, Any] = {"status": target.value, "updated_at": now}
    if target in {TaskStatus.APPROVED, TaskStatus.RUNNING} and approved_at is None:
        values["approved_at"] = now
    if target in TERMINAL_STATUSES:
        values["completed_at"] = now
    if target == TaskStatus.RUNNING:
        values["attempt_count"] = attempt_count + 1
        values["failure_reason"] = None
        values["completed_at"] = None
    elif failure_reason is not None:
        values["failure_reason"] = failure_reason.strip() or None
    if admin_note is not None:
        values["admin_note"] = admin_note.strip() or None
    return values
