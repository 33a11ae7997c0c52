from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta

import allure
import pytest

from comment_responder.review.errors import ConflictError, NotFoundError
from comment_responder.review.models import (
    AuditOutcome,
    ChunkStream,
    CommentContext,
    CommentTaskPatch,
    PublishedReplyWrite,
    RunStatus,
    TaskStatus,
    TaskView,
)
from comment_responder.review.repository import ReviewRepository
from comment_responder.storage.common import utc_now

pytestmark = [
    allure.epic("Comment Review"),
    allure.feature("Task Store"),
]


def _move_to_running(repository: ReviewRepository, task_id: str) -> TaskView:
    return repository.transition(
        task_id,
        TaskStatus.RUNNING,
        operator="worker",
        action="worker_claimed",
    )


def _reply(comment_id: str, text: str) -> PublishedReplyWrite:
    return PublishedReplyWrite(
        comment_id=comment_id,
        author_hash="hash-1",
        author_name="Reader-abc123",
        author_avatar_seed="seed-1",
        ai_reply_markdown=text,
    )


def test_create_task_writes_pending_task_and_created_audit(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    task = create_task("Why?", selected_text="quoted words")

    stored = repository.require_task(task.task_id)
    assert stored.status == TaskStatus.PENDING
    assert stored.attempt_count == 0
    assert stored.context.selected_text == "quoted words"
    assert stored.created_at.tzinfo is not None

    audit = repository.list_audit_entries(task_id=task.task_id)
    assert [(entry.action, entry.outcome) for entry in audit] == [
        ("created", AuditOutcome.APPLIED),
    ]
    assert audit[0].before is None
    assert audit[0].after is not None
    assert audit[0].after["status"] == "pending"


def test_require_task_raises_for_unknown_id(repository: ReviewRepository) -> None:
    with pytest.raises(NotFoundError):
        repository.require_task("missing")
    assert repository.get_task("missing") is None
    assert repository.get_task_details("missing") is None


def test_transition_to_same_status_is_audited_noop(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    task = create_task()
    repository.transition(task.task_id, TaskStatus.APPROVED, operator="alice", action="approve")

    again, applied = repository.apply_transition(
        task.task_id,
        TaskStatus.APPROVED,
        operator="alice",
        action="approve",
    )

    assert applied is False
    assert again.status == TaskStatus.APPROVED
    outcomes = [entry.outcome for entry in repository.list_audit_entries(task_id=task.task_id)]
    assert outcomes == [AuditOutcome.APPLIED, AuditOutcome.APPLIED, AuditOutcome.NOOP]


def test_illegal_transition_is_rejected_and_audited(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    task = create_task()

    with pytest.raises(ConflictError, match="pending -> done"):
        repository.transition(task.task_id, TaskStatus.DONE, operator="alice", action="finish")

    assert repository.require_task(task.task_id).status == TaskStatus.PENDING
    last = repository.list_audit_entries(task_id=task.task_id)[-1]
    assert last.outcome == AuditOutcome.REJECTED
    assert last.action == "finish"
    assert last.detail is not None
    assert "pending -> done" in last.detail
    assert last.after is None


@pytest.mark.parametrize("terminal", [TaskStatus.DONE, TaskStatus.REJECTED])
def test_terminal_tasks_do_not_move(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
    terminal: TaskStatus,
) -> None:
    task = create_task()
    if terminal == TaskStatus.DONE:
        _move_to_running(repository, task.task_id)
    repository.transition(task.task_id, terminal, operator="alice", action="finish")

    with pytest.raises(ConflictError):
        repository.transition(task.task_id, TaskStatus.RUNNING, operator="alice", action="run")

    finished = repository.require_task(task.task_id)
    assert finished.status == terminal
    assert finished.completed_at is not None


def test_expected_statuses_narrow_allowed_moves(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    task = create_task()

    with pytest.raises(ConflictError):
        repository.transition(
            task.task_id,
            TaskStatus.RUNNING,
            operator="alice",
            action="retry",
            expected=frozenset({TaskStatus.FAILED}),
        )

    assert repository.require_task(task.task_id).status == TaskStatus.PENDING
    assert repository.list_audit_entries(task_id=task.task_id)[-1].outcome == AuditOutcome.REJECTED


def test_running_then_failed_then_running_bumps_attempts(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    task = create_task()
    _move_to_running(repository, task.task_id)
    failed = repository.transition(
        task.task_id,
        TaskStatus.FAILED,
        operator="worker",
        action="worker_failed",
        reason="boom",
    )
    assert failed.failure_reason == "boom"
    assert failed.attempt_count == 1

    retried = _move_to_running(repository, task.task_id)

    assert retried.attempt_count == 2
    assert retried.failure_reason is None
    assert retried.approved_at is not None


def test_patch_updates_text_and_context_of_pending_task(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    task = create_task("Original")

    patched = repository.patch_task(
        task.task_id,
        CommentTaskPatch(
            comment_text="Edited",
            admin_note=" reviewed ",
            context=CommentContext(anchor_block_id="p-3"),
        ),
        operator="alice",
    )

    assert patched.comment_text == "Edited"
    assert patched.admin_note == "reviewed"
    assert patched.context.anchor_block_id == "p-3"
    assert patched.status == TaskStatus.PENDING
    assert repository.list_audit_entries(task_id=task.task_id)[-1].action == "patched"


def test_patch_refused_while_running(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    task = create_task()
    _move_to_running(repository, task.task_id)

    with pytest.raises(ConflictError, match="cannot be edited"):
        repository.patch_task(task.task_id, CommentTaskPatch(comment_text="x"), operator="alice")


def test_delete_refused_while_running(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    task = create_task()
    _move_to_running(repository, task.task_id)

    with pytest.raises(ConflictError, match="running"):
        repository.delete_task(task.task_id, operator="alice")

    assert repository.get_task(task.task_id) is not None


def test_delete_removes_task_rows_but_keeps_audit(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    task = create_task()
    running = _move_to_running(repository, task.task_id)
    repository.create_run(
        run_id="run-1",
        task_id=task.task_id,
        runner_program="python",
        runner_args=["agent.py"],
    )
    repository.append_chunk(
        run_id="run-1",
        task_id=task.task_id,
        stream=ChunkStream.STDOUT,
        sequence=0,
        content="hello",
    )
    repository.upsert_published_reply(running, _reply("cmt-1", "Answer"))
    repository.finalize_run("run-1", status=RunStatus.SUCCESS, exit_code=0)
    repository.transition(task.task_id, TaskStatus.DONE, operator="worker", action="worker_done")

    repository.delete_task(task.task_id, operator="alice")

    assert repository.get_task(task.task_id) is None
    assert repository.get_run("run-1") is None
    assert repository.list_chunks("run-1") == []
    assert repository.get_published_reply(task.task_id) is None
    actions = [entry.action for entry in repository.list_audit_entries(task_id=task.task_id)]
    assert actions[0] == "created"
    assert actions[-1] == "deleted"


def test_cleanup_without_filters_deletes_nothing(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    create_task()

    assert repository.cleanup_tasks(operator="alice") == 0
    assert repository.count_tasks() == 1


def test_cleanup_by_status_and_age(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    rejected = create_task("one")
    pending = create_task("two")
    repository.transition(rejected.task_id, TaskStatus.REJECTED, operator="a", action="reject")

    assert repository.cleanup_tasks(operator="a", status=TaskStatus.REJECTED) == 1
    assert repository.get_task(rejected.task_id) is None

    future = utc_now() + timedelta(minutes=5)
    assert repository.cleanup_tasks(operator="a", before=future) == 1
    assert repository.get_task(pending.task_id) is None


def test_cleanup_refuses_running_filter(repository: ReviewRepository) -> None:
    with pytest.raises(ConflictError):
        repository.cleanup_tasks(operator="a", status=TaskStatus.RUNNING)


def test_finalize_run_only_once(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    task = create_task()
    repository.create_run(
        run_id="run-1",
        task_id=task.task_id,
        runner_program="python",
        runner_args=["-m", "agent"],
    )

    assert repository.finalize_run("run-1", status=RunStatus.FAILED, failure_reason="x") is True
    assert repository.finalize_run("run-1", status=RunStatus.SUCCESS, exit_code=0) is False

    run = repository.get_run("run-1")
    assert run is not None
    assert run.status == RunStatus.FAILED
    assert run.failure_reason == "x"
    assert run.runner_args == ["-m", "agent"]
    assert run.completed_at is not None


def test_fail_unfinished_runs_only_touches_open_runs(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    task = create_task()
    for run_id in ("run-1", "run-2"):
        repository.create_run(
            run_id=run_id,
            task_id=task.task_id,
            runner_program="python",
            runner_args=[],
        )
    repository.finalize_run("run-1", status=RunStatus.SUCCESS, exit_code=0)

    assert repository.fail_unfinished_runs(reason="restarted") == 1

    run = repository.get_run("run-2")
    assert run is not None
    assert run.status == RunStatus.FAILED
    assert run.failure_reason == "restarted"
    assert repository.get_run("run-1").status == RunStatus.SUCCESS  # type: ignore[union-attr]


def test_list_chunks_after_sequence_and_limit(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    task = create_task()
    repository.create_run(run_id="run-1", task_id=task.task_id, runner_program="p", runner_args=[])
    for sequence in range(5):
        repository.append_chunk(
            run_id="run-1",
            task_id=task.task_id,
            stream=ChunkStream.STDERR if sequence % 2 else ChunkStream.STDOUT,
            sequence=sequence,
            content=f"line {sequence}",
        )

    assert [chunk.sequence for chunk in repository.list_chunks("run-1")] == [0, 1, 2, 3, 4]
    tail = repository.list_chunks("run-1", after_sequence=2)
    assert [chunk.sequence for chunk in tail] == [3, 4]
    assert tail[0].stream == ChunkStream.STDERR
    assert [c.sequence for c in repository.list_chunks("run-1", limit=2)] == [0, 1]


def test_status_breakdown_reports_every_status(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    create_task("a")
    task = create_task("b")
    repository.transition(task.task_id, TaskStatus.APPROVED, operator="a", action="approve")

    counts = repository.status_breakdown()

    assert set(counts) == {status.value for status in TaskStatus}
    assert counts["pending"] == 1
    assert counts["approved"] == 1
    assert counts["done"] == 0
    assert repository.count_tasks(status=TaskStatus.APPROVED) == 1


def test_upsert_published_reply_replaces_previous(
    repository: ReviewRepository,
    create_task: Callable[..., TaskView],
) -> None:
    task = create_task("Question?", selected_text="a quote")

    first = repository.upsert_published_reply(task, _reply("cmt-1", "First answer"))
    second = repository.upsert_published_reply(task, _reply("cmt-2", "Second answer"))

    assert second.comment_id == first.comment_id
    assert second.ai_reply_markdown == "Second answer"
    assert second.context.selected_text == "a quote"
    assert second.subject_id == "post-1"
    replies = repository.list_published_replies(subject_id="post-1")
    assert [reply.ai_reply_markdown for reply in replies] == ["Second answer"]
    assert repository.list_published_replies(subject_id="other") == []


def test_subjects_are_listed(repository: ReviewRepository) -> None:
    repository.add_subject("post-2", title=None)

    assert repository.subject_exists("post-1")
    assert not repository.subject_exists("nope")
    assert ("post-1", "First post") in repository.list_subjects()
    assert ("post-2", None) in repository.list_subjects()
