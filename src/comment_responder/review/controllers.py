"""Controllers for comment review CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from comment_responder.config import Settings
from comment_responder.review.errors import NotFoundError
from comment_responder.review.models import (
    CommentContext,
    RunStatus,
    RunView,
    SubmitComment,
    TaskStatus,
    TaskView,
)
from comment_responder.review.repository import ReviewRepository
from comment_responder.review.runtime import ReviewRuntime, build_runtime
from comment_responder.review.streaming import StreamServer


@dataclass(slots=True)
class SubmitCommentCommand:
    """CLI inputs for submitting a comment on behalf of a reader."""

    db_path: Path | None
    subject_id: str
    entry_type: str
    comment_text: str
    fingerprint: str
    selected_text: str | None = None
    reply_to_comment_id: str | None = None


@dataclass(slots=True)
class AddSubjectCommand:
    """CLI inputs for registering a subject."""

    db_path: Path | None
    subject_id: str
    title: str | None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI inputs for task listing."""

    db_path: Path | None
    status: str | None
    subject_id: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    """CLI inputs for task inspection."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class TaskActionCommand:
    """CLI inputs for operator actions on one task."""

    db_path: Path | None
    task_id: str
    operator: str
    admin_note: str | None = None


@dataclass(slots=True)
class ListRunsCommand:
    """CLI inputs for run listing."""

    db_path: Path | None
    task_id: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class TailRunCommand:
    """CLI inputs for following the output of a run."""

    db_path: Path | None
    task_id: str
    run_id: str | None
    from_sequence: int


@dataclass(slots=True)
class WorkerCommand:
    """CLI inputs for processing one task in the foreground."""

    db_path: Path | None
    task_id: str


class ReviewCliController:
    """Coordinates comment review command execution."""

    def submit(self, command: SubmitCommentCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _runtime(settings) as runtime:
            task = runtime.service.submit(
                SubmitComment(
                    subject_id=command.subject_id,
                    entry_type=command.entry_type,
                    comment_text=command.comment_text,
                    fingerprint=command.fingerprint,
                    context=CommentContext(
                        selected_text=command.selected_text,
                        reply_to_comment_id=command.reply_to_comment_id,
                    ),
                ),
            )
        return [f"Comment task submitted: task_id={task.task_id} status={task.status.value}"]

    def add_subject(self, command: AddSubjectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            repository.add_subject(command.subject_id, title=command.title)
        return [f"Subject registered: {command.subject_id}"]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(
                status=_parse_task_status(command.status),
                subject_id=command.subject_id,
                limit=command.limit,
            )
            breakdown = repository.status_breakdown()

        lines = [
            f"Tasks: {len(tasks)} "
            + " ".join(f"{status}={count}" for status, count in breakdown.items()),
        ]
        for task in tasks:
            lines.append(_task_line(task))
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_task_details(command.task_id)
            published = repository.get_published_reply(command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Subject: {task.subject_id} ({task.entry_type})",
            f"Status: {task.status.value}",
            f"Attempts: {task.attempt_count}",
            f"Comment: {task.comment_text}",
            f"Selected text: {task.context.selected_text or '-'}",
            f"Failure: {task.failure_reason or '-'}",
            f"Admin note: {task.admin_note or '-'}",
            f"Published: {published.comment_id if published else '-'}",
            f"Runs: {len(details.runs)}",
        ]
        lines.extend(f"  {_run_line(run)}" for run in details.runs)
        lines.append(f"Audit entries: {len(details.audit)}")
        for entry in details.audit:
            before = entry.before.get("status") if entry.before else "-"
            after = entry.after.get("status") if entry.after else "-"
            lines.append(
                f"  {entry.created_at.isoformat()} {entry.action} by {entry.operator} "
                f"{entry.outcome.value} {before} -> {after}"
                + (f" ({entry.detail})" if entry.detail else ""),
            )
        return lines

    def approve(self, command: TaskActionCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _runtime(settings) as runtime:
            task = runtime.service.approve(
                command.task_id,
                operator=command.operator,
                admin_note=command.admin_note,
            )
        return [f"Task approved: {_task_line(task)}"]

    def approve_and_run(self, command: TaskActionCommand) -> list[str]:
        """Approve and execute the task in this process, waiting for the run to finish."""

        settings = Settings.from_env(db_path=command.db_path)
        with _runtime(settings, consume=True) as runtime:
            runtime.service.approve_and_run(
                command.task_id,
                operator=command.operator,
                admin_note=command.admin_note,
            )
            runtime.queue.join()
            return _finished_lines(runtime.repository, command.task_id)

    def retry(self, command: TaskActionCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _runtime(settings, consume=True) as runtime:
            runtime.service.retry(command.task_id, operator=command.operator)
            runtime.queue.join()
            return _finished_lines(runtime.repository, command.task_id)

    def reject(self, command: TaskActionCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _runtime(settings) as runtime:
            task = runtime.service.reject(
                command.task_id,
                operator=command.operator,
                admin_note=command.admin_note,
            )
        return [f"Task rejected: {_task_line(task)}"]

    def delete(self, command: TaskActionCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _runtime(settings) as runtime:
            runtime.service.delete(command.task_id, operator=command.operator)
        return [f"Task deleted: {command.task_id}"]

    def list_runs(self, command: ListRunsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status = RunStatus(command.status.strip().lower()) if command.status else None
        with _repository(settings) as repository:
            runs = repository.list_runs(task_id=command.task_id, status=status, limit=command.limit)
        return [f"Runs: {len(runs)}", *(f"  {_run_line(run)}" for run in runs)]

    def tail(self, command: TailRunCommand) -> Iterator[str]:
        """Yield output lines of a run as they arrive, then its final status."""

        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            streams = StreamServer(repository, heartbeat_seconds=settings.stream.heartbeat_seconds)
            run_id = streams.resolve_run_id(command.task_id, command.run_id)
            yield f"Run: {run_id}"
            for event in streams.stream_run(
                run_id,
                from_sequence=command.from_sequence,
                poll_interval_ms=settings.stream.poll_interval_ms,
            ):
                if event.kind == "chunk":
                    data = event.data
                    yield f"[{data['sequence']}] {data['stream']}: {data['content']}"
                elif event.kind == "done":
                    yield (
                        f"Run finished: status={event.data['status']} "
                        f"exit_code={event.data['exit_code']} "
                        f"reason={event.data['failure_reason'] or '-'}"
                    )
                elif event.kind == "error":
                    yield f"Stream error: {event.data['message']}"

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _runtime(settings) as runtime:
            run = runtime.worker.process_task(command.task_id)
            if run is None:
                task = runtime.repository.get_task(command.task_id)
                state = task.status.value if task else "missing"
                return [f"Task skipped: {command.task_id} status={state}"]
            return _finished_lines(runtime.repository, command.task_id)


def _finished_lines(repository: ReviewRepository, task_id: str) -> list[str]:
    task = repository.get_task(task_id)
    if task is None:
        raise NotFoundError(f"Comment task not found: {task_id}")
    lines = [f"Task: {_task_line(task)}"]
    run = repository.latest_run(task_id)
    if run is not None:
        lines.append(f"Run: {_run_line(run)}")
        if run.final_reply_markdown:
            lines.append("Reply:")
            lines.extend(f"  {line}" for line in run.final_reply_markdown.splitlines())
    return lines


def _task_line(task: TaskView) -> str:
    return (
        f"{task.task_id} subject={task.subject_id} status={task.status.value} "
        f"attempts={task.attempt_count} created_at={task.created_at.isoformat()}"
        + (f" failure={task.failure_reason}" if task.failure_reason else "")
    )


def _run_line(run: RunView) -> str:
    completed = run.completed_at.isoformat() if run.completed_at else "-"
    return (
        f"{run.run_id} status={run.status.value} exit_code={run.exit_code} "
        f"started_at={run.started_at.isoformat()} completed_at={completed}"
        + (f" reason={run.failure_reason}" if run.failure_reason else "")
    )


def _parse_task_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


@contextmanager
def _repository(settings: Settings) -> Iterator[ReviewRepository]:
    repository = ReviewRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _runtime(settings: Settings, *, consume: bool = False) -> Iterator[ReviewRuntime]:
    """Runtime for one command; `consume` runs queued tasks in this process.

    Orphan recovery is left to the server so a CLI call never fails a task
    that a running server is executing.
    """

    with _repository(settings) as repository:
        runtime = build_runtime(settings, repository=repository)
        if consume:
            runtime.queue.start(runtime.worker.process_task)
        try:
            yield runtime
        finally:
            runtime.stop()
