"""CLI entrypoint for comment-responder."""

import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from comment_responder import __version__
from comment_responder.review.controllers import (
    AddSubjectCommand,
    InspectTaskCommand,
    ListRunsCommand,
    ListTasksCommand,
    ReviewCliController,
    SubmitCommentCommand,
    TailRunCommand,
    TaskActionCommand,
    WorkerCommand,
)
from comment_responder.review.errors import ReviewError

click.rich_click.USE_MARKDOWN = True
REVIEW_CONTROLLER = ReviewCliController()

_T = TypeVar("_T")

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)
operator_option = click.option(
    "--operator",
    default="admin",
    show_default=True,
    help="Operator name recorded in the audit log.",
)


@click.group()
@click.version_option(version=__version__, prog_name="comment-responder")
def comment_responder() -> None:
    """Review reader comments and answer them with an external AI runner."""


@comment_responder.group()
def subjects() -> None:
    """Subject catalog commands."""


@subjects.command("add")
@db_path_option
@click.argument("subject_id")
@click.option("--title", default=None, help="Human-readable subject title.")
def subjects_add(db_path: Path | None, subject_id: str, title: str | None) -> None:
    """Register a subject that readers may comment on."""

    _emit_lines(
        REVIEW_CONTROLLER.add_subject(
            AddSubjectCommand(db_path=db_path, subject_id=subject_id, title=title),
        ),
    )


@comment_responder.command("submit")
@db_path_option
@click.argument("subject_id")
@click.argument("comment_text")
@click.option(
    "--entry-type",
    default="footer",
    show_default=True,
    help="Where the comment was written: `selection` or `footer`.",
)
@click.option(
    "--fingerprint",
    default="cli",
    show_default=True,
    help="Submitter fingerprint used for rate limiting and author identity.",
)
@click.option("--selected-text", default=None, help="Quoted text the comment refers to.")
@click.option("--reply-to", default=None, help="Published comment id this one replies to.")
def submit(  # noqa: PLR0913
    db_path: Path | None,
    subject_id: str,
    comment_text: str,
    entry_type: str,
    fingerprint: str,
    selected_text: str | None,
    reply_to: str | None,
) -> None:
    """Submit a comment as a pending task."""

    _emit_lines(
        _guarded(
            lambda: REVIEW_CONTROLLER.submit(
                SubmitCommentCommand(
                    db_path=db_path,
                    subject_id=subject_id,
                    entry_type=entry_type,
                    comment_text=comment_text,
                    fingerprint=fingerprint,
                    selected_text=selected_text,
                    reply_to_comment_id=reply_to,
                ),
            ),
        ),
    )


@comment_responder.command("tasks")
@db_path_option
@click.option(
    "--status",
    type=click.Choice(["pending", "approved", "running", "done", "failed", "rejected"]),
    default=None,
    help="Optional status filter.",
)
@click.option("--subject-id", default=None, help="Optional subject filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max number of tasks to print.",
)
def tasks(db_path: Path | None, status: str | None, subject_id: str | None, limit: int) -> None:
    """List comment tasks, newest first."""

    _emit_lines(
        REVIEW_CONTROLLER.list_tasks(
            ListTasksCommand(db_path=db_path, status=status, subject_id=subject_id, limit=limit),
        ),
    )


@comment_responder.command("inspect")
@db_path_option
@click.argument("task_id")
def inspect_task(db_path: Path | None, task_id: str) -> None:
    """Show one task with its runs and audit trail."""

    _emit_lines(
        REVIEW_CONTROLLER.inspect_task(InspectTaskCommand(db_path=db_path, task_id=task_id)),
    )


@comment_responder.command("approve")
@db_path_option
@operator_option
@click.argument("task_id")
@click.option("--note", default=None, help="Admin note stored on the task.")
def approve(db_path: Path | None, operator: str, task_id: str, note: str | None) -> None:
    """Approve a pending task without running it."""

    _emit_lines(
        _guarded(
            lambda: REVIEW_CONTROLLER.approve(
                TaskActionCommand(
                    db_path=db_path,
                    task_id=task_id,
                    operator=operator,
                    admin_note=note,
                ),
            ),
        ),
    )


@comment_responder.command("approve-and-run")
@db_path_option
@operator_option
@click.argument("task_id")
@click.option("--note", default=None, help="Admin note stored on the task.")
def approve_and_run(db_path: Path | None, operator: str, task_id: str, note: str | None) -> None:
    """Approve a task and run the AI responder for it in the foreground."""

    _emit_lines(
        _guarded(
            lambda: REVIEW_CONTROLLER.approve_and_run(
                TaskActionCommand(
                    db_path=db_path,
                    task_id=task_id,
                    operator=operator,
                    admin_note=note,
                ),
            ),
        ),
    )


@comment_responder.command("reject")
@db_path_option
@operator_option
@click.argument("task_id")
@click.option("--note", default=None, help="Admin note stored on the task.")
def reject(db_path: Path | None, operator: str, task_id: str, note: str | None) -> None:
    """Reject a pending or failed task."""

    _emit_lines(
        _guarded(
            lambda: REVIEW_CONTROLLER.reject(
                TaskActionCommand(
                    db_path=db_path,
                    task_id=task_id,
                    operator=operator,
                    admin_note=note,
                ),
            ),
        ),
    )


@comment_responder.command("retry")
@db_path_option
@operator_option
@click.argument("task_id")
def retry(db_path: Path | None, operator: str, task_id: str) -> None:
    """Run a failed task again in the foreground."""

    _emit_lines(
        _guarded(
            lambda: REVIEW_CONTROLLER.retry(
                TaskActionCommand(db_path=db_path, task_id=task_id, operator=operator),
            ),
        ),
    )


@comment_responder.command("delete")
@db_path_option
@operator_option
@click.argument("task_id")
def delete(db_path: Path | None, operator: str, task_id: str) -> None:
    """Delete a task with its runs, output and published reply."""

    _emit_lines(
        _guarded(
            lambda: REVIEW_CONTROLLER.delete(
                TaskActionCommand(db_path=db_path, task_id=task_id, operator=operator),
            ),
        ),
    )


@comment_responder.command("runs")
@db_path_option
@click.option("--task-id", default=None, help="Optional task filter.")
@click.option(
    "--status",
    type=click.Choice(["running", "success", "failed"]),
    default=None,
    help="Optional run status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max number of runs to print.",
)
def runs(db_path: Path | None, task_id: str | None, status: str | None, limit: int) -> None:
    """List runner executions, newest first."""

    _emit_lines(
        REVIEW_CONTROLLER.list_runs(
            ListRunsCommand(db_path=db_path, task_id=task_id, status=status, limit=limit),
        ),
    )


@comment_responder.command("tail")
@db_path_option
@click.argument("task_id")
@click.option("--run-id", default=None, help="Run to follow; defaults to the latest run.")
@click.option(
    "--from-sequence",
    type=click.IntRange(min=-1),
    default=-1,
    show_default=True,
    help="Print only chunks after this sequence number.",
)
def tail(db_path: Path | None, task_id: str, run_id: str | None, from_sequence: int) -> None:
    """Print the output of a run and follow it until the run finishes."""

    command = TailRunCommand(
        db_path=db_path,
        task_id=task_id,
        run_id=run_id,
        from_sequence=from_sequence,
    )
    try:
        _emit_lines(REVIEW_CONTROLLER.tail(command))
    except ReviewError as error:
        raise click.ClickException(str(error)) from error


@comment_responder.command("worker")
@db_path_option
@click.argument("task_id")
def worker(db_path: Path | None, task_id: str) -> None:
    """Process one approved or running task synchronously."""

    _emit_lines(
        _guarded(
            lambda: REVIEW_CONTROLLER.run_worker(WorkerCommand(db_path=db_path, task_id=task_id)),
        ),
    )


@comment_responder.command("serve")
@db_path_option
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", type=int, default=8000, show_default=True, help="Bind port.")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default="info",
    show_default=True,
)
def serve(db_path: Path | None, host: str, port: int, log_level: str) -> None:
    """Serve the submission, admin and output stream HTTP API."""

    import uvicorn

    from comment_responder.api import create_app
    from comment_responder.config import Settings

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    uvicorn.run(create_app(settings), host=host, port=port, log_level=log_level)


def _guarded(action: Callable[[], _T]) -> _T:
    try:
        return action()
    except ReviewError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: Iterable[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    comment_responder()
