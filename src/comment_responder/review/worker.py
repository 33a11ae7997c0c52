"""Worker that executes one approved comment task through the external runner."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from comment_responder.config import WorkerSettings
from comment_responder.review.backend import ProcessRunner, RunnerRequest, SubprocessRunner
from comment_responder.review.errors import (
    ConflictError,
    NotFoundError,
    ParseFailureError,
    RunnerError,
)
from comment_responder.review.models import (
    PublishedReplyWrite,
    RunStatus,
    RunView,
    TaskStatus,
    TaskView,
)
from comment_responder.review.output_parser import extract_reply_with_fallback
from comment_responder.review.payload import (
    build_payload,
    compact_for_reason,
    derive_author_identity,
    read_result_file,
    result_file_path,
    write_payload,
)
from comment_responder.review.repository import ReviewRepository
from comment_responder.review.state_machine import TERMINAL_STATUSES
from comment_responder.storage.common import epoch_ms

logger = logging.getLogger(__name__)

WORKER_OPERATOR = "worker"
RESTART_REASON = "worker restarted before completion"
STOP_REASON = "worker stopped before completion"


class ReviewWorker:
    """Runs tasks handed over by the dispatch queue, one at a time.

    The worker owns the `running -> done|failed` edges of a task. Whatever
    happens inside the runner, a processed task never stays in `running` and
    its run record is always finalized.
    """

    def __init__(
        self,
        *,
        repository: ReviewRepository,
        settings: WorkerSettings,
        runner: ProcessRunner | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.runner = runner or SubprocessRunner()
        self._stop_requested = threading.Event()

    def request_stop(self) -> None:
        """Ask the in-flight run, if any, to terminate its process group."""

        self._stop_requested.set()

    def fail_dropped(self, task_ids: Iterable[str]) -> int:
        """Fail tasks whose ids were still queued when the worker stopped."""

        dropped = list(task_ids)
        for task_id in dropped:
            self._fail_task(task_id, STOP_REASON)
        if dropped:
            logger.warning("Failed %d queued comment tasks on shutdown", len(dropped))
        return len(dropped)

    def recover_orphans(self) -> int:
        """Fail tasks and runs left `running` by a previous process.

        Must be called before the queue consumer starts. Returns the number
        of recovered tasks.
        """

        runs = self.repository.fail_unfinished_runs(reason=RESTART_REASON)
        orphans = self.repository.list_tasks(status=TaskStatus.RUNNING, limit=10_000)
        for task in orphans:
            self._fail_task(task.task_id, RESTART_REASON)
        if orphans or runs:
            logger.warning(
                "Recovered %d orphaned comment tasks and %d unfinished runs",
                len(orphans),
                runs,
            )
        return len(orphans)

    def process_task(self, task_id: str) -> RunView | None:
        """Execute one task; returns the finalized run or None when skipped."""

        task = self._claim(task_id)
        if task is None:
            return None

        settings = self.settings
        run_id = f"airun-{task_id}-{epoch_ms()}"
        runner_args = list(settings.runner_args)
        try:
            self.repository.create_run(
                run_id=run_id,
                task_id=task_id,
                runner_program=settings.runner_program,
                runner_args=runner_args,
            )
        except SQLAlchemyError as error:
            logger.exception("Failed to create run record for comment task %s", task_id)
            self._fail_task(task_id, f"failed to create comment ai run record: {error}")
            return None

        logger.info(
            "Comment task %s started run %s (attempt %d)",
            task_id,
            run_id,
            task.attempt_count,
        )
        result_path = result_file_path(settings.result_dir, task_id)
        try:
            result_path.parent.mkdir(parents=True, exist_ok=True)
            result_path.unlink(missing_ok=True)
            payload_path = write_payload(
                build_payload(
                    task,
                    content_api_base=settings.content_api_base,
                    skill_path=settings.skill_path,
                    result_path=result_path,
                ),
                settings.payload_dir,
            )
        except OSError as error:
            return self._fail_run(run_id, task_id, f"failed to prepare runner payload: {error}")

        request = RunnerRequest(
            run_id=run_id,
            task_id=task_id,
            program=settings.runner_program,
            args=runner_args,
            payload_path=payload_path,
            workdir=settings.workdir,
            timeout_seconds=settings.timeout_seconds,
            env={
                "COMMENT_AI_RESULT_PATH": str(result_path),
                "COMMENT_AI_RESULT_DIR": str(settings.result_dir),
                "COMMENT_AI_CONTENT_API_BASE": settings.content_api_base,
                "COMMENT_AI_SKILL_PATH": str(settings.skill_path),
            },
            max_chunks_per_stream=settings.max_chunks_per_run,
            shutdown_requested=self._stop_requested.is_set,
        )
        try:
            outcome = self.runner.run(request, self.repository)
        except RunnerError as error:
            return self._fail_run(run_id, task_id, str(error))
        finally:
            payload_path.unlink(missing_ok=True)

        if outcome.stopped:
            return self._fail_run(run_id, task_id, STOP_REASON, exit_code=outcome.exit_code)
        if outcome.timed_out:
            return self._fail_run(
                run_id,
                task_id,
                f"timed out after {settings.timeout_seconds}s",
                exit_code=outcome.exit_code,
            )
        if outcome.exit_code != 0:
            reason = (
                f"runner exited with code {outcome.exit_code}. "
                f"stdout={compact_for_reason(outcome.stdout_text)} "
                f"stderr={compact_for_reason(outcome.stderr_text)}"
            )
            return self._fail_run(run_id, task_id, reason, exit_code=outcome.exit_code)

        try:
            reply = read_result_file(result_path)
            if reply is None:
                reply, source = extract_reply_with_fallback(
                    outcome.stdout_text,
                    outcome.stderr_text,
                )
                logger.debug("Comment task %s reply taken from %s", task_id, source.value)
        except ParseFailureError as error:
            reason = (
                f"parse failure: {error}. "
                f"stdout={compact_for_reason(outcome.stdout_text)} "
                f"stderr={compact_for_reason(outcome.stderr_text)}"
            )
            return self._fail_run(run_id, task_id, reason, exit_code=outcome.exit_code)
        except OSError as error:
            return self._fail_run(
                run_id,
                task_id,
                f"failed to read result file {result_path}: {error}",
                exit_code=outcome.exit_code,
            )

        return self._complete(
            task,
            run_id,
            reply,
            exit_code=outcome.exit_code,
            result_path=result_path,
        )

    def _claim(self, task_id: str) -> TaskView | None:
        task = self.repository.get_task(task_id)
        if task is None:
            logger.warning("Skipping comment task %s: not found", task_id)
            return None
        if task.status in TERMINAL_STATUSES:
            logger.info("Skipping comment task %s: already %s", task_id, task.status.value)
            return None
        if task.status == TaskStatus.APPROVED:
            try:
                return self.repository.transition(
                    task_id,
                    TaskStatus.RUNNING,
                    operator=WORKER_OPERATOR,
                    action="worker_claimed",
                )
            except (ConflictError, NotFoundError) as error:
                logger.warning("Skipping comment task %s: %s", task_id, error)
                return None
        if task.status != TaskStatus.RUNNING:
            logger.warning(
                "Skipping comment task %s: status %s is not runnable",
                task_id,
                task.status.value,
            )
            return None
        return task

    def _complete(
        self,
        task: TaskView,
        run_id: str,
        reply: str,
        *,
        exit_code: int,
        result_path: Path,
    ) -> RunView | None:
        identity = derive_author_identity(task.fingerprint, self.settings.author_salt)
        try:
            self.repository.upsert_published_reply(
                task,
                PublishedReplyWrite(
                    comment_id=f"cmt-{task.task_id}-{epoch_ms()}",
                    author_hash=identity.author_hash,
                    author_name=identity.author_name,
                    author_avatar_seed=identity.avatar_seed,
                    ai_reply_markdown=reply,
                ),
            )
        except SQLAlchemyError as error:
            return self._fail_run(
                run_id,
                task.task_id,
                f"failed to publish reply: {error}",
                exit_code=exit_code,
                final_reply=reply,
            )

        try:
            self.repository.transition(
                task.task_id,
                TaskStatus.DONE,
                operator=WORKER_OPERATOR,
                action="worker_done",
            )
        except (ConflictError, NotFoundError) as error:
            return self._fail_run(
                run_id,
                task.task_id,
                f"failed to mark comment task done: {error}",
                exit_code=exit_code,
                final_reply=reply,
            )

        self.repository.finalize_run(
            run_id,
            status=RunStatus.SUCCESS,
            exit_code=exit_code,
            final_reply_markdown=reply,
        )
        if self.settings.cleanup_result_file_on_success:
            try:
                result_path.unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove result file %s", result_path, exc_info=True)
        logger.info("Comment task %s done (run %s)", task.task_id, run_id)
        return self.repository.get_run(run_id)

    def _fail_run(  # noqa: PLR0913
        self,
        run_id: str,
        task_id: str,
        reason: str,
        *,
        exit_code: int | None = None,
        final_reply: str | None = None,
    ) -> RunView | None:
        logger.warning("Comment task %s run %s failed: %s", task_id, run_id, reason)
        self.repository.finalize_run(
            run_id,
            status=RunStatus.FAILED,
            exit_code=exit_code,
            failure_reason=reason,
            final_reply_markdown=final_reply,
        )
        self._fail_task(task_id, reason)
        return self.repository.get_run(run_id)

    def _fail_task(self, task_id: str, reason: str) -> None:
        try:
            self.repository.transition(
                task_id,
                TaskStatus.FAILED,
                operator=WORKER_OPERATOR,
                action="worker_failed",
                reason=reason,
            )
        except (ConflictError, NotFoundError) as error:
            logger.warning("Could not mark comment task %s failed: %s", task_id, error)
