"""Wiring of store, queue, worker, service and stream server for one process."""

from __future__ import annotations

from dataclasses import dataclass

from comment_responder.config import Settings
from comment_responder.review.backend import ProcessRunner
from comment_responder.review.dispatch import WorkerQueue
from comment_responder.review.rate_limit import RateLimiter
from comment_responder.review.repository import ReviewRepository
from comment_responder.review.services import ReviewService
from comment_responder.review.streaming import StreamServer
from comment_responder.review.worker import ReviewWorker


@dataclass(slots=True)
class ReviewRuntime:
    """Process-wide components sharing one repository."""

    settings: Settings
    repository: ReviewRepository
    queue: WorkerQueue
    worker: ReviewWorker
    service: ReviewService
    streams: StreamServer

    def start(self) -> int:
        """Recover orphaned tasks, then start the single worker thread."""

        recovered = self.worker.recover_orphans()
        self.queue.start(self.worker.process_task)
        return recovered

    def stop(self) -> int:
        """Stop the worker and fail every task it will no longer run.

        The in-flight run is terminated and failed by the worker itself; ids
        still queued are failed here. Returns the number of queued tasks failed.
        """

        self.worker.request_stop()
        return self.worker.fail_dropped(self.queue.close())

    def close(self) -> None:
        self.stop()
        self.repository.close()


def build_runtime(
    settings: Settings,
    *,
    repository: ReviewRepository | None = None,
    runner: ProcessRunner | None = None,
) -> ReviewRuntime:
    """Assemble a runtime; migrates the schema of a repository it creates."""

    if repository is None:
        repository = ReviewRepository(
            settings.db_path,
            sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        repository.init_schema()
    queue = WorkerQueue(
        settings.worker.queue_capacity,
        enqueue_timeout_seconds=settings.worker.enqueue_timeout_seconds,
    )
    return ReviewRuntime(
        settings=settings,
        repository=repository,
        queue=queue,
        worker=ReviewWorker(repository=repository, settings=settings.worker, runner=runner),
        service=ReviewService(
            repository=repository,
            queue=queue,
            settings=settings.submission,
            rate_limiter=RateLimiter(settings.submission.rate_limit_seconds),
        ),
        streams=StreamServer(repository, heartbeat_seconds=settings.stream.heartbeat_seconds),
    )
