"""Bounded in-process queue feeding task ids to a single worker thread."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

from comment_responder.review.errors import DispatchError

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.2


class WorkerQueue:
    """FIFO of task ids drained by one consumer thread.

    Only ids travel through the queue; the worker reloads each task from the
    store. Ids still queued when the queue closes are drained and handed back
    to the caller of `close`.
    """

    def __init__(self, capacity: int = 128, *, enqueue_timeout_seconds: float = 1.0) -> None:
        if capacity <= 0:
            raise ValueError("Worker queue capacity must be > 0")
        self.capacity = capacity
        self.enqueue_timeout_seconds = enqueue_timeout_seconds
        self._queue: queue.Queue[str] = queue.Queue(maxsize=capacity)
        self._closed = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def enqueue(self, task_id: str) -> None:
        """Hand a task id to the worker; raises `DispatchError` when full or closed."""

        if self._closed.is_set():
            raise DispatchError("Comment worker queue is closed")
        try:
            self._queue.put(task_id, timeout=self.enqueue_timeout_seconds)
        except queue.Full as error:
            raise DispatchError(
                f"Comment worker queue is full (capacity={self.capacity})",
            ) from error

    def start(self, handler: Callable[[str], object]) -> None:
        if self._thread is not None:
            raise RuntimeError("Comment worker queue already started")
        self._thread = threading.Thread(
            target=self._consume,
            args=(handler,),
            daemon=True,
            name="comment-worker",
        )
        self._thread.start()
        logger.info("Comment worker thread started")

    def join(self) -> None:
        """Block until every enqueued id has been handled."""

        self._queue.join()

    def close(self, timeout: float = 15.0) -> list[str]:
        """Stop the consumer after its current task; returns ids it never took."""

        self._closed.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Comment worker thread did not stop within %ss", timeout)
            else:
                logger.info("Comment worker thread stopped")
            self._thread = None
        return self._drain()

    def _drain(self) -> list[str]:
        leftover: list[str] = []
        while True:
            try:
                leftover.append(self._queue.get_nowait())
            except queue.Empty:
                return leftover
            self._queue.task_done()

    def _consume(self, handler: Callable[[str], object]) -> None:
        while not self._closed.is_set():
            try:
                task_id = self._queue.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            try:
                handler(task_id)
            except Exception:
                logger.exception("Comment worker failed on task %s", task_id)
            finally:
                self._queue.task_done()
