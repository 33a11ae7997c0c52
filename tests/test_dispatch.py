from __future__ import annotations

import threading

import allure
import pytest

from comment_responder.review.dispatch import WorkerQueue
from comment_responder.review.errors import DispatchError

pytestmark = [
    allure.epic("Comment Review"),
    allure.feature("Worker Dispatch"),
]


def test_consumer_handles_ids_in_order() -> None:
    handled: list[str] = []
    queue = WorkerQueue(8)
    for task_id in ("a", "b", "c"):
        queue.enqueue(task_id)

    queue.start(handled.append)
    queue.join()
    queue.close()

    assert handled == ["a", "b", "c"]
    assert queue.depth == 0
    assert not queue.running


def test_handler_errors_do_not_stop_consumer() -> None:
    handled: list[str] = []

    def handler(task_id: str) -> None:
        if task_id == "bad":
            raise RuntimeError("boom")
        handled.append(task_id)

    queue = WorkerQueue(8)
    queue.start(handler)
    queue.enqueue("bad")
    queue.enqueue("good")
    queue.join()
    queue.close()

    assert handled == ["good"]


def test_enqueue_on_full_queue_raises() -> None:
    queue = WorkerQueue(1, enqueue_timeout_seconds=0.01)
    queue.enqueue("a")

    with pytest.raises(DispatchError, match="capacity=1"):
        queue.enqueue("b")
    assert queue.depth == 1


def test_enqueue_after_close_raises() -> None:
    queue = WorkerQueue(4)
    queue.close()

    with pytest.raises(DispatchError, match="closed"):
        queue.enqueue("a")


def test_start_twice_raises() -> None:
    queue = WorkerQueue(4)
    queue.start(lambda _task_id: None)
    try:
        assert queue.running
        with pytest.raises(RuntimeError):
            queue.start(lambda _task_id: None)
    finally:
        queue.close()


def test_close_waits_for_in_flight_task() -> None:
    started = threading.Event()
    release = threading.Event()
    finished: list[str] = []

    def handler(task_id: str) -> None:
        started.set()
        release.wait(timeout=5)
        finished.append(task_id)

    queue = WorkerQueue(4)
    queue.start(handler)
    queue.enqueue("slow")
    assert started.wait(timeout=5)
    release.set()
    queue.close()

    assert finished == ["slow"]


def test_close_returns_ids_never_taken() -> None:
    started = threading.Event()
    release = threading.Event()
    handled: list[str] = []

    def handler(task_id: str) -> None:
        started.set()
        release.wait(timeout=5)
        handled.append(task_id)

    queue = WorkerQueue(4)
    queue.start(handler)
    queue.enqueue("a")
    assert started.wait(timeout=5)
    queue.enqueue("b")
    queue.enqueue("c")
    timer = threading.Timer(0.3, release.set)
    timer.start()

    leftover = queue.close()
    timer.cancel()

    assert handled == ["a"]
    assert leftover == ["b", "c"]
    assert queue.depth == 0


def test_close_without_consumer_returns_everything() -> None:
    queue = WorkerQueue(4)
    queue.enqueue("a")
    queue.enqueue("b")

    assert queue.close() == ["a", "b"]
    queue.join()


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        WorkerQueue(0)
