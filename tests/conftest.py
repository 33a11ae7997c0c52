"""Shared test fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from comment_responder.config import Settings, StreamSettings, SubmissionSettings, WorkerSettings
from comment_responder.review.dispatch import WorkerQueue
from comment_responder.review.models import CommentContext, CommentTaskCreate, TaskView
from comment_responder.review.repository import ReviewRepository
from comment_responder.review.services import ReviewService

SUBJECT_ID = "post-1"
ECHO_AGENT_ARGS = ("-m", "comment_responder.review.backend.echo_agent")


def _echo_worker_settings(
    tmp_path: Path,
    *agent_args: str,
    timeout_seconds: int = 30,
    max_chunks_per_run: int = 4096,
) -> WorkerSettings:
    return WorkerSettings(
        runner_program=sys.executable,
        runner_args=(*ECHO_AGENT_ARGS, *agent_args),
        timeout_seconds=timeout_seconds,
        workdir=tmp_path,
        content_api_base="http://127.0.0.1:9/api",
        skill_path=tmp_path / "SKILL.md",
        payload_dir=tmp_path / "payloads",
        result_dir=tmp_path / "results",
        max_chunks_per_run=max_chunks_per_run,
        author_salt="test-salt",
    )


def _echo_settings(
    tmp_path: Path,
    *agent_args: str,
    rate_limit_seconds: int = 60,
    queue_capacity: int = 128,
) -> Settings:
    worker = _echo_worker_settings(tmp_path, *agent_args)
    worker.queue_capacity = queue_capacity
    worker.enqueue_timeout_seconds = 0.05
    return Settings(
        db_path=tmp_path / "comments.db",
        submission=SubmissionSettings(rate_limit_seconds=rate_limit_seconds),
        worker=worker,
        stream=StreamSettings(poll_interval_ms=200, heartbeat_seconds=15.0),
    )


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[ReviewRepository]:
    repo = ReviewRepository(tmp_path / "comments.db")
    repo.init_schema()
    repo.add_subject(SUBJECT_ID, title="First post")
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def create_task(repository: ReviewRepository) -> Callable[..., TaskView]:
    """Insert a pending task directly, bypassing validation and rate limits."""

    def _create(
        comment_text: str = "What does this paragraph mean?",
        *,
        fingerprint: str = "fp-1",
        selected_text: str | None = None,
    ) -> TaskView:
        return repository.create_task(
            CommentTaskCreate(
                subject_id=SUBJECT_ID,
                entry_type="selection" if selected_text else "footer",
                comment_text=comment_text,
                fingerprint=fingerprint,
                context=CommentContext(selected_text=selected_text),
            ),
        )

    return _create


@pytest.fixture()
def service(repository: ReviewRepository) -> Iterator[ReviewService]:
    queue = WorkerQueue(8, enqueue_timeout_seconds=0.05)
    try:
        yield ReviewService(
            repository=repository,
            queue=queue,
            settings=SubmissionSettings(rate_limit_seconds=60, max_comment_chars=50),
        )
    finally:
        queue.close()


@pytest.fixture()
def worker_settings(tmp_path: Path) -> Callable[..., WorkerSettings]:
    """Factory of worker settings that run the bundled echo agent with extra flags."""

    def _build(
        *agent_args: str,
        timeout_seconds: int = 30,
        max_chunks_per_run: int = 4096,
    ) -> WorkerSettings:
        return _echo_worker_settings(
            tmp_path,
            *agent_args,
            timeout_seconds=timeout_seconds,
            max_chunks_per_run=max_chunks_per_run,
        )

    return _build


@pytest.fixture()
def app_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Factory of full settings backed by a temp DB and the echo agent."""

    def _build(*agent_args: str, rate_limit_seconds: int = 60, queue_capacity: int = 128):
        return _echo_settings(
            tmp_path,
            *agent_args,
            rate_limit_seconds=rate_limit_seconds,
            queue_capacity=queue_capacity,
        )

    return _build
