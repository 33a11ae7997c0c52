"""Resumable push feed of captured run output.

A subscriber names a run and the last sequence it has seen; the server replays
every later chunk from the store, then keeps polling until the run leaves
`running`. The store is the only source of truth, so a reconnect with the last
delivered sequence never loses or repeats a chunk.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from comment_responder.review.errors import NotFoundError
from comment_responder.review.models import RunChunkView, RunStatus
from comment_responder.review.repository import ReviewRepository

logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL_MS = 200
MAX_POLL_INTERVAL_MS = 5000
DEFAULT_POLL_INTERVAL_MS = 500
KEEP_ALIVE_COMMENT = ": keep-alive\n\n"


@dataclass(slots=True)
class StreamEvent:
    """One event of the feed; `ping` carries no data and encodes as a comment."""

    kind: str
    data: dict[str, Any] = field(default_factory=dict)
    event_id: int | None = None


def clamp_poll_interval(poll_interval_ms: int | None) -> int:
    if poll_interval_ms is None:
        return DEFAULT_POLL_INTERVAL_MS
    return max(MIN_POLL_INTERVAL_MS, min(MAX_POLL_INTERVAL_MS, poll_interval_ms))


def encode_sse(event: StreamEvent) -> str:
    """Server-Sent Events wire form of `event`."""

    if event.kind == "ping":
        return KEEP_ALIVE_COMMENT
    lines = []
    if event.event_id is not None:
        lines.append(f"id: {event.event_id}")
    lines.append(f"event: {event.kind}")
    lines.append(f"data: {json.dumps(event.data, ensure_ascii=False)}")
    return "\n".join(lines) + "\n\n"


def chunk_event(chunk: RunChunkView) -> StreamEvent:
    return StreamEvent(
        kind="chunk",
        data={
            "chunk_id": chunk.chunk_id,
            "run_id": chunk.run_id,
            "task_id": chunk.task_id,
            "stream": chunk.stream.value,
            "sequence": chunk.sequence,
            "content": chunk.content,
            "created_at": chunk.created_at.isoformat(),
        },
        event_id=chunk.sequence,
    )


class StreamServer:
    """Produces the event feed of one run by polling the chunk log."""

    def __init__(
        self,
        repository: ReviewRepository,
        *,
        heartbeat_seconds: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.repository = repository
        self.heartbeat_seconds = heartbeat_seconds
        self._clock = clock
        self._sleep = sleep

    def resolve_run_id(self, task_id: str, run_id: str | None = None) -> str:
        """Validate an explicit run of the task, or pick the task's latest run."""

        self.repository.require_task(task_id)
        if run_id:
            run = self.repository.get_run(run_id)
            if run is None or run.task_id != task_id:
                raise NotFoundError(f"Run {run_id} not found for comment task {task_id}")
            return run.run_id
        latest = self.repository.latest_run(task_id)
        if latest is None:
            raise NotFoundError(f"Comment task {task_id} has no runs yet")
        return latest.run_id

    def stream_run(
        self,
        run_id: str,
        *,
        from_sequence: int = -1,
        poll_interval_ms: int | None = None,
    ) -> Iterator[StreamEvent]:
        """Yield chunks after `from_sequence`, then one terminal `done` or `error`.

        `ping` events are interleaved whenever nothing was sent for
        `heartbeat_seconds`; the idle sleep is cut short so a ping is never
        late by more than one clock reading.
        """

        interval = clamp_poll_interval(poll_interval_ms) / 1000
        cursor = from_sequence
        last_sent = self._clock()
        while True:
            try:
                # Run status is read before chunks: once a run is seen finished,
                # the chunk query that follows already holds its full output.
                run = self.repository.get_run(run_id)
                chunks = self.repository.list_chunks(run_id, after_sequence=cursor)
            except SQLAlchemyError as error:
                logger.warning("Run output stream %s failed: %s", run_id, error)
                yield StreamEvent(
                    kind="error",
                    data={"run_id": run_id, "message": f"failed to read run output: {error}"},
                )
                return

            if run is None:
                yield StreamEvent(
                    kind="error",
                    data={"run_id": run_id, "message": f"run not found: {run_id}"},
                )
                return

            for chunk in chunks:
                yield chunk_event(chunk)
                cursor = chunk.sequence
            if chunks:
                last_sent = self._clock()

            if run.status != RunStatus.RUNNING:
                yield StreamEvent(
                    kind="done",
                    data={
                        "run_id": run.run_id,
                        "task_id": run.task_id,
                        "status": run.status.value,
                        "exit_code": run.exit_code,
                        "failure_reason": run.failure_reason,
                        "last_sequence": cursor,
                    },
                )
                return

            now = self._clock()
            if now - last_sent >= self.heartbeat_seconds:
                yield StreamEvent(kind="ping")
                last_sent = now
            # Never sleep past the next heartbeat, whatever the poll interval.
            self._sleep(min(interval, self.heartbeat_seconds - (now - last_sent)))
