"""Subprocess-based runner that captures interleaved output into the chunk log."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from typing import IO

from comment_responder.review.backend.base import ChunkSink, RunnerRequest, RunnerResult
from comment_responder.review.errors import RunnerError
from comment_responder.review.models import ChunkStream

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
STDERR_NOISE_MARKERS = ("state db missing rollout path for thread",)
_PUMP_JOIN_SECONDS = 5.0
_WAIT_POLL_SECONDS = 0.1
_KILL_GRACE_SECONDS = 2


class SubprocessRunner:
    """Spawn the configured program and pump both pipes line by line.

    stdout and stderr are read by two threads that share one run-wide
    sequence counter, so ordering chunks by sequence reproduces the order in
    which lines were appended regardless of which pipe produced them.
    """

    def run(self, request: RunnerRequest, sink: ChunkSink) -> RunnerResult:
        env = os.environ.copy()
        env.update(request.env)
        argv = request.argv()
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                cwd=request.workdir,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                start_new_session=os.name == "posix",
            )
        except FileNotFoundError as error:
            raise RunnerError(
                f"Comment AI runner command not found: {request.program}",
                transient=False,
            ) from error
        except OSError as error:
            raise RunnerError(
                f"Comment AI runner failed to start: {error}",
                transient=True,
            ) from error

        recorder = ChunkRecorder(
            sink=sink,
            run_id=request.run_id,
            task_id=request.task_id,
            max_chunks_per_stream=request.max_chunks_per_stream,
        )
        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        pumps = [
            threading.Thread(
                target=_pump_stream,
                args=(process.stdout, ChunkStream.STDOUT, recorder, stdout_lines),
                daemon=True,
                name=f"pump-stdout-{request.run_id}",
            ),
            threading.Thread(
                target=_pump_stream,
                args=(process.stderr, ChunkStream.STDERR, recorder, stderr_lines),
                daemon=True,
                name=f"pump-stderr-{request.run_id}",
            ),
        ]
        for pump in pumps:
            pump.start()

        exit_code, timed_out, stopped = _wait_for_exit(process, request)

        for pump in pumps:
            pump.join(timeout=_PUMP_JOIN_SECONDS)
            if pump.is_alive():
                logger.warning("Output pump %s did not finish after exit", pump.name)

        return RunnerResult(
            exit_code=exit_code,
            timed_out=timed_out,
            stdout_text="\n".join(stdout_lines),
            stderr_text="\n".join(stderr_lines),
            chunk_count=recorder.appended,
            stopped=stopped,
        )


class ChunkRecorder:
    """Hands out the shared sequence number and appends under one lock.

    A sequence value is consumed only when the append succeeds, which keeps
    the stored sequences contiguous from zero.
    """

    def __init__(
        self,
        *,
        sink: ChunkSink,
        run_id: str,
        task_id: str,
        max_chunks_per_stream: int,
    ) -> None:
        self._sink = sink
        self._run_id = run_id
        self._task_id = task_id
        self._max_chunks_per_stream = max_chunks_per_stream
        self._lock = threading.Lock()
        self._next_sequence = 0
        self._accepted = {ChunkStream.STDOUT: 0, ChunkStream.STDERR: 0}

    @property
    def appended(self) -> int:
        with self._lock:
            return self._next_sequence

    def record(self, stream: ChunkStream, content: str) -> bool:
        with self._lock:
            if self._accepted[stream] >= self._max_chunks_per_stream:
                return False
            sequence = self._next_sequence
            try:
                self._sink.append_chunk(
                    run_id=self._run_id,
                    task_id=self._task_id,
                    stream=stream,
                    sequence=sequence,
                    content=content,
                )
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Failed to append output chunk run_id=%s stream=%s",
                    self._run_id,
                    stream.value,
                    exc_info=True,
                )
                return False
            self._next_sequence += 1
            self._accepted[stream] += 1
            return True


def is_noise_line(stream: ChunkStream, line: str) -> bool:
    if stream != ChunkStream.STDERR:
        return False
    normalized = line.strip()
    return any(marker in normalized for marker in STDERR_NOISE_MARKERS)


def _pump_stream(
    pipe: IO[str] | None,
    stream: ChunkStream,
    recorder: ChunkRecorder,
    collected: list[str],
) -> None:
    if pipe is None:
        return
    with pipe:
        for raw_line in pipe:
            line = raw_line.rstrip("\r\n")
            if is_noise_line(stream, line):
                continue
            collected.append(line)
            recorder.record(stream, line)


def _wait_for_exit(
    process: subprocess.Popen[str],
    request: RunnerRequest,
) -> tuple[int, bool, bool]:
    """Wait for the child; returns `(exit_code, timed_out, stopped)`."""

    deadline = time.monotonic() + request.timeout_seconds
    while True:
        try:
            return process.wait(timeout=_WAIT_POLL_SECONDS), False, False
        except subprocess.TimeoutExpired:
            pass
        if time.monotonic() >= deadline:
            logger.warning(
                "Comment AI runner timed out after %ss run_id=%s",
                request.timeout_seconds,
                request.run_id,
            )
            _terminate_process(process)
            return TIMEOUT_EXIT_CODE, True, False
        if request.shutdown_requested is not None and request.shutdown_requested():
            logger.warning("Stopping comment AI runner on shutdown run_id=%s", request.run_id)
            _terminate_process(process)
            return TIMEOUT_EXIT_CODE, False, True


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        _signal_process(process, force=False)
    except OSError:
        return
    try:
        process.wait(timeout=_KILL_GRACE_SECONDS)
        return
    except subprocess.TimeoutExpired:
        pass
    try:
        _signal_process(process, force=True)
    except OSError:
        return
    try:
        process.wait(timeout=_KILL_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        logger.warning("Comment AI runner pid=%s did not exit after SIGKILL", process.pid)


def _signal_process(process: subprocess.Popen[str], *, force: bool) -> None:
    if os.name == "posix":
        os.killpg(process.pid, signal.SIGKILL if force else signal.SIGTERM)
        return
    if force:
        process.kill()
    else:
        process.terminate()
