"""Runner interface for external AI process execution."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from comment_responder.review.models import ChunkStream, RunChunkView


@dataclass(slots=True)
class RunnerRequest:
    """Inputs required to execute one run of the external program."""

    run_id: str
    task_id: str
    program: str
    args: list[str]
    payload_path: Path
    workdir: Path
    timeout_seconds: float
    env: dict[str, str] = field(default_factory=dict)
    max_chunks_per_stream: int = 4096
    shutdown_requested: Callable[[], bool] | None = None

    def argv(self) -> list[str]:
        return [self.program, *self.args, str(self.payload_path)]


@dataclass(slots=True)
class RunnerResult:
    """Execution outcome with the full text captured from both pipes."""

    exit_code: int
    timed_out: bool
    stdout_text: str
    stderr_text: str
    chunk_count: int
    stopped: bool = False


class ChunkSink(Protocol):
    """Append-only destination for captured output lines."""

    def append_chunk(  # noqa: PLR0913
        self,
        *,
        run_id: str,
        task_id: str,
        stream: ChunkStream,
        sequence: int,
        content: str,
    ) -> RunChunkView:
        """Persist one line under the given run-wide sequence number."""


class ProcessRunner(Protocol):
    """Protocol implemented by runner backends."""

    def run(self, request: RunnerRequest, sink: ChunkSink) -> RunnerResult:
        """Run the program to completion or timeout, streaming lines into `sink`."""
