"""Runner backends for comment AI execution."""

from comment_responder.review.backend.base import (
    ChunkSink,
    ProcessRunner,
    RunnerRequest,
    RunnerResult,
)
from comment_responder.review.backend.subprocess_runner import SubprocessRunner

__all__ = [
    "ChunkSink",
    "ProcessRunner",
    "RunnerRequest",
    "RunnerResult",
    "SubprocessRunner",
]
