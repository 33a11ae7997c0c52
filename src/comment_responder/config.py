"""Runtime configuration for comment submission, worker and stream delivery."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_ENTRY_TYPES: tuple[str, ...] = ("selection", "footer")
MIN_RUNNER_TIMEOUT_SECONDS = 30


@dataclass(slots=True)
class SubmissionSettings:
    """Validation and rate-limit settings for reader submissions."""

    rate_limit_seconds: int = 60
    max_comment_chars: int = 1000
    entry_types: tuple[str, ...] = DEFAULT_ENTRY_TYPES


@dataclass(slots=True)
class WorkerSettings:
    """External AI runner invocation settings."""

    runner_program: str = "bash"
    runner_args: tuple[str, ...] = ("scripts/comment_ai_worker_runner.sh",)
    timeout_seconds: int = 180
    workdir: Path = Path(".")
    content_api_base: str = "http://127.0.0.1:3000/api"
    skill_path: Path = Path("skills/comment-review-ai-responder/SKILL.md")
    payload_dir: Path = Path("/tmp/comment-responder-payloads")
    result_dir: Path = Path("/tmp/comment-responder-results")
    cleanup_result_file_on_success: bool = True
    max_chunks_per_run: int = 4096
    queue_capacity: int = 128
    enqueue_timeout_seconds: float = 1.0
    author_salt: str = "comment-responder"


@dataclass(slots=True)
class StreamSettings:
    """Push-channel polling and keep-alive settings."""

    poll_interval_ms: int = 500
    heartbeat_seconds: float = 15.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".comment_responder.db")
    sqlite_busy_timeout_ms: int = 5_000
    submission: SubmissionSettings = field(default_factory=SubmissionSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    stream: StreamSettings = field(default_factory=StreamSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        workdir = Path(os.getenv("COMMENT_AI_WORKDIR", "") or Path.cwd())
        return cls(
            db_path=db_path
            or Path(os.getenv("COMMENT_RESPONDER_DB_PATH", ".comment_responder.db")),
            sqlite_busy_timeout_ms=int(
                os.getenv("COMMENT_RESPONDER_SQLITE_BUSY_TIMEOUT_MS", "5000"),
            ),
            submission=SubmissionSettings(
                rate_limit_seconds=int(
                    os.getenv("COMMENT_RESPONDER_SUBMIT_RATE_LIMIT_SECONDS", "60"),
                ),
                max_comment_chars=int(os.getenv("COMMENT_RESPONDER_MAX_COMMENT_CHARS", "1000")),
            ),
            worker=WorkerSettings(
                runner_program=os.getenv("COMMENT_AI_RUNNER_PROGRAM", "bash"),
                runner_args=_collect_runner_args(),
                timeout_seconds=max(
                    MIN_RUNNER_TIMEOUT_SECONDS,
                    int(os.getenv("COMMENT_AI_TIMEOUT_SECONDS", "180")),
                ),
                workdir=workdir,
                content_api_base=_content_api_base(),
                skill_path=Path(
                    os.getenv("COMMENT_AI_SKILL_PATH", "")
                    or workdir / "skills/comment-review-ai-responder/SKILL.md",
                ),
                payload_dir=Path(
                    os.getenv("COMMENT_AI_PAYLOAD_DIR", "/tmp/comment-responder-payloads"),
                ),
                result_dir=Path(
                    os.getenv("COMMENT_AI_RESULT_DIR", "/tmp/comment-responder-results"),
                ),
                cleanup_result_file_on_success=_env_bool(
                    "COMMENT_AI_RESULT_CLEANUP_ON_SUCCESS",
                    default=True,
                ),
                max_chunks_per_run=int(os.getenv("COMMENT_AI_MAX_CHUNKS_PER_RUN", "4096")),
                queue_capacity=int(os.getenv("COMMENT_RESPONDER_QUEUE_CAPACITY", "128")),
                enqueue_timeout_seconds=float(
                    os.getenv("COMMENT_RESPONDER_ENQUEUE_TIMEOUT_SECONDS", "1.0"),
                ),
                author_salt=os.getenv("COMMENT_AUTHOR_SALT", "comment-responder"),
            ),
            stream=StreamSettings(
                poll_interval_ms=int(os.getenv("COMMENT_RESPONDER_STREAM_POLL_MS", "500")),
                heartbeat_seconds=float(
                    os.getenv("COMMENT_RESPONDER_STREAM_HEARTBEAT_SECONDS", "15"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the pipeline cannot run with."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("COMMENT_RESPONDER_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.submission.rate_limit_seconds < 0:
            raise ValueError("COMMENT_RESPONDER_SUBMIT_RATE_LIMIT_SECONDS must be >= 0.")
        if self.submission.max_comment_chars <= 0:
            raise ValueError("COMMENT_RESPONDER_MAX_COMMENT_CHARS must be > 0.")
        if not self.worker.runner_program.strip():
            raise ValueError("COMMENT_AI_RUNNER_PROGRAM must not be empty.")
        if self.worker.timeout_seconds < MIN_RUNNER_TIMEOUT_SECONDS:
            raise ValueError(
                f"COMMENT_AI_TIMEOUT_SECONDS must be >= {MIN_RUNNER_TIMEOUT_SECONDS}.",
            )
        if self.worker.max_chunks_per_run <= 0:
            raise ValueError("COMMENT_AI_MAX_CHUNKS_PER_RUN must be > 0.")
        if self.worker.queue_capacity <= 0:
            raise ValueError("COMMENT_RESPONDER_QUEUE_CAPACITY must be > 0.")
        if self.stream.heartbeat_seconds <= 0:
            raise ValueError("COMMENT_RESPONDER_STREAM_HEARTBEAT_SECONDS must be > 0.")


def _collect_runner_args() -> tuple[str, ...]:
    raw = os.getenv("COMMENT_AI_RUNNER_ARGS", "")
    values = tuple(part for part in raw.split() if part)
    return values or ("scripts/comment_ai_worker_runner.sh",)


def _content_api_base() -> str:
    configured = os.getenv("COMMENT_AI_CONTENT_API_BASE", "").strip().rstrip("/")
    if configured:
        return configured
    port = os.getenv("PORT", "3000")
    return f"http://127.0.0.1:{port}/api"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
