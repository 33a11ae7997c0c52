"""Runner invocation payload, file naming and published author identity."""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import asdict, dataclass
from pathlib import Path

from comment_responder.review.models import TaskView

RUNNER_INSTRUCTIONS = (
    "Use skill comment-review-ai-responder. Fetch the subject's raw markdown via the "
    "local content API first, then answer the reader comment. Print a JSON object with "
    "`final_reply_markdown`, or write the reply markdown to COMMENT_AI_RESULT_PATH."
)
REASON_PREVIEW_CHARS = 800

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@dataclass(slots=True)
class RunnerPayload:
    """JSON document handed to the runner as its last argument."""

    task_id: str
    subject_id: str
    entry_type: str
    comment_text: str
    selected_text: str | None
    anchor_block_id: str | None
    anchor_context_before: str | None
    anchor_context_after: str | None
    reply_to_comment_id: str | None
    reply_to_comment_text: str | None
    reply_to_ai_reply_markdown: str | None
    content_api_base: str
    skill_path: str
    result_path: str
    instructions: str = RUNNER_INSTRUCTIONS


@dataclass(slots=True)
class AuthorIdentity:
    author_hash: str
    author_name: str
    avatar_seed: str


def build_payload(
    task: TaskView,
    *,
    content_api_base: str,
    skill_path: Path,
    result_path: Path,
) -> RunnerPayload:
    context = task.context
    return RunnerPayload(
        task_id=task.task_id,
        subject_id=task.subject_id,
        entry_type=task.entry_type,
        comment_text=task.comment_text,
        selected_text=context.selected_text,
        anchor_block_id=context.anchor_block_id,
        anchor_context_before=context.anchor_context_before,
        anchor_context_after=context.anchor_context_after,
        reply_to_comment_id=context.reply_to_comment_id,
        reply_to_comment_text=context.reply_to_comment_text,
        reply_to_ai_reply_markdown=context.reply_to_ai_reply_markdown,
        content_api_base=content_api_base,
        skill_path=str(skill_path),
        result_path=str(result_path),
    )


def write_payload(payload: RunnerPayload, payload_dir: Path) -> Path:
    """Write the payload as pretty JSON and return its path."""

    payload_dir.mkdir(parents=True, exist_ok=True)
    path = payload_dir / f"comment-task-{safe_task_id(payload.task_id)}.json"
    path.write_text(json.dumps(asdict(payload), ensure_ascii=False, indent=2), "utf-8")
    return path


def safe_task_id(task_id: str) -> str:
    """Task id with every character outside ``[A-Za-z0-9._-]`` replaced by ``_``."""

    return _UNSAFE_PATH_CHARS.sub("_", task_id) or "unknown-task"


def result_file_path(result_dir: Path, task_id: str) -> Path:
    return result_dir / f"task-{safe_task_id(task_id)}.md"


def read_result_file(path: Path) -> str | None:
    """Trimmed reply written by the runner, or None when absent or blank."""

    if not path.is_file():
        return None
    content = path.read_text("utf-8").strip()
    return content or None


def derive_author_identity(fingerprint: str, salt: str) -> AuthorIdentity:
    """Stable pseudonymous identity for a submitter fingerprint."""

    digest = hashlib.sha256(f"{fingerprint}:{salt}".encode()).hexdigest()
    short = digest[:10]
    return AuthorIdentity(author_hash=digest, author_name=f"Reader-{short[:6]}", avatar_seed=short)


def compact_for_reason(raw: str) -> str:
    compact = raw.strip()
    if len(compact) <= REASON_PREVIEW_CHARS:
        return compact
    return f"{compact[:REASON_PREVIEW_CHARS]}...(truncated)"
