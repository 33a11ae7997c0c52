from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import allure

from comment_responder.review.models import TaskView
from comment_responder.review.payload import (
    REASON_PREVIEW_CHARS,
    build_payload,
    compact_for_reason,
    derive_author_identity,
    read_result_file,
    result_file_path,
    safe_task_id,
    write_payload,
)

pytestmark = [
    allure.epic("Comment Review"),
    allure.feature("Runner Invocation"),
]


def test_safe_task_id_replaces_unsafe_characters() -> None:
    assert safe_task_id("cmt:17713/abc?*中文") == "cmt_17713_abc____"
    assert safe_task_id("plain-id_1.2") == "plain-id_1.2"
    assert safe_task_id("") == "unknown-task"


def test_result_file_path_uses_safe_name() -> None:
    assert result_file_path(Path("/tmp/x"), "cmt/1") == Path("/tmp/x/task-cmt_1.md")


def test_write_payload_contains_task_and_runtime_fields(
    tmp_path: Path,
    create_task: Callable[..., TaskView],
) -> None:
    task = create_task("What is this?", selected_text="some quote")
    payload = build_payload(
        task,
        content_api_base="http://127.0.0.1:3000/api",
        skill_path=tmp_path / "SKILL.md",
        result_path=tmp_path / "result.md",
    )

    path = write_payload(payload, tmp_path / "payloads")

    assert path.parent == tmp_path / "payloads"
    assert path.name == f"comment-task-{safe_task_id(task.task_id)}.json"
    data = json.loads(path.read_text("utf-8"))
    assert data["task_id"] == task.task_id
    assert data["subject_id"] == "post-1"
    assert data["comment_text"] == "What is this?"
    assert data["selected_text"] == "some quote"
    assert data["reply_to_comment_id"] is None
    assert data["content_api_base"] == "http://127.0.0.1:3000/api"
    assert data["result_path"] == str(tmp_path / "result.md")
    assert "final_reply_markdown" in data["instructions"]


def test_read_result_file(tmp_path: Path) -> None:
    path = tmp_path / "task-1.md"
    assert read_result_file(path) is None

    path.write_text("   \n", "utf-8")
    assert read_result_file(path) is None

    path.write_text("\n# Reply\n\nBody\n", "utf-8")
    assert read_result_file(path) == "# Reply\n\nBody"


def test_author_identity_is_stable_per_fingerprint_and_salt() -> None:
    first = derive_author_identity("fp-1", "salt")
    again = derive_author_identity("fp-1", "salt")
    other_salt = derive_author_identity("fp-1", "pepper")

    assert first == again
    assert first.author_hash != other_salt.author_hash
    assert first.author_name.startswith("Reader-")
    assert len(first.author_name) == len("Reader-") + 6
    assert first.avatar_seed == first.author_hash[:10]


def test_compact_for_reason_truncates_long_output() -> None:
    assert compact_for_reason("  short  ") == "short"

    compact = compact_for_reason("x" * (REASON_PREVIEW_CHARS + 50))
    assert compact.endswith("...(truncated)")
    assert len(compact) == REASON_PREVIEW_CHARS + len("...(truncated)")
