from __future__ import annotations

from collections.abc import Callable, Iterator

import allure
import pytest
from fastapi.testclient import TestClient

from comment_responder.api import client_fingerprint, create_app
from comment_responder.config import Settings
from comment_responder.review.models import TaskStatus

pytestmark = [
    allure.epic("Comment Review"),
    allure.feature("HTTP API"),
]


@pytest.fixture()
def client(app_settings: Callable[..., Settings]) -> Iterator[TestClient]:
    with TestClient(create_app(app_settings())) as test_client:
        test_client.post("/admin/comments/subjects", json={"subject_id": "post-1", "title": "P1"})
        yield test_client


def _submit(client: TestClient, text: str = "What does this mean?", **extra: object) -> str:
    body = {"subject_id": "post-1", "entry_type": "footer", "comment_text": text, **extra}
    response = client.post("/api/comments/submit", json=body)
    assert response.status_code == 200, response.text
    return response.json()["task_id"]


def _wait_for_worker(client: TestClient) -> None:
    client.app.state.runtime.queue.join()  # type: ignore[attr-defined]


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_submit_approve_and_run_publishes_reply(client: TestClient) -> None:
    task_id = _submit(client, "Why is the sky blue?", selected_text="the sky")

    response = client.post(f"/admin/comments/tasks/{task_id}/approve-and-run")
    assert response.status_code == 200
    assert response.json()["status"] in {"running", "done"}
    _wait_for_worker(client)

    details = client.get(f"/admin/comments/tasks/{task_id}").json()
    assert details["task"]["status"] == "done"
    assert details["task"]["context"]["selected_text"] == "the sky"
    assert "fingerprint" not in details["task"]
    assert details["published"]["ai_reply_markdown"] == "Echo: Why is the sky blue?"
    assert "author_hash" not in details["published"]
    assert [run["status"] for run in details["runs"]] == ["success"]
    assert [entry["action"] for entry in details["audit"]] == [
        "created",
        "approve_and_run",
        "worker_done",
    ]

    output = client.get(f"/admin/comments/tasks/{task_id}/ai-output").json()
    assert output["run_id"] == details["runs"][0]["run_id"]
    sequences = [chunk["sequence"] for chunk in output["chunks"]]
    assert sequences == list(range(len(sequences)))
    assert sequences

    public = client.get("/api/comments", params={"subject_id": "post-1"}).json()
    assert [item["task_id"] for item in public] == [task_id]


def test_stream_replays_finished_run(client: TestClient) -> None:
    task_id = _submit(client)
    client.post(f"/admin/comments/tasks/{task_id}/approve-and-run")
    _wait_for_worker(client)

    response = client.get(f"/admin/comments/tasks/{task_id}/ai-output/stream")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert "id: 0\nevent: chunk\n" in response.text
    assert "event: done" in response.text
    assert '"status": "success"' in response.text


def test_stream_resumes_from_last_event_id(client: TestClient) -> None:
    task_id = _submit(client)
    client.post(f"/admin/comments/tasks/{task_id}/approve-and-run")
    _wait_for_worker(client)
    output = client.get(f"/admin/comments/tasks/{task_id}/ai-output").json()
    last = output["chunks"][-1]["sequence"]

    response = client.get(
        f"/admin/comments/tasks/{task_id}/ai-output/stream",
        headers={"Last-Event-ID": str(last)},
    )

    assert "event: chunk" not in response.text
    assert f'"last_sequence": {last}' in response.text


def test_stream_for_task_without_runs_is_404(client: TestClient) -> None:
    task_id = _submit(client)

    response = client.get(f"/admin/comments/tasks/{task_id}/ai-output/stream")

    assert response.status_code == 404
    assert "no runs yet" in response.json()["detail"]


def test_invalid_submissions_are_400(client: TestClient) -> None:
    empty = client.post(
        "/api/comments/submit",
        json={"subject_id": "post-1", "entry_type": "footer", "comment_text": "   "},
    )
    missing = client.post("/api/comments/submit", json={"subject_id": "post-1"})
    bad_type = client.post(
        "/api/comments/submit",
        json={"subject_id": "post-1", "entry_type": "sidebar", "comment_text": "hi"},
    )

    assert empty.status_code == 400
    assert missing.status_code == 400
    assert bad_type.status_code == 400


def test_unknown_subject_is_404(client: TestClient) -> None:
    response = client.post(
        "/api/comments/submit",
        json={"subject_id": "post-404", "entry_type": "footer", "comment_text": "hi"},
    )

    assert response.status_code == 404


def test_rate_limited_submission_is_429(client: TestClient) -> None:
    _submit(client, "first", fingerprint="fp-x")

    response = client.post(
        "/api/comments/submit",
        json={
            "subject_id": "post-1",
            "entry_type": "footer",
            "comment_text": "second",
            "fingerprint": "fp-x",
        },
    )

    assert response.status_code == 429
    assert 1 <= int(response.headers["Retry-After"]) <= 60


def test_derived_fingerprint_is_rate_limited_too(client: TestClient) -> None:
    _submit(client, "first")
    body = {"subject_id": "post-1", "entry_type": "footer", "comment_text": "again"}

    assert client.post("/api/comments/submit", json=body).status_code == 429


def test_approve_on_finished_task_is_409(client: TestClient) -> None:
    task_id = _submit(client)
    client.post(f"/admin/comments/tasks/{task_id}/approve-and-run")
    _wait_for_worker(client)

    response = client.post(f"/admin/comments/tasks/{task_id}/approve")

    assert response.status_code == 409
    audit = client.get("/admin/comments/audit-logs", params={"task_id": task_id}).json()
    assert audit[-1]["outcome"] == "rejected"


def test_unknown_task_is_404(client: TestClient) -> None:
    assert client.post("/admin/comments/tasks/missing/approve").status_code == 404
    assert client.get("/admin/comments/tasks/missing").status_code == 404


def test_patch_records_operator(client: TestClient) -> None:
    task_id = _submit(client, "tpyo")

    response = client.patch(
        f"/admin/comments/tasks/{task_id}",
        json={"comment_text": "typo", "context": {"anchor_block_id": "p-2"}},
        headers={"X-Operator": "bob"},
    )

    assert response.status_code == 200
    assert response.json()["comment_text"] == "typo"
    assert response.json()["context"]["anchor_block_id"] == "p-2"
    audit = client.get("/admin/comments/audit-logs", params={"action": "patched"}).json()
    assert [entry["operator"] for entry in audit] == ["bob"]


def test_reject_delete_cleanup_and_stats(client: TestClient) -> None:
    rejected = _submit(client, "spam", fingerprint="fp-1")
    kept = _submit(client, "fine", fingerprint="fp-2")
    deleted = _submit(client, "remove me", fingerprint="fp-3")

    response = client.post(
        f"/admin/comments/tasks/{rejected}/reject",
        json={"admin_note": "spam"},
    )
    assert response.json()["status"] == "rejected"
    assert response.json()["admin_note"] == "spam"
    assert client.delete(f"/admin/comments/tasks/{deleted}").status_code == 204

    stats = client.get("/admin/comments/stats").json()
    assert stats["counts"]["pending"] == 1
    assert stats["counts"]["rejected"] == 1
    assert stats["total"] == 2
    assert stats["worker_running"] is True

    cleanup = client.post("/admin/comments/cleanup", json={"status": "rejected"})
    assert cleanup.json() == {"deleted": 1}
    assert client.post("/admin/comments/cleanup", json={}).json() == {"deleted": 0}
    tasks = client.get("/admin/comments/tasks").json()
    assert [task["task_id"] for task in tasks] == [kept]


def test_full_queue_returns_503_and_fails_task(app_settings: Callable[..., Settings]) -> None:
    app = create_app(app_settings(queue_capacity=1), start_worker=False)
    with TestClient(app) as client:
        client.post("/admin/comments/subjects", json={"subject_id": "post-1"})
        first = _submit(client, "one", fingerprint="fp-1")
        second = _submit(client, "two", fingerprint="fp-2")

        assert client.post(f"/admin/comments/tasks/{first}/approve-and-run").status_code == 200
        response = client.post(f"/admin/comments/tasks/{second}/approve-and-run")

        assert response.status_code == 503
        task = client.get(f"/admin/comments/tasks/{second}").json()["task"]
        assert task["status"] == "failed"
        assert task["failure_reason"].startswith("dispatch failed:")
        assert client.get("/admin/comments/stats").json()["queue_depth"] == 1


def test_retry_of_failed_task_runs_again(client: TestClient) -> None:
    runtime = client.app.state.runtime  # type: ignore[attr-defined]
    task_id = _submit(client)
    runtime.repository.transition(task_id, TaskStatus.RUNNING, operator="w", action="claim")
    runtime.repository.transition(
        task_id,
        TaskStatus.FAILED,
        operator="w",
        action="fail",
        reason="x",
    )

    response = client.post(f"/admin/comments/tasks/{task_id}/retry")
    _wait_for_worker(client)

    assert response.status_code == 200
    task = client.get(f"/admin/comments/tasks/{task_id}").json()["task"]
    assert task["status"] == "done"
    assert task["attempt_count"] == 2


def test_client_fingerprint_is_stable() -> None:
    assert client_fingerprint("1.2.3.4", "ua") == client_fingerprint("1.2.3.4", "ua")
    assert client_fingerprint("1.2.3.4", "ua") != client_fingerprint("1.2.3.5", "ua")
    assert len(client_fingerprint(None, None)) == 32
