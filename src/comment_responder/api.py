"""HTTP surface: reader submission, admin review and live run output."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse

from comment_responder import __version__
from comment_responder.config import Settings
from comment_responder.review.backend import ProcessRunner
from comment_responder.review.errors import (
    ConflictError,
    DispatchError,
    InvalidArgumentError,
    NotFoundError,
    RateLimitedError,
    ReviewError,
)
from comment_responder.review.models import CommentTaskPatch, RunStatus, SubmitComment, TaskStatus
from comment_responder.review.repository import ReviewRepository
from comment_responder.review.runtime import ReviewRuntime, build_runtime
from comment_responder.review.streaming import encode_sse
from comment_responder.schemas import (
    AiOutputRead,
    AuditRead,
    ChunkRead,
    CleanupRequest,
    CleanupResponse,
    OperatorActionRequest,
    PublishedRead,
    RunRead,
    StatsRead,
    SubjectCreate,
    SubjectRead,
    SubmitCommentRequest,
    SubmitCommentResponse,
    TaskDetailsRead,
    TaskPatchRequest,
    TaskRead,
)

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[type[ReviewError], int] = {
    InvalidArgumentError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    RateLimitedError: 429,
    DispatchError: 503,
}
DEFAULT_OPERATOR = "admin"


def create_app(
    settings: Settings | None = None,
    *,
    repository: ReviewRepository | None = None,
    runner: ProcessRunner | None = None,
    start_worker: bool = True,
) -> FastAPI:
    """Build the application around one runtime.

    The worker thread starts with the application lifespan, after orphaned
    `running` tasks have been failed.
    """

    settings = settings or Settings.from_env()
    owns_repository = repository is None
    runtime = build_runtime(settings, repository=repository, runner=runner)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if start_worker:
            recovered = runtime.start()
            logger.info("Comment responder started; recovered %d orphaned tasks", recovered)
        try:
            yield
        finally:
            if owns_repository:
                runtime.close()
            else:
                runtime.stop()

    app = FastAPI(title="comment-responder", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime
    _register_error_handlers(app)
    _register_reader_routes(app, runtime)
    _register_admin_routes(app, runtime)
    _register_stream_routes(app, runtime)
    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ReviewError)
    async def review_error_handler(_: Request, error: ReviewError) -> JSONResponse:
        status_code = 500
        for error_type, code in ERROR_STATUS_CODES.items():
            if isinstance(error, error_type):
                status_code = code
                break
        headers = None
        if isinstance(error, RateLimitedError):
            headers = {"Retry-After": str(max(1, round(error.retry_after_seconds)))}
        return JSONResponse({"detail": str(error)}, status_code=status_code, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_: Request, error: RequestValidationError) -> JSONResponse:
        return JSONResponse({"detail": jsonable_encoder(error.errors())}, status_code=400)


def _register_reader_routes(app: FastAPI, runtime: ReviewRuntime) -> None:
    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/comments/submit", response_model=SubmitCommentResponse)
    def submit_comment(
        payload: SubmitCommentRequest,
        request: Request,
        user_agent: str | None = Header(default=None),
    ) -> SubmitCommentResponse:
        client_ip = request.client.host if request.client else None
        fingerprint = payload.fingerprint or client_fingerprint(client_ip, user_agent)
        task = runtime.service.submit(
            SubmitComment(
                subject_id=payload.subject_id,
                entry_type=payload.entry_type,
                comment_text=payload.comment_text,
                fingerprint=fingerprint,
                context=payload.to_context(),
                client_ip=client_ip,
            ),
        )
        return SubmitCommentResponse(task_id=task.task_id, status=task.status)

    @app.get("/api/comments", response_model=list[PublishedRead])
    def list_subject_comments(
        subject_id: str,
        limit: int = Query(default=100, ge=1, le=500),
    ) -> list[PublishedRead]:
        replies = runtime.repository.list_published_replies(subject_id=subject_id, limit=limit)
        return [PublishedRead.model_validate(reply) for reply in replies]


def _register_admin_routes(app: FastAPI, runtime: ReviewRuntime) -> None:
    service = runtime.service
    repository = runtime.repository

    @app.post("/admin/comments/subjects", response_model=SubjectRead)
    def add_subject(payload: SubjectCreate) -> SubjectRead:
        repository.add_subject(payload.subject_id, title=payload.title)
        return SubjectRead(subject_id=payload.subject_id, title=payload.title)

    @app.get("/admin/comments/subjects", response_model=list[SubjectRead])
    def list_subjects() -> list[SubjectRead]:
        return [
            SubjectRead(subject_id=subject_id, title=title)
            for subject_id, title in repository.list_subjects()
        ]

    @app.get("/admin/comments/tasks", response_model=list[TaskRead])
    def list_tasks(
        status: TaskStatus | None = None,
        subject_id: str | None = None,
        limit: int = Query(default=50, ge=1, le=500),
    ) -> list[TaskRead]:
        tasks = repository.list_tasks(status=status, subject_id=subject_id, limit=limit)
        return [TaskRead.model_validate(task) for task in tasks]

    @app.get("/admin/comments/tasks/{task_id}", response_model=TaskDetailsRead)
    def get_task(task_id: str) -> TaskDetailsRead:
        details = repository.get_task_details(task_id)
        if details is None:
            raise NotFoundError(f"Comment task not found: {task_id}")
        published = repository.get_published_reply(task_id)
        return TaskDetailsRead(
            task=TaskRead.model_validate(details.task),
            audit=[AuditRead.model_validate(entry) for entry in details.audit],
            runs=[RunRead.model_validate(run) for run in details.runs],
            published=PublishedRead.model_validate(published) if published else None,
        )

    @app.patch("/admin/comments/tasks/{task_id}", response_model=TaskRead)
    def patch_task(
        task_id: str,
        payload: TaskPatchRequest,
        operator: str = Header(default=DEFAULT_OPERATOR, alias="X-Operator"),
    ) -> TaskRead:
        task = service.patch(
            task_id,
            CommentTaskPatch(
                comment_text=payload.comment_text,
                admin_note=payload.admin_note,
                context=payload.context.to_context() if payload.context else None,
            ),
            operator=operator,
        )
        return TaskRead.model_validate(task)

    @app.delete("/admin/comments/tasks/{task_id}", status_code=204)
    def delete_task(
        task_id: str,
        operator: str = Header(default=DEFAULT_OPERATOR, alias="X-Operator"),
    ) -> None:
        service.delete(task_id, operator=operator)

    @app.post("/admin/comments/tasks/{task_id}/approve", response_model=TaskRead)
    def approve_task(
        task_id: str,
        payload: OperatorActionRequest | None = None,
        operator: str = Header(default=DEFAULT_OPERATOR, alias="X-Operator"),
    ) -> TaskRead:
        note = payload.admin_note if payload else None
        return TaskRead.model_validate(service.approve(task_id, operator=operator, admin_note=note))

    @app.post("/admin/comments/tasks/{task_id}/approve-and-run", response_model=TaskRead)
    def approve_and_run_task(
        task_id: str,
        payload: OperatorActionRequest | None = None,
        operator: str = Header(default=DEFAULT_OPERATOR, alias="X-Operator"),
    ) -> TaskRead:
        note = payload.admin_note if payload else None
        task = service.approve_and_run(task_id, operator=operator, admin_note=note)
        return TaskRead.model_validate(task)

    @app.post("/admin/comments/tasks/{task_id}/reject", response_model=TaskRead)
    def reject_task(
        task_id: str,
        payload: OperatorActionRequest | None = None,
        operator: str = Header(default=DEFAULT_OPERATOR, alias="X-Operator"),
    ) -> TaskRead:
        note = payload.admin_note if payload else None
        return TaskRead.model_validate(service.reject(task_id, operator=operator, admin_note=note))

    @app.post("/admin/comments/tasks/{task_id}/retry", response_model=TaskRead)
    def retry_task(
        task_id: str,
        operator: str = Header(default=DEFAULT_OPERATOR, alias="X-Operator"),
    ) -> TaskRead:
        return TaskRead.model_validate(service.retry(task_id, operator=operator))

    @app.get("/admin/comments/tasks/{task_id}/ai-output", response_model=AiOutputRead)
    def get_ai_output(
        task_id: str,
        run_id: str | None = None,
        after_sequence: int = Query(default=-1, ge=-1),
        limit: int | None = Query(default=None, ge=1, le=10_000),
    ) -> AiOutputRead:
        repository.require_task(task_id)
        runs = repository.list_runs(task_id=task_id, limit=100)
        selected = run_id or (runs[0].run_id if runs else None)
        if selected is not None and all(run.run_id != selected for run in runs):
            raise NotFoundError(f"Run {selected} not found for comment task {task_id}")
        chunks = (
            repository.list_chunks(selected, after_sequence=after_sequence, limit=limit)
            if selected is not None
            else []
        )
        return AiOutputRead(
            task_id=task_id,
            run_id=selected,
            runs=[RunRead.model_validate(run) for run in runs],
            chunks=[ChunkRead.model_validate(chunk) for chunk in chunks],
        )

    @app.get("/admin/comments/ai-runs", response_model=list[RunRead])
    def list_ai_runs(
        task_id: str | None = None,
        status: RunStatus | None = None,
        limit: int = Query(default=50, ge=1, le=500),
    ) -> list[RunRead]:
        runs = repository.list_runs(task_id=task_id, status=status, limit=limit)
        return [RunRead.model_validate(run) for run in runs]

    @app.get("/admin/comments/published", response_model=list[PublishedRead])
    def list_published(
        subject_id: str | None = None,
        limit: int = Query(default=50, ge=1, le=500),
    ) -> list[PublishedRead]:
        replies = repository.list_published_replies(subject_id=subject_id, limit=limit)
        return [PublishedRead.model_validate(reply) for reply in replies]

    @app.get("/admin/comments/audit-logs", response_model=list[AuditRead])
    def list_audit_logs(
        task_id: str | None = None,
        action: str | None = None,
        limit: int = Query(default=100, ge=1, le=1000),
    ) -> list[AuditRead]:
        entries = repository.list_audit_entries(task_id=task_id, action=action, limit=limit)
        return [AuditRead.model_validate(entry) for entry in entries]

    @app.post("/admin/comments/cleanup", response_model=CleanupResponse)
    def cleanup(
        payload: CleanupRequest,
        operator: str = Header(default=DEFAULT_OPERATOR, alias="X-Operator"),
    ) -> CleanupResponse:
        deleted = service.cleanup(operator=operator, status=payload.status, before=payload.before)
        return CleanupResponse(deleted=deleted)

    @app.get("/admin/comments/stats", response_model=StatsRead)
    def stats() -> StatsRead:
        counts = service.status_breakdown()
        return StatsRead(
            counts=counts,
            total=sum(counts.values()),
            queue_depth=runtime.queue.depth,
            worker_running=runtime.queue.running,
        )


def _register_stream_routes(app: FastAPI, runtime: ReviewRuntime) -> None:
    @app.get("/admin/comments/tasks/{task_id}/ai-output/stream")
    def stream_ai_output(
        task_id: str,
        run_id: str | None = None,
        from_sequence: int = Query(default=-1, ge=-1),
        poll_interval_ms: int | None = None,
        last_event_id: str | None = Header(default=None),
    ) -> StreamingResponse:
        resolved = runtime.streams.resolve_run_id(task_id, run_id)
        if from_sequence == -1 and last_event_id and last_event_id.strip().isdigit():
            from_sequence = int(last_event_id.strip())
        events = runtime.streams.stream_run(
            resolved,
            from_sequence=from_sequence,
            poll_interval_ms=poll_interval_ms or runtime.settings.stream.poll_interval_ms,
        )
        return StreamingResponse(
            (encode_sse(event) for event in events),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )


def client_fingerprint(client_ip: str | None, user_agent: str | None) -> str:
    """Fingerprint of an anonymous reader derived from address and user agent."""

    raw = f"{client_ip or 'unknown'}|{user_agent or 'unknown'}"
    return hashlib.sha256(raw.encode()).hexdigest()[:32]

