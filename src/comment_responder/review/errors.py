"""Error taxonomy shared by the review pipeline and its surfaces."""

from __future__ import annotations


class ReviewError(RuntimeError):
    """Base class for comment review failures surfaced to callers."""


class InvalidArgumentError(ReviewError):
    """Input rejected by validation; never retried."""


class NotFoundError(ReviewError):
    """Referenced subject, task or run does not exist."""


class RateLimitedError(ReviewError):
    """Submitter fingerprint is inside its rate-limit window."""

    def __init__(self, message: str, *, retry_after_seconds: float) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class ConflictError(ReviewError):
    """Task state precondition violated, or lost a compare-and-set race."""


class DispatchError(ReviewError):
    """Task id could not be handed to the worker queue."""


class RunnerError(ReviewError):
    """Runner process could not be started, with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class ParseFailureError(ReviewError):
    """Runner output did not contain a usable final reply."""

    def __init__(self, message: str, *, diagnostics: str) -> None:
        super().__init__(message)
        self.diagnostics = diagnostics
