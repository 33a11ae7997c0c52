from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest

from comment_responder.review.errors import RateLimitedError
from comment_responder.review.rate_limit import RateLimiter

pytestmark = [
    allure.epic("Comment Review"),
    allure.feature("Submission & Rate Limiting"),
]

_START = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


def test_second_submission_inside_window_is_rejected() -> None:
    limiter = RateLimiter(60)
    limiter.check("fp-a", _START)

    with pytest.raises(RateLimitedError) as excinfo:
        limiter.check("fp-a", _START + timedelta(seconds=20))

    assert excinfo.value.retry_after_seconds == pytest.approx(40)


def test_submission_after_window_is_accepted() -> None:
    limiter = RateLimiter(60)
    limiter.check("fp-a", _START)
    limiter.check("fp-a", _START + timedelta(seconds=60))

    with pytest.raises(RateLimitedError):
        limiter.check("fp-a", _START + timedelta(seconds=61))


def test_fingerprints_are_limited_independently() -> None:
    limiter = RateLimiter(60)
    limiter.check("fp-a", _START)
    limiter.check("fp-b", _START)

    assert limiter.tracked() == 2


def test_rejected_submission_does_not_extend_window() -> None:
    limiter = RateLimiter(60)
    limiter.check("fp-a", _START)
    with pytest.raises(RateLimitedError):
        limiter.check("fp-a", _START + timedelta(seconds=59))

    limiter.check("fp-a", _START + timedelta(seconds=60))


def test_stale_entries_are_pruned() -> None:
    limiter = RateLimiter(10)
    limiter.check("old", _START)
    limiter.check("new", _START + timedelta(seconds=61))

    assert limiter.tracked() == 1


def test_zero_window_disables_limiter() -> None:
    limiter = RateLimiter(0)
    for _ in range(3):
        limiter.check("fp-a", _START)

    assert limiter.tracked() == 0
