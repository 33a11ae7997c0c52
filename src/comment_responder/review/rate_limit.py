"""Per-fingerprint submission rate limiter."""

from __future__ import annotations

import threading
from datetime import datetime

from comment_responder.review.errors import RateLimitedError
from comment_responder.storage.common import utc_now

PRUNE_WINDOW_MULTIPLIER = 6


class RateLimiter:
    """Remembers the last accepted submission per fingerprint.

    One instance is shared by every request context; the map is guarded by a
    single lock. A window of zero accepts everything.
    """

    def __init__(self, window_seconds: float) -> None:
        self.window_seconds = window_seconds
        self._last_accepted: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def check(self, fingerprint: str, now: datetime | None = None) -> None:
        """Accept and record `fingerprint`, or raise `RateLimitedError`."""

        if self.window_seconds <= 0:
            return
        current = now or utc_now()
        with self._lock:
            last = self._last_accepted.get(fingerprint)
            if last is not None:
                elapsed = (current - last).total_seconds()
                if elapsed < self.window_seconds:
                    retry_after = self.window_seconds - elapsed
                    raise RateLimitedError(
                        f"Too many comments from this client; retry in {retry_after:.0f}s.",
                        retry_after_seconds=retry_after,
                    )
            self._last_accepted[fingerprint] = current
            self._prune(current)

    def tracked(self) -> int:
        with self._lock:
            return len(self._last_accepted)

    def _prune(self, now: datetime) -> None:
        horizon = self.window_seconds * PRUNE_WINDOW_MULTIPLIER
        stale = [
            fingerprint
            for fingerprint, accepted_at in self._last_accepted.items()
            if (now - accepted_at).total_seconds() > horizon
        ]
        for fingerprint in stale:
            del self._last_accepted[fingerprint]
