"""Caller-supplied deadline propagated through every network suspension point."""

import time
from dataclasses import dataclass


@dataclass(frozen=True)
class Deadline:
    """An absolute expiry on the monotonic clock.

    Pass `now` explicitly when a component owns its own clock (tests, the
    rate-limited client); otherwise `time.monotonic()` is used.
    """

    expires_at: float

    @classmethod
    def after(cls, seconds: float, now: float | None = None) -> "Deadline":
        start = time.monotonic() if now is None else now
        return cls(expires_at=start + seconds)

    def remaining(self, now: float | None = None) -> float:
        current = time.monotonic() if now is None else now
        return max(0.0, self.expires_at - current)

    def expired(self, now: float | None = None) -> bool:
        return self.remaining(now) <= 0.0

    def allows(self, delay: float, now: float | None = None) -> bool:
        """Whether sleeping `delay` seconds still leaves time before expiry."""
        return delay < self.remaining(now)
