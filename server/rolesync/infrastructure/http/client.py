"""Rate-limited, retrying HTTP transport for the platform API.

Each route class has its own token bucket. Requests wait for a token
instead of failing; 429s are retried once after the server's retry hint;
5xx responses and httpx transport errors are retried with exponential backoff
and jitter.
Every wait checks the caller's deadline first.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from rolesync.domain.shared.error import TransportError, TransportErrorKind
from rolesync.domain.shared.model.deadline import Deadline

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class TokenBucket:
    """Token bucket for one route class.

    `reserve` takes a token immediately, going into debt when the bucket is
    empty, and returns how long the caller must wait before using it. It
    never awaits, so consumption is atomic on the event loop: concurrent
    callers each get their own slot.
    """

    def __init__(self, capacity: int, refill_per_second: float, clock: Clock = time.monotonic):
        if capacity < 1 or refill_per_second <= 0:
            raise ValueError("Token bucket needs capacity >= 1 and a positive refill rate")
        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self._clock = clock
        self._tokens = float(capacity)
        self._updated = clock()
        self._blocked_until = 0.0

    @property
    def tokens(self) -> float:
        self._refill(self._clock())
        return self._tokens

    def reserve(self) -> float:
        now = self._clock()
        self._refill(now)
        self._tokens -= 1
        debt_wait = -self._tokens / self.refill_per_second if self._tokens < 0 else 0.0
        return max(debt_wait, self._blocked_until - now, 0.0)

    def release(self) -> None:
        """Give back a reserved token that will not be used."""
        self._refill(self._clock())
        self._tokens = min(float(self.capacity), self._tokens + 1)

    def defer(self, seconds: float) -> None:
        """Hold every caller off for `seconds` (server says the budget is spent)."""
        self._blocked_until = max(self._blocked_until, self._clock() + seconds)

    async def acquire(self, deadline: Deadline | None = None, sleep: Sleep = asyncio.sleep) -> None:
        wait = self.reserve()
        if wait <= 0:
            return
        if deadline is not None and not deadline.allows(wait, self._clock()):
            self.release()
            raise TransportError(
                TransportErrorKind.DEADLINE_EXCEEDED,
                f"Deadline elapses before a rate-limit token is available ({wait:.2f}s)",
            )
        await sleep(wait)

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.refill_per_second)
        self._updated = now


@dataclass(frozen=True)
class ApiRequest:
    """One platform API call. `route` names the rate-limit bucket it draws from."""

    method: str
    path: str
    route: str
    headers: Mapping[str, str] = field(default_factory=dict)
    json: Any = None
    data: Mapping[str, str] | None = None
    params: Mapping[str, str] | None = None

    def describe(self) -> str:
        return f"{self.method} {self.path}"


class RateLimitedClient:
    """Wraps an httpx.AsyncClient with per-route buckets and a uniform retry policy.

    Returns the response for 2xx/3xx. Everything else surfaces as
    TransportError:
    - 404: NOT_FOUND, never retried
    - 429: retried once after the retry hint (capped), then RATE_LIMITED
    - 5xx / httpx.TransportError: retried up to `max_attempts`, then UNAVAILABLE
    - other 4xx: REJECTED, never retried
    - deadline elapsed before a wait or attempt: DEADLINE_EXCEEDED
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        buckets: Mapping[str, TokenBucket] | None = None,
        default_bucket: Callable[[], TokenBucket] | None = None,
        *,
        max_attempts: int = 3,
        base_backoff: float = 0.5,
        max_backoff: float = 8.0,
        max_retry_after: float = 60.0,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self._http = http
        self._buckets: dict[str, TokenBucket] = dict(buckets or {})
        self._default_bucket = default_bucket or (lambda: TokenBucket(5, 1.0, clock))
        self._max_attempts = max(1, max_attempts)
        self._base_backoff = base_backoff
        self._max_backoff = max_backoff
        self._max_retry_after = max_retry_after
        self._sleep = sleep
        self._clock = clock

    def bucket(self, route: str) -> TokenBucket:
        bucket = self._buckets.get(route)
        if bucket is None:
            bucket = self._buckets[route] = self._default_bucket()
        return bucket

    async def invoke(self, request: ApiRequest, *, deadline: Deadline | None = None) -> httpx.Response:
        bucket = self.bucket(request.route)
        failures = 0
        rate_limited = False

        while True:
            self._check_deadline(deadline, request)
            await bucket.acquire(deadline, sleep=self._sleep)
            self._check_deadline(deadline, request)

            try:
                response = await self._send(request, deadline)
            except httpx.TransportError as e:
                failures += 1
                if failures >= self._max_attempts:
                    raise TransportError(
                        TransportErrorKind.UNAVAILABLE,
                        f"{request.describe()} failed after {failures} attempt(s): {e}",
                    ) from e
                delay = self._backoff(failures)
                logger.warning(
                    "Retrying %s after network error (attempt %d, delay %.2fs): %s",
                    request.describe(),
                    failures,
                    delay,
                    e,
                )
                await self._pause(delay, deadline, request)
                continue

            self._observe_limits(bucket, response)
            status = response.status_code

            if status == 429:
                retry_after = self._retry_after(response)
                bucket.defer(retry_after)
                if rate_limited:
                    raise self._error(TransportErrorKind.RATE_LIMITED, request, response, retry_after)
                rate_limited = True
                logger.warning(
                    "Rate limited on %s, retrying in %.2fs", request.describe(), retry_after
                )
                await self._pause(retry_after, deadline, request)
                continue

            if status >= 500:
                failures += 1
                if failures >= self._max_attempts:
                    raise self._error(TransportErrorKind.UNAVAILABLE, request, response)
                delay = self._backoff(failures)
                logger.warning(
                    "Retrying %s after HTTP %d (attempt %d, delay %.2fs)",
                    request.describe(),
                    status,
                    failures,
                    delay,
                )
                await self._pause(delay, deadline, request)
                continue

            if status == 404:
                raise self._error(TransportErrorKind.NOT_FOUND, request, response)
            if status >= 400:
                raise self._error(TransportErrorKind.REJECTED, request, response)
            return response

    async def _send(self, request: ApiRequest, deadline: Deadline | None) -> httpx.Response:
        kwargs: dict[str, Any] = {}
        if deadline is not None:
            kwargs["timeout"] = deadline.remaining(self._clock())
        return await self._http.request(
            request.method,
            request.path,
            headers=dict(request.headers),
            json=request.json,
            data=dict(request.data) if request.data is not None else None,
            params=dict(request.params) if request.params is not None else None,
            **kwargs,
        )

    def _backoff(self, attempt: int) -> float:
        delay = min(self._max_backoff, self._base_backoff * (2 ** (attempt - 1)))
        return delay + random.uniform(0, delay / 2)

    def _retry_after(self, response: httpx.Response) -> float:
        """Seconds to wait from the 429 body or Retry-After header, capped."""
        hint: float | None = None
        body = _json_body(response)
        if isinstance(body.get("retry_after"), int | float):
            hint = float(body["retry_after"])
        else:
            header = response.headers.get("Retry-After")
            if header:
                try:
                    hint = float(header)
                except ValueError:
                    hint = None
        if hint is None or hint < 0:
            hint = self._base_backoff
        return min(hint, self._max_retry_after)

    def _observe_limits(self, bucket: TokenBucket, response: httpx.Response) -> None:
        """Honour the server's view of the budget when it says it is spent."""
        remaining = response.headers.get("X-RateLimit-Remaining")
        reset_after = response.headers.get("X-RateLimit-Reset-After")
        if remaining != "0" or not reset_after:
            return
        try:
            bucket.defer(min(float(reset_after), self._max_retry_after))
        except ValueError:
            pass

    async def _pause(self, delay: float, deadline: Deadline | None, request: ApiRequest) -> None:
        if deadline is not None and not deadline.allows(delay, self._clock()):
            raise TransportError(
                TransportErrorKind.DEADLINE_EXCEEDED,
                f"Deadline elapses before {request.describe()} can be retried",
            )
        await self._sleep(delay)

    def _check_deadline(self, deadline: Deadline | None, request: ApiRequest) -> None:
        if deadline is not None and deadline.expired(self._clock()):
            raise TransportError(
                TransportErrorKind.DEADLINE_EXCEEDED,
                f"Deadline elapsed before {request.describe()}",
            )

    @staticmethod
    def _error(
        kind: TransportErrorKind,
        request: ApiRequest,
        response: httpx.Response,
        retry_after: float | None = None,
    ) -> TransportError:
        body = _json_body(response)
        platform_code = body.get("code") if isinstance(body.get("code"), int) else None
        detail = body.get("message") or response.reason_phrase
        return TransportError(
            kind,
            f"{request.describe()} returned {response.status_code}: {detail}",
            status_code=response.status_code,
            platform_code=platform_code,
            retry_after=retry_after,
            payload=body,
        )


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
