"""DI provider for the platform HTTP transport."""

from typing import AsyncIterable, NewType

import httpx
from dishka import provide

from rolesync.config import Config
from rolesync.infrastructure.http.client import RateLimitedClient, TokenBucket
from rolesync.util.di.base import Provider
from rolesync.util.di.scope import Scope

PlatformHttpClient = NewType("PlatformHttpClient", httpx.AsyncClient)

_HTTP_TIMEOUT = httpx.Timeout(
    connect=5.0,
    read=10.0,
    write=5.0,
    pool=5.0,
)


class HttpProvider(Provider):
    """DI provider for the shared platform transport (one per process)."""

    @provide(scope=Scope.APP)
    async def get_platform_http_client(self, config: Config) -> AsyncIterable[PlatformHttpClient]:
        """Shared HTTP client for the platform API (connection pooling)."""
        client = httpx.AsyncClient(
            base_url=config.discord.api_base_url,
            timeout=_HTTP_TIMEOUT,
            headers={"User-Agent": f"{config.server.name} ({config.server.version})"},
        )
        yield PlatformHttpClient(client)
        await client.aclose()

    @provide(scope=Scope.APP)
    def get_rate_limited_client(
        self, config: Config, http_client: PlatformHttpClient
    ) -> RateLimitedClient:
        limits = config.rate_limit
        buckets = {
            route: TokenBucket(bucket.capacity, bucket.refill_per_second)
            for route, bucket in limits.buckets.items()
        }
        return RateLimitedClient(
            http_client,
            buckets,
            lambda: TokenBucket(
                limits.default_bucket.capacity, limits.default_bucket.refill_per_second
            ),
            max_attempts=limits.max_attempts,
            base_backoff=limits.base_backoff,
            max_backoff=limits.max_backoff,
            max_retry_after=limits.max_retry_after,
        )
