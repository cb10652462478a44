"""Fixtures for the Discord adapters: a RateLimitedClient over a scripted transport."""

import json

import httpx
import pytest

from rolesync.config import DiscordConfig
from rolesync.infrastructure.http.client import RateLimitedClient, TokenBucket


class ScriptedDiscord:
    """Records requests and answers them from a route table of (method, path) -> response."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], httpx.Response] = {}
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"message": "404: Not Found", "code": 0})
        return response

    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


async def _no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def discord_config() -> DiscordConfig:
    return DiscordConfig(
        client_id="1234",
        client_secret="client-secret",
        bot_token="bot-token",
        guild_id="555",
        api_base_url="https://discord.test/api/v10",
        authorize_url="https://discord.test/oauth2/authorize",
    )


@pytest.fixture
def scripted() -> ScriptedDiscord:
    return ScriptedDiscord()


@pytest.fixture
def client(scripted, discord_config) -> RateLimitedClient:
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(scripted.handler), base_url=discord_config.api_base_url
    )
    return RateLimitedClient(
        http, default_bucket=lambda: TokenBucket(100, 100.0), sleep=_no_sleep
    )
