"""DI provider for Discord adapters."""

from dishka import provide

from rolesync.config import Config
from rolesync.domain.entitlement.port.community_platform import CommunityPlatform
from rolesync.domain.link.port.oauth_provider import OAuthProvider
from rolesync.infrastructure.discord.guild import DiscordGuildGateway
from rolesync.infrastructure.discord.oauth import DiscordOAuthProvider
from rolesync.infrastructure.http.client import RateLimitedClient
from rolesync.util.di.base import Provider
from rolesync.util.di.scope import Scope


class DiscordProvider(Provider):
    """DI provider for Discord OAuth and guild adapters."""

    @provide(scope=Scope.APP)
    def get_oauth_provider(self, config: Config, client: RateLimitedClient) -> OAuthProvider:
        return DiscordOAuthProvider(config=config.discord, client=client)

    @provide(scope=Scope.APP)
    def get_community_platform(
        self, config: Config, client: RateLimitedClient
    ) -> CommunityPlatform:
        return DiscordGuildGateway(config=config.discord, client=client)
