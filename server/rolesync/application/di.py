from dishka import AsyncContainer, from_context, make_async_container

from rolesync.config import Config
from rolesync.domain.entitlement.util.di import EntitlementProvider
from rolesync.domain.link.util.di import LinkProvider
from rolesync.infrastructure.discord.di import DiscordProvider
from rolesync.infrastructure.http.di import HttpProvider
from rolesync.infrastructure.persistence.di import PersistenceProvider
from rolesync.util.di.base import Provider
from rolesync.util.di.scope import Scope


class ConfigProvider(Provider):
    config = from_context(provides=Config, scope=Scope.APP)


def create_container(config: Config | None = None) -> AsyncContainer:
    # Pydantic Settings populates from env vars at runtime
    config = config or Config()  # type: ignore[call-arg]

    return make_async_container(
        ConfigProvider(),
        PersistenceProvider(),
        HttpProvider(),
        DiscordProvider(),
        LinkProvider(),
        EntitlementProvider(),
        context={Config: config},
        scopes=Scope,  # type: ignore[arg-type]  # Custom scope class
    )
