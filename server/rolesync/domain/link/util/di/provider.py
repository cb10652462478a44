"""DI provider for the link domain."""

import hmac

import jwt
from dishka import from_context, provide
from fastapi import HTTPException
from starlette.requests import Request

from rolesync.config import Config
from rolesync.domain.entitlement.service.role_mapper import RoleMapper
from rolesync.domain.link.command.link import CompleteLinkHandler, StartLinkHandler
from rolesync.domain.link.command.unlink import UnlinkHandler
from rolesync.domain.link.model.caller import CurrentUser, ServiceCaller
from rolesync.domain.link.port.oauth_provider import OAuthProvider
from rolesync.domain.link.port.repository import LinkedAccountRepository
from rolesync.domain.link.query.get_link_status import GetLinkStatusHandler
from rolesync.domain.link.service.access_token import AccessTokenVerifier
from rolesync.domain.link.service.identity_linker import IdentityLinker
from rolesync.domain.link.service.link_state import LinkStateService
from rolesync.util.di.base import Provider
from rolesync.util.di.scope import Scope

SERVICE_KEY_HEADER = "X-Service-Key"


class LinkProvider(Provider):
    """DI provider for link domain services, handlers and callers."""

    request = from_context(provides=Request, scope=Scope.UOW)

    # Command Handlers
    start_link_handler = provide(StartLinkHandler, scope=Scope.UOW)
    complete_link_handler = provide(CompleteLinkHandler, scope=Scope.UOW)
    unlink_handler = provide(UnlinkHandler, scope=Scope.UOW)

    @provide(scope=Scope.UOW)
    def get_link_status_handler(
        self,
        config: Config,
        repo: LinkedAccountRepository,
        role_mapper: RoleMapper,
    ) -> GetLinkStatusHandler:
        return GetLinkStatusHandler(
            linked_account_repo=repo,
            role_mapper=role_mapper,
            invite_link=config.discord.fallback_invite,
        )

    # Services
    @provide(scope=Scope.APP)
    def get_link_state_service(self, config: Config) -> LinkStateService:
        return LinkStateService(_config=config.auth.jwt)

    @provide(scope=Scope.APP)
    def get_access_token_verifier(self, config: Config) -> AccessTokenVerifier:
        return AccessTokenVerifier(_config=config.auth.jwt)

    @provide(scope=Scope.UOW)
    def get_identity_linker(
        self,
        config: Config,
        provider: OAuthProvider,
        repo: LinkedAccountRepository,
    ) -> IdentityLinker:
        return IdentityLinker(
            _provider=provider,
            _repo=repo,
            _refresh_skew=config.rate_limit.token_refresh_skew,
        )

    @provide(scope=Scope.UOW)
    def get_current_user(
        self,
        request: Request,
        verifier: AccessTokenVerifier,
    ) -> CurrentUser:
        """Extract and validate CurrentUser from JWT in Authorization header.

        Raises:
            HTTPException: If token is missing, expired, or invalid
        """
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            raise HTTPException(
                status_code=401,
                detail={"code": "missing_token", "message": "Authorization header required"},
                headers={"WWW-Authenticate": "Bearer"},
            )

        token = auth_header[7:]  # Remove "Bearer " prefix

        try:
            return CurrentUser(user_id=verifier.verify(token))
        except jwt.ExpiredSignatureError as e:
            raise HTTPException(
                status_code=401,
                detail={"code": "token_expired", "message": "Token has expired"},
                headers={"WWW-Authenticate": "Bearer"},
            ) from e
        except jwt.InvalidTokenError as e:
            raise HTTPException(
                status_code=401,
                detail={"code": "invalid_token", "message": "Invalid token"},
                headers={"WWW-Authenticate": "Bearer"},
            ) from e

    @provide(scope=Scope.UOW)
    def get_service_caller(self, request: Request, config: Config) -> ServiceCaller:
        """Authenticate a backend collaborator by shared service key.

        Raises:
            HTTPException: If no key is configured, or the header is missing or wrong
        """
        expected = config.auth.service_key
        provided = request.headers.get(SERVICE_KEY_HEADER, "")
        if not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
            raise HTTPException(
                status_code=401,
                detail={"code": "invalid_service_key", "message": "Valid service key required"},
            )
        return ServiceCaller()
