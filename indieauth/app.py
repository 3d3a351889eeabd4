from __future__ import annotations

import contextlib
import os

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from auth.authorization import AuthorizationService
from auth.client_discovery import ClientDiscoveryService
from auth.oauth_server import OAuthServer
from auth.profile_discovery import ProfileDiscoveryService
from auth.providers.base import IdentityProviderRegistry
from auth.providers.github import GitHubIdentityProvider
from auth.settings import Settings
from auth.token_grants import TokenGrantService
from auth.token_store import AuthStore, MemoryAuthStore, SqliteAuthStore
from auth.tokens import AccessTokenIssuer

from .constants import APP_VERSION, LOGGER
from .env import load_env, load_settings, setup_logging, validate_env
from .http import build_discovery_client, build_provider_client


def mount_health_route(app: Starlette) -> None:
    async def health_route(request: Request) -> Response:
        del request
        return JSONResponse({"status": "ok", "version": APP_VERSION})

    app.add_route("/health", health_route, methods=["GET"])


def build_store(path: str) -> AuthStore:
    if path == ":memory:":
        return MemoryAuthStore()
    return SqliteAuthStore(path)


def build_registry(settings: Settings, provider_client: httpx.AsyncClient) -> IdentityProviderRegistry:
    registry = IdentityProviderRegistry()
    if settings.github is not None:
        registry.register(GitHubIdentityProvider(settings.github, client=provider_client))
    return registry


def create_app(
    settings: Settings | None = None,
    *,
    store: AuthStore | None = None,
    registry: IdentityProviderRegistry | None = None,
    discovery_client: httpx.AsyncClient | None = None,
    provider_client: httpx.AsyncClient | None = None,
    debug_enabled: bool = False,
) -> Starlette:
    if settings is None:
        load_env()
        debug_enabled = setup_logging()
        validate_env()
        settings = load_settings()

    if store is None:
        store = build_store(os.getenv("INDIEAUTH_DB_PATH", "indieauth.db"))

    owned_clients: list[httpx.AsyncClient] = []
    if discovery_client is None:
        discovery_client = build_discovery_client(
            timeout=settings.discovery_timeout_seconds, debug_enabled=debug_enabled
        )
        owned_clients.append(discovery_client)
    if registry is None:
        if provider_client is None:
            provider_client = build_provider_client(
                timeout=settings.discovery_timeout_seconds, debug_enabled=debug_enabled
            )
            owned_clients.append(provider_client)
        registry = build_registry(settings, provider_client)

    authorization = AuthorizationService(
        settings,
        store,
        ProfileDiscoveryService(discovery_client, registry),
        ClientDiscoveryService(discovery_client),
        registry,
    )
    grants = TokenGrantService(settings, store, authorization, AccessTokenIssuer(settings))
    oauth_server = OAuthServer(settings=settings, authorization=authorization, grants=grants)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        LOGGER.info(
            "IndieAuth server %s ready at %s with providers: %s",
            APP_VERSION,
            settings.issuer,
            ", ".join(provider.provider_type for provider in registry.all()) or "none",
        )
        yield
        for client in owned_clients:
            await client.aclose()

    app = Starlette(lifespan=lifespan)
    oauth_server.mount_routes(app)
    mount_health_route(app)
    app.state.oauth_server = oauth_server
    return app
