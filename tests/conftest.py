import pytest

from auth.authorization import AuthorizationService
from auth.client_discovery import ClientDiscoveryService
from auth.profile_discovery import ProfileDiscoveryService
from auth.providers.base import IdentityProviderRegistry
from auth.providers.github import GitHubIdentityProvider
from auth.token_grants import TokenGrantService
from auth.token_store import MemoryAuthStore
from auth.tokens import AccessTokenIssuer
from tests.oauth_helpers import GITHUB, default_web, make_settings


class Clock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def web():
    return default_web()


@pytest.fixture
def store(clock) -> MemoryAuthStore:
    return MemoryAuthStore(clock=clock)


@pytest.fixture
def registry(web) -> IdentityProviderRegistry:
    return IdentityProviderRegistry([GitHubIdentityProvider(GITHUB, client=web.client())])


@pytest.fixture
def authorization(settings, store, web, registry, clock) -> AuthorizationService:
    client = web.client()
    return AuthorizationService(
        settings,
        store,
        ProfileDiscoveryService(client, registry),
        ClientDiscoveryService(client),
        registry,
        clock=clock,
    )


@pytest.fixture
def grants(settings, store, authorization, clock) -> TokenGrantService:
    return TokenGrantService(
        settings, store, authorization, AccessTokenIssuer(settings), clock=clock
    )
