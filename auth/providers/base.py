from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class ProviderAuthResult:
    access_token: str
    user_id: str | None = None
    username: str | None = None
    profile_url: str | None = None
    email: str | None = None


@dataclass
class ProviderProfile:
    username: str
    profile_url: str | None = None
    name: str | None = None
    email: str | None = None


class IdentityProvider(ABC):
    provider_type: str
    display_name: str
    icon_url: str | None = None

    @abstractmethod
    def can_handle(self, url: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def get_authorization_url(self, state: str, redirect_uri: str) -> str:
        raise NotImplementedError

    @abstractmethod
    async def exchange_code(self, code: str, redirect_uri: str) -> ProviderAuthResult:
        """Trade an external authorization code for a provider access token.

        Raises ``ProviderError("token_exchange_failed", ...)`` on failure.
        """
        raise NotImplementedError

    @abstractmethod
    async def verify_profile(self, access_token: str, expected_profile_url: str) -> ProviderProfile:
        """Confirm the token's account is the one behind ``expected_profile_url``.

        Raises ``ProviderError("verification_failed", ...)`` on mismatch or failure.
        """
        raise NotImplementedError


class IdentityProviderRegistry:
    def __init__(self, providers: list[IdentityProvider] | None = None) -> None:
        self._providers: list[IdentityProvider] = list(providers or [])

    def register(self, provider: IdentityProvider) -> None:
        self._providers.append(provider)

    def for_url(self, url: str) -> IdentityProvider | None:
        for provider in self._providers:
            if provider.can_handle(url):
                return provider
        return None

    def by_type(self, provider_type: str | None) -> IdentityProvider | None:
        if not provider_type:
            return None
        wanted = provider_type.lower()
        for provider in self._providers:
            if provider.provider_type.lower() == wanted:
                return provider
        return None

    def all(self) -> list[IdentityProvider]:
        return list(self._providers)
