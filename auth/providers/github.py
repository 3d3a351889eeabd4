from __future__ import annotations

import logging
import re
import urllib.parse

import httpx

from auth.errors import ProviderError
from auth.providers.base import IdentityProvider, ProviderAuthResult, ProviderProfile
from auth.settings import GitHubSettings

logger = logging.getLogger("indieauth.providers.github")

GITHUB_PROFILE_PATTERN = re.compile(
    r"^https?://(?:www\.)?github\.com/([a-z0-9](?:[a-z0-9]|-(?=[a-z0-9])){0,38})/?$",
    re.IGNORECASE,
)

RESERVED_PATHS = {
    "about",
    "actions",
    "apps",
    "codespaces",
    "collections",
    "contact",
    "discussions",
    "enterprise",
    "events",
    "explore",
    "features",
    "issues",
    "join",
    "login",
    "logout",
    "marketplace",
    "notifications",
    "organizations",
    "orgs",
    "packages",
    "pricing",
    "projects",
    "pulls",
    "security",
    "settings",
    "sponsors",
    "team",
    "trending",
}


def username_from_url(url: str) -> str | None:
    match = GITHUB_PROFILE_PATTERN.match(url or "")
    if match is None:
        return None
    username = match.group(1)
    if username.lower() in RESERVED_PATHS:
        return None
    return username


class GitHubIdentityProvider(IdentityProvider):
    provider_type = "github"
    display_name = "GitHub"
    icon_url = "https://github.githubassets.com/favicons/favicon.svg"
    scopes = ("read:user", "user:email")

    def __init__(
        self,
        settings: GitHubSettings,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self._client = client

    def can_handle(self, url: str) -> bool:
        return username_from_url(url) is not None

    def get_authorization_url(self, state: str, redirect_uri: str) -> str:
        query = {
            "client_id": self.settings.client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
            "allow_signup": "false",
        }
        return f"{self.settings.authorize_url}?{urllib.parse.urlencode(query)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> ProviderAuthResult:
        own_client = self._client is None
        http_client = self._client or httpx.AsyncClient(timeout=10.0)

        try:
            response = await http_client.post(
                self.settings.token_url,
                data={
                    "client_id": self.settings.client_id,
                    "client_secret": self.settings.client_secret,
                    "code": code,
                    "redirect_uri": redirect_uri,
                },
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()

            access_token = payload.get("access_token")
            if not isinstance(access_token, str) or not access_token:
                error = payload.get("error_description") or payload.get("error")
                raise ProviderError("token_exchange_failed", error or "No access token received.")

            user = await self._fetch_user(http_client, access_token)
        except httpx.HTTPStatusError as error:
            logger.error(
                "GitHub token exchange failed with status %s: %s",
                error.response.status_code,
                error.response.text,
            )
            raise ProviderError(
                "token_exchange_failed", "Failed to exchange code for token."
            ) from error
        except (httpx.HTTPError, ValueError) as error:
            logger.error("GitHub token exchange error: %s", error)
            raise ProviderError(
                "token_exchange_failed", "An error occurred during authentication."
            ) from error
        finally:
            if own_client:
                await http_client.aclose()

        return ProviderAuthResult(
            access_token=access_token,
            user_id=str(user["id"]) if user.get("id") is not None else None,
            username=user.get("login"),
            profile_url=user.get("html_url"),
            email=user.get("email"),
        )

    async def verify_profile(self, access_token: str, expected_profile_url: str) -> ProviderProfile:
        expected_username = username_from_url(expected_profile_url)
        if expected_username is None:
            raise ProviderError("verification_failed", "Invalid GitHub profile URL.", 403)

        own_client = self._client is None
        http_client = self._client or httpx.AsyncClient(timeout=10.0)
        try:
            user = await self._fetch_user(http_client, access_token)
        except (httpx.HTTPError, ValueError) as error:
            logger.error("Failed to get GitHub user info: %s", error)
            raise ProviderError(
                "verification_failed", "Failed to retrieve user info from GitHub."
            ) from error
        finally:
            if own_client:
                await http_client.aclose()

        login = user.get("login")
        if not isinstance(login, str) or login.lower() != expected_username.lower():
            logger.warning(
                "GitHub login %s does not match expected profile %s", login, expected_profile_url
            )
            raise ProviderError(
                "verification_failed",
                "GitHub username does not match the expected profile.",
                403,
            )

        return ProviderProfile(
            username=login,
            profile_url=user.get("html_url"),
            name=user.get("name") or login,
            email=user.get("email"),
        )

    async def _fetch_user(self, http_client: httpx.AsyncClient, access_token: str) -> dict:
        response = await http_client.get(
            self.settings.user_url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/vnd.github+json",
            },
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("GitHub user response must be a JSON object.")
        return payload
