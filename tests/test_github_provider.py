import urllib.parse

import pytest

from auth.errors import ProviderError
from auth.providers.base import IdentityProviderRegistry
from auth.providers.github import GitHubIdentityProvider, username_from_url
from tests.oauth_helpers import GITHUB, GITHUB_PROFILE, FakeWeb, default_web


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://github.com/janedoe", "janedoe"),
        ("https://github.com/JaneDoe/", "JaneDoe"),
        ("http://www.github.com/jane-doe", "jane-doe"),
        ("https://github.com/settings", None),
        ("https://github.com/Explore", None),
        ("https://github.com/janedoe/repo", None),
        ("https://github.com/-jane", None),
        ("https://gitlab.com/janedoe", None),
        ("", None),
    ],
)
def test_username_from_url(url: str, expected) -> None:
    assert username_from_url(url) == expected


def test_authorization_url_carries_state_and_callback() -> None:
    provider = GitHubIdentityProvider(GITHUB)

    url = provider.get_authorization_url("abc123", "https://auth.example.org/callback/github")

    parsed = urllib.parse.urlparse(url)
    params = dict(urllib.parse.parse_qsl(parsed.query))
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == GITHUB.authorize_url
    assert params == {
        "client_id": "gh-client",
        "redirect_uri": "https://auth.example.org/callback/github",
        "scope": "read:user user:email",
        "state": "abc123",
        "allow_signup": "false",
    }


def test_registry_lookup_by_url_and_type() -> None:
    provider = GitHubIdentityProvider(GITHUB)
    registry = IdentityProviderRegistry([provider])

    assert registry.for_url(GITHUB_PROFILE) is provider
    assert registry.for_url("https://mastodon.example/@jane") is None
    assert registry.by_type("GitHub") is provider
    assert registry.by_type("gitlab") is None
    assert registry.by_type(None) is None


@pytest.mark.asyncio
async def test_exchange_code_returns_user_identity() -> None:
    web = default_web()
    provider = GitHubIdentityProvider(GITHUB, client=web.client())

    result = await provider.exchange_code("gh-code", "https://auth.example.org/callback/github")

    assert result.access_token == "gh-access-token"
    assert result.username == "JaneDoe"
    assert result.user_id == "42"

    token_request = web.requests[0]
    assert str(token_request.url) == GITHUB.token_url
    assert token_request.headers["accept"] == "application/json"
    form = dict(urllib.parse.parse_qsl(token_request.content.decode()))
    assert form["code"] == "gh-code"
    assert form["client_secret"] == "gh-secret"
    assert web.requests[1].headers["authorization"] == "Bearer gh-access-token"


@pytest.mark.asyncio
async def test_exchange_code_surfaces_github_error_payload() -> None:
    web = FakeWeb()
    web.add_json(
        GITHUB.token_url,
        {"error": "bad_verification_code", "error_description": "The code is incorrect."},
    )
    provider = GitHubIdentityProvider(GITHUB, client=web.client())

    with pytest.raises(ProviderError) as excinfo:
        await provider.exchange_code("stale", "https://auth.example.org/callback/github")

    assert excinfo.value.error == "token_exchange_failed"
    assert excinfo.value.description == "The code is incorrect."
    assert excinfo.value.status_code == 502


@pytest.mark.asyncio
async def test_exchange_code_wraps_http_failures() -> None:
    web = FakeWeb()
    web.add_json(GITHUB.token_url, {"message": "boom"}, status_code=500)
    provider = GitHubIdentityProvider(GITHUB, client=web.client())

    with pytest.raises(ProviderError) as excinfo:
        await provider.exchange_code("gh-code", "https://auth.example.org/callback/github")

    assert excinfo.value.error == "token_exchange_failed"


@pytest.mark.asyncio
async def test_verify_profile_matches_login_case_insensitively() -> None:
    web = default_web(login="JaneDoe")
    provider = GitHubIdentityProvider(GITHUB, client=web.client())

    profile = await provider.verify_profile("gh-access-token", "https://github.com/janedoe")

    assert profile.username == "JaneDoe"
    assert profile.name == "JaneDoe"


@pytest.mark.asyncio
async def test_verify_profile_rejects_a_different_account() -> None:
    web = default_web(login="mallory")
    provider = GitHubIdentityProvider(GITHUB, client=web.client())

    with pytest.raises(ProviderError) as excinfo:
        await provider.verify_profile("gh-access-token", GITHUB_PROFILE)

    assert excinfo.value.error == "verification_failed"
    assert excinfo.value.status_code == 403


@pytest.mark.asyncio
async def test_verify_profile_reports_unreachable_api() -> None:
    web = FakeWeb()
    provider = GitHubIdentityProvider(GITHUB, client=web.client())

    with pytest.raises(ProviderError) as excinfo:
        await provider.verify_profile("gh-access-token", GITHUB_PROFILE)

    assert excinfo.value.error == "verification_failed"
    assert excinfo.value.status_code == 502


@pytest.mark.asyncio
async def test_provider_without_shared_client_opens_its_own(httpx_mock) -> None:
    httpx_mock.add_response(
        method="POST", url=GITHUB.token_url, json={"access_token": "own-token"}
    )
    httpx_mock.add_response(
        method="GET", url=GITHUB.user_url, json={"login": "janedoe", "id": 1}
    )
    provider = GitHubIdentityProvider(GITHUB)

    result = await provider.exchange_code("gh-code", "https://auth.example.org/callback/github")

    assert result.access_token == "own-token"
    assert result.username == "janedoe"
    assert httpx_mock.get_requests()[1].headers["authorization"] == "Bearer own-token"
