import asyncio
from dataclasses import replace

import pytest

from auth.models import (
    AuthorizationCode,
    DiscoveredProvider,
    PendingSession,
    RefreshToken,
    SessionStatus,
)
from auth.token_store import MemoryAuthStore, SqliteAuthStore
from tests.oauth_helpers import CLIENT_ID, CODE_CHALLENGE, GITHUB_PROFILE, PROFILE_URL, REDIRECT_URI

NOW = 1_700_000_000.0


@pytest.fixture(params=["memory", "sqlite"])
def auth_store(request, tmp_path, clock):
    if request.param == "memory":
        return MemoryAuthStore(clock=clock)
    return SqliteAuthStore(tmp_path / "auth.db", clock=clock)


def make_session(**overrides) -> PendingSession:
    values = {
        "session_id": "session-1",
        "client_id": CLIENT_ID,
        "redirect_uri": REDIRECT_URI,
        "state": "client-state",
        "code_challenge": CODE_CHALLENGE,
        "code_challenge_method": "S256",
        "scopes": ["profile", "create"],
        "profile_url": PROFILE_URL,
        "providers": [DiscoveredProvider("github", "GitHub", GITHUB_PROFILE)],
        "created_at": NOW,
        "expires_at": NOW + 1800,
    }
    values.update(overrides)
    return PendingSession(**values)


def make_code(**overrides) -> AuthorizationCode:
    values = {
        "code": "code-1",
        "client_id": CLIENT_ID,
        "redirect_uri": REDIRECT_URI,
        "profile_url": PROFILE_URL,
        "scopes": ["profile"],
        "code_challenge": CODE_CHALLENGE,
        "code_challenge_method": "S256",
        "created_at": NOW,
        "expires_at": NOW + 600,
    }
    values.update(overrides)
    return AuthorizationCode(**values)


def make_refresh(token: str = "refresh-1", **overrides) -> RefreshToken:
    values = {
        "token": token,
        "profile_url": PROFILE_URL,
        "client_id": CLIENT_ID,
        "scopes": ["profile"],
        "created_at": NOW,
        "expires_at": NOW + 86400,
    }
    values.update(overrides)
    return RefreshToken(**values)


async def consented(auth_store) -> PendingSession:
    session = make_session(status=SessionStatus.CONSENT_GIVEN)
    await auth_store.save_session(session)
    return session


@pytest.mark.asyncio
async def test_session_round_trip(auth_store) -> None:
    session = make_session(client_name="Example App")
    await auth_store.save_session(session)

    loaded = await auth_store.get_session("session-1")

    assert loaded == session


@pytest.mark.asyncio
async def test_expired_session_is_invisible(auth_store, clock) -> None:
    await auth_store.save_session(make_session(provider_state="ps-1"))
    clock.now = NOW + 1800

    assert await auth_store.get_session("session-1") is None
    assert await auth_store.find_session_by_provider_state("ps-1") is None


@pytest.mark.asyncio
async def test_find_session_by_provider_state(auth_store) -> None:
    await auth_store.save_session(make_session(provider_state="ps-1"))
    await auth_store.save_session(make_session(session_id="session-2", provider_state="ps-2"))

    found = await auth_store.find_session_by_provider_state("ps-2")

    assert found.session_id == "session-2"
    assert await auth_store.find_session_by_provider_state("unknown") is None


@pytest.mark.asyncio
async def test_update_session_is_compare_and_set(auth_store) -> None:
    session = make_session()
    await auth_store.save_session(session)
    selected = replace(
        session,
        status=SessionStatus.PROVIDER_SELECTED,
        selected_provider_type="github",
        provider_state="ps-1",
    )

    assert await auth_store.update_session(selected, SessionStatus.CREATED)
    assert not await auth_store.update_session(selected, SessionStatus.CREATED)

    loaded = await auth_store.get_session("session-1")
    assert loaded.status is SessionStatus.PROVIDER_SELECTED
    assert loaded.selected_provider_type == "github"
    assert (await auth_store.find_session_by_provider_state("ps-1")).session_id == "session-1"


@pytest.mark.asyncio
async def test_clearing_provider_state_drops_the_lookup(auth_store) -> None:
    session = make_session(status=SessionStatus.PROVIDER_SELECTED, provider_state="ps-1")
    await auth_store.save_session(session)

    authenticated = replace(session, status=SessionStatus.AUTHENTICATED, provider_state=None)
    assert await auth_store.update_session(authenticated, SessionStatus.PROVIDER_SELECTED)

    assert await auth_store.find_session_by_provider_state("ps-1") is None


@pytest.mark.asyncio
async def test_consume_session_requires_consent(auth_store) -> None:
    await auth_store.save_session(make_session(status=SessionStatus.AUTHENTICATED))

    assert not await auth_store.consume_session("session-1", make_code())
    assert await auth_store.get_authorization_code("code-1") is None
    assert await auth_store.get_session("session-1") is not None


@pytest.mark.asyncio
async def test_consume_session_mints_the_code_once(auth_store) -> None:
    await consented(auth_store)

    assert await auth_store.consume_session("session-1", make_code())
    assert not await auth_store.consume_session("session-1", make_code(code="code-2"))

    assert await auth_store.get_session("session-1") is None
    assert (await auth_store.get_authorization_code("code-1")).profile_url == PROFILE_URL
    assert await auth_store.get_authorization_code("code-2") is None


@pytest.mark.asyncio
async def test_code_can_be_marked_used_only_once(auth_store) -> None:
    await consented(auth_store)
    await auth_store.consume_session("session-1", make_code())

    assert await auth_store.mark_code_used("code-1")
    assert not await auth_store.mark_code_used("code-1")
    assert await auth_store.get_authorization_code("code-1") is None


@pytest.mark.asyncio
async def test_expired_code_cannot_be_used(auth_store, clock) -> None:
    await consented(auth_store)
    await auth_store.consume_session("session-1", make_code())
    clock.now = NOW + 600

    assert await auth_store.get_authorization_code("code-1") is None
    assert not await auth_store.mark_code_used("code-1")


@pytest.mark.asyncio
async def test_refresh_token_rotation(auth_store) -> None:
    await auth_store.save_refresh_token(make_refresh())

    assert await auth_store.rotate_refresh_token("refresh-1", make_refresh("refresh-2"))
    assert not await auth_store.rotate_refresh_token("refresh-1", make_refresh("refresh-3"))

    assert await auth_store.get_refresh_token("refresh-1") is None
    assert (await auth_store.get_refresh_token("refresh-2")).client_id == CLIENT_ID
    assert await auth_store.get_refresh_token("refresh-3") is None


@pytest.mark.asyncio
async def test_expired_refresh_token_is_invisible(auth_store, clock) -> None:
    await auth_store.save_refresh_token(make_refresh())
    clock.now = NOW + 86400

    assert await auth_store.get_refresh_token("refresh-1") is None
    assert not await auth_store.rotate_refresh_token("refresh-1", make_refresh("refresh-2"))


@pytest.mark.asyncio
async def test_revoke_refresh_token(auth_store) -> None:
    await auth_store.save_refresh_token(make_refresh())

    assert await auth_store.revoke_refresh_token("refresh-1")
    assert not await auth_store.revoke_refresh_token("refresh-1")
    assert not await auth_store.revoke_refresh_token("unknown")
    assert await auth_store.get_refresh_token("refresh-1") is None


def test_sqlite_store_persists_across_instances(tmp_path, clock) -> None:
    path = tmp_path / "nested" / "auth.db"

    async def scenario() -> RefreshToken | None:
        await SqliteAuthStore(path, clock=clock).save_refresh_token(make_refresh())
        return await SqliteAuthStore(path, clock=clock).get_refresh_token("refresh-1")

    loaded = asyncio.run(scenario())

    assert loaded == make_refresh()
