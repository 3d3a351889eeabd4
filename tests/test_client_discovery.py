import httpx
import pytest

from auth.client_discovery import ClientDiscoveryService
from tests.oauth_helpers import CLIENT_ID, FakeWeb


@pytest.mark.asyncio
async def test_json_metadata_is_read() -> None:
    web = FakeWeb()
    web.add_json(
        CLIENT_ID,
        {
            "client_id": CLIENT_ID,
            "client_name": "Example App",
            "client_uri": CLIENT_ID,
            "logo_uri": "https://app.example.com/logo.png",
            "redirect_uris": ["https://cb.example.net/return"],
        },
    )

    info = await ClientDiscoveryService(web.client()).discover(CLIENT_ID)

    assert info.was_fetched
    assert info.client_name == "Example App"
    assert info.logo_uri == "https://app.example.com/logo.png"
    assert info.redirect_uris == ["https://cb.example.net/return"]


@pytest.mark.asyncio
async def test_json_suffix_content_types_are_accepted() -> None:
    web = FakeWeb()
    web.add_json(
        CLIENT_ID,
        {"client_name": "Example App"},
        content_type="application/client-metadata+json; charset=utf-8",
    )

    info = await ClientDiscoveryService(web.client()).discover(CLIENT_ID)

    assert info.was_fetched
    assert info.client_name == "Example App"


@pytest.mark.asyncio
async def test_json_with_foreign_client_id_is_rejected() -> None:
    web = FakeWeb()
    web.add_json(
        CLIENT_ID,
        {"client_id": "https://evil.example/", "redirect_uris": ["https://evil.example/cb"]},
    )

    info = await ClientDiscoveryService(web.client()).discover(CLIENT_ID)

    assert not info.was_fetched
    assert info.redirect_uris == []


@pytest.mark.asyncio
async def test_json_with_unrelated_client_uri_is_rejected() -> None:
    web = FakeWeb()
    web.add_json(CLIENT_ID, {"client_uri": "https://evil.example/", "client_name": "Evil"})

    info = await ClientDiscoveryService(web.client()).discover(CLIENT_ID)

    assert not info.was_fetched
    assert info.client_name is None


@pytest.mark.asyncio
async def test_malformed_json_falls_back_to_default() -> None:
    web = FakeWeb()
    web.routes[CLIENT_ID] = httpx.Response(
        200, headers={"content-type": "application/json"}, text="{not json"
    )

    info = await ClientDiscoveryService(web.client()).discover(CLIENT_ID)

    assert not info.was_fetched


@pytest.mark.asyncio
async def test_html_h_app_never_yields_redirect_uris() -> None:
    web = FakeWeb()
    web.add_html(
        CLIENT_ID,
        """
        <html><head><link rel="redirect_uri" href="https://cb.example.net/return"></head>
        <body><div class="h-app">
          <img class="u-logo" src="/logo.png">
          <a class="u-url p-name" href="/">Example App</a>
        </div></body></html>
        """,
    )

    info = await ClientDiscoveryService(web.client()).discover(CLIENT_ID)

    assert info.was_fetched
    assert info.client_name == "Example App"
    assert info.logo_uri == "https://app.example.com/logo.png"
    assert info.redirect_uris == []


@pytest.mark.asyncio
async def test_unsupported_content_type_is_not_fetched_info() -> None:
    web = FakeWeb()
    web.routes[CLIENT_ID] = httpx.Response(200, headers={"content-type": "text/plain"}, text="hi")

    info = await ClientDiscoveryService(web.client()).discover(CLIENT_ID)

    assert not info.was_fetched


@pytest.mark.asyncio
async def test_http_errors_and_timeouts_are_absorbed() -> None:
    web = FakeWeb()
    web.add_html("https://missing.example/", "nope", status_code=404)
    web.add_error("https://slow.example/", httpx.ReadTimeout("timed out"))
    service = ClientDiscoveryService(web.client())

    assert not (await service.discover("https://missing.example/")).was_fetched
    assert not (await service.discover("https://slow.example/")).was_fetched


@pytest.mark.asyncio
async def test_loopback_clients_are_never_fetched() -> None:
    web = FakeWeb()
    service = ClientDiscoveryService(web.client())

    for client_id in ("http://localhost:3000/", "http://127.0.0.1/", "http://[::1]/"):
        info = await service.discover(client_id)
        assert info.client_id == client_id
        assert not info.was_fetched

    assert web.requests == []


@pytest.mark.asyncio
async def test_unencodable_host_falls_back_to_default() -> None:
    web = FakeWeb()

    info = await ClientDiscoveryService(web.client()).discover("https://☃-.example/app")

    assert info.client_id == "https://☃-.example/app"
    assert not info.was_fetched
    assert web.requests == []


@pytest.mark.parametrize(
    "payload",
    [
        {"client_id": 42, "redirect_uris": ["https://evil.example/cb"]},
        {"client_id": "", "redirect_uris": ["https://evil.example/cb"]},
        {"client_uri": ["https://evil.example/"], "client_name": "Evil"},
        {"client_uri": "", "client_name": "Evil"},
    ],
)
@pytest.mark.asyncio
async def test_json_with_malformed_identity_fields_is_rejected(payload) -> None:
    web = FakeWeb()
    web.add_json(CLIENT_ID, payload)

    info = await ClientDiscoveryService(web.client()).discover(CLIENT_ID)

    assert not info.was_fetched
    assert info.redirect_uris == []
    assert info.client_name is None


@pytest.mark.asyncio
async def test_html_urls_resolve_against_the_final_location() -> None:
    web = FakeWeb()
    web.add_html(
        CLIENT_ID, "moved", status_code=301, headers={"location": "https://www.app.example.com/"}
    )
    web.add_html(
        "https://www.app.example.com/",
        '<div class="h-app"><img class="u-logo" src="/logo.png"><span class="p-name">App</span></div>',
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(web.handler), follow_redirects=True)

    info = await ClientDiscoveryService(client).discover(CLIENT_ID)

    assert info.was_fetched
    assert info.logo_uri == "https://www.app.example.com/logo.png"
