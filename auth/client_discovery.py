from __future__ import annotations

import json
import logging
import urllib.parse

import httpx

from auth import microformats
from auth.models import ClientInfo
from auth.urls import is_loopback_host

logger = logging.getLogger("indieauth.discovery")

HTML_CONTENT_TYPES = {"text/html", "application/xhtml+xml"}


def _media_type(response: httpx.Response) -> str:
    return response.headers.get("content-type", "").split(";", 1)[0].strip().lower()


def _is_json(media_type: str) -> bool:
    return media_type == "application/json" or media_type.endswith("+json")


def _optional_str(payload: dict, key: str) -> str | None:
    value = payload.get(key)
    return value if isinstance(value, str) and value else None


def parse_json_metadata(body: str, client_id: str) -> ClientInfo:
    """Read a client metadata JSON document, rejecting documents that claim another client."""
    default = ClientInfo(client_id=client_id)
    try:
        payload = json.loads(body)
    except ValueError as error:
        logger.warning("Failed to parse client JSON metadata for %s: %s", client_id, error)
        return default
    if not isinstance(payload, dict):
        return default

    for key in ("client_id", "client_uri"):
        if payload.get(key) is not None and _optional_str(payload, key) is None:
            logger.warning("Client metadata for %s has an invalid %s", client_id, key)
            return default

    document_client_id = _optional_str(payload, "client_id")
    if document_client_id is not None and document_client_id != client_id:
        logger.warning(
            "Client metadata client_id mismatch: document has %s, expected %s",
            document_client_id,
            client_id,
        )
        return default

    client_uri = _optional_str(payload, "client_uri")
    if client_uri is not None and not client_id.startswith(client_uri):
        logger.warning(
            "Client metadata client_uri %s is not a prefix of client_id %s", client_uri, client_id
        )
        return default

    redirect_uris = payload.get("redirect_uris") or []
    if not isinstance(redirect_uris, list):
        redirect_uris = []

    return ClientInfo(
        client_id=client_id,
        client_name=_optional_str(payload, "client_name"),
        client_uri=client_uri,
        logo_uri=_optional_str(payload, "logo_uri"),
        redirect_uris=[uri for uri in redirect_uris if isinstance(uri, str)],
        was_fetched=True,
    )


def parse_html_metadata(html: str, client_id: str, base_url: str | None = None) -> ClientInfo:
    parsed = microformats.parse(html, base_url or client_id)
    return ClientInfo(
        client_id=client_id,
        client_name=parsed.app_name,
        client_uri=parsed.app_url,
        logo_uri=parsed.app_logo_url,
        was_fetched=True,
    )


class ClientDiscoveryService:
    """Best-effort fetch of the metadata a client publishes at its client_id URL."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def discover(self, client_id: str) -> ClientInfo:
        default = ClientInfo(client_id=client_id)

        if is_loopback_host(urllib.parse.urlsplit(client_id).hostname):
            logger.debug("Skipping client discovery for loopback client_id %s", client_id)
            return default

        try:
            response = await self.client.get(client_id)
        except httpx.TimeoutException:
            logger.warning("Client discovery timed out for %s", client_id)
            return default
        except (httpx.HTTPError, httpx.InvalidURL) as error:
            logger.warning("Client discovery HTTP error for %s: %s", client_id, error)
            return default

        if not response.is_success:
            logger.warning(
                "Client discovery failed for %s: HTTP %s", client_id, response.status_code
            )
            return default

        media_type = _media_type(response)
        if _is_json(media_type):
            return parse_json_metadata(response.text, client_id)
        if media_type in HTML_CONTENT_TYPES:
            return parse_html_metadata(response.text, client_id, str(response.url))

        logger.warning(
            "Client discovery for %s returned unsupported Content-Type: %s", client_id, media_type
        )
        return default
