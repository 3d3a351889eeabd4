from __future__ import annotations

import logging

import httpx

from auth.egress import SafeEgressTransport

from .constants import LOGGER, MAX_DISCOVERY_REDIRECTS, USER_AGENT


def build_event_hooks(debug_enabled: bool, *, label: str, logger: logging.Logger = LOGGER) -> dict:
    async def log_request(request: httpx.Request) -> None:
        if not debug_enabled:
            return
        logger.info("%s request %s %s", label, request.method, request.url)

    async def log_response(response: httpx.Response) -> None:
        if not debug_enabled:
            return
        logger.info(
            "%s response %s %s -> %s",
            label,
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if response.status_code >= 400:
            body = await response.aread()
            text = body.decode("utf-8", errors="replace")
            if len(text) > 1000:
                text = text[:1000] + "...<truncated>"
            logger.warning("%s error body: %s", label, text)

    return {"request": [log_request], "response": [log_response]}


def build_discovery_client(
    *,
    timeout: float,
    debug_enabled: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Client for user-supplied URLs; every hop, redirects included, goes through the egress guard."""
    return httpx.AsyncClient(
        timeout=timeout,
        transport=SafeEgressTransport(transport or httpx.AsyncHTTPTransport()),
        follow_redirects=True,
        max_redirects=MAX_DISCOVERY_REDIRECTS,
        headers={"User-Agent": USER_AGENT, "Accept": "text/html, application/json;q=0.9"},
        event_hooks=build_event_hooks(debug_enabled, label="Discovery"),
    )


def build_provider_client(*, timeout: float, debug_enabled: bool = False) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=timeout,
        headers={"User-Agent": USER_AGENT},
        event_hooks=build_event_hooks(debug_enabled, label="Provider"),
    )
