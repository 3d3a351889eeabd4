"""Outbound fetch guard for user-supplied URLs (SSRF defense).

The transport resolves the target host once, drops every address in a
private, reserved or otherwise non-public range, and connects to one of the
surviving IP literals directly. The socket never uses a second DNS answer.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger("indieauth.egress")

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
Resolver = Callable[[str, int], Awaitable[list[str]]]

BLOCKED_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        # IPv4
        "0.0.0.0/8",
        "10.0.0.0/8",
        "100.64.0.0/10",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.0.0.0/24",
        "192.0.2.0/24",
        "192.168.0.0/16",
        "198.18.0.0/15",
        "198.51.100.0/24",
        "203.0.113.0/24",
        "224.0.0.0/4",
        "240.0.0.0/4",
        # IPv6
        "::/96",
        "64:ff9b::/96",
        "64:ff9b:1::/48",
        "100::/64",
        "2001:db8::/32",
        "fc00::/7",
        "fe80::/10",
        "fec0::/10",
        "ff00::/8",
    )
)


class EgressBlockedError(httpx.TransportError):
    """Raised when no resolved address for a host is safe to contact."""


def is_unsafe_address(address: str | IPAddress) -> bool:
    if isinstance(address, str):
        try:
            address = ipaddress.ip_address(address.strip("[]").split("%", 1)[0])
        except ValueError:
            return True

    # Unwrap IPv4 addresses embedded in mapped, 6to4 and Teredo addresses.
    if isinstance(address, ipaddress.IPv6Address):
        if address.ipv4_mapped is not None:
            return is_unsafe_address(address.ipv4_mapped)
        if address.sixtofour is not None:
            return is_unsafe_address(address.sixtofour)
        if address.teredo is not None:
            server, client = address.teredo
            return is_unsafe_address(server) or is_unsafe_address(client)

    return any(address in network for network in BLOCKED_NETWORKS if network.version == address.version)


async def resolve_host(host: str, port: int) -> list[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    addresses: list[str] = []
    for _family, _type, _proto, _canonname, sockaddr in infos:
        addr = sockaddr[0]
        if addr not in addresses:
            addresses.append(addr)
    return addresses


async def safe_addresses(host: str, port: int, *, resolve: Resolver = resolve_host) -> list[str]:
    try:
        ipaddress.ip_address(host.strip("[]"))
        candidates = [host.strip("[]")]
    except ValueError:
        try:
            candidates = await resolve(host, port)
        except OSError as error:
            raise EgressBlockedError(f"DNS resolution failed for {host!r}: {error}") from error

    if not candidates:
        raise EgressBlockedError(f"DNS resolution for {host!r} returned no addresses")

    allowed = [addr for addr in candidates if not is_unsafe_address(addr)]
    if not allowed:
        logger.warning("Blocked outbound fetch to %s: all resolved addresses are non-public", host)
        raise EgressBlockedError(
            f"SSRF protection: all resolved addresses for {host!r} are private or reserved"
        )
    return allowed


class SafeEgressTransport(httpx.AsyncBaseTransport):
    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        *,
        resolve: Resolver = resolve_host,
    ) -> None:
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._resolve = resolve

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        port = request.url.port or (443 if request.url.scheme == "https" else 80)
        addresses = await safe_addresses(host, port, resolve=self._resolve)
        target = addresses[0]

        extensions = dict(request.extensions)
        if request.url.scheme == "https":
            extensions["sni_hostname"] = host

        pinned = httpx.Request(
            method=request.method,
            # httpx brackets IPv6 hosts itself.
            url=request.url.copy_with(host=target),
            headers=request.headers,
            content=request.content,
            extensions=extensions,
        )
        return await self._transport.handle_async_request(pinned)

    async def aclose(self) -> None:
        await self._transport.aclose()
