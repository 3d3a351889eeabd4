from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import httpx

from auth import microformats
from auth.models import DiscoveredProvider
from auth.providers.base import IdentityProviderRegistry
from auth.urls import normalize_profile_url

logger = logging.getLogger("indieauth.discovery")


@dataclass
class ProfileDiscoveryResult:
    profile_url: str
    success: bool = False
    providers: list[DiscoveredProvider] = field(default_factory=list)
    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    error: str | None = None


LINK_VALUE = re.compile(r"<([^>]*)>([^<]*)")
REL_PARAM = re.compile(r';\s*rel\s*=\s*(?:"([^"]*)"|([^\s;,"]+))', re.IGNORECASE)


def _link_header_endpoint(response: httpx.Response, rel: str) -> str | None:
    # Link headers are walked in order; the first entry carrying the rel wins.
    for header in response.headers.get_list("link"):
        for target, params in LINK_VALUE.findall(header):
            match = REL_PARAM.search(params)
            if match is None:
                continue
            rels = (match.group(1) or match.group(2) or "").lower().split()
            if rel in rels:
                return microformats.resolve_url(target, str(response.url))
    return None


class ProfileDiscoveryService:
    """Find the identity providers a personal site links to with rel="me"."""

    def __init__(self, client: httpx.AsyncClient, registry: IdentityProviderRegistry) -> None:
        self.client = client
        self.registry = registry

    async def discover(self, profile_url: str) -> ProfileDiscoveryResult:
        result = ProfileDiscoveryResult(profile_url=normalize_profile_url(profile_url))

        try:
            response = await self.client.get(result.profile_url)
        except (httpx.HTTPError, httpx.InvalidURL) as error:
            logger.warning("Profile fetch failed for %s: %s", result.profile_url, error)
            result.error = "An error occurred while discovering your profile."
            return result

        if not response.is_success:
            logger.warning(
                "Profile fetch for %s returned HTTP %s", result.profile_url, response.status_code
            )
            result.error = f"Failed to fetch profile: HTTP {response.status_code}"
            return result

        parsed = microformats.parse(response.text, str(response.url))

        for link in parsed.rel_me_links:
            provider = self.registry.for_url(link)
            if provider is None:
                continue
            result.providers.append(
                DiscoveredProvider(
                    type=provider.provider_type,
                    display_name=provider.display_name,
                    profile_url=link,
                    icon_url=provider.icon_url,
                )
            )

        result.authorization_endpoint = (
            _link_header_endpoint(response, "authorization_endpoint")
            or parsed.authorization_endpoint
        )
        result.token_endpoint = (
            _link_header_endpoint(response, "token_endpoint") or parsed.token_endpoint
        )
        result.success = True

        logger.info(
            "Discovered %d provider(s) on %s", len(result.providers), result.profile_url
        )
        return result
