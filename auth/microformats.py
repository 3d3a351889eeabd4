from __future__ import annotations

import logging
import urllib.parse
from dataclasses import dataclass, field

import mf2py

logger = logging.getLogger("indieauth.microformats")

APP_TYPES = ("h-app", "h-x-app")


@dataclass
class MicroformatsResult:
    rel_me_links: list[str] = field(default_factory=list)
    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    indieauth_metadata: str | None = None
    micropub: str | None = None
    microsub: str | None = None
    app_name: str | None = None
    app_url: str | None = None
    app_logo_url: str | None = None


def resolve_url(url: str | None, base_url: str) -> str | None:
    if not url or not url.strip():
        return None
    resolved = urllib.parse.urljoin(base_url, url.strip())
    if urllib.parse.urlsplit(resolved).scheme not in ("http", "https"):
        return None
    return resolved


def _first_value(properties: dict, name: str) -> str | None:
    values = properties.get(name) or []
    if not values:
        return None
    value = values[0]
    # Parsed <img> properties carry {"value": src, "alt": ...}; embedded
    # microformats carry {"value": ..., "type": [...]}.
    if isinstance(value, dict):
        value = value.get("value")
    return value if isinstance(value, str) and value.strip() else None


def _find_app(items: list[dict]) -> dict | None:
    for item in items:
        if any(kind in APP_TYPES for kind in item.get("type", [])):
            return item
        child = _find_app(item.get("children", []))
        if child is not None:
            return child
    return None


def parse(html: str, base_url: str) -> MicroformatsResult:
    """Extract rel links and the first h-app from an HTML document."""
    result = MicroformatsResult()
    if not html or not html.strip():
        return result

    try:
        parsed = mf2py.parse(doc=html, url=base_url)
    except Exception:
        logger.exception("Failed to parse microformats from %s", base_url)
        return result

    rels: dict[str, list[str]] = parsed.get("rels", {})

    for link in rels.get("me", []):
        resolved = resolve_url(link, base_url)
        if resolved and resolved not in result.rel_me_links:
            result.rel_me_links.append(resolved)

    def first_rel(name: str) -> str | None:
        links = rels.get(name) or []
        return resolve_url(links[0], base_url) if links else None

    result.authorization_endpoint = first_rel("authorization_endpoint")
    result.token_endpoint = first_rel("token_endpoint")
    result.indieauth_metadata = first_rel("indieauth-metadata")
    result.micropub = first_rel("micropub")
    result.microsub = first_rel("microsub")

    app = _find_app(parsed.get("items", []))
    if app is not None:
        properties = app.get("properties", {})
        result.app_name = _first_value(properties, "name")
        result.app_url = resolve_url(_first_value(properties, "url"), base_url)
        result.app_logo_url = resolve_url(_first_value(properties, "logo"), base_url)

    return result
