"""URL rules for IndieAuth identifiers and redirect targets.

Every check here runs on the raw string as received: ``.``/``..`` path
segments must be rejected, never resolved.
"""

from __future__ import annotations

import ipaddress
import urllib.parse

LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}
DANGEROUS_SCHEMES = ("javascript:", "data:", "vbscript:", "file:")
DEFAULT_PORTS = {"http": 80, "https": 443}


def _split(url: str | None) -> urllib.parse.SplitResult | None:
    if not url or not url.strip():
        return None
    try:
        parsed = urllib.parse.urlsplit(url)
        # Accessing .port validates it; a malformed port raises ValueError.
        parsed.port
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc or not parsed.hostname:
        return None
    return parsed


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def _effective_port(parsed: urllib.parse.SplitResult) -> int | None:
    return parsed.port if parsed.port is not None else DEFAULT_PORTS.get(parsed.scheme.lower())


def _has_userinfo(parsed: urllib.parse.SplitResult) -> bool:
    return "@" in parsed.netloc


def is_loopback_host(host: str | None) -> bool:
    if not host:
        return False
    return host.strip("[]").lower() in LOOPBACK_HOSTS


def has_dangerous_scheme(url: str | None) -> bool:
    if not url:
        return False
    return url.lstrip().lower().startswith(DANGEROUS_SCHEMES)


def has_dot_segments(url: str | None) -> bool:
    """True when the raw path contains a ``.`` or ``..`` segment."""
    parsed = _split(url)
    if parsed is None:
        return False
    segments = parsed.path.split("/")
    return any(segment.lower().replace("%2e", ".") in {".", ".."} for segment in segments)


def is_valid_https_url(url: str | None) -> bool:
    """https URL, or http on a loopback host; no fragment, no userinfo."""
    parsed = _split(url)
    if parsed is None:
        return False
    scheme = parsed.scheme.lower()
    if scheme == "http":
        if not is_loopback_host(parsed.hostname):
            return False
    elif scheme != "https":
        return False
    if "#" in url:
        return False
    return not _has_userinfo(parsed)


def is_valid_client_id(client_id: str | None) -> bool:
    if not is_valid_https_url(client_id):
        return False
    parsed = _split(client_id)
    host = parsed.hostname or ""
    if _is_ip_literal(host) and not is_loopback_host(host):
        return False
    return not has_dot_segments(client_id)


def is_valid_profile_url(url: str | None) -> bool:
    """Profile URLs are stricter than client ids: default port only, no IP hosts at all."""
    parsed = _split(url)
    if parsed is None:
        return False
    scheme = parsed.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        return False
    if "#" in url or _has_userinfo(parsed):
        return False
    if parsed.port is not None and parsed.port != DEFAULT_PORTS[scheme]:
        return False
    if _is_ip_literal(parsed.hostname or ""):
        return False
    return not has_dot_segments(url)


def is_same_origin(first: str, second: str) -> bool:
    a = _split(first)
    b = _split(second)
    if a is None or b is None:
        return False
    return (
        a.scheme.lower() == b.scheme.lower()
        and (a.hostname or "").lower() == (b.hostname or "").lower()
        and _effective_port(a) == _effective_port(b)
    )


def is_valid_redirect_uri(redirect_uri: str | None, client_id: str | None) -> bool:
    """Same-origin redirect_uri check. Cross-origin targets return False."""
    if not redirect_uri or has_dangerous_scheme(redirect_uri):
        return False
    if not is_valid_https_url(redirect_uri) or not is_valid_client_id(client_id):
        return False
    if has_dot_segments(redirect_uri):
        return False
    return is_same_origin(redirect_uri, client_id)


def is_cross_origin_candidate(redirect_uri: str | None) -> bool:
    """Structurally acceptable redirect_uri that still needs published-list verification."""
    if not redirect_uri or has_dangerous_scheme(redirect_uri):
        return False
    return is_valid_https_url(redirect_uri) and not has_dot_segments(redirect_uri)


def is_redirect_uri_in_published_list(redirect_uri: str, published: list[str]) -> bool:
    return any(candidate == redirect_uri for candidate in published)


def profile_host(url: str) -> str | None:
    parsed = _split(url)
    if parsed is None:
        return None
    return parsed.hostname


def normalize_profile_url(url: str) -> str:
    """Add a scheme, lowercase the authority, default the path and drop a non-root trailing slash."""
    url = url.strip()
    if not url.lower().startswith(("http://", "https://")):
        url = "https://" + url

    parsed = urllib.parse.urlsplit(url)
    path = parsed.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"

    return urllib.parse.urlunsplit(
        (parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.query, "")
    )


def append_query_params(url: str, params: dict[str, str]) -> str:
    parsed = urllib.parse.urlparse(url)
    existing = urllib.parse.parse_qs(parsed.query, keep_blank_values=True)
    for key, value in params.items():
        existing[key] = [value]

    new_query = urllib.parse.urlencode(existing, doseq=True, quote_via=urllib.parse.quote)
    return urllib.parse.urlunparse(parsed._replace(query=new_query))
