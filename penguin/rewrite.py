"""Rewriting of headers for requests to and responses from the proxy target."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from urllib.parse import urlsplit

from .config import ProxyTarget

log = logging.getLogger(__name__)

SUPPORTED_COMPRESSIONS = ("gzip", "br", "identity")


def filter_encodings(orig: str) -> str:
    """Keep only the 'Accept-Encoding' entries whose encoding we can handle."""
    allowed = (
        part
        for part in (p.strip() for p in orig.split(","))
        if part.split(";", 1)[0] in SUPPORTED_COMPRESSIONS
    )
    return ", ".join(allowed)


def _allows_self(sources: list[str] | None) -> bool:
    return sources is None or "'self'" in sources or "*" in sources


def rewrite_csp(value: str) -> str:
    """Make a Content-Security-Policy allow scripts from and connections to 'self'."""
    directives: dict[str, list[str]] = {}
    for part in value.split(";"):
        tokens = part.split()
        if not tokens:
            continue
        name = tokens[0].lower()
        if name in directives:
            log.warning("CSP malformed, second %s directive ignored", name)
            continue
        directives[name] = tokens[1:]

    default = directives.get("default-src")
    scripts_allowed = _allows_self(directives.get("script-src", default))
    connect_allowed = _allows_self(directives.get("connect-src", default))

    if scripts_allowed and connect_allowed:
        log.debug("CSP header already allows scripts from and connect to 'self'")
        return value

    for name, allowed in (("script-src", scripts_allowed), ("connect-src", connect_allowed)):
        if not allowed:
            sources = [s for s in directives.get(name, []) if s != "'none'"]
            directives[name] = [*sources, "'self'"]

    out = "".join(
        name + "".join(f" {v}" for v in values) + "; "
        for name, values in sorted(directives.items())
    )
    log.debug("Modified CSP header from %r to %r", value, out)
    return out


def _format_addr(bind_addr: tuple[str, int]) -> str:
    host, port = bind_addr
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def rewrite_location(value: str, target: ProxyTarget, bind_addr: tuple[str, int]) -> str:
    """Point redirects to the proxy target back to the penguin server."""
    try:
        parts = urlsplit(value)
        parts.port  # validates the port
    except ValueError:
        log.warning("Could not parse 'location' header as URI: not rewriting")
        return value

    if not parts.scheme or parts.netloc.lower() != target.authority.lower():
        return value

    query = f"?{parts.query}" if parts.query else ""
    return f"http://{_format_addr(bind_addr)}{parts.path or '/'}{query}"


def adjust_request_headers(
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
    target: ProxyTarget,
) -> list[tuple[str, str]]:
    """Headers for forwarding: 'Host' set to the target, unsupported encodings removed."""
    pairs = headers.items() if isinstance(headers, Mapping) else headers
    adjusted = []
    for name, value in pairs:
        lower = name.lower()
        if lower == "host":
            value = target.authority
        elif lower == "accept-encoding":
            value = filter_encodings(value)
            if not value:
                continue
        adjusted.append((name, value))
    return adjusted