"""Reverse proxy: forwarding requests and injecting the reload script into HTML."""

from __future__ import annotations

import asyncio
import gzip
import logging

import aiohttp
import brotli
from aiohttp import web

from .config import Config, ProxyTarget
from .controller import Controller
from .inject import inject_into
from .responses import gateway_error
from .rewrite import adjust_request_headers, rewrite_csp, rewrite_location

log = logging.getLogger(__name__)

_SNIFF_LEN = 512
_INITIAL_POLL_DELAY = 0.25
_MAX_POLL_DELAY = 3.0
_HOP_BY_HOP = (
    "connection",
    "keep-alive",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
)
_HTML_SIGNATURES = (
    b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1",
    b"<DIV", b"<FONT", b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B",
    b"<BODY", b"<BR", b"<P", b"<!--",
)
_CLIENT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)

_already_warned: set[str] = set()


class ProxyContext:
    """Per-server proxy state: makes sure only one task polls the target."""

    def __init__(self) -> None:
        self.is_polling = False
        self.polling_task: asyncio.Task | None = None

    def start_polling(self, target: ProxyTarget, controller: Controller) -> asyncio.Task | None:
        """Poll `target` until it answers, then reload all sessions.

        Returns the polling task, or None if one is already running.
        """
        if self.is_polling:
            return None
        self.is_polling = True
        url = f"{target}/"
        log.info("Start regularly polling '%s' until it is available...", url)
        self.polling_task = asyncio.get_running_loop().create_task(
            self._poll(url, controller)
        )
        return self.polling_task

    async def _poll(self, url: str, controller: Controller) -> None:
        delay = _INITIAL_POLL_DELAY
        try:
            async with aiohttp.ClientSession() as session:
                while True:
                    await asyncio.sleep(delay)
                    delay = min(delay * 1.5, _MAX_POLL_DELAY)
                    log.debug("Trying to connect to '%s' again", url)
                    try:
                        async with session.get(url, allow_redirects=False):
                            pass
                    except (*_CLIENT_ERRORS, OSError):
                        continue
                    log.debug("Reconnected to proxy target, reloading all active browser sessions")
                    controller.reload()
                    return
        finally:
            self.is_polling = False


def looks_like_html(data: bytes) -> bool:
    """Whether the start of a body looks like an HTML document."""
    if b"\x00" in data:
        return False
    stripped = data.lstrip(b" \t\n\r\x0c")
    upper = stripped.upper()
    return any(
        upper.startswith(sig)
        and len(stripped) > len(sig)
        and stripped[len(sig)] in b" >"
        for sig in _HTML_SIGNATURES
    )


def _inject_decision(content_type: str | None, body_start: bytes) -> tuple[bool, str | None]:
    """Whether to inject, plus a warning (with a '{uri}' placeholder) if warranted."""
    html_like = looks_like_html(body_start)
    if content_type is None:
        if html_like:
            return True, (
                "Proxy response to '{uri}' looks like HTML, but no 'Content-Type' "
                "header exists. I will treat it as HTML (injecting reload script), but "
                "setting the correct 'Content-Type' header is recommended."
            )
        return False, None

    html_type = content_type.startswith(("text/html", "application/xhtml+xml"))
    if html_like and not html_type:
        return False, (
            "Proxy response to '{uri}' looks like HTML, but the 'Content-Type' "
            f"header indicates otherwise: '{content_type}'. Not injecting reload script."
        )
    return html_type, None


def should_inject(content_type: str | None, body_start: bytes) -> bool:
    """Decide from the content type and the first body bytes whether to inject."""
    return _inject_decision(content_type, body_start)[0]


def recode_body(body: bytes, encoding: str | None, config: Config) -> bytes:
    """Inject the script into a possibly compressed body, keeping its encoding."""
    if encoding is None:
        return inject_into(body, config)
    if encoding == "gzip":
        return gzip.compress(inject_into(gzip.decompress(body), config), compresslevel=9)
    if encoding == "br":
        return brotli.compress(inject_into(brotli.decompress(body), config))
    log.warning("Unsupported content encoding '%s'. Not injecting script!", encoding)
    return body


def _error_text(err: BaseException) -> str:
    return str(err) or type(err).__name__


def _download_error(err: BaseException, url: str, config: Config) -> web.Response:
    log.warning("Failed to download full response from proxy target")
    msg = f"Failed to download response from {url}\n\n{_error_text(err)}"
    return gateway_error(msg, isinstance(err, asyncio.TimeoutError), config)


async def forward(
    request: web.Request,
    target: ProxyTarget,
    ctx: ProxyContext,
    controller: Controller,
    config: Config,
) -> web.StreamResponse:
    """Forward `request` to `target` and return its (possibly adjusted) response.

    If the target cannot be reached, a 502 or 504 page is returned and polling
    of the target starts.
    """
    url = f"{target}{request.path_qs}"
    headers = [
        (name, value)
        for name, value in adjust_request_headers(list(request.headers.items()), target)
        if name.lower() not in _HOP_BY_HOP
    ]
    data = await request.read() if request.body_exists else None

    log.debug("Forwarding request to proxy target %s", url)
    async with aiohttp.ClientSession(
        auto_decompress=False, cookie_jar=aiohttp.DummyCookieJar()
    ) as session:
        try:
            upstream = await session.request(
                request.method,
                url,
                headers=headers,
                data=data,
                allow_redirects=False,
                skip_auto_headers=("Accept-Encoding", "User-Agent"),
            )
        except _CLIENT_ERRORS as err:
            log.warning("Failed to reach proxy target '%s': %s", url, _error_text(err))
            msg = f"Failed to reach {url}\n\n{_error_text(err)}"
            ctx.start_polling(target, controller)
            return gateway_error(msg, isinstance(err, asyncio.TimeoutError), config)

        async with upstream:
            return await _adjust_response(upstream, request, target, url, config)


async def _adjust_response(
    upstream: aiohttp.ClientResponse,
    request: web.Request,
    target: ProxyTarget,
    url: str,
    config: Config,
) -> web.StreamResponse:
    headers = upstream.headers.copy()
    for name in _HOP_BY_HOP:
        headers.popall(name, None)

    if "Location" in headers:
        headers["Location"] = rewrite_location(headers["Location"], target, config.bind_addr)

    body = b""
    try:
        while len(body) < _SNIFF_LEN:
            chunk = await upstream.content.readany()
            if not chunk:
                break
            body += chunk
    except _CLIENT_ERRORS as err:
        return _download_error(err, url, config)

    inject, warning = _inject_decision(headers.get("Content-Type"), body)
    uri_pq = request.path_qs
    if warning is not None and uri_pq not in _already_warned:
        _already_warned.add(uri_pq)
        log.warning(warning.replace("{uri}", uri_pq))

    if not inject:
        response = web.StreamResponse(
            status=upstream.status, reason=upstream.reason, headers=headers
        )
        await response.prepare(request)
        if body:
            await response.write(body)
        try:
            async for chunk in upstream.content.iter_any():
                await response.write(chunk)
        except _CLIENT_ERRORS as err:
            log.warning("Failed to stream response from '%s': %s", url, _error_text(err))
        await response.write_eof()
        return response

    log.debug("Response from proxy is HTML: injecting script")
    try:
        body += await upstream.content.read()
    except _CLIENT_ERRORS as err:
        return _download_error(err, url, config)

    new_body = recode_body(body, headers.get("Content-Encoding"), config)
    if "Content-Length" in headers:
        headers["Content-Length"] = str(len(new_body))

    policies = headers.popall("Content-Security-Policy", [])
    for policy in policies:
        headers.add("Content-Security-Policy", rewrite_csp(policy))

    return web.Response(
        status=upstream.status, reason=upstream.reason, headers=headers, body=new_body
    )