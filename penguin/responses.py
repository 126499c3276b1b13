"""Canned HTTP responses shared by the file server, proxy and control API."""

from __future__ import annotations

import logging
from http import HTTPStatus

from aiohttp import web

from .config import Config

log = logging.getLogger(__name__)

SERVER_HEADER = "Penguin v0.1.9"
"""Value of the `Server` header of all responses generated by penguin."""

_NOT_FOUND_HTML = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>404 Not Found</title>
  <style>
    body { font-family: sans-serif; margin: 48px auto; max-width: 720px; color: #333; }
    h1 { font-size: 28px; }
  </style>
</head>
<body>
  <h1>404 &ndash; Not Found</h1>
  <p>The requested resource does not exist.</p>
  <script src="{{ control_path }}/client.js" defer></script>
</body>
</html>
"""

_PROXY_ERROR_HTML = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Proxy error</title>
  <style>
    body { font-family: sans-serif; margin: 48px auto; max-width: 720px; color: #333; }
    h1 { font-size: 28px; }
    pre { background: #f4f4f4; padding: 12px; white-space: pre-wrap; }
  </style>
</head>
<body>
  <h1>Cannot reach proxy target</h1>
  <p>This page reloads automatically once the target is reachable again.</p>
  <pre>{{ error }}</pre>
  <script src="{{ control_path }}/client.js" defer></script>
</body>
</html>
"""


def bad_request(msg: str) -> web.Response:
    """A 400 response with `msg` as plain-text body."""
    log.debug("Replying BAD REQUEST: %s", msg)
    return web.Response(
        status=HTTPStatus.BAD_REQUEST,
        body=msg.encode(),
        headers={"Server": SERVER_HEADER, "Content-Type": "text/plain; charset=utf-8"},
    )


def not_found(config: Config) -> web.Response:
    """A 404 HTML page that still includes the reload client."""
    log.debug("Responding with 404 NOT FOUND")
    html = _NOT_FOUND_HTML.replace("{{ control_path }}", config.control_path).encode()
    return web.Response(
        status=HTTPStatus.NOT_FOUND,
        body=html,
        headers={
            "Content-Type": "text/html",
            "Content-Length": str(len(html)),
            "Server": SERVER_HEADER,
        },
    )


def internal_server_error(msg: str) -> web.Response:
    """A 500 response used when a request handler failed unexpectedly."""
    body = f"Internal server error: this is a bug in Penguin!\n\n{msg}\n"
    return web.Response(
        status=HTTPStatus.INTERNAL_SERVER_ERROR,
        body=body.encode(),
        headers={"Server": SERVER_HEADER, "Content-Type": "text/plain; charset=utf-8"},
    )


def gateway_error(msg: str, timeout: bool, config: Config) -> web.Response:
    """A 504 (on timeout) or 502 HTML page describing a proxy failure."""
    html = (
        _PROXY_ERROR_HTML
        .replace("{{ error }}", msg)
        .replace("{{ control_path }}", config.control_path)
    )
    status = HTTPStatus.GATEWAY_TIMEOUT if timeout else HTTPStatus.BAD_GATEWAY
    return web.Response(
        status=status,
        body=html.encode(),
        headers={"Server": SERVER_HEADER, "Content-Type": "text/html"},
    )