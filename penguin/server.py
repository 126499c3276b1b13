"""The penguin HTTP server and its request routing."""

from __future__ import annotations

import asyncio
import logging

from aiohttp import web

from .config import Builder, Config
from .controller import Controller
from .fs import try_serve
from .inject import script
from .proxy import ProxyContext, forward
from .responses import bad_request, internal_server_error, not_found
from .ws import handle_connection

log = logging.getLogger(__name__)


def _header_has_token(request: web.Request, name: str, token: str) -> bool:
    return any(
        part.strip().lower() == token
        for value in request.headers.getall(name, [])
        for part in value.split(",")
    )


def _is_upgrade_request(request: web.Request) -> bool:
    return _header_has_token(request, "Connection", "upgrade") and _header_has_token(
        request, "Upgrade", "websocket"
    )


async def _handle_websocket(request: web.Request, controller: Controller) -> web.StreamResponse:
    log.debug("Handling WS upgrade request...")
    websocket = web.WebSocketResponse()
    if not websocket.can_prepare(request).ok:
        log.warning("Invalid WS upgrade request")
        return bad_request("Failed to upgrade to WS connection\n")

    # Subscribe before the handshake completes so no action sent after the
    # client sees the connection open can be missed.
    subscription = controller.subscribe()
    try:
        await websocket.prepare(request)
    except web.HTTPException:
        subscription.close()
        log.warning("Invalid WS upgrade request")
        return bad_request("Failed to upgrade to WS connection\n")

    await handle_connection(websocket, subscription)
    return websocket


async def _handle_control(
    request: web.Request, config: Config, controller: Controller
) -> web.StreamResponse:
    """Handle requests to the control path: WS connections and commands."""
    log.debug("Handling request to HTTP control API...")

    if _is_upgrade_request(request):
        return await _handle_websocket(request, controller)

    subpath = request.path[len(config.control_path):]
    method = request.method

    if method == "GET" and subpath == "/client.js":
        return web.Response(
            body=script(config).encode(),
            headers={"Content-Type": "application/javascript; charset=UTF-8"},
        )

    if method == "POST" and subpath == "/reload":
        log.debug("Received reload request via HTTP control API")
        controller.reload()
        return web.Response()

    if method == "POST" and subpath == "/message":
        raw = await request.read()
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            return bad_request("Bad request: request body is not UTF8\n")
        log.debug("Received message request via HTTP control API")
        controller.show_message(text)
        return web.Response()

    return bad_request("Invalid request to libpenguin control path\n")


async def _route(
    request: web.Request,
    config: Config,
    controller: Controller,
    proxy_ctx: ProxyContext,
) -> web.StreamResponse:
    if request.path.startswith(config.control_path):
        return await _handle_control(request, config, controller)

    response = await try_serve(request, config)
    if response is not None:
        return response

    if config.proxy is not None:
        return await forward(request, config.proxy, proxy_ctx, controller, config)

    return not_found(config)


def make_app(config: Config, controller: Controller) -> web.Application:
    """The aiohttp application that serves `config`, driven by `controller`."""
    proxy_ctx = ProxyContext()

    async def handle(request: web.Request) -> web.StreamResponse:
        log.debug("Incoming request: %s %s", request.method, request.path_qs)
        try:
            return await _route(request, config, controller, proxy_ctx)
        except Exception as err:  # noqa: BLE001 - every failure becomes a 500 page
            msg = str(err) or "panic"
            log.error("HTTP handler failed: %s", msg)
            return internal_server_error(msg)

    async def stop_polling(_app: web.Application) -> None:
        task = proxy_ctx.polling_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", handle)
    app.on_cleanup.append(stop_polling)
    return app


class Server:
    """A configured penguin server; await it (or `serve()`) to run it."""

    def __init__(self, config: Config, controller: Controller) -> None:
        self.config = config
        self.controller = controller
        self.started = asyncio.Event()
        self.addresses: list = []

    @staticmethod
    def bind(addr: tuple[str, int]) -> Builder:
        """A configuration builder for a server listening on `addr`."""
        return Builder(addr)

    @staticmethod
    def build(config: Config) -> tuple[Server, Controller]:
        """A server for `config` and the controller that commands its sessions."""
        controller = Controller()
        return Server(config, controller), controller

    async def serve(self) -> None:
        """Listen on the configured address and serve until cancelled."""
        app = make_app(self.config, self.controller)
        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        try:
            host, port = self.config.bind_addr
            log.info("Start listening on %s:%s", host, port)
            site = web.TCPSite(runner, host, port)
            await site.start()
            self.addresses = list(runner.addresses)
            self.started.set()
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()

    def __await__(self):
        return self.serve().__await__()

    def __repr__(self) -> str:
        return "Server(_)"