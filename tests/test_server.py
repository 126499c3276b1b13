import asyncio
import contextlib

import aiohttp
import pytest
from aiohttp.test_utils import TestClient as _Client
from aiohttp.test_utils import TestServer as _TestServer

from penguin.config import DEFAULT_CONTROL_PATH, Builder, NoProxyOrMountError
from penguin.controller import Action, Controller
from penguin.responses import SERVER_HEADER
from penguin.server import Server, make_app


def _config(tmp_path, uri="/", control_path=None):
    builder = Builder(("127.0.0.1", 0)).add_mount(uri, tmp_path)
    if control_path is not None:
        builder.set_control_path(control_path)
    return builder.validate()


@contextlib.asynccontextmanager
async def _client(config, controller=None):
    controller = controller or Controller()
    async with _Client(_TestServer(make_app(config, controller))) as client:
        yield client


@pytest.mark.asyncio
async def test_client_js_is_served(tmp_path):
    async with _client(_config(tmp_path)) as client:
        resp = await client.get(f"{DEFAULT_CONTROL_PATH}/client.js")
        body = await resp.text()
        content_type = resp.headers["Content-Type"]
    assert resp.status == 200
    assert content_type.startswith("application/javascript")
    assert DEFAULT_CONTROL_PATH in body
    assert "{{ control_path }}" not in body


@pytest.mark.asyncio
async def test_custom_control_path(tmp_path):
    async with _client(_config(tmp_path, control_path="ctl")) as client:
        resp = await client.get("/ctl/client.js")
        body = await resp.text()
    assert resp.status == 200
    assert "/ctl" in body


@pytest.mark.asyncio
async def test_reload_request_broadcasts(tmp_path):
    controller = Controller()
    subscription = controller.subscribe()
    async with _client(_config(tmp_path), controller) as client:
        resp = await client.post(f"{DEFAULT_CONTROL_PATH}/reload")
        status = resp.status
    action = await asyncio.wait_for(subscription.recv(), 5)
    assert status == 200
    assert action == Action.reload()


@pytest.mark.asyncio
async def test_message_request_broadcasts(tmp_path):
    controller = Controller()
    subscription = controller.subscribe()
    async with _client(_config(tmp_path), controller) as client:
        resp = await client.post(f"{DEFAULT_CONTROL_PATH}/message", data="hi there".encode())
        status = resp.status
    action = await asyncio.wait_for(subscription.recv(), 5)
    assert status == 200
    assert action == Action.message("hi there")


@pytest.mark.asyncio
async def test_message_must_be_utf8(tmp_path):
    async with _client(_config(tmp_path)) as client:
        resp = await client.post(f"{DEFAULT_CONTROL_PATH}/message", data=b"\xff\xfe")
        body = await resp.text()
    assert resp.status == 400
    assert body == "Bad request: request body is not UTF8\n"


@pytest.mark.asyncio
async def test_invalid_control_request(tmp_path):
    async with _client(_config(tmp_path)) as client:
        resp = await client.get(f"{DEFAULT_CONTROL_PATH}/reload")
        body = await resp.text()
    assert resp.status == 400
    assert body == "Invalid request to libpenguin control path\n"


@pytest.mark.asyncio
async def test_websocket_receives_actions(tmp_path):
    controller = Controller()
    async with _client(_config(tmp_path), controller) as client:
        ws = await client.ws_connect(DEFAULT_CONTROL_PATH)
        controller.reload()
        first = await asyncio.wait_for(ws.receive_str(), 5)
        controller.show_message("<b>hi</b>")
        second = await asyncio.wait_for(ws.receive_str(), 5)
        await ws.close()
    assert first == "reload"
    assert second == "message\n<b>hi</b>"


@pytest.mark.asyncio
async def test_serves_files_from_mount(tmp_path):
    (tmp_path / "data.txt").write_bytes(b"file contents")
    async with _client(_config(tmp_path)) as client:
        resp = await client.get("/data.txt")
        body = await resp.read()
    assert resp.status == 200
    assert body == b"file contents"


@pytest.mark.asyncio
async def test_html_gets_script_injected(tmp_path):
    (tmp_path / "index.html").write_bytes(b"<html><body><p>x</p></body></html>")
    async with _client(_config(tmp_path)) as client:
        resp = await client.get("/")
        body = await resp.read()
    expected_tag = f'<script src="{DEFAULT_CONTROL_PATH}/client.js" defer></script>'.encode()
    assert resp.status == 200
    assert body.endswith(expected_tag + b"</body></html>")


@pytest.mark.asyncio
async def test_unmatched_path_without_proxy_is_404(tmp_path):
    async with _client(_config(tmp_path, uri="/assets")) as client:
        resp = await client.get("/elsewhere")
        body = await resp.text()
        server_header = resp.headers["Server"]
    assert resp.status == 404
    assert server_header == SERVER_HEADER
    assert DEFAULT_CONTROL_PATH in body


def test_bind_returns_builder_with_address(tmp_path):
    config = Server.bind(("127.0.0.1", 4567)).add_mount("/", tmp_path).validate()
    assert config.bind_addr == ("127.0.0.1", 4567)


def test_bind_builder_still_validates():
    with pytest.raises(NoProxyOrMountError):
        Server.bind(("127.0.0.1", 4567)).validate()


@pytest.mark.asyncio
async def test_build_returns_connected_controller(tmp_path):
    server, controller = Server.build(_config(tmp_path))
    subscription = server.controller.subscribe()
    controller.show_message("hello")
    assert await asyncio.wait_for(subscription.recv(), 5) == Action.message("hello")


@pytest.mark.asyncio
async def test_serve_listens_until_cancelled(tmp_path):
    (tmp_path / "hello.txt").write_bytes(b"hello")
    server, _ = Server.build(_config(tmp_path))
    task = asyncio.create_task(server.serve())
    try:
        await asyncio.wait_for(server.started.wait(), 5)
        port = server.addresses[0][1]
        async with aiohttp.ClientSession() as session:
            async with session.get(f"http://127.0.0.1:{port}/hello.txt") as resp:
                body = await resp.read()
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
    assert body == b"hello"
    assert task.cancelled()