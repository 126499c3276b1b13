from http import HTTPStatus
from pathlib import Path

import pytest
from aiohttp.test_utils import make_mocked_request

from penguin.config import Builder, Mount
from penguin.fs import (
    InvalidRangeError,
    NoOverlapError,
    find_mount,
    parse_range,
    serve_dir,
    serve_file,
    try_serve,
)

CONTENT = b"0123456789"


@pytest.fixture
def root(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    (root / "data.bin").write_bytes(CONTENT)
    (root / "a.txt").write_text("hello")
    (root / "sub").mkdir()
    (root / "page.html").write_bytes(b"<html><body>hi</body></html>")
    return root


@pytest.fixture
def config(root):
    return Builder(("127.0.0.1", 4090)).add_mount("/", root).validate()


def test_find_mount_most_specific():
    mounts = [Mount("/cat", Path("foo")), Mount("/cat/paw", Path("bar"))]
    assert find_mount("/cat/paw/info.json", mounts) == ("info.json", mounts[1])
    assert find_mount("/cat/style.css", mounts) == ("style.css", mounts[0])


def test_find_mount_none():
    assert find_mount("/dog", [Mount("/cat", Path("foo"))]) is None


def test_parse_range_simple():
    assert parse_range("bytes=0-4", 10) == [(0, 5)]


def test_parse_range_open_end_and_suffix():
    size = 10
    [(start, length)] = parse_range("bytes=2-", size)
    assert start == 2 and start + length == size
    [(start, length)] = parse_range("bytes=-3", size)
    assert length == 3 and start + length == size


def test_parse_range_end_clamped():
    size = 10
    [(start, length)] = parse_range("bytes=4-1000", size)
    assert start == 4 and start + length == size


def test_parse_range_empty_and_multiple():
    assert parse_range("", 10) == []
    assert len(parse_range("bytes=0-1, 3-4", 10)) == 2


@pytest.mark.parametrize("header", ["items=0-1", "bytes=5-2", "bytes=abc", "bytes=x-3"])
def test_parse_range_invalid(header):
    with pytest.raises(InvalidRangeError):
        parse_range(header, 10)


def test_parse_range_no_overlap():
    with pytest.raises(NoOverlapError):
        parse_range("bytes=20-", 10)


@pytest.mark.asyncio
async def test_serves_file(config):
    response = await try_serve(make_mocked_request("GET", "/data.bin"), config)
    assert response.status == HTTPStatus.OK
    assert response.body == CONTENT
    assert response.headers["Accept-Ranges"] == "bytes"
    assert response.headers["Content-Length"] == str(len(CONTENT))


@pytest.mark.asyncio
async def test_serves_range(config):
    request = make_mocked_request("GET", "/data.bin", headers={"Range": "bytes=2-5"})
    response = await try_serve(request, config)
    assert response.status == HTTPStatus.PARTIAL_CONTENT
    assert response.body == CONTENT[2:6]
    assert response.headers["Content-Range"] == "bytes 2-5/10"


@pytest.mark.asyncio
async def test_multiple_ranges_rejected(config):
    request = make_mocked_request("GET", "/data.bin", headers={"Range": "bytes=0-1,3-4"})
    response = await try_serve(request, config)
    assert response.status == HTTPStatus.BAD_REQUEST
    assert response.body == b"multiple ranges in 'Range' header not supported"


@pytest.mark.asyncio
async def test_unsatisfiable_range(config):
    request = make_mocked_request("GET", "/data.bin", headers={"Range": "bytes=50-"})
    response = await try_serve(request, config)
    assert response.status == HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE


@pytest.mark.asyncio
async def test_invalid_range_raises(root, config):
    request = make_mocked_request("GET", "/data.bin", headers={"Range": "lines=1-2"})
    with pytest.raises(InvalidRangeError):
        await serve_file(root / "data.bin", request, config)


@pytest.mark.asyncio
async def test_html_gets_script(config):
    response = await try_serve(make_mocked_request("GET", "/page.html"), config)
    assert response.headers["Content-Type"] == "text/html"
    assert response.body.index(b"/~~penguin/client.js") < response.body.index(b"</body>")
    assert response.headers["Content-Length"] == str(len(response.body))


@pytest.mark.asyncio
async def test_directory_index_html(root, config):
    (root / "sub" / "index.html").write_bytes(b"<p>index</p>")
    response = await try_serve(make_mocked_request("GET", "/sub"), config)
    assert response.body.startswith(b"<p>index</p>")
    assert b"client.js" in response.body


@pytest.mark.asyncio
async def test_missing_file_is_404(config):
    response = await try_serve(make_mocked_request("GET", "/nope.txt"), config)
    assert response.status == HTTPStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_unmatched_path_returns_none(root):
    config = Builder(("127.0.0.1", 4090)).add_mount("/assets", root).validate()
    assert await try_serve(make_mocked_request("GET", "/other"), config) is None


@pytest.mark.asyncio
async def test_traversal_rejected(tmp_path, root, config):
    outside = tmp_path / "outside.txt"
    outside.write_text("hidden")
    (root / "link").symlink_to(outside)
    response = await try_serve(make_mocked_request("GET", "/link"), config)
    assert response.status == HTTPStatus.BAD_REQUEST
    assert b"outside of served directory" in response.body


@pytest.mark.asyncio
async def test_directory_listing_with_mount(tmp_path, root):
    extra = tmp_path / "extra"
    extra.mkdir()
    config = (
        Builder(("127.0.0.1", 4090))
        .add_mount("/", root)
        .add_mount("/extra", extra)
        .validate()
    )
    response = await try_serve(make_mocked_request("GET", "/"), config)
    html = response.body.decode()
    assert '<a href="extra/" class="mount"><code>extra/</code></a>' in html
    assert '<a href="sub/" class="real"><code>sub/</code></a>' in html
    assert html.index("extra/") < html.index("sub/") < html.index("a.txt")
    assert "{{ entries }}" not in html


@pytest.mark.asyncio
async def test_serve_dir_direct(root, config):
    response = await serve_dir("/sub/", root / "sub", config)
    html = response.body.decode()
    assert "/sub/" in html
    assert "/~~penguin/client.js" in html
    assert "<li>" not in html