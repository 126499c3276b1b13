"""Static file server: mounts, directory listings, files and byte ranges."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
from collections.abc import Iterable
from http import HTTPStatus
from pathlib import Path

from aiohttp import web

from .config import Config, Mount
from .inject import inject_into
from .responses import SERVER_HEADER, bad_request, not_found

log = logging.getLogger(__name__)

_DIR_LISTING_HTML = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Index of {{ uri_path }}</title>
  <style>
    body { font-family: sans-serif; margin: 48px auto; max-width: 720px; color: #333; }
    ul { list-style: none; padding: 0; }
    li { margin: 4px 0; }
    a.mount { color: #a05a00; }
  </style>
</head>
<body>
  <h1>Index of <code>{{ uri_path }}</code></h1>
  <ul>{{ entries }}</ul>
  <script src="{{ control_path }}/client.js" defer></script>
</body>
</html>
"""

_PREFIX = "bytes="


class InvalidRangeError(ValueError):
    """The 'Range' header is malformed."""


class NoOverlapError(ValueError):
    """No requested range overlaps the file."""


def _parse_number(text: str) -> int:
    if not text or not (text.isascii() and text.isdigit()):
        raise InvalidRangeError(f"invalid number '{text}' in range")
    return int(text)


def _parse_single_range(spec: str, size: int) -> tuple[int, int] | None:
    start_str, dash, end_str = spec.partition("-")
    if not dash:
        raise InvalidRangeError(f"range '{spec}' has no '-'")
    start_str, end_str = start_str.strip(), end_str.strip()

    if not start_str:
        length = _parse_number(end_str)
        if length == 0:
            return None
        length = min(length, size)
        return size - length, length

    start = _parse_number(start_str)
    if start >= size:
        return None
    if not end_str:
        return start, size - start
    end = _parse_number(end_str)
    if start > end:
        raise InvalidRangeError(f"range '{spec}' ends before it starts")
    end = min(end, size - 1)
    return start, end - start + 1


def parse_range(header: str, size: int) -> list[tuple[int, int]]:
    """Parse a 'Range' header into (start, length) pairs for a file of `size` bytes."""
    if not header:
        return []
    if not header.startswith(_PREFIX):
        raise InvalidRangeError("range does not start with 'bytes='")

    no_overlap = False
    ranges = []
    for spec in header[len(_PREFIX):].split(","):
        spec = spec.strip()
        if not spec:
            continue
        parsed = _parse_single_range(spec, size)
        if parsed is None:
            no_overlap = True
        else:
            ranges.append(parsed)

    if no_overlap and not ranges:
        raise NoOverlapError("no range overlaps the file")
    return ranges


def find_mount(path: str, mounts: Iterable[Mount]) -> tuple[str, Mount] | None:
    """The most specific mount matching `path`, with the remaining subpath."""
    matches = [m for m in mounts if path.startswith(m.uri_path)]
    if not matches:
        return None
    mount = max(matches, key=lambda m: len(m.uri_path))
    return path[len(mount.uri_path):].lstrip("/"), mount


async def try_serve(request: web.Request, config: Config) -> web.Response | None:
    """Serve the request from a matching mount, or return None if none matches."""
    found = find_mount(request.path, config.mounts)
    if found is None:
        return None
    subpath, mount = found
    return await _serve(request, subpath, mount.fs_path, config)


async def _serve(
    request: web.Request, subpath: str, fs_root: Path, config: Config
) -> web.Response:
    log.debug("Serving request from file server...")
    path = fs_root / subpath

    try:
        canonical_req = await asyncio.to_thread(path.resolve, True)
        canonical_root = await asyncio.to_thread(fs_root.resolve, True)
    except FileNotFoundError:
        return not_found(config)

    if not canonical_req.is_relative_to(canonical_root):
        log.warning(
            "Directory traversal attack detected (%s %s) -> responding BAD REQUEST",
            request.method,
            request.path,
        )
        return bad_request("Bad request: requested file outside of served directory\n")

    if not path.exists():
        return not_found(config)
    if path.is_file():
        log.debug("Serving requested file")
        return await serve_file(path, request, config)
    index = path / "index.html"
    if index.is_file():
        log.debug("Serving 'index.html' file in requested directory")
        return await serve_file(index, request, config)
    log.debug("Listing contents of directory...")
    return await serve_dir(request.path, path, config)


def _list_dir(path: Path) -> tuple[list[tuple[str, bool]], list[tuple[str, bool]]]:
    folders, files = [], []
    with os.scandir(path) as entries:
        for entry in entries:
            if entry.is_file(follow_symlinks=False):
                files.append((entry.name, False))
            else:
                folders.append((entry.name + "/", False))
    return folders, files


async def serve_dir(uri_path: str, path: Path, config: Config) -> web.Response:
    """An HTML listing of a directory, including mounts located below it."""
    folders, files = await asyncio.to_thread(_list_dir, path)

    for mount in config.mounts:
        if not mount.fs_path.exists() or not mount.uri_path.startswith(uri_path):
            continue
        rest = mount.uri_path[len(uri_path):]
        if not rest:
            continue
        name = rest.split("/", 1)[0]
        if mount.fs_path.is_dir():
            folders.append((name + "/", True))
        else:
            files.append((name, True))

    folders.sort()
    files.sort()

    entries = "\n" + "".join(
        f'<li><a href="{name}" class="{"mount" if is_mount else "real"}">'
        f"<code>{name}</code></a></li>\n"
        for name, is_mount in folders + files
    )
    html = (
        _DIR_LISTING_HTML
        .replace("{{ uri_path }}", uri_path)
        .replace("{{ entries }}", entries)
        .replace("{{ control_path }}", config.control_path)
    )
    return web.Response(
        body=html.encode(),
        headers={"Content-Type": "text/html; charset=utf-8", "Server": SERVER_HEADER},
    )


def _read_slice(path: Path, start: int, length: int) -> bytes:
    with path.open("rb") as file:
        file.seek(start)
        return file.read(length)


async def serve_file(path: Path, request: web.Request, config: Config) -> web.Response:
    """Serve one file; HTML gets the reload script, others honour 'Range'."""
    mime, _ = mimetypes.guess_type(path.name)

    if mime is not None and mime.startswith("text/html"):
        raw = await asyncio.to_thread(path.read_bytes)
        html = inject_into(raw, config)
        return web.Response(
            body=html,
            headers={
                "Content-Type": "text/html",
                "Content-Length": str(len(html)),
                "Server": SERVER_HEADER,
            },
        )

    size = (await asyncio.to_thread(path.stat)).st_size
    headers = {"Server": SERVER_HEADER, "Accept-Ranges": "bytes"}
    if mime is not None:
        headers["Content-Type"] = mime

    range_header = request.headers.get("Range")
    if range_header is None:
        data = await asyncio.to_thread(path.read_bytes)
        headers["Content-Length"] = str(len(data))
        return web.Response(body=data, headers=headers)

    try:
        ranges = parse_range(range_header, size)
    except NoOverlapError:
        return web.Response(
            status=HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE,
            body=b"",
            headers={"Server": SERVER_HEADER},
        )
    if len(ranges) != 1:
        return web.Response(
            status=HTTPStatus.BAD_REQUEST,
            body=b"multiple ranges in 'Range' header not supported",
            headers={"Server": SERVER_HEADER},
        )

    start, length = ranges[0]
    data = await asyncio.to_thread(_read_slice, path, start, length)
    headers["Content-Length"] = str(length)
    headers["Content-Range"] = f"bytes {start}-{start + length - 1}/{size}"
    return web.Response(status=HTTPStatus.PARTIAL_CONTENT, body=data, headers=headers)