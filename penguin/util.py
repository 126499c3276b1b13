"""Utility functions."""

from __future__ import annotations

import asyncio

from .config import ProxyTarget


async def wait_for_proxy(target: ProxyTarget, poll_period: float) -> None:
    """Return once a TCP connection to `target` succeeds.

    Retries every `poll_period` seconds and never gives up; wrap it in
    `asyncio.wait_for` to impose a timeout.
    """
    host = target.host
    port = target.port()
    while True:
        try:
            _, writer = await asyncio.open_connection(host, port)
        except OSError:
            await asyncio.sleep(poll_period)
            continue
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return