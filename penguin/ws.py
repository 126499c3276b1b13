"""Per-connection websocket task that relays actions to a browser session."""

from __future__ import annotations

import asyncio
import logging

from aiohttp import WSMsgType

from .controller import Action, ActionKind, Lagged, Subscription

log = logging.getLogger(__name__)

_CLOSING_TYPES = (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED)


def encode_action(action: Action) -> str:
    """The text frame sent to the browser for `action`."""
    if action.kind is ActionKind.RELOAD:
        return "reload"
    return f"message\n{action.text}"


async def handle_connection(websocket, subscription: Subscription) -> None:
    """Send incoming actions over `websocket` until either side closes.

    `websocket` is a prepared `aiohttp.web.WebSocketResponse` (or anything with
    the same `receive`, `send_str`, `close` and `closed`).
    """
    action_task: asyncio.Future | None = None
    message_task: asyncio.Future | None = None
    try:
        while True:
            if action_task is None:
                action_task = asyncio.ensure_future(subscription.recv())
            if message_task is None:
                message_task = asyncio.ensure_future(websocket.receive())
            done, _ = await asyncio.wait(
                {action_task, message_task}, return_when=asyncio.FIRST_COMPLETED
            )

            if action_task in done:
                finished, action_task = action_task, None
                try:
                    action = finished.result()
                except Lagged as err:
                    log.warning(
                        "Missed %d actions. Did you submit too many actions too quickly? "
                        "For example, this can happen by watching a directory where lots "
                        "of files change at the same time.",
                        err.skipped,
                    )
                    continue
                if action is None:
                    break
                log.debug("Sending %s WS command", action.kind.value)
                try:
                    await websocket.send_str(encode_action(action))
                except (ConnectionError, RuntimeError) as err:
                    log.warning("Failed to send WS message for action '%s': %s", action, err)

            if message_task in done:
                finished, message_task = message_task, None
                try:
                    message = finished.result()
                except (ConnectionError, RuntimeError) as err:
                    log.warning(
                        "Error receiving WS message. Shutting down WS connection. Error: %s",
                        err,
                    )
                    break
                if message.type in _CLOSING_TYPES:
                    break
                if message.type is WSMsgType.ERROR:
                    log.warning(
                        "Error receiving WS message. Shutting down WS connection. Error: %s",
                        message.data,
                    )
                    break
                log.warning("unexpected incoming WS message %r", message)
    finally:
        pending = [task for task in (action_task, message_task) if task is not None]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        subscription.close()
        if not websocket.closed:
            await websocket.close()