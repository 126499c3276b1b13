"""Broadcasting of commands to all connected browser sessions."""

from __future__ import annotations

import asyncio
import enum
import threading
from collections import deque
from dataclasses import dataclass

ACTION_CHANNEL_SIZE = 64


class ActionKind(enum.Enum):
    RELOAD = "reload"
    MESSAGE = "message"


@dataclass(frozen=True)
class Action:
    """A command for browser sessions."""

    kind: ActionKind
    text: str = ""

    @classmethod
    def reload(cls) -> Action:
        return cls(ActionKind.RELOAD)

    @classmethod
    def message(cls, text: str) -> Action:
        return cls(ActionKind.MESSAGE, text)


class Lagged(Exception):
    """The subscriber fell behind and older actions were dropped."""

    def __init__(self, skipped: int) -> None:
        super().__init__(f"missed {skipped} actions")
        self.skipped = skipped


def _wake(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class Subscription:
    """One receiver of broadcast actions, usable from any event loop."""

    def __init__(self, controller: Controller, capacity: int) -> None:
        self._controller = controller
        self._capacity = capacity
        self._queue: deque[Action] = deque()
        self._lagged = 0
        self._closed = False
        self._lock = threading.Lock()
        self._waiter: tuple[asyncio.AbstractEventLoop, asyncio.Future] | None = None

    def _deliver(self, action: Action) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._queue.append(action)
            if len(self._queue) > self._capacity:
                self._queue.popleft()
                self._lagged += 1
            waiter, self._waiter = self._waiter, None
        self._notify(waiter)
        return True

    @staticmethod
    def _notify(waiter) -> None:
        if waiter is None:
            return
        loop, future = waiter
        try:
            loop.call_soon_threadsafe(_wake, future)
        except RuntimeError:
            pass  # the waiting loop is already closed

    async def recv(self) -> Action | None:
        """Wait for the next action; None once the subscription is closed.

        Raises `Lagged` if actions were dropped since the last call.
        """
        while True:
            with self._lock:
                if self._lagged:
                    skipped, self._lagged = self._lagged, 0
                    raise Lagged(skipped)
                if self._queue:
                    return self._queue.popleft()
                if self._closed:
                    return None
                loop = asyncio.get_running_loop()
                future = loop.create_future()
                self._waiter = (loop, future)
            await future

    def close(self) -> None:
        """Stop receiving actions and wake a pending `recv`."""
        with self._lock:
            self._closed = True
            self._queue.clear()
            self._lagged = 0
            waiter, self._waiter = self._waiter, None
        self._controller._unsubscribe(self)
        self._notify(waiter)


class Controller:
    """Handle to send commands to all browser sessions of a server."""

    def __init__(self, capacity: int = ACTION_CHANNEL_SIZE) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._subscribers: list[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self) -> Subscription:
        """Create a receiver for all actions sent from now on."""
        subscription = Subscription(self, self._capacity)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def send(self, action: Action) -> int:
        """Broadcast an action; returns how many subscribers received it."""
        with self._lock:
            subscribers = list(self._subscribers)
        return sum(1 for sub in subscribers if sub._deliver(action))

    def reload(self) -> None:
        """Reload all active browser sessions."""
        self.send(Action.reload())

    def show_message(self, msg: str) -> None:
        """Show `msg` (as inner HTML) as an overlay in all browser sessions."""
        self.send(Action.message(msg))