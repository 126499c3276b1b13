"""Watching directories for changes and reloading browser sessions, debounced."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

log = logging.getLogger(__name__)

_CLOSE = object()

# Events caused by merely reading files; they must not trigger reloads (serving
# a watched file would otherwise reload the page forever).
_IGNORED_EVENT_TYPES = frozenset({"opened", "closed_no_write"})


class ReloadDebouncer:
    """Collects file system events and reloads once things have calmed down.

    After an event, waits until no new event arrived for the debounce duration
    (the removal duration for removals). Every new event restarts the wait with
    the shorter of the current and the new event's duration.
    """

    def __init__(self, controller, debounce: float, removal_debounce: float) -> None:
        self._controller = controller
        self._debounce = debounce
        self._removal_debounce = removal_debounce
        self._events: queue.Queue = queue.Queue()

    def _duration_of(self, is_removal: bool) -> float:
        return self._removal_debounce if is_removal else self._debounce

    def push(self, is_removal: bool = False) -> None:
        """Report one file system event."""
        self._events.put(bool(is_removal))

    def close(self) -> None:
        """Make `run` return, dropping any pending reload."""
        self._events.put(_CLOSE)

    def run(self) -> None:
        """Process events until `close` is called; blocks the calling thread."""
        while True:
            event = self._events.get()
            if event is _CLOSE:
                return
            duration = self._duration_of(event)
            log.debug("Received watch-event. Debouncing now for %.3fs.", duration)

            while True:
                try:
                    event = self._events.get(timeout=duration)
                except queue.Empty:
                    break
                if event is _CLOSE:
                    return
                log.debug("Debounce interrupted by another watch-event")
                duration = min(self._duration_of(event), duration)

            log.info("Reloading browser sessions due to file changes in watched directories")
            self._controller.reload()


class _EventHandler(FileSystemEventHandler):
    def __init__(self, debouncer: ReloadDebouncer) -> None:
        super().__init__()
        self._debouncer = debouncer

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in _IGNORED_EVENT_TYPES:
            return
        self._debouncer.push(event.event_type == "deleted")


class _Watching:
    """A running watch; stop it with `stop()` or by leaving a `with` block."""

    def __init__(self, observer, debouncer: ReloadDebouncer, thread: threading.Thread) -> None:
        self._observer = observer
        self._debouncer = debouncer
        self._thread = thread

    def stop(self) -> None:
        self._observer.stop()
        self._observer.join()
        self._debouncer.close()
        self._thread.join()

    def __enter__(self) -> _Watching:
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()


def watch(
    controller,
    paths: Iterable[str | Path],
    debounce: float,
    removal_debounce: float,
) -> _Watching:
    """Recursively watch `paths` and call `controller.reload()` after changes."""
    debouncer = ReloadDebouncer(controller, debounce, removal_debounce)
    handler = _EventHandler(debouncer)
    observer = Observer()

    for path in paths:
        path = Path(path)
        if not path.exists():
            raise OSError(f"failed to watch '{path}': no such file or directory")
        try:
            observer.schedule(handler, str(path), recursive=True)
        except OSError as err:
            raise OSError(f"failed to watch '{path}'") from err

    try:
        observer.start()
    except OSError as err:
        raise OSError("could not create FS watcher") from err

    thread = threading.Thread(target=debouncer.run, name="penguin-watch", daemon=True)
    thread.start()
    return _Watching(observer, debouncer, thread)