"""Command-line arguments of the penguin app."""

from __future__ import annotations

import argparse
import ipaddress
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import Mount, ProxyTarget

DEFAULT_PORT = 4090
DEFAULT_BIND = "127.0.0.1"
DEFAULT_LOG_LEVEL = "warn"
LOG_LEVELS = ("trace", "debug", "info", "warn", "error", "off")
DEFAULT_DEBOUNCE_MS = 200
DEFAULT_REMOVAL_DEBOUNCE_MS = 3000

_U16_MAX = 2**16 - 1
_U64_MAX = 2**64 - 1


@dataclass(frozen=True)
class ServeOptions:
    """Options shared by the 'serve' and 'proxy' commands (durations in seconds)."""

    mounts: tuple[Mount, ...] = ()
    no_auto_watch: bool = False
    watched_paths: tuple[Path, ...] = ()
    debounce: float = DEFAULT_DEBOUNCE_MS / 1000
    removal_debounce: float = DEFAULT_REMOVAL_DEBOUNCE_MS / 1000


@dataclass(frozen=True)
class Args:
    """Parsed command line: global options plus the chosen command."""

    command: str
    port: int = DEFAULT_PORT
    bind: str = DEFAULT_BIND
    control_path: str | None = None
    quiet: int = 0
    log_level: str = DEFAULT_LOG_LEVEL
    open: bool = False
    path: Path | None = None
    target: ProxyTarget | None = None
    options: ServeOptions | None = None

    def is_quiet(self) -> bool:
        return self.quiet > 0

    def is_muted(self) -> bool:
        return self.quiet == 2


def _parse_unsigned(text: str, maximum: int) -> int:
    digits = text[1:] if text.startswith("+") else text
    if not digits or not (digits.isascii() and digits.isdigit()):
        raise ValueError("failed to parse as positive integer")
    value = int(digits)
    if value > maximum:
        raise ValueError("number too large")
    return value


def parse_mount(s: str) -> Mount:
    """Parse '<uri>:<path>' into a mount; the URI path is normalized."""
    uri_path, colon, fs_path = s.partition(":")
    if not colon:
        raise ValueError("does not contain a colon")
    if not uri_path.startswith("/"):
        uri_path = "/" + uri_path
    if uri_path.endswith("/") and len(uri_path) > 1:
        uri_path = uri_path[:-1]
    return Mount(uri_path=uri_path, fs_path=Path(fs_path))


def parse_duration(s: str) -> float:
    """Parse a number of milliseconds into seconds."""
    return _parse_unsigned(s, _U64_MAX) / 1000


def _parse_port(s: str) -> int:
    return _parse_unsigned(s, _U16_MAX)


def _parse_ip(s: str) -> str:
    return str(ipaddress.ip_address(s))


def _parse_log_level(s: str) -> str:
    level = s.lower()
    if level not in LOG_LEVELS:
        raise ValueError(f"expected one of {', '.join(LOG_LEVELS)}")
    return level


def _arg_type(parse: Callable[[str], Any], what: str) -> Callable[[str], Any]:
    def convert(text: str) -> Any:
        try:
            return parse(text)
        except ValueError as err:
            raise argparse.ArgumentTypeError(f"invalid {what} '{text}': {err}") from None

    convert.__name__ = what
    return convert


def _add_global_options(parser: argparse.ArgumentParser, sub: bool) -> None:
    prefix = "sub_" if sub else ""

    def default(value: Any) -> Any:
        return None if sub else value

    group = parser.add_argument_group("global options")
    group.add_argument(
        "-p", "--port", dest=prefix + "port", type=_arg_type(_parse_port, "port"),
        default=default(DEFAULT_PORT), help="Port of the Penguin server.",
    )
    group.add_argument(
        "--bind", dest=prefix + "bind", type=_arg_type(_parse_ip, "address"),
        default=default(DEFAULT_BIND),
        help="Address to bind to, e.g. '0.0.0.0' to allow access from your network.",
    )
    group.add_argument(
        "--control-path", dest=prefix + "control_path", default=None,
        help="Overrides the default control path '/~~penguin' with a custom path.",
    )
    group.add_argument(
        "-q", dest=prefix + "quiet", action="count", default=0,
        help="Quiet: '-q' for less output, '-qq' for no output.",
    )
    group.add_argument(
        "-l", "--log-level", dest=prefix + "log_level",
        type=_arg_type(_parse_log_level, "log level"), default=default(DEFAULT_LOG_LEVEL),
        help="Sets the log level: trace, debug, info, warn, error or off.",
    )
    group.add_argument(
        "--open", dest=prefix + "open", action="store_true",
        help="Automatically opens the browser with the URL of this server.",
    )


def _add_serve_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-m", "--mount", dest="mounts", action="append", default=[],
        type=_arg_type(parse_mount, "mount"),
        help="Mount a directory on an URI path: '--mount <uri>:<path>'. Repeatable.",
    )
    parser.add_argument(
        "--no-auto-watch", action="store_true",
        help="Do not automatically watch the mounted paths.",
    )
    parser.add_argument(
        "-w", "--watch", dest="watched_paths", action="append", default=[], type=Path,
        help="Watch a path for file system changes, triggering a reload. Repeatable.",
    )
    parser.add_argument(
        "--debounce", type=_arg_type(parse_duration, "duration"),
        default=DEFAULT_DEBOUNCE_MS / 1000,
        help="The debounce duration (in ms) for watching paths.",
    )
    parser.add_argument(
        "--removal-debounce", type=_arg_type(parse_duration, "duration"),
        default=DEFAULT_REMOVAL_DEBOUNCE_MS / 1000,
        help="The debounce duration (in ms) for removals in watched paths.",
    )


def build_parser() -> argparse.ArgumentParser:
    """The argument parser for the 'penguin' command."""
    parser = argparse.ArgumentParser(
        prog="penguin",
        description="Language-agnostic dev server that can serve directories and "
        "forward requests to a proxy.",
        allow_abbrev=False,
    )
    _add_global_options(parser, sub=False)
    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    serve = commands.add_parser(
        "serve", allow_abbrev=False,
        help="Serve the specified directory as file server.",
        description="Serve the specified directory as file server. More directories "
        "can be mounted via '--mount'; without a main directory at least one mount "
        "is required.",
    )
    serve.add_argument("path", nargs="?", type=Path, default=None)
    _add_serve_options(serve)
    _add_global_options(serve, sub=True)

    proxy = commands.add_parser(
        "proxy", allow_abbrev=False,
        help="Start a server forwarding all requests to the specified target address.",
    )
    proxy.add_argument("target", type=_arg_type(ProxyTarget.parse, "proxy target"))
    _add_serve_options(proxy)
    _add_global_options(proxy, sub=True)

    reload = commands.add_parser(
        "reload", allow_abbrev=False,
        help="Reload all browser sessions of a locally running penguin server.",
    )
    _add_global_options(reload, sub=True)

    return parser


def parse_args(argv: Sequence[str] | None = None) -> Args:
    """Parse the command line (without program name); exits on invalid input."""
    ns = build_parser().parse_args(argv)

    def pick(name: str) -> Any:
        value = getattr(ns, "sub_" + name, None)
        return value if value is not None else getattr(ns, name)

    options = None
    if ns.command in ("serve", "proxy"):
        options = ServeOptions(
            mounts=tuple(ns.mounts),
            no_auto_watch=ns.no_auto_watch,
            watched_paths=tuple(ns.watched_paths),
            debounce=ns.debounce,
            removal_debounce=ns.removal_debounce,
        )

    return Args(
        command=ns.command,
        port=pick("port"),
        bind=pick("bind"),
        control_path=pick("control_path"),
        quiet=ns.quiet + getattr(ns, "sub_quiet", 0),
        log_level=pick("log_level"),
        open=ns.open or getattr(ns, "sub_open", False),
        path=getattr(ns, "path", None),
        target=getattr(ns, "target", None),
        options=options,
    )