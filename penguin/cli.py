"""The 'penguin' command: serve directories, proxy, and reload sessions."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import webbrowser
from collections.abc import Iterable, Sequence
from pathlib import Path

import aiohttp

from .args import DEFAULT_PORT, Args, ServeOptions, parse_args
from .config import DEFAULT_CONTROL_PATH, Config, ConfigError, Mount, ProxyTarget
from .server import Server
from .watch import watch

log = logging.getLogger(__name__)

LOG_ENV_VAR = "PENGUIN_LOG"

_LOG_LEVELS = {
    "trace": 5,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "off": logging.CRITICAL + 10,
}

_BOLD = "1"
_DIM = "2"
_RED = "31"
_GREEN = "32"
_YELLOW = "33"
_BLUE = "34"
_CYAN = "36"
_BRIGHT_RED = "91"
_BRIGHT_GREEN = "92"
_BRIGHT_YELLOW = "93"
_BRIGHT_BLUE = "94"


def _colors_enabled() -> bool:
    if "NO_COLOR" in os.environ:
        return False
    return sys.stdout.isatty() and sys.stderr.isatty()


def _paint(text: str, *codes: str) -> str:
    if not codes or not _colors_enabled():
        return text
    return f"\x1b[{';'.join(codes)}m{text}\x1b[0m"


def _causes(err: BaseException) -> list[BaseException]:
    chain = []
    current = err.__cause__ or (None if err.__suppress_context__ else err.__context__)
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or (
            None if current.__suppress_context__ else current.__context__
        )
    return chain


def format_error(err: BaseException) -> str:
    """A boxed error report with the chain of causes."""
    header = "An error occured :-("
    line = "━" * (len(header) + 4)
    lines = [
        "",
        " " + _paint(f"┏{line}┓", _BRIGHT_YELLOW),
        " " + _paint("┃", _BRIGHT_YELLOW) + "  " + _paint(header, _RED, _BOLD)
        + "  " + _paint("┃", _BRIGHT_YELLOW),
        " " + _paint(f"┗{line}┛", _BRIGHT_YELLOW),
        "",
        _paint(str(err) or type(err).__name__, _BRIGHT_RED),
    ]
    causes = _causes(err)
    if causes:
        lines += ["", "Caused by:"]
        lines += [f"   ‣ {cause or type(cause).__name__}" for cause in causes]
    return "\n".join(lines) + "\n"


def welcome_message() -> str:
    """Shown when the command is started without arguments."""
    lines = [
        _paint("Penguin 🐧", _BRIGHT_BLUE, _BOLD),
        "",
        "You have to specify a subcommand. Example usages:",
        "   ‣ Serve a directory: " + _paint("penguin serve ./target", _YELLOW),
        "   ‣ Reload all browser sessions: " + _paint("penguin reload", _YELLOW),
        "   ‣ Forward requests to proxy and serve one directory on a subpath:",
        "         " + _paint("penguin proxy localhost:8000 -m /assets:frontend/dist", _YELLOW),
        "",
        "For more information, run " + _paint("penguin -h", _YELLOW)
        + " for a short CLI overview",
        "or " + _paint("penguin --help", _YELLOW) + " for a detailed description.",
    ]
    return "\n".join(lines) + "\n"


def _current_dir() -> Path:
    try:
        return Path.cwd()
    except OSError:
        return Path(".")


def _canonical(path: Path) -> Path:
    try:
        return path.resolve(strict=True)
    except OSError:
        return path


def pretty_config(config: Config, args: Args, watched_paths: Sequence[Path]) -> str:
    """A description of routing, watched paths and hints."""
    lines = [
        "",
        "   " + _paint("▸ Routing:", _CYAN, _BOLD),
        "     ├╴ Requests to " + _paint(config.control_path, _BRIGHT_BLUE)
        + " are handled internally by penguin",
    ]
    for mount in config.mounts:
        fs_path = _current_dir() / mount.fs_path
        lines.append(
            "     ├╴ Requests to " + _paint(mount.uri_path, _BRIGHT_BLUE)
            + " are served from the directory " + _paint(str(fs_path), _GREEN)
        )
    if config.proxy is not None:
        lines.append(
            "     ╰╴ All remaining requests are forwarded to "
            + _paint(str(config.proxy), _BRIGHT_GREEN)
        )
    else:
        lines.append("     ╰╴ All remaining requests will be responded to with 404")

    if watched_paths:
        lines += [
            "",
            "   " + _paint("▸ Watching:", _CYAN, _BOLD) + " "
            + _paint("(reloading on file change)", _DIM),
        ]
        lines += [
            "     • " + _paint(str(_canonical(Path(p))), _GREEN) for p in watched_paths
        ]

    port_hint = f" -p {args.port}" if args.port != DEFAULT_PORT else ""
    control_hint = (
        f" --control-path {args.control_path}" if args.control_path is not None else ""
    )
    lines += [
        "",
        "   " + _paint("▸ Hints:", _CYAN, _BOLD),
        "     • To reload all browser sessions, run "
        + _paint(f"penguin reload{port_hint}{control_hint}", _YELLOW),
    ]
    if args.log_level == "warn":
        lines.append(
            "     • For more log output use " + _paint("-l trace", _YELLOW)
            + " or set the env variable " + _paint(LOG_ENV_VAR, _YELLOW)
        )
    lines.append("")
    return "\n".join(lines) + "\n"


def watched_paths_for(mounts: Iterable[Mount], options: ServeOptions) -> list[Path]:
    """Paths to watch: mounted directories (unless disabled) plus extra paths."""
    if not options.no_auto_watch:
        return [m.fs_path for m in mounts] + list(options.watched_paths)
    return list(options.watched_paths)


def _host_for_url(host: str) -> str:
    return f"[{host}]" if ":" in host else host


async def reload(args: Args) -> None:
    """Ask a locally running penguin server to reload all browser sessions."""
    control_path = args.control_path if args.control_path is not None else DEFAULT_CONTROL_PATH
    uri = f"http://{_host_for_url(args.bind)}:{args.port}{control_path}/reload"

    if not args.is_quiet():
        print("Sending POST request to " + _paint(uri, _GREEN))

    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(uri):
                pass
    except (aiohttp.ClientError, asyncio.TimeoutError) as err:
        raise RuntimeError(f"failed to send request to '{uri}'") from err

    if not args.is_quiet():
        print(_paint("✔ done", _GREEN, _BOLD))


def _open_browser(url: str) -> None:
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as err:
        opened, reason = False, str(err)
    else:
        reason = "no usable browser found"
    if not opened:
        print(_paint("Warning", _YELLOW) + f": couldn't open browser. Error: {reason}")


async def _run_server(
    proxy: ProxyTarget | None,
    mounts: Sequence[Mount],
    options: ServeOptions,
    args: Args,
) -> None:
    builder = Server.bind((args.bind, args.port))
    for mount in mounts:
        try:
            builder.add_mount(mount.uri_path, mount.fs_path)
        except ConfigError as err:
            raise RuntimeError("failed to add mount") from err
    if args.control_path is not None:
        builder.set_control_path(args.control_path)
    if proxy is not None:
        builder.proxy(proxy)

    try:
        config = builder.validate()
    except ConfigError as err:
        raise RuntimeError("invalid penguin config") from err
    server, controller = Server.build(config)

    watched_paths = watched_paths_for(mounts, options)
    watching = (
        watch(controller, watched_paths, options.debounce, options.removal_debounce)
        if watched_paths
        else None
    )

    try:
        url = f"http://{_host_for_url(args.bind)}:{args.port}"
        if not args.is_muted():
            print(
                _paint("Penguin started!", _BOLD) + " Listening on "
                + _paint(url, _BRIGHT_YELLOW, _BOLD)
            )
            if not args.is_quiet():
                print(pretty_config(config, args, watched_paths), end="")

        serving = asyncio.ensure_future(server.serve())
        if args.open:
            started = asyncio.ensure_future(server.started.wait())
            await asyncio.wait({serving, started}, return_when=asyncio.FIRST_COMPLETED)
            started.cancel()
            if server.started.is_set():
                asyncio.get_running_loop().run_in_executor(None, _open_browser, url)
        await serving
    finally:
        if watching is not None:
            watching.stop()


async def run(args: Args) -> None:
    """Execute the command described by `args`."""
    if args.command == "reload":
        try:
            await reload(args)
        except Exception as err:
            raise RuntimeError("failed to send reload request") from err
        return

    options = args.options if args.options is not None else ServeOptions()
    if args.command == "proxy":
        proxy, mounts = args.target, list(options.mounts)
    else:
        proxy = None
        mounts = list(options.mounts)
        if args.path is not None:
            mounts.append(Mount(uri_path="/", fs_path=args.path))

    try:
        await _run_server(proxy, mounts, options, args)
    except Exception as err:
        raise RuntimeError("failed to run server") from err


def _init_logger(level: str) -> None:
    level = os.environ.get(LOG_ENV_VAR, level).strip().lower()
    logger = logging.getLogger("penguin")
    logger.setLevel(_LOG_LEVELS.get(level, logging.WARNING))
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s > %(message)s"))
        logger.addHandler(handler)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the 'penguin' command; returns the exit status."""
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv:
        print(welcome_message(), end="")
        return 0

    args = parse_args(argv)
    _init_logger(args.log_level)

    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130
    except Exception as err:
        print(format_error(err), end="", file=sys.stderr)
        return 1
    return 0