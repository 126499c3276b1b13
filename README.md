# penguin

A language- and framework-agnostic development server. It serves directories
as a static file server, forwards other requests to a proxy target, and reloads
every connected browser session whenever watched files change.

## Installation

    pip install .

## Command line

Started without arguments, `penguin` prints a short usage overview.

Serve a directory:

    penguin serve ./target

Forward requests to a local backend and serve built assets on a subpath:

    penguin proxy localhost:8000 -m /assets:frontend/dist

Reload every connected browser session of a running server:

    penguin reload

The proxy target may omit the scheme only for `localhost` and loopback
addresses (it then defaults to `http`); it must not contain a path.

Options valid for every subcommand (before or after the subcommand name):

- `-p, --port` – port to listen on, or to send `reload` to (default `4090`)
- `--bind` – IP address to bind to (default `127.0.0.1`)
- `--control-path` – replaces the internal control path `/~~penguin`
- `-q` / `-qq` – less output / no output
- `-l, --log-level` – `trace`, `debug`, `info`, `warn`, `error` or `off`
  (default `warn`); the environment variable `PENGUIN_LOG`, if set, takes
  precedence
- `--open` – open the browser once the server is listening

`serve` and `proxy` also accept:

- `-m, --mount <uri>:<path>` – mount a directory on a URI path (repeatable)
- `-w, --watch <path>` – watch an extra path for changes (repeatable)
- `--no-auto-watch` – do not watch mounted directories
- `--debounce <ms>` – debounce for change events (default `200`)
- `--removal-debounce <ms>` – debounce for removal events (default `3000`)

After a change, the reload waits until no further event arrived for the
debounce duration; removals use the longer removal debounce, so a directory
that is wiped and rebuilt does not reload into a 404 page.

The command exits with status 0 on success, 1 after printing an error report,
and 130 when interrupted.

## Routing

Requests are handled in this order:

1. Requests to the control path (`/~~penguin` by default) are handled by the
   server itself:
   - a WebSocket upgrade request opens the connection used by the browser
     client,
   - `GET <control>/client.js` returns the client script,
   - `POST <control>/reload` reloads all sessions,
   - `POST <control>/message` shows the UTF-8 request body as an overlay,
   - anything else is answered with 400.
2. Requests matching a mount are served from that directory; the mount with
   the longest URI path wins. Directories are served by their `index.html` or
   as a listing (which also shows mounts below them). HTML files get the
   reload script injected. Other files support a single `Range`; several
   ranges are answered with 400, unsatisfiable ones with 416. Requests that
   resolve outside the mounted directory are answered with 400.
3. With a proxy configured, everything else is forwarded to it; otherwise the
   answer is a 404 page.

When forwarding, the `Host` header is set to the target, `Accept-Encoding` is
reduced to `gzip`, `br` and `identity`, and `Location` headers pointing at
the target are rewritten to point at the penguin server. HTML responses (also
gzip- or brotli-compressed ones) get the reload script injected, and a
`Content-Security-Policy` is extended to allow scripts from and connections to
`'self'`. If the target cannot be reached, a 502 (or 504 on timeout) page is
shown and the target is polled; once it answers, all sessions reload.

## Library use

```python
import asyncio

from penguin.config import ProxyTarget
from penguin.server import Server


async def main():
    config = (
        Server.bind(("127.0.0.1", 4090))
        .proxy(ProxyTarget.parse("localhost:8000"))
        .add_mount("/assets", "./frontend/build")
        .validate()
    )
    server, controller = Server.build(config)

    async def reload_later():
        await asyncio.sleep(5)
        controller.reload()

    asyncio.create_task(reload_later())
    await server.serve()


asyncio.run(main())
```

`Builder.validate()` raises a `ConfigError` subclass for a duplicate mount,
for a proxy combined with a mount on `/`, and when neither a proxy nor a
mount is configured. `Controller.show_message(html)` shows an overlay in all
connected browser sessions. `penguin.util.wait_for_proxy(target, poll_period)`
waits (polling every `poll_period` seconds) until a proxy target accepts TCP
connections. `penguin.watch.watch(controller, paths, debounce,
removal_debounce)` watches paths and reloads through the controller; stop it
with `stop()` or by using it in a `with` block.

## Limitations

The server listens on plain HTTP only; it does not terminate TLS, although
proxy targets may use `https`.

## Tests

    pip install .[test]
    pytest