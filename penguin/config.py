"""Server configuration: proxy targets, mounts and the configuration builder."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from pathlib import Path

DEFAULT_CONTROL_PATH = "/~~penguin"
"""URI path used for penguin's own control functions (WS connections, commands)."""

_SCHEME_RE = re.compile(r"[A-Za-z][A-Za-z0-9+.\-]*\Z")
_AUTHORITY_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
    "-._~!$&'()*+,;=:@[]%"
)
_PATH_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
    "-._~!$&'()*+,;=:@%/?#"
)


class ProxyTargetParseError(ValueError):
    """A string could not be parsed as a proxy target."""


class InvalidUriError(ProxyTargetParseError):
    """The string is not a valid URI."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"invalid URI: {reason}")


class HasPathError(ProxyTargetParseError):
    """The URI has a path, which a proxy target must not have."""

    def __init__(self) -> None:
        super().__init__("proxy target has path which is not allowed")


class MissingSchemeError(ProxyTargetParseError):
    """The URI has no scheme although its host is not local."""

    def __init__(self) -> None:
        super().__init__(
            "proxy target has no scheme ('http' or 'https') specified, but a "
            "scheme must be specified for non-local targets"
        )


class MissingAuthorityError(ProxyTargetParseError):
    """The URI has no authority ("host")."""

    def __init__(self) -> None:
        super().__init__('proxy target has no authority ("host") specified')


class ConfigError(ValueError):
    """The server configuration is invalid."""


class DuplicateUriPathError(ConfigError):
    """The same URI path was mounted twice."""

    def __init__(self, uri_path: str) -> None:
        super().__init__(f"URI path '{uri_path}' was added as mount twice")
        self.uri_path = uri_path


class ProxyAndRootMountError(ConfigError):
    """A proxy is configured while '/' is mounted, so the proxy would be unused."""

    def __init__(self) -> None:
        super().__init__(
            "a proxy was configured but a mount on '/' was added as well (in "
            "that case, the proxy is would be ignored)"
        )


class NoProxyOrMountError(ConfigError):
    """Neither a proxy nor a mount was configured."""

    def __init__(self) -> None:
        super().__init__(
            "neither a proxy nor a mount was specified: server would always "
            "respond 404 in this case"
        )


def _split_authority(authority: str) -> tuple[str, str | None]:
    """Split an authority into host and port string, validating its syntax."""
    if not authority:
        raise InvalidUriError("empty authority")
    if any(ch not in _AUTHORITY_CHARS for ch in authority):
        raise InvalidUriError(f"invalid character in authority '{authority}'")

    hostport = authority.rpartition("@")[2]
    if hostport.startswith("["):
        close = hostport.find("]")
        if close < 0:
            raise InvalidUriError(f"unclosed bracket in authority '{authority}'")
        host = hostport[1:close]
        rest = hostport[close + 1:]
        if rest and not rest.startswith(":"):
            raise InvalidUriError(f"invalid authority '{authority}'")
        port = rest[1:] if rest else None
    else:
        if "[" in hostport or "]" in hostport or hostport.count(":") > 1:
            raise InvalidUriError(f"invalid authority '{authority}'")
        host, colon, port_str = hostport.partition(":")
        port = port_str if colon else None

    if port:
        if not port.isdigit() or int(port) > 65535:
            raise InvalidUriError(f"invalid port in authority '{authority}'")
    return host, port or None


def _parse_uri(src: str) -> tuple[str | None, str | None, str | None]:
    """Parse a URI into scheme, authority and path-and-query."""
    if not src:
        raise InvalidUriError("empty string")

    if src.startswith("/"):
        if any(ch not in _PATH_CHARS for ch in src):
            raise InvalidUriError("invalid character in path")
        return None, None, src

    if "://" in src:
        scheme, _, rest = src.partition("://")
        if not _SCHEME_RE.match(scheme):
            raise InvalidUriError(f"invalid scheme '{scheme}'")
        end = min((i for i in (rest.find(c) for c in "/?#") if i >= 0), default=len(rest))
        authority, path = rest[:end], rest[end:]
        _split_authority(authority)
        if any(ch not in _PATH_CHARS for ch in path):
            raise InvalidUriError("invalid character in path")
        return scheme.lower(), authority, path

    _split_authority(src)
    return None, src, None


def _is_local_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


@dataclass(frozen=True)
class ProxyTarget:
    """A proxy target made of a scheme and an authority (host and optional port)."""

    scheme: str
    authority: str

    @classmethod
    def parse(cls, src: str) -> ProxyTarget:
        """Parse a target such as 'http://localhost:8000'.

        The scheme may be omitted for 'localhost' and loopback addresses, in
        which case it defaults to 'http'.
        """
        scheme, authority, path = _parse_uri(src)
        if path not in (None, "", "/"):
            raise HasPathError()
        if authority is None:
            raise MissingAuthorityError()
        if scheme is None:
            host, _ = _split_authority(authority)
            if not _is_local_host(host):
                raise MissingSchemeError()
            scheme = "http"
        return cls(scheme=scheme, authority=authority)

    @property
    def host(self) -> str:
        """The host part of the authority, without port or brackets."""
        return _split_authority(self.authority)[0]

    def port(self) -> int:
        """The explicit port, or the default port of the scheme."""
        explicit = _split_authority(self.authority)[1]
        if explicit is not None:
            return int(explicit)
        return 80 if self.scheme == "http" else 443

    def __str__(self) -> str:
        return f"{self.scheme}://{self.authority}"


@dataclass(frozen=True)
class Mount:
    """Maps a URI path prefix (starting with '/', no trailing '/') to a directory."""

    uri_path: str
    fs_path: Path


@dataclass(frozen=True)
class Config:
    """A validated penguin server configuration."""

    bind_addr: tuple[str, int]
    proxy: ProxyTarget | None
    mounts: tuple[Mount, ...]
    control_path: str = DEFAULT_CONTROL_PATH


def normalize_path(path: str) -> str:
    """Strip a trailing '/' (unless the path is '/') and ensure a leading '/'."""
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    if not path.startswith("/"):
        path = "/" + path
    return path


class Builder:
    """Collects configuration for a server and validates it into a `Config`."""

    def __init__(self, bind_addr: tuple[str, int]) -> None:
        self._bind_addr = bind_addr
        self._proxy: ProxyTarget | None = None
        self._mounts: list[Mount] = []
        self._control_path = DEFAULT_CONTROL_PATH

    def proxy(self, target: ProxyTarget) -> Builder:
        """Forward requests not matching a mount to `target`. May be set only once."""
        if self._proxy is not None:
            raise RuntimeError(
                f"`Builder.proxy` called a second time: is called with '{target}' now "
                f"but was previously called with '{self._proxy}'"
            )
        self._proxy = target
        return self

    def add_mount(self, uri_path: str, fs_path: str | Path) -> Builder:
        """Serve the directory `fs_path` under `uri_path`."""
        uri_path = normalize_path(uri_path)
        if any(other.uri_path == uri_path for other in self._mounts):
            raise DuplicateUriPathError(uri_path)
        self._mounts.append(Mount(uri_path=uri_path, fs_path=Path(fs_path)))
        return self

    def set_control_path(self, path: str) -> Builder:
        """Override the default control path."""
        self._control_path = normalize_path(path)
        return self

    def validate(self) -> Config:
        """Check the configuration and return the finished `Config`."""
        if self._proxy is None and not self._mounts:
            raise NoProxyOrMountError()
        if self._proxy is not None and any(m.uri_path == "/" for m in self._mounts):
            raise ProxyAndRootMountError()
        return Config(
            bind_addr=self._bind_addr,
            proxy=self._proxy,
            mounts=tuple(self._mounts),
            control_path=self._control_path,
        )