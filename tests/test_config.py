from pathlib import Path

import pytest

from penguin.config import (
    DEFAULT_CONTROL_PATH,
    Builder,
    DuplicateUriPathError,
    HasPathError,
    InvalidUriError,
    MissingAuthorityError,
    MissingSchemeError,
    NoProxyOrMountError,
    ProxyAndRootMountError,
    ProxyTarget,
    ProxyTargetParseError,
    normalize_path,
)


@pytest.mark.parametrize(
    "src, scheme, authority",
    [
        ("localhost", "http", "localhost"),
        ("localhost:8000", "http", "localhost:8000"),
        ("https://127.0.0.1:30", "https", "127.0.0.1:30"),
        ("127.0.0.1:30", "http", "127.0.0.1:30"),
        ("127.1.2.3:40", "http", "127.1.2.3:40"),
        ("http://github.com", "http", "github.com"),
        ("https://github.com/", "https", "github.com"),
    ],
)
def test_parse_proxy_target(src, scheme, authority):
    assert ProxyTarget.parse(src) == ProxyTarget(scheme=scheme, authority=authority)


@pytest.mark.parametrize(
    "src, error",
    [
        ("", InvalidUriError),
        ("github.com", MissingSchemeError),
        ("https://", InvalidUriError),
        ("http://github.com/foo", HasPathError),
    ],
)
def test_parse_proxy_target_bad(src, error):
    with pytest.raises(error):
        ProxyTarget.parse(src)


def test_parse_errors_share_base_class():
    with pytest.raises(ProxyTargetParseError):
        ProxyTarget.parse("github.com")


def test_parse_root_path_only_has_no_authority():
    with pytest.raises(MissingAuthorityError):
        ProxyTarget.parse("/")


def test_parse_rejects_bad_port():
    with pytest.raises(InvalidUriError):
        ProxyTarget.parse("localhost:notaport")


def test_proxy_target_str_round_trip():
    target = ProxyTarget.parse("localhost:8000")
    assert str(target) == "http://localhost:8000"
    assert ProxyTarget.parse(str(target)) == target


def test_proxy_target_ports():
    assert ProxyTarget.parse("localhost:8000").port() == 8000
    assert ProxyTarget.parse("http://github.com").port() == 80
    assert ProxyTarget.parse("https://github.com/").port() == 443


def test_proxy_target_host():
    assert ProxyTarget.parse("127.0.0.1:30").host == "127.0.0.1"


@pytest.mark.parametrize(
    "raw, expected",
    [("/", "/"), ("foo", "/foo"), ("foo/", "/foo"), ("/foo/bar/", "/foo/bar")],
)
def test_normalize_path(raw, expected):
    assert normalize_path(raw) == expected


def test_builder_defaults_and_mounts():
    config = (
        Builder(("127.0.0.1", 4090))
        .add_mount("assets/", "frontend/dist")
        .validate()
    )
    assert config.control_path == DEFAULT_CONTROL_PATH
    assert config.proxy is None
    assert [m.uri_path for m in config.mounts] == ["/assets"]
    assert config.mounts[0].fs_path == Path("frontend/dist")
    assert config.bind_addr == ("127.0.0.1", 4090)


def test_builder_control_path_is_normalized():
    config = (
        Builder(("127.0.0.1", 4090))
        .add_mount("/", ".")
        .set_control_path("custom/")
        .validate()
    )
    assert config.control_path == "/custom"


def test_builder_duplicate_mount():
    builder = Builder(("127.0.0.1", 4090)).add_mount("/a", ".")
    with pytest.raises(DuplicateUriPathError) as info:
        builder.add_mount("a/", "other")
    assert info.value.uri_path == "/a"


def test_builder_requires_proxy_or_mount():
    with pytest.raises(NoProxyOrMountError):
        Builder(("127.0.0.1", 4090)).validate()


def test_builder_rejects_proxy_with_root_mount():
    builder = (
        Builder(("127.0.0.1", 4090))
        .proxy(ProxyTarget.parse("localhost:8000"))
        .add_mount("/", ".")
    )
    with pytest.raises(ProxyAndRootMountError):
        builder.validate()


def test_builder_proxy_with_sub_mount():
    target = ProxyTarget.parse("localhost:8000")
    config = (
        Builder(("127.0.0.1", 4090)).proxy(target).add_mount("/assets", ".").validate()
    )
    assert config.proxy == target


def test_builder_proxy_twice_fails():
    builder = Builder(("127.0.0.1", 4090)).proxy(ProxyTarget.parse("localhost"))
    with pytest.raises(RuntimeError):
        builder.proxy(ProxyTarget.parse("localhost:8000"))