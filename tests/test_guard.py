import os

import pytest

from sandbox_orchestrator.errors import BlockedUrlError, PathEscapeError
from sandbox_orchestrator.tools.guard import (
    assert_public_url,
    is_forbidden_ip,
    resolve_path,
    sanitize_requested_path,
)


def test_sanitize_strips_quotes_and_json_leftovers():
    assert sanitize_requested_path('  "src/app.py"}  ') == "src/app.py"
    assert sanitize_requested_path("`README.md`]") == "README.md"
    assert sanitize_requested_path("'a/b'}]") == "a/b"


def test_resolve_path_inside_root(tmp_path, log):
    resolved = resolve_path(tmp_path, '"src/main.py"', log)
    assert resolved == (tmp_path / "src" / "main.py").resolve()
    assert log.contains("Normalized requested path")


def test_resolve_path_rejects_traversal(tmp_path):
    with pytest.raises(PathEscapeError):
        resolve_path(tmp_path, "../../etc/passwd")


def test_resolve_path_rejects_absolute_outside(tmp_path):
    with pytest.raises(PathEscapeError):
        resolve_path(tmp_path / "repo", str(tmp_path / "other.txt"))


def test_resolve_path_rejects_symlink_escape(tmp_path):
    root = tmp_path / "repo"
    root.mkdir()
    outside = tmp_path / "secret.txt"
    outside.write_text("x", encoding="utf-8")
    os.symlink(outside, root / "link.txt")
    with pytest.raises(PathEscapeError):
        resolve_path(root, "link.txt")


def test_resolve_path_requires_value(tmp_path):
    with pytest.raises(PathEscapeError):
        resolve_path(tmp_path, "  ")


@pytest.mark.parametrize(
    "ip",
    ["127.0.0.1", "10.1.2.3", "172.16.0.5", "192.168.1.1", "169.254.169.254", "::1", "fe80::1", "::ffff:10.0.0.1", "0.0.0.0"],
)
def test_non_public_addresses_are_forbidden(ip):
    assert is_forbidden_ip(ip)


def test_public_address_is_allowed():
    assert not is_forbidden_ip("93.184.216.34")


@pytest.mark.parametrize(
    "url",
    [
        "http://localhost:8080/",
        "http://api.localhost/",
        "http://127.0.0.1/",
        "http://[::1]/",
        "http://169.254.169.254/latest/meta-data",
        "ftp://example.com/file",
        "http:///nohost",
    ],
)
def test_blocked_urls(url):
    with pytest.raises(BlockedUrlError):
        assert_public_url(url, resolver=lambda host: ["93.184.216.34"])


def test_hostname_resolving_to_private_address_is_blocked():
    with pytest.raises(BlockedUrlError):
        assert_public_url("https://intranet.example.com/", resolver=lambda host: ["93.184.216.34", "10.0.0.7"])


def test_unresolvable_host_is_blocked():
    def fail(host):
        raise OSError("no such host")

    with pytest.raises(BlockedUrlError):
        assert_public_url("https://nowhere.invalid/", resolver=fail)


def test_public_url_passes():
    parsed = assert_public_url("https://docs.example.com/page?q=1", resolver=lambda host: ["93.184.216.34"])
    assert parsed.hostname == "docs.example.com"
