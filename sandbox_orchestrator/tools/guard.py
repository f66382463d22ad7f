"""Path and network guards shared by the tool handlers.

- resolve_path: keep every file access inside the workspace repo root
- assert_public_url: keep every outbound request on the public internet
"""

from __future__ import annotations

import ipaddress
import socket
from pathlib import Path
from typing import Callable
from urllib.parse import urlsplit, SplitResult

from sandbox_orchestrator.errors import BlockedUrlError, PathEscapeError


Resolver = Callable[[str], list[str]]

_QUOTES = "'\"`"
_BLOCKED_HOSTS = {"localhost", "0.0.0.0", "::1", "[::1]"}


# =============================================================================
# Paths
# =============================================================================

def sanitize_requested_path(raw: str) -> str:
    """Strip the decoration models tend to leave around paths.

    Whitespace, surrounding quotes or backticks and trailing ``}``/``]``
    left over from JSON fragments are removed.
    """
    value = str(raw or "").strip()
    previous = None
    while value != previous:
        previous = value
        value = value.strip(_QUOTES).rstrip("}]").strip()
    return value


def resolve_path(
    root: Path,
    requested: str,
    log: Callable[[str], None] | None = None,
) -> Path:
    """Resolve ``requested`` against ``root`` and refuse anything outside it.

    Relative paths are taken from the root. Symlinks are resolved before the
    containment check, so a link pointing out of the workspace is rejected.
    """
    cleaned = sanitize_requested_path(requested)
    if not cleaned:
        raise PathEscapeError("Path is required")
    if log and cleaned != requested:
        log(f"Normalized requested path {requested!r} -> {cleaned!r}")

    base = root.resolve()
    candidate = Path(cleaned)
    if not candidate.is_absolute():
        candidate = base / candidate
    resolved = candidate.resolve()

    if resolved != base and base not in resolved.parents:
        raise PathEscapeError(f"Path escapes the sandbox: {cleaned}")
    return resolved


def relative_to_root(root: Path, path: Path) -> str:
    """Repo-relative display path; ``.`` for the root itself."""
    rel = path.relative_to(root.resolve())
    return rel.as_posix() or "."


# =============================================================================
# Network
# =============================================================================

def is_forbidden_ip(value: str) -> bool:
    """True for any address that is not publicly routable."""
    try:
        ip = ipaddress.ip_address(value.split("%", 1)[0])
    except ValueError:
        return True
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def resolve_host_ips(hostname: str) -> list[str]:
    """Resolve every address of ``hostname`` through the system resolver."""
    infos = socket.getaddrinfo(hostname, None)
    ips = []
    for info in infos:
        sockaddr = info[4]
        if isinstance(sockaddr, tuple) and sockaddr:
            ips.append(str(sockaddr[0]))
    return sorted(set(ips))


def _literal_ip(host: str) -> str | None:
    try:
        return str(ipaddress.ip_address(host))
    except ValueError:
        return None


def assert_public_url(raw_url: str, resolver: Resolver = resolve_host_ips) -> SplitResult:
    """Validate that ``raw_url`` is an http(s) URL pointing at public hosts only.

    IP literals are checked directly; host names are resolved and every
    returned address must be public.
    """
    parsed = urlsplit(str(raw_url or "").strip())
    if parsed.scheme not in {"http", "https"}:
        raise BlockedUrlError("Only http(s) URLs are allowed")

    host = (parsed.hostname or "").strip().lower()
    if not host:
        raise BlockedUrlError("URL hostname is required")
    if host in _BLOCKED_HOSTS or host.endswith(".localhost"):
        raise BlockedUrlError(f"Blocked URL host: {host}")

    literal = _literal_ip(host)
    if literal is not None:
        ips = [literal]
    else:
        try:
            ips = resolver(host)
        except (OSError, UnicodeError) as e:
            raise BlockedUrlError(f"Could not resolve URL host {host}: {e}") from e
    if not ips:
        raise BlockedUrlError(f"Could not resolve URL host {host}")

    for ip in ips:
        if is_forbidden_ip(ip):
            raise BlockedUrlError(f"Blocked private or local network target: {host} ({ip})")
    return parsed
