"""Outbound HTTP for the http_get tool.

Only public http(s) destinations are reachable. The guard runs before the
first request and again for every redirect hop, which is why redirects are
followed by hand instead of by httpx.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import httpx

from sandbox_orchestrator.agent.budget import truncate
from sandbox_orchestrator.errors import ToolError
from sandbox_orchestrator.tools.guard import Resolver, assert_public_url, resolve_host_ips


MAX_REDIRECTS = 5
USER_AGENT = "sandbox-orchestrator-http-get/1.0"


def sanitize_headers(raw: Any) -> dict[str, str]:
    """Lower-case header names, drop non-string values and any Authorization header."""
    if not isinstance(raw, dict):
        return {}
    headers: dict[str, str] = {}
    for key, value in raw.items():
        if not isinstance(key, str) or not isinstance(value, str):
            continue
        name = key.strip().lower()
        if not name or name == "authorization":
            continue
        headers[name] = value
    return headers


async def _check_url(url: str, resolver: Resolver) -> str:
    parsed = await asyncio.to_thread(assert_public_url, url, resolver)
    return parsed.geturl()


async def http_get(
    url: Any,
    headers: Any = None,
    *,
    max_response_chars: int,
    timeout: float,
    log: Callable[[str], None],
    client: httpx.AsyncClient | None = None,
    resolver: Resolver = resolve_host_ips,
) -> dict[str, Any]:
    """Fetch a public URL and return status, headers and a bounded body.

    Args:
        url: Absolute http(s) URL
        headers: Optional request headers (Authorization is never forwarded)
        max_response_chars: Body cap for the job's profile
        timeout: Request timeout in seconds
        log: Job diagnostic log
        client: Shared client; a short-lived one is created when omitted
        resolver: Host name resolver used by the network guard

    Returns:
        dict with url, status, status_text, headers, body and truncated
    """
    if not isinstance(url, str) or not url.strip():
        raise ToolError("url is required for http_get")

    current = await _check_url(url, resolver)
    request_headers = {"user-agent": USER_AGENT, **sanitize_headers(headers)}
    log(f"http_get: {current} (timeout={timeout}s, maxResponseChars={max_response_chars})")

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=timeout, follow_redirects=False)
    try:
        redirects = 0
        while True:
            try:
                response = await client.get(
                    current, headers=request_headers, timeout=timeout, follow_redirects=False
                )
            except httpx.HTTPError as e:
                raise ToolError(f"Failed to fetch URL: {e}") from e

            location = response.headers.get("location")
            if not (response.is_redirect and location):
                break
            redirects += 1
            if redirects > MAX_REDIRECTS:
                raise ToolError(f"Too many redirects (max {MAX_REDIRECTS})")
            current = await _check_url(str(response.url.join(location)), resolver)
            log(f"http_get: following redirect {redirects} to {current}")
    finally:
        if owns_client:
            await client.aclose()

    text = response.text
    body = truncate(text, max_response_chars)
    truncated = body != text
    if truncated:
        log(f"http_get: body truncated from {len(text)} chars (limit {max_response_chars})")

    return {
        "url": current,
        "status": response.status_code,
        "status_text": response.reason_phrase,
        "headers": dict(response.headers),
        "body": body,
        "truncated": truncated,
    }
