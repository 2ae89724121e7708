from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from urllib.parse import urlsplit, urlunsplit

import httpx


@dataclass(frozen=True)
class ProbeResult:
    ok: bool
    reason: str = "ok"
    details: dict[str, Any] = field(default_factory=dict)


Probe = Callable[[str], Awaitable[ProbeResult]]


def _safe_url(url: str) -> str:
    """
    Strip querystrings so probe details never carry tokens into logs or alerts.
    """
    s = (url or "").strip()
    if not s:
        return s
    try:
        parts = urlsplit(s)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    except ValueError:
        return s[:500]


async def http_probe(url: str, client: httpx.AsyncClient, *, timeout_seconds: float = 15.0) -> ProbeResult:
    """GET the endpoint; redirects are followed and any non-2xx final status is a failure.

    raise_for_status rejects 1xx and 3xx as well, so only 2xx counts as available.
    """
    started = time.perf_counter()
    try:
        resp = await client.get(url, follow_redirects=True, timeout=timeout_seconds)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        return ProbeResult(
            ok=False,
            reason=f"HTTP status {e.response.status_code} for url ({_safe_url(str(e.request.url))})",
            details={"status_code": e.response.status_code, "http_elapsed_ms": round(elapsed_ms, 3)},
        )
    except httpx.HTTPError as e:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        return ProbeResult(
            ok=False,
            reason=f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
            details={"http_elapsed_ms": round(elapsed_ms, 3)},
        )

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    return ProbeResult(
        ok=True,
        details={
            "status_code": resp.status_code,
            "final_url": _safe_url(str(resp.url)),
            "http_elapsed_ms": round(elapsed_ms, 3),
        },
    )


def make_http_probe(client: httpx.AsyncClient, *, timeout_seconds: float = 15.0) -> Probe:
    async def _probe(url: str) -> ProbeResult:
        return await http_probe(url, client, timeout_seconds=timeout_seconds)

    return _probe
