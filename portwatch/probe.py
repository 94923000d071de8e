"""
Probe — one HTTP reachability check against a (host, port, path) target.

Two attempts share a single deadline:

1. GET with the body read. Any HTTP response proves liveness; the status
   code and <title> are recorded.
2. If that fails for any reason, HEAD without looking at the response.
   Any response still proves liveness, but nothing about it is reported
   (opaque).

If both fail the target is inactive. probe() never raises.

Usage:
    result = await probe("localhost", 3000, "/health", timeout_ms=2000)
"""

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Optional, Union

import httpx
import structlog

from .models import normalize_path

log = structlog.get_logger()

DEFAULT_TIMEOUT_MS = 5000
TIMEOUT_ERROR = "Request timed out"

_TITLE_RE = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class ActiveResult:
    """Target answered. Title and status are absent for opaque responses."""
    response_time_ms: float
    page_title: Optional[str] = None
    http_status: Optional[int] = None
    status: str = "active"


@dataclass(frozen=True)
class InactiveResult:
    """Neither attempt got a response."""
    response_time_ms: float
    error: str
    status: str = "inactive"


ProbeResult = Union[ActiveResult, InactiveResult]


# Outcome of a single attempt
_RESPONSE = "response"
_FAILED = "failed"
_TIMED_OUT = "timed_out"


@dataclass
class _Attempt:
    kind: str
    response: Optional[httpx.Response] = None
    error: Optional[str] = None


# =============================================================================
# Helpers
# =============================================================================

def build_url(host: str, port: int, path: Optional[str] = "/") -> str:
    return f"http://{host}:{port}{normalize_path(path)}"


def extract_title(text: str) -> Optional[str]:
    """First <title> in an HTML document, trimmed. Blank titles count as missing."""
    match = _TITLE_RE.search(text)
    if not match:
        return None
    return match.group(1).strip() or None


def _describe(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or type(exc).__name__


async def _attempt(coro, budget: float) -> _Attempt:
    """Run one request under its own cancellation scope."""
    if budget <= 0:
        coro.close()
        return _Attempt(_TIMED_OUT)
    try:
        response = await asyncio.wait_for(coro, timeout=budget)
    except (asyncio.TimeoutError, httpx.TimeoutException):
        return _Attempt(_TIMED_OUT)
    except httpx.HTTPError as e:
        return _Attempt(_FAILED, error=_describe(e))
    except (httpx.InvalidURL, OSError, ValueError) as e:
        return _Attempt(_FAILED, error=_describe(e))
    return _Attempt(_RESPONSE, response=response)


# =============================================================================
# Probe
# =============================================================================

async def probe(host: str, port: int, path: Optional[str] = "/",
                timeout_ms: int = DEFAULT_TIMEOUT_MS, *,
                client: Optional[httpx.AsyncClient] = None,
                follow_redirects: bool = True) -> ProbeResult:
    """Check whether anything answers HTTP on ``host:port``.

    ``client`` lets callers share a connection pool; when omitted a client is
    opened for this probe only.
    Requests run with httpx timeouts disabled; ``timeout_ms`` is the only
    deadline, whatever the client was built with.
    """
    if client is None:
        async with httpx.AsyncClient(timeout=None, follow_redirects=follow_redirects) as own:
            return await _probe(own, host, port, path, timeout_ms)
    return await _probe(client, host, port, path, timeout_ms)


async def _probe(client: httpx.AsyncClient, host: str, port: int,
                 path: Optional[str], timeout_ms: int) -> ProbeResult:
    url = build_url(host, port, path)
    timeout = timeout_ms / 1000
    start = time.monotonic()
    deadline = start + timeout

    def elapsed_ms() -> float:
        return (time.monotonic() - start) * 1000

    # Attempt 1: full GET, body read
    first = await _attempt(client.get(url, timeout=None), deadline - time.monotonic())
    if first.kind == _RESPONSE:
        response = first.response
        return ActiveResult(
            response_time_ms=elapsed_ms(),
            page_title=extract_title(response.text),
            http_status=response.status_code,
        )

    log.debug("probe_fallback", url=url, reason=first.kind, error=first.error)

    # Attempt 2: HEAD, response not inspected
    second = await _attempt(client.head(url, timeout=None), deadline - time.monotonic())
    if second.kind == _RESPONSE:
        return ActiveResult(response_time_ms=elapsed_ms())

    if second.kind == _TIMED_OUT:
        return InactiveResult(response_time_ms=float(timeout_ms), error=TIMEOUT_ERROR)

    return InactiveResult(
        response_time_ms=elapsed_ms(),
        error=second.error or first.error or "Unknown error",
    )
