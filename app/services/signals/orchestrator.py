"""
Fetch Orchestrator — all-settled fan-out over independent signal sources.

Every source is fetched concurrently and each one is allowed to fail on its
own: a failure becomes a contained ``SourceError`` for that tile and never
cancels or taints the others.  The result is only fatal when *every*
source failed, i.e. total signal starvation.

Threading: the orchestrator starts none.  Sources are coroutines joined with
``asyncio.gather`` on a single event loop for the lifetime of one request;
a source with blocking work offloads it itself (database views run through
``asyncio.to_thread`` in the service layer).  No retries; a manual
refresh re-runs the whole fan-out.  Timeouts belong to the transport
(``httpx.Timeout``); request-level cancellation propagates as
``asyncio.CancelledError`` and no partial result is returned.

Usage:
    from app.services.signals.orchestrator import FetchSpec, load, run_load
    result = run_load([
        FetchSpec("pending_approvals", fetch_pending, primary=True),
        FetchSpec("sla_radar", fetch_sla),
    ])
    if result.fatal:
        ...
"""

from __future__ import annotations

import asyncio
import html
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping

import httpx

from app.core.exceptions import SignalStarvationError

logger = logging.getLogger(__name__)

# Error text shown on a tile is capped at this many characters.
MAX_ERROR_CHARS = 200
STARVATION_MESSAGE = "Failed to load governance signals"

_DEFAULT_TIMEOUT = 15


# ═════════════════════════════════════════════════════════════════════════════
# Errors & result types
# ═════════════════════════════════════════════════════════════════════════════

class SourceFetchError(Exception):
    """A source responded, but with a failure status or an error payload."""


class ResponseShapeError(SourceFetchError):
    """A source returned something that is not JSON (e.g. an HTML error page)."""


@dataclass(frozen=True)
class FetchSpec:
    """One independent data request.

    Attributes:
        name:    result key (tile name).
        fetch:   zero-argument coroutine function returning the payload.
        primary: the consolidated source that, when healthy, alone keeps the
                 view alive.
        label:   fallback error text when the failure carries no message.
    """
    name: str
    fetch: Callable[[], Awaitable[Any]]
    primary: bool = False
    label: str = ""


@dataclass(frozen=True)
class SourceOk:
    name: str
    payload: Any
    duration_ms: float = 0.0
    ok: bool = True

    def to_dict(self) -> dict:
        return {"status": "ok", "duration_ms": round(self.duration_ms, 1)}


@dataclass(frozen=True)
class SourceError:
    name: str
    error: str
    duration_ms: float = 0.0
    ok: bool = False

    def to_dict(self) -> dict:
        return {"status": "error", "error": self.error, "duration_ms": round(self.duration_ms, 1)}


@dataclass(frozen=True)
class LoadResult:
    results: dict
    fatal: str | None = None
    primary: str | None = None

    @property
    def succeeded(self) -> dict[str, Any]:
        return {n: r.payload for n, r in self.results.items() if r.ok}

    @property
    def errors(self) -> dict[str, str]:
        return {n: r.error for n, r in self.results.items() if not r.ok}

    def payload(self, name: str, default: Any = None) -> Any:
        r = self.results.get(name)
        return r.payload if r is not None and r.ok else default

    def raise_for_starvation(self) -> None:
        if self.fatal:
            raise SignalStarvationError(self.fatal, errors=self.errors)

    def to_dict(self) -> dict:
        return {
            "fatal": self.fatal,
            "primary": self.primary,
            "sources": {n: r.to_dict() for n, r in self.results.items()},
        }


# ═════════════════════════════════════════════════════════════════════════════
# Payload checks
# ═════════════════════════════════════════════════════════════════════════════

_TAG_BLOCK_RE = re.compile(r"<(script|style)\b.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")
_UUID_RE = re.compile(
    r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b", re.IGNORECASE,
)


def looks_like_html(text: str | bytes | None) -> bool:
    if not text:
        return False
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    head = text.lstrip()[:64].lower()
    return head.startswith(("<!doctype html", "<html", "<head", "<body"))


def sanitize_error(message: Any, limit: int = MAX_ERROR_CHARS) -> str:
    """Make an error safe to show: no markup, no raw identifiers, bounded length."""
    text = "" if message is None else str(message)
    text = _TAG_BLOCK_RE.sub(" ", text)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    text = _UUID_RE.sub("[id]", text)
    text = _WS_RE.sub(" ", text).strip()
    if len(text) > limit:
        text = text[: limit - 1].rstrip() + "…"
    return text


def parse_json_text(text: str | bytes) -> Any:
    """Parse a JSON body; HTML or non-JSON bodies raise ResponseShapeError."""
    if looks_like_html(text):
        raise ResponseShapeError("Unexpected HTML response")
    try:
        return json.loads(text)
    except (ValueError, TypeError) as exc:
        raise ResponseShapeError("Response was not valid JSON") from exc


def _error_from_payload(payload: Any) -> str | None:
    """Return the error text of an ``{"ok": false, "error": ...}`` envelope."""
    if not isinstance(payload, Mapping):
        return None
    err = payload.get("error")
    if payload.get("ok") is False:
        return str(err or payload.get("message") or "Request failed")
    if isinstance(err, str) and err:
        return err
    return None


def check_payload(payload: Any) -> Any:
    """Validate a fetched payload; text payloads must be JSON."""
    if isinstance(payload, (str, bytes)):
        payload = parse_json_text(payload)
    err = _error_from_payload(payload)
    if err is not None:
        raise SourceFetchError(err)
    return payload


# ═════════════════════════════════════════════════════════════════════════════
# HTTP transport
# ═════════════════════════════════════════════════════════════════════════════

async def fetch_json(client: httpx.AsyncClient, url: str, *, params: Mapping | None = None) -> Any:
    """GET ``url`` and return parsed JSON.

    A non-2xx status, or an HTML body (whatever ``Content-Type`` claims), is
    a fetch failure and is never parsed as data.
    """
    resp = await client.get(
        url,
        params=params,
        headers={
            "Accept": "application/json",
            "Cache-Control": "no-store, no-cache, must-revalidate",
            "Pragma": "no-cache",
        },
    )
    text = resp.text
    if looks_like_html(text):
        raise ResponseShapeError(f"HTTP {resp.status_code}: {sanitize_error(text)}")

    body = None
    if text:
        try:
            body = json.loads(text)
        except ValueError:
            body = None

    if not resp.is_success:
        message = None
        if isinstance(body, Mapping):
            message = body.get("message") or body.get("error")
        message = message or text[:MAX_ERROR_CHARS] or f"Request failed ({resp.status_code})"
        raise SourceFetchError(f"HTTP {resp.status_code}: {message}")

    if body is None:
        raise ResponseShapeError("Response was not valid JSON")
    return body


def http_source(
    name: str,
    url: str,
    *,
    timeout: float = _DEFAULT_TIMEOUT,
    params: Mapping | None = None,
    primary: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FetchSpec:
    """FetchSpec for a remote JSON endpoint. Each fetch owns its own client."""

    async def _fetch():
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport) as client:
            return await fetch_json(client, url, params=params)

    return FetchSpec(name=name, fetch=_fetch, primary=primary, label=f"Failed to load {name.replace('_', ' ')}")


# ═════════════════════════════════════════════════════════════════════════════
# All-settled join
# ═════════════════════════════════════════════════════════════════════════════

async def _settle(spec: FetchSpec) -> SourceOk | SourceError:
    t0 = time.perf_counter()
    try:
        payload = check_payload(await spec.fetch())
    except Exception as exc:
        duration_ms = (time.perf_counter() - t0) * 1000
        message = sanitize_error(str(exc)) or spec.label or f"Failed to load {spec.name}"
        logger.warning(
            "Signal source %s failed (%.0fms): %s", spec.name, duration_ms, message,
            extra={"source": spec.name, "duration_ms": duration_ms},
        )
        return SourceError(name=spec.name, error=message, duration_ms=duration_ms)
    duration_ms = (time.perf_counter() - t0) * 1000
    logger.debug(
        "Signal source %s loaded (%.0fms)", spec.name, duration_ms,
        extra={"source": spec.name, "duration_ms": duration_ms},
    )
    return SourceOk(name=spec.name, payload=payload, duration_ms=duration_ms)


async def load(sources: Iterable[FetchSpec]) -> LoadResult:
    """Fetch every source concurrently and wait for all of them to settle."""
    specs = list(sources)
    names = [s.name for s in specs]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate source names: {names}")

    settled = await asyncio.gather(*(_settle(s) for s in specs))
    results = {r.name: r for r in settled}

    primary = next((s.name for s in specs if s.primary), None)
    primary_failed = primary is None or not results[primary].ok
    all_failed = all(not r.ok for r in settled)

    fatal = None
    if all_failed and primary_failed:
        fatal = STARVATION_MESSAGE
        logger.error("Signal starvation: all %d sources failed", len(specs))
    elif any(not r.ok for r in settled):
        logger.info(
            "Signal load degraded: %d/%d sources failed",
            sum(1 for r in settled if not r.ok), len(specs),
        )
    return LoadResult(results=results, fatal=fatal, primary=primary)


def run_load(sources: Iterable[FetchSpec]) -> LoadResult:
    """Synchronous entry point for request handlers."""
    return asyncio.run(load(sources))
