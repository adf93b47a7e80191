"""
Tests — Fetch Orchestrator.

Covers:
    - All-settled join: partial failures stay per source
    - Fatal only when every source (primary included) failed
    - Primary-source semantics
    - HTML / non-JSON / error-envelope payloads are source failures
    - Error text sanitisation (tags, ids, length)
    - httpx transport via httpx.MockTransport
    - Cancellation propagates
"""

import asyncio

import httpx
import pytest

from app.core.exceptions import SignalStarvationError
from app.services.signals.orchestrator import (
    MAX_ERROR_CHARS,
    STARVATION_MESSAGE,
    FetchSpec,
    ResponseShapeError,
    SourceFetchError,
    check_payload,
    fetch_json,
    http_source,
    load,
    looks_like_html,
    run_load,
    sanitize_error,
)

HTML_404 = "<!DOCTYPE html><html><head><title>404</title></head><body><h1>Not Found</h1></body></html>"


def _ok(name, payload, primary=False):
    async def _fetch():
        return payload
    return FetchSpec(name, _fetch, primary=primary)


def _fail(name, message="boom", primary=False, exc=RuntimeError):
    async def _fetch():
        raise exc(message)
    return FetchSpec(name, _fetch, primary=primary)


def _cockpit_sources(failing=(), primary="pending_approvals"):
    names = ["pending_approvals", "who_blocking", "sla_radar", "risk_signals",
             "portfolio_approvals", "bottlenecks"]
    return [
        _fail(n, f"{n} exploded", primary=(n == primary)) if n in failing
        else _ok(n, [{"id": n}], primary=(n == primary))
        for n in names
    ]


# ═════════════════════════════════════════════════════════════════════════════
# All-settled join
# ═════════════════════════════════════════════════════════════════════════════

class TestLoad:
    def test_partial_failure_is_not_fatal(self):
        failing = ("who_blocking", "sla_radar", "risk_signals", "bottlenecks")
        result = run_load(_cockpit_sources(failing))
        assert result.fatal is None
        assert set(result.succeeded) == {"pending_approvals", "portfolio_approvals"}
        assert set(result.errors) == set(failing)
        assert result.errors["sla_radar"] == "sla_radar exploded"
        assert result.payload("pending_approvals") == [{"id": "pending_approvals"}]
        assert result.payload("sla_radar") is None

    def test_all_failed_is_fatal(self):
        names = ("pending_approvals", "who_blocking", "sla_radar", "risk_signals",
                 "portfolio_approvals", "bottlenecks")
        result = run_load(_cockpit_sources(names))
        assert result.fatal == STARVATION_MESSAGE
        assert len(result.errors) == 6
        with pytest.raises(SignalStarvationError) as exc_info:
            result.raise_for_starvation()
        assert exc_info.value.errors == result.errors

    def test_primary_failed_but_others_ok(self):
        result = run_load(_cockpit_sources(("pending_approvals",)))
        assert result.fatal is None
        assert result.primary == "pending_approvals"
        assert "pending_approvals" in result.errors

    def test_primary_alone_keeps_view_alive(self):
        failing = ("who_blocking", "sla_radar", "risk_signals", "portfolio_approvals", "bottlenecks")
        result = run_load(_cockpit_sources(failing))
        assert result.fatal is None
        assert list(result.succeeded) == ["pending_approvals"]

    def test_no_primary_configured(self):
        result = run_load([_fail("a"), _fail("b")])
        assert result.primary is None
        assert result.fatal == STARVATION_MESSAGE

    def test_empty_source_list_is_fatal(self):
        assert run_load([]).fatal == STARVATION_MESSAGE

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError):
            run_load([_ok("a", []), _ok("a", [])])

    def test_sources_run_concurrently(self):
        async def scenario():
            started = []
            gate = asyncio.Event()

            def make(name):
                async def _fetch():
                    started.append(name)
                    if len(started) == 3:
                        gate.set()
                    await asyncio.wait_for(gate.wait(), timeout=1)
                    return [name]
                return FetchSpec(name, _fetch)

            return await load([make("a"), make("b"), make("c")])

        result = asyncio.run(scenario())
        assert result.fatal is None
        assert set(result.succeeded) == {"a", "b", "c"}

    def test_one_failure_does_not_cancel_others(self):
        async def slow():
            await asyncio.sleep(0.01)
            return ["late"]
        result = run_load([_fail("fast"), FetchSpec("slow", slow)])
        assert result.payload("slow") == ["late"]

    def test_fallback_label_when_error_is_empty(self):
        spec = FetchSpec("risk_signals", _fail("x", "").fetch, label="Failed to load risk signals")
        result = run_load([spec])
        assert result.errors["risk_signals"] == "Failed to load risk signals"

    def test_cancellation_propagates(self):
        async def hang():
            await asyncio.sleep(10)

        async def scenario():
            task = asyncio.ensure_future(load([FetchSpec("hang", hang), _ok("fine", [])]))
            await asyncio.sleep(0)
            task.cancel()
            await task

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(scenario())

    def test_to_dict(self):
        d = run_load([_ok("a", [], primary=True), _fail("b", "nope")]).to_dict()
        assert d["fatal"] is None
        assert d["primary"] == "a"
        assert d["sources"]["a"]["status"] == "ok"
        assert d["sources"]["b"] == {"status": "error", "error": "nope", "duration_ms": d["sources"]["b"]["duration_ms"]}


# ═════════════════════════════════════════════════════════════════════════════
# Payload checks
# ═════════════════════════════════════════════════════════════════════════════

class TestPayloadChecks:
    def test_html_string_payload_is_failure(self):
        result = run_load([_ok("a", HTML_404)])
        assert "HTML" in result.errors["a"]

    def test_plain_text_payload_is_failure(self):
        with pytest.raises(ResponseShapeError):
            check_payload("Internal Server Error")

    def test_json_text_payload_is_parsed(self):
        assert check_payload('{"items": [1, 2]}') == {"items": [1, 2]}

    def test_error_envelope_is_failure(self):
        result = run_load([_ok("a", {"ok": False, "error": "Forbidden"})])
        assert result.errors["a"] == "Forbidden"

    def test_error_key_is_failure(self):
        with pytest.raises(SourceFetchError):
            check_payload({"error": "rate limited"})

    def test_ok_envelope_passes(self):
        assert check_payload({"ok": True, "items": []}) == {"ok": True, "items": []}

    @pytest.mark.parametrize("text,expected", [
        (HTML_404, True),
        ("  \n<html><body>x</body></html>", True),
        (b"<!doctype html>", True),
        ('{"a": 1}', False),
        ("", False),
        (None, False),
    ])
    def test_looks_like_html(self, text, expected):
        assert looks_like_html(text) is expected


class TestSanitizeError:
    def test_strips_tags_and_collapses_whitespace(self):
        assert sanitize_error("<h1>Bad   Gateway</h1>\n<p>try again</p>") == "Bad Gateway try again"

    def test_drops_script_blocks(self):
        assert sanitize_error("<script>alert(1)</script>Oops") == "Oops"

    def test_masks_identifiers(self):
        msg = sanitize_error("approval 3fa85f64-5717-4562-b3fc-2c963f66afa6 not found")
        assert msg == "approval [id] not found"

    def test_unescapes_entities(self):
        assert sanitize_error("a &amp; b") == "a & b"

    def test_capped_length(self):
        msg = sanitize_error("x" * 1000)
        assert len(msg) == MAX_ERROR_CHARS
        assert msg.endswith("…")

    def test_none(self):
        assert sanitize_error(None) == ""


# ═════════════════════════════════════════════════════════════════════════════
# httpx transport
# ═════════════════════════════════════════════════════════════════════════════

def _transport(status, body, content_type="application/json"):
    def handler(request):
        return httpx.Response(status, text=body, headers={"Content-Type": content_type})
    return httpx.MockTransport(handler)


class TestHttpSource:
    def test_json_success(self):
        spec = http_source("remote", "https://signals.example/api", transport=_transport(200, '{"items": [1]}'))
        result = run_load([spec])
        assert result.payload("remote") == {"items": [1]}

    def test_html_404_is_error_not_data(self):
        spec = http_source("remote", "https://signals.example/api", transport=_transport(404, HTML_404, "text/html"))
        result = run_load([spec])
        assert result.fatal == STARVATION_MESSAGE
        err = result.errors["remote"]
        assert err.startswith("HTTP 404")
        assert "<" not in err

    def test_html_with_json_content_type_still_fails(self):
        spec = http_source("remote", "https://signals.example/api", transport=_transport(200, HTML_404))
        assert "remote" in run_load([spec]).errors

    def test_json_error_body_message(self):
        spec = http_source(
            "remote", "https://signals.example/api",
            transport=_transport(500, '{"message": "database unavailable"}'),
        )
        assert run_load([spec]).errors["remote"] == "HTTP 500: database unavailable"

    def test_non_json_success_body(self):
        spec = http_source("remote", "https://signals.example/api", transport=_transport(200, "hello"))
        assert run_load([spec]).errors["remote"] == "Response was not valid JSON"

    def test_transport_error_is_contained(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)
        spec = http_source("remote", "https://signals.example/api", transport=httpx.MockTransport(handler))
        result = run_load([spec, _ok("local", [], primary=True)])
        assert result.fatal is None
        assert "connection refused" in result.errors["remote"]

    def test_request_headers_and_params(self):
        seen = {}

        def handler(request):
            seen["accept"] = request.headers.get("Accept")
            seen["cache"] = request.headers.get("Cache-Control")
            seen["scope"] = request.url.params.get("scope")
            return httpx.Response(200, json=[])

        async def scenario():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await fetch_json(client, "https://signals.example/api", params={"scope": "all"})

        assert asyncio.run(scenario()) == []
        assert seen == {"accept": "application/json", "cache": "no-store, no-cache, must-revalidate", "scope": "all"}
