"""
Tests for governor.py.

Covers the policy order (internal → blacklist → whitelist → tracked),
the per-URL attempt ceiling, deadline handling, and installation.
"""

import asyncio

import pytest

from fakes import FakePage, FakeRoute
from playwright.async_api import Error as PlaywrightError
from visual_baseline.governor import (
    ABORT_BLOCKED,
    ABORT_FAILED,
    ABORT_TIMED_OUT,
    GovernorSettings,
    RequestGovernor,
    RouteDecision,
)
from visual_baseline.utils import normalize_base_url

BASE = "https://example.com"
CDN = "https://cdn.other.net/lib.js"


def make_governor(**kwargs):
    kwargs.setdefault("whitelisted_domains", ["youtube.com"])
    kwargs.setdefault("blacklisted_domains", ["tracker.io"])
    return RequestGovernor(BASE, **kwargs)


# ====================================================================
# 1. Policy decisions
# ====================================================================

class TestDecide:

    def test_same_origin_continues(self):
        gov = make_governor()
        assert gov.decide("https://example.com/app.css") is RouteDecision.CONTINUE
        assert gov.decide("https://example.com") is RouteDecision.CONTINUE
        assert gov.attempts == {}

    def test_lookalike_origin_is_foreign(self):
        gov = make_governor()
        assert gov.decide("https://example.com.cdn.net/x.js") is RouteDecision.TRACK

    @pytest.mark.parametrize("typed_base", [
        "https://Example.com",
        "https://example.com:443",
        "HTTPS://EXAMPLE.COM:443/",
    ])
    def test_non_canonical_base_still_same_origin(self, typed_base):
        """Request URLs arrive with a lower-case host and no default port."""
        gov = RequestGovernor.from_settings(
            normalize_base_url(typed_base), GovernorSettings(block_foreign=True),
        )
        assert gov.decide("https://example.com/about") is RouteDecision.CONTINUE
        assert gov.decide("https://example.com/static/app.js") is RouteDecision.CONTINUE
        assert gov.decide(CDN) is RouteDecision.BLOCK

    def test_base_canonicalised_on_construction(self):
        gov = RequestGovernor("https://Example.com:443/")
        assert gov.base_url == BASE
        assert gov.is_internal("https://example.com/about")

    def test_data_uri_continues(self):
        gov = make_governor()
        assert gov.decide("data:image/png;base64,AAAA") is RouteDecision.CONTINUE

    def test_blacklisted_blocked_regardless_of_history(self):
        gov = make_governor()
        for _ in range(5):
            assert gov.decide("https://tracker.io/pixel") is RouteDecision.BLOCK
        assert gov.attempts == {}

    def test_whitelisted_never_counted(self):
        gov = make_governor(max_attempts=1)
        url = "https://www.youtube.com/embed/abc"
        for _ in range(5):
            assert gov.decide(url) is RouteDecision.CONTINUE
        assert url not in gov.attempts

    def test_blacklist_wins_over_whitelist(self):
        gov = make_governor(whitelisted_domains=["cdn.net"], blacklisted_domains=["cdn.net/ads"])
        assert gov.decide("https://cdn.net/ads/banner.js") is RouteDecision.BLOCK

    def test_attempt_ceiling(self):
        """Third identical request is refused without incrementing further."""
        gov = make_governor(max_attempts=2)
        assert gov.decide(CDN) is RouteDecision.TRACK
        assert gov.decide(CDN) is RouteDecision.TRACK
        assert gov.attempts[CDN] == 2
        assert gov.decide(CDN) is RouteDecision.EXHAUSTED
        assert gov.attempts[CDN] == 2

    def test_attempts_are_per_url(self):
        gov = make_governor(max_attempts=1)
        assert gov.decide(CDN) is RouteDecision.TRACK
        assert gov.decide(CDN + "?v=2") is RouteDecision.TRACK

    def test_block_foreign_mode(self):
        gov = make_governor(block_foreign=True)
        assert gov.decide("https://example.com/main.js") is RouteDecision.CONTINUE
        assert gov.decide(CDN) is RouteDecision.BLOCK
        assert gov.decide("https://www.youtube.com/embed/abc") is RouteDecision.BLOCK

    def test_from_settings(self):
        gov = RequestGovernor.from_settings(
            BASE, GovernorSettings(timeout_ms=5000, max_attempts=3),
            whitelisted_domains=["vimeo.com"],
        )
        assert gov.timeout_ms == 5000
        assert gov.max_attempts == 3
        assert gov.whitelisted_domains == ["vimeo.com"]
        assert gov.block_foreign is False


# ====================================================================
# 2. Route handling
# ====================================================================

class TestHandleRoute:

    @pytest.mark.asyncio
    async def test_internal_request_continued(self):
        gov = make_governor()
        route = FakeRoute("https://example.com/style.css")
        await gov._handle_route(route)
        assert route.outcome == "continued"
        assert route.fetch_calls == 0

    @pytest.mark.asyncio
    async def test_blacklisted_aborted_as_blocked(self):
        gov = make_governor()
        route = FakeRoute("https://tracker.io/pixel.gif")
        await gov._handle_route(route)
        assert route.aborted_with == ABORT_BLOCKED

    @pytest.mark.asyncio
    async def test_foreign_completes_in_time(self):
        """A completed request is fulfilled, never aborted, and its counter cleared."""
        gov = make_governor(timeout_ms=1000)
        route = FakeRoute(CDN)
        await gov._handle_route(route)
        assert route.outcome == "fulfilled"
        assert route.aborted_with is None
        assert CDN not in gov.attempts
        assert gov.stats["completed"] == 1

    @pytest.mark.asyncio
    async def test_cleared_counter_allows_fresh_attempts(self):
        gov = make_governor(timeout_ms=1000, max_attempts=1)
        for _ in range(3):
            route = FakeRoute(CDN)
            await gov._handle_route(route)
            assert route.outcome == "fulfilled"

    @pytest.mark.asyncio
    async def test_foreign_times_out(self):
        """Deadline fires first: aborted as timedout, never fulfilled."""
        gov = make_governor(timeout_ms=20)
        route = FakeRoute(CDN, fetch_delay=1.0)
        await gov._handle_route(route)
        assert route.aborted_with == ABORT_TIMED_OUT
        assert route.fulfilled_with is None
        assert gov.attempts[CDN] == 1

    @pytest.mark.asyncio
    async def test_exhausted_url_aborted_without_fetch(self):
        gov = make_governor(timeout_ms=20, max_attempts=2)
        for _ in range(2):
            await gov._handle_route(FakeRoute(CDN, fetch_delay=1.0))
        third = FakeRoute(CDN, fetch_delay=1.0)
        await gov._handle_route(third)
        assert third.aborted_with == ABORT_TIMED_OUT
        assert third.fetch_calls == 0
        assert gov.attempts[CDN] == 2

    @pytest.mark.asyncio
    async def test_fetch_failure_aborts_and_keeps_count(self):
        gov = make_governor()
        route = FakeRoute(CDN, fetch_error=PlaywrightError("net::ERR_CONNECTION_REFUSED"))
        await gov._handle_route(route)
        assert route.aborted_with == ABORT_FAILED
        assert gov.attempts[CDN] == 1

    @pytest.mark.asyncio
    async def test_whitelisted_never_aborted(self):
        gov = make_governor(max_attempts=1, timeout_ms=1)
        for _ in range(4):
            route = FakeRoute("https://www.youtube.com/embed/abc", fetch_delay=0.05)
            await gov._handle_route(route)
            assert route.outcome == "continued"

    @pytest.mark.asyncio
    async def test_abort_error_is_swallowed(self):
        """A route already handled elsewhere must not crash the handler."""
        gov = make_governor()
        route = FakeRoute("https://tracker.io/pixel.gif")

        async def failing_abort(error_code=None):
            raise PlaywrightError("Route is already handled!")

        route.abort = failing_abort
        await gov._handle_route(route)

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_ceiling(self):
        gov = make_governor(timeout_ms=20, max_attempts=2)
        routes = [FakeRoute(CDN, fetch_delay=1.0) for _ in range(4)]
        await asyncio.gather(*(gov._handle_route(r) for r in routes))
        assert sum(r.fetch_calls for r in routes) == 2
        assert all(r.aborted_with == ABORT_TIMED_OUT for r in routes)


# ====================================================================
# 3. Installation
# ====================================================================

class TestInstall:

    @pytest.mark.asyncio
    async def test_install_routes_everything(self):
        page = FakePage()
        gov = make_governor()
        await gov.install(page)
        assert page.routes == [("**/*", gov._handle_route)]

    @pytest.mark.asyncio
    async def test_double_install_rejected(self):
        gov = make_governor()
        await gov.install(FakePage())
        with pytest.raises(RuntimeError):
            await gov.install(FakePage())

    @pytest.mark.asyncio
    async def test_installed_context_unroutes(self):
        page = FakePage()
        gov = make_governor()
        async with gov.installed(page):
            assert len(page.routes) == 1
        assert page.routes == []

    @pytest.mark.asyncio
    async def test_uninstall_after_close_is_noop(self):
        page = FakePage()
        gov = make_governor()
        await gov.install(page)
        await page.close()
        await gov.uninstall()
        assert len(page.routes) == 1
