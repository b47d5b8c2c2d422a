"""
Request Governor
================
Per-page request interception that keeps slow or hanging third-party
resources from stalling ``networkidle`` waits.

Policy, evaluated in order for every request the page issues:

1. Same-origin and ``data:`` requests continue untouched.
2. Blacklisted domains are aborted (``blockedbyclient``).
3. Whitelisted domains continue with no deadline (slow video embeds).
4. Every other ("foreign") request is tracked per URL:
   - once a URL has used up ``max_attempts`` it is aborted (``timedout``)
     without another try;
   - otherwise the attempt is counted and the request is fetched under a
     deadline of ``timeout_ms``.  If it completes in time the deadline is
     cancelled, the response is handed to the page and the URL's counter
     is cleared; if the deadline fires first the request is aborted
     (``timedout``) and the response, if it ever arrives, is discarded.

With ``block_foreign=True`` step 4 (and the whitelist) is replaced by an
outright ``blockedbyclient`` abort; this is the last-resort mode used by
the ``brutal`` load strategy.

The attempt table belongs to a single governor installed on a single page.
Never share a governor between pages that navigate concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Dict, Iterable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Route
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .utils import normalize_base_url

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 20000
DEFAULT_MAX_ATTEMPTS = 2

# Playwright network error codes used for aborts
ABORT_BLOCKED = "blockedbyclient"
ABORT_TIMED_OUT = "timedout"
ABORT_FAILED = "failed"


class RouteDecision(Enum):
    """Outcome of the policy for one request."""
    CONTINUE = "continue"    # proceed immediately, no deadline
    BLOCK = "block"          # abort as blocked
    EXHAUSTED = "exhausted"  # attempt ceiling reached, abort as timed out
    TRACK = "track"          # counted attempt under a deadline


@dataclass(frozen=True)
class GovernorSettings:
    """Parameters a caller installs a governor with."""
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    block_foreign: bool = False


class RequestGovernor:
    """
    Request-interception policy for one page.

    Usage::

        governor = RequestGovernor("https://example.com", timeout_ms=20000,
                                   whitelisted_domains=["youtube.com"])
        await governor.install(page)
        await page.goto("https://example.com/", wait_until="networkidle")

    or, scoped to a block::

        async with governor.installed(page):
            ...
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        whitelisted_domains: Iterable[str] = (),
        blacklisted_domains: Iterable[str] = (),
        block_foreign: bool = False,
    ):
        self.base_url = normalize_base_url(base_url)
        self.timeout_ms = timeout_ms
        self.max_attempts = max_attempts
        self.whitelisted_domains = [d for d in whitelisted_domains if d]
        self.blacklisted_domains = [d for d in blacklisted_domains if d]
        self.block_foreign = block_foreign

        # url -> attempts made; cleared for a URL once it loads in time
        self.attempts: Dict[str, int] = {}
        self.stats: Dict[str, int] = {
            "continued": 0,
            "blocked": 0,
            "timed_out": 0,
            "completed": 0,
            "failed": 0,
        }
        self._page: Optional[Page] = None

    @classmethod
    def from_settings(
        cls,
        base_url: str,
        settings: GovernorSettings,
        *,
        whitelisted_domains: Iterable[str] = (),
        blacklisted_domains: Iterable[str] = (),
    ) -> "RequestGovernor":
        return cls(
            base_url,
            timeout_ms=settings.timeout_ms,
            max_attempts=settings.max_attempts,
            whitelisted_domains=whitelisted_domains,
            blacklisted_domains=blacklisted_domains,
            block_foreign=settings.block_foreign,
        )

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def is_internal(self, url: str) -> bool:
        """
        Same-origin or inline ``data:`` request.

        *url* is compared as the browser reports it: lower-case host, no
        default port.  ``base_url`` is canonicalised to the same form.
        """
        if url.startswith("data:"):
            return True
        return url == self.base_url or url.startswith(self.base_url + "/")

    def decide(self, url: str) -> RouteDecision:
        """
        Apply the policy to *url*.

        A ``TRACK`` decision counts an attempt against the URL before
        returning; there is no suspension point between the ceiling check
        and the increment.
        """
        if self.is_internal(url):
            return RouteDecision.CONTINUE

        if any(domain in url for domain in self.blacklisted_domains):
            return RouteDecision.BLOCK

        if self.block_foreign:
            return RouteDecision.BLOCK

        if any(domain in url for domain in self.whitelisted_domains):
            return RouteDecision.CONTINUE

        attempts = self.attempts.get(url, 0)
        if attempts >= self.max_attempts:
            return RouteDecision.EXHAUSTED

        self.attempts[url] = attempts + 1
        return RouteDecision.TRACK

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------

    async def install(self, page: Page) -> "RequestGovernor":
        """Intercept every request *page* issues from now on."""
        if self._page is not None:
            raise RuntimeError("RequestGovernor is already installed on a page")
        await page.route("**/*", self._handle_route)
        self._page = page
        logger.debug(
            f"[GOVERNOR] Installed (timeout={self.timeout_ms}ms, "
            f"max_attempts={self.max_attempts}, block_foreign={self.block_foreign})"
        )
        return self

    async def uninstall(self) -> None:
        """Stop intercepting; a no-op once the page is closed."""
        page, self._page = self._page, None
        if page is None or page.is_closed():
            return
        try:
            await page.unroute("**/*", self._handle_route)
        except PlaywrightError as exc:
            logger.debug(f"[GOVERNOR] Unroute failed: {exc}")

    @asynccontextmanager
    async def installed(self, page: Page) -> AsyncIterator["RequestGovernor"]:
        await self.install(page)
        try:
            yield self
        finally:
            await self.uninstall()

    # ------------------------------------------------------------------
    # Route handling
    # ------------------------------------------------------------------

    async def _handle_route(self, route: Route) -> None:
        url = route.request.url
        decision = self.decide(url)

        if decision is RouteDecision.CONTINUE:
            self.stats["continued"] += 1
            await self._continue(route)
        elif decision is RouteDecision.BLOCK:
            self.stats["blocked"] += 1
            logger.debug(f"[GOVERNOR] Blocked: {url}")
            await self._abort(route, ABORT_BLOCKED)
        elif decision is RouteDecision.EXHAUSTED:
            self.stats["timed_out"] += 1
            logger.debug(f"[GOVERNOR] Attempts exhausted ({self.max_attempts}): {url}")
            await self._abort(route, ABORT_TIMED_OUT)
        else:
            await self._fetch_with_deadline(route, url)

    async def _fetch_with_deadline(self, route: Route, url: str) -> None:
        """
        Let a foreign request proceed for at most ``timeout_ms``.

        ``asyncio.wait_for`` owns the timer: it is cancelled when the fetch
        completes, and the fetch is cancelled when the timer fires, so a
        request is either fulfilled or aborted, never both.
        """
        try:
            response = await asyncio.wait_for(route.fetch(), timeout=self.timeout_ms / 1000)
        except (asyncio.TimeoutError, PlaywrightTimeout):
            self.stats["timed_out"] += 1
            logger.debug(f"[GOVERNOR] Timed out after {self.timeout_ms}ms: {url}")
            await self._abort(route, ABORT_TIMED_OUT)
            return
        except PlaywrightError as exc:
            self.stats["failed"] += 1
            logger.debug(f"[GOVERNOR] Fetch failed: {url} ({exc})")
            await self._abort(route, ABORT_FAILED)
            return

        self.attempts.pop(url, None)
        self.stats["completed"] += 1
        try:
            await route.fulfill(response=response)
        except PlaywrightError as exc:
            # Page went away while the response was in flight
            logger.debug(f"[GOVERNOR] Fulfill failed: {url} ({exc})")

    @staticmethod
    async def _continue(route: Route) -> None:
        try:
            await route.continue_()
        except PlaywrightError as exc:
            logger.debug(f"[GOVERNOR] Continue failed: {route.request.url} ({exc})")

    @staticmethod
    async def _abort(route: Route, reason: str) -> None:
        try:
            await route.abort(reason)
        except PlaywrightError as exc:
            # Route may already be handled or the page closed
            logger.debug(f"[GOVERNOR] Abort failed: {route.request.url} ({exc})")
