"""
Load Strategies
===============
Progressive page-load policies, tried in order until one succeeds.

| Strategy        | wait_until   | Timeout | Governor                         |
|-----------------|--------------|---------|----------------------------------|
| ``normal``        | networkidle  | 30s     | none                             |
| ``extra_timeout`` | networkidle  | 30s     | 20s deadline, 2 attempts per URL |
| ``brutal``        | commit       | 120s    | every foreign request blocked    |

``brutal`` forces success: if its navigation still throws, whatever the
page managed to render is captured anyway.  A page that never left
``about:blank`` (or was closed) has nothing to capture, so that case still
fails.

Each attempt gets a fresh page from the browsing context, so routes
installed by an earlier strategy never leak into a later one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from playwright.async_api import BrowserContext, Page
from playwright.async_api import Error as PlaywrightError

from .governor import GovernorSettings, RequestGovernor
from .run_config import CrawlConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadStrategy:
    """One named navigation policy."""
    name: str
    wait_until: str
    timeout_ms: int
    governor: Optional[GovernorSettings] = None
    force_proceed: bool = False


STRATEGIES: Tuple[LoadStrategy, ...] = (
    LoadStrategy(name="normal", wait_until="networkidle", timeout_ms=30000),
    LoadStrategy(
        name="extra_timeout",
        wait_until="networkidle",
        timeout_ms=30000,
        governor=GovernorSettings(timeout_ms=20000, max_attempts=2),
    ),
    LoadStrategy(
        name="brutal",
        wait_until="commit",
        timeout_ms=120000,
        governor=GovernorSettings(block_foreign=True),
        force_proceed=True,
    ),
)


class PageLoadError(RuntimeError):
    """Every load strategy failed for a page."""

    def __init__(self, path: str, strategy: str, message: str):
        self.path = path
        self.strategy = strategy
        self.message = message
        super().__init__(f"{path}: all load strategies failed (last: {strategy}): {message}")


@dataclass
class LoadResult:
    """A page that is ready to be captured."""
    page: Page
    strategy: LoadStrategy
    forced: bool = False    # navigation raised but the page was kept


def _has_rendered(page: Page) -> bool:
    return not page.is_closed() and page.url not in ("", "about:blank")


async def close_quietly(page: Optional[Page]) -> None:
    """Close a page, ignoring errors from an already-dead target."""
    if page is None:
        return
    try:
        await page.close()
    except PlaywrightError as exc:
        logger.debug(f"[LOAD] Page close failed: {exc}")


class LoadStrategyExecutor:
    """
    Runs the strategy table against one path.

    Usage::

        executor = LoadStrategyExecutor("https://example.com", config)
        result = await executor.load(context, "/about")
        try:
            ...  # capture result.page
        finally:
            await result.page.close()
    """

    def __init__(
        self,
        base_url: str,
        config: CrawlConfig,
        strategies: Sequence[LoadStrategy] = STRATEGIES,
    ):
        if not strategies:
            raise ValueError("At least one load strategy is required")
        self.base_url = base_url.rstrip("/")
        self.config = config
        self.strategies = tuple(strategies)

    async def load(self, context: BrowserContext, path: str) -> LoadResult:
        """
        Load *path* with the first strategy that succeeds.

        The returned page is owned by the caller, who must close it.

        Raises:
            PageLoadError: if the last strategy fails too.
        """
        url = self.base_url + path
        last_error: Optional[Exception] = None

        for index, strategy in enumerate(self.strategies):
            page: Optional[Page] = None
            try:
                page = await context.new_page()
                forced = await self._attempt(page, url, strategy)
                if index > 0:
                    logger.info(f"[LOAD] {path} loaded with {strategy.name}")
                return LoadResult(page=page, strategy=strategy, forced=forced)
            except PlaywrightError as exc:
                last_error = exc
                await close_quietly(page)
                if index < len(self.strategies) - 1:
                    logger.info(
                        f"[LOAD] {path} failed with {strategy.name}, "
                        f"retrying with {self.strategies[index + 1].name}"
                    )
                    logger.debug(f"[LOAD] {strategy.name} error: {exc}")

        message = error_summary(last_error)
        logger.warning(f"[LOAD] Failed {path}: {message}")
        raise PageLoadError(path, self.strategies[-1].name, message)

    async def _attempt(self, page: Page, url: str, strategy: LoadStrategy) -> bool:
        """Navigate once; returns True when a failed navigation was force-kept."""
        if strategy.governor is not None:
            governor = RequestGovernor.from_settings(
                self.base_url,
                strategy.governor,
                whitelisted_domains=self.config.whitelisted_domains,
                blacklisted_domains=self.config.blacklisted_domains,
            )
            await governor.install(page)

        try:
            await page.goto(url, timeout=strategy.timeout_ms, wait_until=strategy.wait_until)
        except PlaywrightError as exc:
            if not strategy.force_proceed or not _has_rendered(page):
                raise
            logger.warning(
                f"[LOAD] {url}: navigation error under {strategy.name}, "
                f"capturing what rendered ({error_summary(exc)})"
            )
            return True
        return False


def error_summary(exc: Optional[BaseException]) -> str:
    # Playwright messages carry a multi-line call log after the first line
    if exc is None:
        return "unknown error"
    text = str(exc).strip()
    return text.splitlines()[0] if text else type(exc).__name__
