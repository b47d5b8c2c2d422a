"""
Site Crawler
============
Breadth-first discovery of every page reachable from ``/`` by following
anchors, using a single browser page.

Discovery tolerates dead links: a path whose navigation fails or answers
with a non-OK status is dropped without an error entry.  Only capture
failures end up in the manifest.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Set

from playwright.async_api import Page

from .governor import RequestGovernor
from .path_normalizer import PathNormalizer
from .run_config import CrawlConfig

logger = logging.getLogger(__name__)

# Log a progress line every N visited paths
_PROGRESS_EVERY = 10

_EXTRACT_HREFS_JS = "anchors => anchors.map(a => a.href)"


@dataclass
class CrawlState:
    """
    Traversal state for one crawl invocation.

    ``visited`` only grows; ``discovered`` holds the paths that loaded with
    a success status and is always a subset of ``visited``.
    """
    visited: Set[str] = field(default_factory=set)
    discovered: Set[str] = field(default_factory=set)
    queue: Deque[str] = field(default_factory=lambda: deque(["/"]))

    def enqueue(self, path: str) -> bool:
        if path in self.visited:
            return False
        self.queue.append(path)
        return True


class SiteCrawler:
    """
    BFS crawler over a single origin.

    Usage::

        crawler = SiteCrawler("https://example.com", config)
        paths = await crawler.crawl(page)   # sorted, deduplicated
    """

    def __init__(self, base_url: str, config: CrawlConfig):
        self.base_url = base_url.rstrip("/")
        self.config = config
        self.normalizer = PathNormalizer(
            base_url=self.base_url,
            ignore_query_params=config.ignore_query_params,
            blacklist_patterns=config.blacklist_patterns,
        )
        self.state = CrawlState()

    async def crawl(self, page: Page) -> List[str]:
        """
        Discover in-scope paths starting from ``/``.

        A fresh ``CrawlState`` is used for every call.  The request governor
        is installed on *page* for the whole traversal.
        """
        self.state = CrawlState()
        state = self.state
        self.normalizer.log_scope()

        governor = RequestGovernor(
            self.base_url,
            timeout_ms=self.config.external_resource_timeout,
            whitelisted_domains=self.config.whitelisted_domains,
            blacklisted_domains=self.config.blacklisted_domains,
        )

        start = time.monotonic()
        async with governor.installed(page):
            while state.queue:
                current = state.queue.popleft()
                if current in state.visited:
                    continue
                state.visited.add(current)

                if len(state.visited) % _PROGRESS_EVERY == 0:
                    logger.info(
                        f"[CRAWL] {len(state.visited)} visited, "
                        f"{len(state.discovered)} found, {len(state.queue)} queued"
                    )

                await self._visit(page, current)

        elapsed = time.monotonic() - start
        logger.info(
            f"[CRAWL] Done: {len(state.discovered)} pages discovered, "
            f"{len(state.visited)} visited in {elapsed:.1f}s"
        )
        logger.debug(f"[CRAWL] Governor stats: {governor.stats}")
        return sorted(state.discovered)

    async def _visit(self, page: Page, path: str) -> None:
        """Load one path and enqueue its links; failures only skip the path."""
        state = self.state
        try:
            response = await page.goto(
                self.base_url + path,
                timeout=self.config.timeout,
                wait_until="networkidle",
            )
            if response is None or not response.ok:
                status = response.status if response is not None else "no response"
                logger.debug(f"[CRAWL] Skipping {path} ({status})")
                return

            state.discovered.add(path)

            hrefs = await page.eval_on_selector_all("a[href]", _EXTRACT_HREFS_JS)
            enqueued = 0
            for href in hrefs:
                normalized = self.normalizer.normalize(href)
                if normalized and state.enqueue(normalized):
                    enqueued += 1
            logger.debug(f"[CRAWL] {path}: {len(hrefs)} links, {enqueued} enqueued")
        except Exception as exc:
            logger.debug(f"[CRAWL] Failed {path}: {exc}")
