"""
Baseline Generator
==================
End-to-end orchestration of one baseline run:

1. Probe the base URL (fatal if it does not answer with a success status)
2. Discover paths with the ``SiteCrawler`` (or take a single given path)
3. Write the discovery-phase manifest (no errors, zero screenshots)
4. Capture every path at every viewport with the ``CaptureEngine``
5. Rewrite the manifest with final counts and all generation errors
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from playwright.async_api import Browser, async_playwright
from playwright.async_api import Error as PlaywrightError

from .capture import CaptureEngine, ScreenshotArtifact
from .load_strategy import error_summary
from .manifest import ManifestData, ManifestLedger
from .run_config import CrawlConfig
from .site_crawler import SiteCrawler
from .utils import normalize_base_url

logger = logging.getLogger(__name__)

_BROWSER_ARGS = ["--ignore-certificate-errors"]


class SiteUnreachableError(RuntimeError):
    """The target site did not answer the initial probe; nothing was captured."""


@dataclass
class GenerationResult:
    manifest: ManifestData
    artifacts: List[ScreenshotArtifact] = field(default_factory=list)
    elapsed_sec: float = 0.0


def clean_output_dir(output_dir: Path) -> int:
    """Delete everything in *output_dir* except hidden entries; returns the count removed."""
    if not output_dir.is_dir():
        return 0
    removed = 0
    for entry in output_dir.iterdir():
        if entry.name.startswith("."):
            continue
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
        removed += 1
    return removed


def normalize_single_path(page_path: str) -> str:
    """Validate a path given on the command line."""
    if not page_path.startswith("/"):
        raise ValueError(f"Path must start with /: {page_path!r}")
    if page_path != "/" and page_path.endswith("/"):
        page_path = page_path[:-1]
    return page_path


class BaselineGenerator:
    """
    Runs discovery, capture and both manifest writes.

    Usage::

        config = CrawlConfig.from_file("crawl-config.json")
        generator = BaselineGenerator(config, "https://example.com")
        result = generator.run()                 # full crawl
        result = generator.run("/about")         # single path
    """

    def __init__(self, config: CrawlConfig, base_url: str, *, headless: bool = True):
        self.config = config
        self.base_url = normalize_base_url(base_url)
        self.headless = headless

    # ------------------------------------------------------------------
    # Sync entry point
    # ------------------------------------------------------------------

    def run(self, specific_path: Optional[str] = None) -> GenerationResult:
        """Sync wrapper: run the async generation from synchronous code."""
        return asyncio.run(self.generate(specific_path))

    # ------------------------------------------------------------------
    # Main async flow
    # ------------------------------------------------------------------

    async def generate(self, specific_path: Optional[str] = None) -> GenerationResult:
        if specific_path is not None:
            specific_path = normalize_single_path(specific_path)

        start = time.monotonic()
        self.config.log_summary(self.base_url)
        if specific_path:
            logger.info(f"Single path mode: {specific_path}")

        ledger = ManifestLedger(self.config.resolved_manifest_path, self.base_url, self.config)

        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=self.headless, args=_BROWSER_ARGS)
            try:
                paths = await self._discover(browser, specific_path)

                # Only touch the old baseline once the site is known to be up
                output_dir = self.config.resolved_output_dir
                removed = clean_output_dir(output_dir)
                if removed:
                    logger.info(f"Cleaned {removed} old entries from {output_dir} (hidden files kept)")

                ledger.set_paths(paths)
                ledger.write()

                engine = CaptureEngine(self.base_url, self.config, output_dir=output_dir)
                capture = await engine.capture_all(browser, ledger.paths)
            finally:
                await browser.close()

        for err in capture.errors:
            ledger.record_error(err.path, err.viewport, err.stage, err.message)
        for _ in capture.artifacts:
            ledger.record_screenshot()
        manifest = ledger.write()

        logger.info("\n" + ledger.format_summary())
        return GenerationResult(
            manifest=manifest,
            artifacts=capture.artifacts,
            elapsed_sec=round(time.monotonic() - start, 2),
        )

    async def _discover(self, browser: Browser, specific_path: Optional[str]) -> List[str]:
        """Probe the site, then crawl it unless a single path was requested."""
        first = self.config.viewports[0]
        context = await browser.new_context(
            ignore_https_errors=True,
            viewport={"width": first.width, "height": first.height},
        )
        try:
            page = await context.new_page()
            await self._probe(page)

            if specific_path:
                return [specific_path]

            logger.info("[CRAWL] Starting page discovery...")
            crawler = SiteCrawler(self.base_url, self.config)
            paths = await crawler.crawl(page)
            logger.info(f"[CRAWL] Discovered {len(paths)} pages")
            for path in paths:
                logger.info(f"   - {path}")
            return paths
        finally:
            await context.close()

    async def _probe(self, page) -> None:
        try:
            response = await page.goto(self.base_url, timeout=self.config.timeout)
        except PlaywrightError as exc:
            raise SiteUnreachableError(
                f"Cannot reach server at {self.base_url}: {error_summary(exc)}"
            ) from exc
        if response is None or not response.ok:
            status = response.status if response is not None else "no response"
            raise SiteUnreachableError(
                f"Cannot reach server at {self.base_url}: server returned {status}"
            )
        logger.info(f"Server at {self.base_url} is reachable")
