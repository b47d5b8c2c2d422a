"""
Capture Engine
==============
Produces one full-page screenshot per (path, viewport) pair.

For each viewport a fresh browsing context sized to that viewport is
opened; paths are then loaded one at a time through the
``LoadStrategyExecutor``.  Failures never stop the run: a page that
cannot be loaded becomes a ``load`` error, a page whose screenshot fails
becomes a ``screenshot`` error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Union

from playwright.async_api import Browser, BrowserContext, Locator, Page
from playwright.async_api import Error as PlaywrightError

from .load_strategy import LoadStrategyExecutor, PageLoadError, close_quietly, error_summary
from .manifest import GenerationError, GenerationStage
from .run_config import CrawlConfig, ViewportConfig
from .utils import is_xpath_selector, normalize_xpath, screenshot_filename

logger = logging.getLogger(__name__)

_REMOVE_CSS_JS = """
(sel) => {
    document.querySelectorAll(sel).forEach(el => el.remove());
}
"""

_REMOVE_XPATH_JS = """
(xp) => {
    const result = document.evaluate(
        xp, document, null, XPathResult.ORDERED_NODE_SNAPSHOT_TYPE, null);
    for (let i = 0; i < result.snapshotLength; i++) {
        const el = result.snapshotItem(i);
        if (el instanceof Element) el.remove();
    }
}
"""


async def hide_elements(page: Page, selectors: Sequence[str]) -> None:
    """Remove every element matching *selectors* (CSS or XPath) from the DOM.

    Best effort: a selector that matches nothing, or fails to evaluate,
    is skipped.
    """
    for selector in selectors or []:
        try:
            if is_xpath_selector(selector):
                await page.evaluate(_REMOVE_XPATH_JS, normalize_xpath(selector))
            else:
                await page.evaluate(_REMOVE_CSS_JS, selector)
        except PlaywrightError as exc:
            logger.debug(f"[CAPTURE] Hide selector {selector!r} skipped: {exc}")


def build_mask_locators(page: Page, selectors: Sequence[str]) -> List[Locator]:
    """Locators for elements to paint over in the screenshot."""
    locators = []
    for selector in selectors or []:
        if is_xpath_selector(selector):
            locators.append(page.locator(f"xpath={normalize_xpath(selector)}"))
        else:
            locators.append(page.locator(selector))
    return locators


@dataclass
class ScreenshotArtifact:
    """A baseline image written to disk."""
    path: str
    viewport: str
    filename: str
    file: Path
    strategy: str = "normal"


@dataclass
class CaptureResult:
    artifacts: List[ScreenshotArtifact] = field(default_factory=list)
    errors: List[GenerationError] = field(default_factory=list)


class CaptureEngine:
    """
    Drives page loading and screenshotting across viewports × paths.

    Usage::

        engine = CaptureEngine("https://example.com", config)
        result = await engine.capture_all(browser, ["/", "/about"])
    """

    def __init__(
        self,
        base_url: str,
        config: CrawlConfig,
        output_dir: Optional[Union[str, Path]] = None,
        executor: Optional[LoadStrategyExecutor] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.config = config
        self.output_dir = Path(output_dir) if output_dir else config.resolved_output_dir
        self.executor = executor or LoadStrategyExecutor(self.base_url, config)

    async def capture_all(
        self,
        browser: Browser,
        paths: Sequence[str],
        viewports: Optional[Sequence[ViewportConfig]] = None,
    ) -> CaptureResult:
        """Capture every path at every viewport, strictly one page at a time."""
        viewports = list(viewports if viewports is not None else self.config.viewports)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        result = CaptureResult()

        for viewport in viewports:
            logger.info(
                f"[CAPTURE] {viewport.name} ({viewport.width}x{viewport.height}): "
                f"{len(paths)} page(s)"
            )
            context = await browser.new_context(
                ignore_https_errors=True,
                viewport={"width": viewport.width, "height": viewport.height},
            )
            try:
                for path in paths:
                    await self.capture_page(context, path, viewport, result)
            finally:
                await context.close()

        logger.info(
            f"[CAPTURE] Done: {len(result.artifacts)} screenshot(s), "
            f"{len(result.errors)} error(s)"
        )
        return result

    async def capture_page(
        self,
        context: BrowserContext,
        path: str,
        viewport: ViewportConfig,
        result: CaptureResult,
    ) -> Optional[ScreenshotArtifact]:
        """Load, clean up and screenshot one path; failures land in *result*."""
        try:
            loaded = await self.executor.load(context, path)
        except PageLoadError as exc:
            result.errors.append(GenerationError(
                path=path,
                viewport=viewport.name,
                stage=GenerationStage.LOAD,
                message=exc.message,
            ))
            return None

        page = loaded.page
        try:
            await hide_elements(page, self.config.hide_selectors)
            masks = build_mask_locators(page, self.config.mask_selectors)

            filename = screenshot_filename(path, viewport.name)
            target = self.output_dir / filename
            await page.screenshot(
                path=str(target),
                full_page=True,
                mask=masks,
                animations="disabled",
                caret="hide",
            )
            artifact = ScreenshotArtifact(
                path=path,
                viewport=viewport.name,
                filename=filename,
                file=target,
                strategy=loaded.strategy.name,
            )
            result.artifacts.append(artifact)
            logger.info(f"[CAPTURE] [{viewport.name}] {path} -> {filename}")
            return artifact
        except PlaywrightError as exc:
            message = error_summary(exc)
            logger.warning(f"[CAPTURE] Screenshot failed [{viewport.name}] {path}: {message}")
            result.errors.append(GenerationError(
                path=path,
                viewport=viewport.name,
                stage=GenerationStage.SCREENSHOT,
                message=message,
            ))
            return None
        finally:
            await close_quietly(page)
