"""
Visual Baseline Package
Crawls a site and captures baseline screenshots at several viewport sizes,
recording the results in a manifest that a later comparison run reads.

CLI Usage:
    python -m visual_baseline generate [path]

    Options:
        --config        Crawl config file (default: crawl-config.json)
        --base-url      Site to crawl (default: $BASE_URL)
        --headed        Show the browser window
"""

from .run_config import CrawlConfig, ViewportConfig, ConfigError, validate_viewports
from .path_normalizer import PathNormalizer
from .governor import RequestGovernor, GovernorSettings, RouteDecision
from .site_crawler import SiteCrawler, CrawlState
from .load_strategy import LoadStrategy, LoadStrategyExecutor, LoadResult, PageLoadError, STRATEGIES
from .capture import CaptureEngine, CaptureResult, ScreenshotArtifact
from .manifest import (
    GenerationError, GenerationStage, ManifestData, ManifestLedger,
    ManifestNotFoundError, load_manifest,
)
from .generator import BaselineGenerator, GenerationResult, SiteUnreachableError
from .utils import screenshot_filename, slugify_path

__all__ = [
    # Config
    'CrawlConfig',
    'ViewportConfig',
    'ConfigError',
    'validate_viewports',
    # Discovery
    'PathNormalizer',
    'SiteCrawler',
    'CrawlState',
    # Loading
    'RequestGovernor',
    'GovernorSettings',
    'RouteDecision',
    'LoadStrategy',
    'LoadStrategyExecutor',
    'LoadResult',
    'PageLoadError',
    'STRATEGIES',
    # Capture
    'CaptureEngine',
    'CaptureResult',
    'ScreenshotArtifact',
    # Manifest
    'GenerationError',
    'GenerationStage',
    'ManifestData',
    'ManifestLedger',
    'ManifestNotFoundError',
    'load_manifest',
    # Orchestration
    'BaselineGenerator',
    'GenerationResult',
    'SiteUnreachableError',
    'screenshot_filename',
    'slugify_path',
]

__version__ = '1.0.0'
