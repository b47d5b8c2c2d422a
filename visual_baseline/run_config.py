"""
Run Configuration
=================
Single source of truth for the baseline generator's defaults.

The crawl, capture and manifest stages all read from a ``CrawlConfig``
loaded from ``crawl-config.json``.  Keys in the file use the same
camelCase spelling the manifest records, so a config snapshot can be
copied into the manifest verbatim.

Viewports are validated once, at load time, and are immutable afterwards.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the config file or one of its viewports is invalid."""


# ---------------------------------------------------------------------------
# Canonical defaults: the ONLY place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "timeout": 30000,                    # ms, crawl navigation timeout
    "external_resource_timeout": 20000,  # ms, governor timer during discovery
    "ignore_query_params": True,
    "output_dir": ".visual-regression/screenshots/baseline",
    "manifest_path": ".visual-regression/manifest.json",
    "max_diff_pixel_ratio": 0.01,        # 1% difference threshold (comparison stage)
    "viewport_height": 720,
}

DEFAULT_CONFIG_FILE = "crawl-config.json"

# OOPIF embeds from popular media services; they never render the same twice
_DEFAULT_MASK_SELECTORS = [
    'iframe[src*="youtube.com"]',
    'iframe[src*="youtube-nocookie.com"]',
    'iframe[src*="vimeo.com"]',
    'iframe[src*="dailymotion.com"]',
    'iframe[src*="spotify.com"]',
    'iframe[src*="soundcloud.com"]',
    'iframe[src*="twitter.com"]',
    'iframe[src*="x.com"]',
    'iframe[src*="facebook.com"]',
    'iframe[src*="instagram.com"]',
    'iframe[src*="tiktok.com"]',
    'iframe[src*="google.com/maps"]',
]

# Known slow embeds that are allowed to take as long as they need
_DEFAULT_WHITELISTED_DOMAINS = [
    "youtube.com",
    "youtube-nocookie.com",
    "ytimg.com",
    "googlevideo.com",
    "ggpht.com",
    "vimeo.com",
    "vimeocdn.com",
]

VIEWPORT_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9]*(-[a-z0-9]+)*$")


@dataclass(frozen=True)
class ViewportConfig:
    """A named browser window size."""
    name: str
    width: int
    height: int

    def to_dict(self) -> dict:
        return {"name": self.name, "width": self.width, "height": self.height}


def _is_positive_int(value: Any) -> bool:
    # bool is an int subclass; ``true`` in JSON is not a width
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_viewports(raw_viewports: Optional[List[dict]]) -> List[ViewportConfig]:
    """
    Validate raw viewport entries from the config file.

    Names must be unique lowercase alphanumeric identifiers (``desktop``,
    ``tablet-landscape``).  Width is required; height defaults to 720.

    Raises:
        ConfigError: on the first invalid or duplicate entry.
    """
    if not raw_viewports:
        raise ConfigError(
            "No viewports defined in crawl config. At least one viewport is required."
        )

    seen = set()
    validated: List[ViewportConfig] = []

    for vp in raw_viewports:
        if not isinstance(vp, dict):
            raise ConfigError(f"Viewport entry must be an object, got: {vp!r}")

        name = vp.get("name")
        if not isinstance(name, str) or not VIEWPORT_NAME_PATTERN.match(name):
            raise ConfigError(
                f'Invalid viewport name "{name}". Names must be lowercase '
                f'alphanumeric (e.g. "desktop", "mobile", "tablet-landscape").'
            )

        if name in seen:
            raise ConfigError(f'Duplicate viewport name "{name}" in config.')
        seen.add(name)

        width = vp.get("width")
        if not _is_positive_int(width):
            raise ConfigError(
                f'Viewport "{name}" has invalid width: {width}. Must be a positive integer.'
            )

        height = vp.get("height")
        if height is not None and not _is_positive_int(height):
            raise ConfigError(
                f'Viewport "{name}" has invalid height: {height}. Must be a positive integer.'
            )

        validated.append(ViewportConfig(
            name=name,
            width=width,
            height=height or _DEFAULTS["viewport_height"],
        ))

    return validated


@dataclass
class CrawlConfig:
    """
    Configuration consumed by every stage of a baseline run.

    Populate via:
      - ``CrawlConfig(viewports=[...])``        → defaults for everything else
      - ``CrawlConfig.from_dict(data)``         → from parsed JSON (camelCase keys)
      - ``CrawlConfig.from_file(path)``         → from ``crawl-config.json``
    """

    viewports: List[ViewportConfig] = field(default_factory=list)

    # ---- Navigation ----
    timeout: int = _DEFAULTS["timeout"]
    external_resource_timeout: int = _DEFAULTS["external_resource_timeout"]

    # ---- Discovery scope ----
    ignore_query_params: bool = _DEFAULTS["ignore_query_params"]
    blacklist_patterns: List[str] = field(default_factory=list)

    # ---- Output ----
    output_dir: str = _DEFAULTS["output_dir"]
    manifest_path: str = _DEFAULTS["manifest_path"]

    # ---- Screenshot shaping ----
    hide_selectors: List[str] = field(default_factory=list)
    mask_selectors: List[str] = field(default_factory=lambda: list(_DEFAULT_MASK_SELECTORS))

    # ---- Request governor ----
    whitelisted_domains: List[str] = field(default_factory=lambda: list(_DEFAULT_WHITELISTED_DOMAINS))
    blacklisted_domains: List[str] = field(default_factory=list)

    # ---- Comparison stage ----
    max_diff_pixel_ratio: float = _DEFAULTS["max_diff_pixel_ratio"]

    # Directory relative paths are resolved against (the config file's dir)
    config_dir: Path = field(default_factory=Path.cwd)

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_dict(cls, data: Dict[str, Any], config_dir: Optional[Path] = None) -> "CrawlConfig":
        """Build config from a parsed config file (camelCase keys)."""
        if not isinstance(data, dict):
            raise ConfigError("Crawl config must be a JSON object")

        viewports = validate_viewports(data.get("viewports"))
        cfg = cls(
            viewports=viewports,
            timeout=data.get("timeout", _DEFAULTS["timeout"]),
            external_resource_timeout=data.get(
                "externalResourceTimeout", _DEFAULTS["external_resource_timeout"]
            ),
            ignore_query_params=data.get("ignoreQueryParams", _DEFAULTS["ignore_query_params"]),
            blacklist_patterns=list(data.get("blacklistPatterns") or []),
            output_dir=data.get("outputDir") or _DEFAULTS["output_dir"],
            manifest_path=data.get("manifestPath") or _DEFAULTS["manifest_path"],
            hide_selectors=list(data.get("hideSelectors") or []),
            max_diff_pixel_ratio=data.get("maxDiffPixelRatio", _DEFAULTS["max_diff_pixel_ratio"]),
            config_dir=Path(config_dir) if config_dir else Path.cwd(),
        )
        # Explicit empty lists in the file switch the defaults off
        if "maskSelectors" in data:
            cfg.mask_selectors = list(data["maskSelectors"] or [])
        if "whitelistedDomains" in data:
            cfg.whitelisted_domains = list(data["whitelistedDomains"] or [])
        if "blacklistedDomains" in data:
            cfg.blacklisted_domains = list(data["blacklistedDomains"] or [])

        for key in ("timeout", "external_resource_timeout"):
            if not _is_positive_int(getattr(cfg, key)):
                raise ConfigError(f"{key} must be a positive integer (ms), got {getattr(cfg, key)!r}")
        return cfg

    @classmethod
    def from_file(cls, path: Union[str, Path] = DEFAULT_CONFIG_FILE) -> "CrawlConfig":
        """Load and validate the crawl config file."""
        config_path = Path(path).resolve()
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise ConfigError(f"Crawl config not found at {config_path}") from None
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Crawl config {config_path} is not valid JSON: {exc}") from exc
        return cls.from_dict(data, config_dir=config_path.parent)

    # -----------------------------------------------------------------------
    # Resolved paths
    # -----------------------------------------------------------------------
    @property
    def resolved_output_dir(self) -> Path:
        return (self.config_dir / self.output_dir).resolve()

    @property
    def resolved_manifest_path(self) -> Path:
        return (self.config_dir / self.manifest_path).resolve()

    def snapshot(self) -> Dict[str, Any]:
        """The subset of settings recorded in the manifest's ``crawlerConfig``."""
        return {
            "timeout": self.timeout,
            "ignoreQueryParams": self.ignore_query_params,
            "blacklistPatterns": list(self.blacklist_patterns),
            "hideSelectors": list(self.hide_selectors),
            "maskSelectors": list(self.mask_selectors),
            "whitelistedDomains": list(self.whitelisted_domains),
            "blacklistedDomains": list(self.blacklisted_domains),
            "maxDiffPixelRatio": self.max_diff_pixel_ratio,
        }

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self, base_url: str) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 65)
        logger.info("BASELINE RUN CONFIG")
        logger.info("=" * 65)
        logger.info(f"  Base URL:         {base_url}")
        logger.info(f"  Screenshots:      {self.resolved_output_dir}")
        logger.info(f"  Manifest:         {self.resolved_manifest_path}")
        logger.info(
            "  Viewports:        "
            + ", ".join(f"{v.name} ({v.width}x{v.height})" for v in self.viewports)
        )
        logger.info(f"  Timeout:          {self.timeout}ms per page")
        logger.info(f"  External timeout: {self.external_resource_timeout}ms per resource")
        logger.info(f"  Query Strings:    {'stripped' if self.ignore_query_params else 'kept'}")
        if self.blacklist_patterns:
            logger.info(f"  Blacklist:        {len(self.blacklist_patterns)} pattern(s)")
        if self.hide_selectors:
            logger.info(f"  Hide Selectors:   {len(self.hide_selectors)} configured")
        if self.blacklisted_domains:
            logger.info(f"  Blocked Domains:  {', '.join(self.blacklisted_domains)}")
        logger.info("=" * 65)
