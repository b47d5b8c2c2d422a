"""
Manifest Ledger
===============
The persisted record of a baseline run, read back by the comparison stage.

A manifest holds the run's base URL, a snapshot of the crawler config, the
discovered paths, the viewports, and one ``GenerationError`` for every
(path, viewport) pair that could not be captured.  The comparison stage
tests every pair in ``paths × viewports`` except those with an error.

The ledger writes the manifest twice per run:

1. right after discovery, with no errors and zero screenshots, so a run
   that crashes during capture still leaves a usable record;
2. after capture, with the final counts.

Each write replaces the previous file atomically.

JSON shape::

    {
      "version": "1.0",
      "generatedAt": "2024-01-01T00:00:00+00:00",
      "baseUrl": "https://example.com",
      "crawlerConfig": {...},
      "paths": ["/", "/about"],
      "viewports": [{"name": "desktop", "width": 1280, "height": 720}],
      "errors": [{"path": "/about", "viewport": "desktop",
                  "stage": "load", "message": "..."}],
      "metadata": {"totalPaths": 2, "totalScreenshots": 1,
                   "totalErrors": 1, "viewports": ["desktop"]}
    }
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from .run_config import CrawlConfig, ViewportConfig

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "1.0"


class GenerationStage(str, Enum):
    """Where a capture failed."""
    LOAD = "load"
    SCREENSHOT = "screenshot"


@dataclass(frozen=True)
class GenerationError:
    """A (path, viewport) pair with no baseline screenshot."""
    path: str
    viewport: str
    stage: GenerationStage
    message: str

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "viewport": self.viewport,
            "stage": self.stage.value,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationError":
        return cls(
            path=data["path"],
            viewport=data["viewport"],
            stage=GenerationStage(data["stage"]),
            message=data.get("message", ""),
        )


class ManifestNotFoundError(FileNotFoundError):
    """No manifest at the configured path; generation has not run yet."""


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _default_file_mode() -> int:
    # mkstemp creates 0600 files; match what open() would have produced
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


@dataclass
class ManifestData:
    """In-memory form of a manifest file."""
    base_url: str
    crawler_config: Dict[str, Any] = field(default_factory=dict)
    paths: List[str] = field(default_factory=list)
    viewports: List[ViewportConfig] = field(default_factory=list)
    errors: List[GenerationError] = field(default_factory=list)
    total_screenshots: int = 0
    generated_at: str = field(default_factory=_utc_now)
    version: str = MANIFEST_VERSION

    @property
    def metadata(self) -> Dict[str, Any]:
        return {
            "totalPaths": len(self.paths),
            "totalScreenshots": self.total_screenshots,
            "totalErrors": len(self.errors),
            "viewports": [v.name for v in self.viewports],
        }

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "generatedAt": self.generated_at,
            "baseUrl": self.base_url,
            "crawlerConfig": dict(self.crawler_config),
            "paths": list(self.paths),
            "viewports": [v.to_dict() for v in self.viewports],
            "errors": [e.to_dict() for e in self.errors],
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManifestData":
        return cls(
            version=data.get("version", MANIFEST_VERSION),
            generated_at=data.get("generatedAt", ""),
            base_url=data["baseUrl"],
            crawler_config=dict(data.get("crawlerConfig") or {}),
            paths=list(data.get("paths") or []),
            viewports=[
                ViewportConfig(name=v["name"], width=v["width"], height=v["height"])
                for v in data.get("viewports") or []
            ],
            errors=[GenerationError.from_dict(e) for e in data.get("errors") or []],
            total_screenshots=(data.get("metadata") or {}).get("totalScreenshots", 0),
        )

    # ------------------------------------------------------------------
    # Consumer queries
    # ------------------------------------------------------------------

    def generation_error(self, path: str, viewport: str) -> Optional[GenerationError]:
        """The recorded error for a pair, or None if it has a baseline."""
        for err in self.errors:
            if err.path == path and err.viewport == viewport:
                return err
        return None

    def all_viewports_errored(self, path: str) -> bool:
        """True when no viewport produced a baseline for *path*."""
        if not self.viewports:
            return False
        errored = {e.viewport for e in self.errors if e.path == path}
        return all(v.name in errored for v in self.viewports)


def load_manifest(manifest_path: Union[str, Path]) -> ManifestData:
    """Load and parse a manifest file."""
    path = Path(manifest_path)
    if not path.exists():
        raise ManifestNotFoundError(
            f"Manifest not found at {path}\n"
            f"Run 'python -m visual_baseline generate' first to create "
            f"baseline screenshots and manifest."
        )
    with open(path, "r", encoding="utf-8") as f:
        return ManifestData.from_dict(json.load(f))


class ManifestLedger:
    """
    Accumulates one run's results and serialises them to the manifest path.

    The ledger is the only writer of the manifest; other stages hand it
    paths, errors and screenshot counts.
    """

    def __init__(
        self,
        manifest_path: Union[str, Path],
        base_url: str,
        config: CrawlConfig,
        viewports: Optional[Iterable[ViewportConfig]] = None,
    ):
        self.manifest_path = Path(manifest_path)
        self.base_url = base_url
        self.config = config
        self.viewports: List[ViewportConfig] = list(
            viewports if viewports is not None else config.viewports
        )
        self.paths: List[str] = []
        self.errors: List[GenerationError] = []
        self.screenshot_count = 0
        self._error_keys: Set[Tuple[str, str]] = set()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def set_paths(self, paths: Iterable[str]) -> None:
        """Record the discovered paths, keeping first-seen order."""
        self.paths = list(dict.fromkeys(paths))

    def record_screenshot(self) -> None:
        self.screenshot_count += 1

    def record_error(
        self,
        path: str,
        viewport: str,
        stage: GenerationStage,
        message: str,
    ) -> bool:
        """
        Record a capture failure.

        Returns False (and records nothing) if the pair already has an
        error.  Raises ValueError for a path or viewport that is not part
        of this manifest.
        """
        if path not in self.paths:
            raise ValueError(f"Unknown path for generation error: {path}")
        if viewport not in {v.name for v in self.viewports}:
            raise ValueError(f"Unknown viewport for generation error: {viewport}")

        key = (path, viewport)
        if key in self._error_keys:
            logger.debug(f"[MANIFEST] Duplicate error ignored: [{viewport}] {path}")
            return False
        self._error_keys.add(key)
        self.errors.append(GenerationError(
            path=path,
            viewport=viewport,
            stage=GenerationStage(stage),
            message=message,
        ))
        return True

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def build(self) -> ManifestData:
        return ManifestData(
            base_url=self.base_url,
            crawler_config=self.config.snapshot(),
            paths=list(self.paths),
            viewports=list(self.viewports),
            errors=list(self.errors),
            total_screenshots=self.screenshot_count,
        )

    def write(self) -> ManifestData:
        """Atomically (re)write the manifest file and return what was written."""
        manifest = self.build()
        self.manifest_path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.manifest_path.name}.",
            suffix=".tmp",
            dir=str(self.manifest_path.parent),
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(manifest.to_dict(), f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.chmod(tmp_name, _default_file_mode())
            os.replace(tmp_name, self.manifest_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.info(
            f"[MANIFEST] Saved {self.manifest_path} "
            f"({len(manifest.paths)} paths, {manifest.total_screenshots} screenshots, "
            f"{len(manifest.errors)} errors)"
        )
        return manifest

    def format_summary(self) -> str:
        """Human-readable run summary listing every error by viewport."""
        lines = [
            "=" * 65,
            "  BASELINE GENERATION SUMMARY",
            "=" * 65,
            f"  Paths:               {len(self.paths)}",
            f"  Viewports:           {', '.join(v.name for v in self.viewports)}",
            f"  Screenshots:         {self.screenshot_count}",
            f"  Errors:              {len(self.errors)}",
        ]
        if self.errors:
            lines.append("-" * 65)
            for vp in self.viewports:
                vp_errors = [e for e in self.errors if e.viewport == vp.name]
                if not vp_errors:
                    continue
                lines.append(f"  [{vp.name}]")
                for err in vp_errors:
                    lines.append(f"    {err.path} ({err.stage.value}): {err.message}")
            lines.append("-" * 65)
            lines.append("  These path+viewport combinations will be skipped during testing.")
        lines.append("=" * 65)
        return "\n".join(lines)
