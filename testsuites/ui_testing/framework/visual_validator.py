"""
================================================================================
Visual Validator
================================================================================

Pixel-level visual regression against stored baselines.

Features:
    - Automatic baseline creation on first comparison
    - Explicit baseline update
    - Perceptual per-pixel tolerance with anti-aliasing detection (pixelmatch)
    - Ignore regions masked out of both images
    - Diff image written only for failed comparisons
    - Element and full-page capture helpers for Playwright pages

Artifact layout under artifacts_dir:
    baselines/<name>.png
    screenshots/<name>-current.png
    diffs/<name>-diff.png

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import hashlib
import io
import os
import re
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import allure
from loguru import logger
from PIL import Image
from pixelmatch.contrib.PIL import pixelmatch
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from reliability_tools.common import ReliabilitySettings
from reliability_tools.report_tools import attach_visual_comparison


ImageSource = Union[bytes, str, Path, Image.Image]

SECONDS_PER_DAY = 24 * 60 * 60


class DimensionMismatch(Exception):
    """Baseline and current image sizes differ; the images are not comparable."""

    def __init__(self, name: str, baseline_size: Tuple[int, int], current_size: Tuple[int, int]):
        self.name = name
        self.baseline_size = baseline_size
        self.current_size = current_size
        super().__init__(
            f"Image dimensions don't match for {name}: "
            f"baseline {baseline_size[0]}x{baseline_size[1]}, "
            f"current {current_size[0]}x{current_size[1]}"
        )


@dataclass(frozen=True)
class IgnoreRegion:
    """Axis-aligned rectangle (pixels) excluded from comparison."""
    x: int
    y: int
    width: int
    height: int

    @classmethod
    def coerce(cls, region: Union["IgnoreRegion", Dict[str, int]]) -> "IgnoreRegion":
        if isinstance(region, cls):
            return region
        return cls(int(region["x"]), int(region["y"]), int(region["width"]), int(region["height"]))

    def clip(self, width: int, height: int) -> Optional[Tuple[int, int, int, int]]:
        """Box (left, upper, right, lower) inside a width x height image, or None if outside."""
        left, upper = max(self.x, 0), max(self.y, 0)
        right, lower = min(self.x + self.width, width), min(self.y + self.height, height)
        if right <= left or lower <= upper:
            return None
        return left, upper, right, lower


@dataclass
class VisualComparisonResult:
    """
    Outcome of one visual comparison.

    Attributes:
        passed: diff_ratio <= threshold
        diff_ratio: Differing pixels / total pixels (1.0 on dimension mismatch)
        baseline_path: Baseline PNG
        current_path: Captured PNG
        diff_path: Diff PNG, only for failed comparisons with differing pixels
        threshold: Ratio threshold applied
        diff_pixels: Differing pixel count
        total_pixels: Pixels compared
        baseline_created: The baseline was written by this comparison
        mismatch: Dimension mismatch message, if any
    """
    passed: bool
    diff_ratio: float
    baseline_path: Path
    current_path: Optional[Path]
    diff_path: Optional[Path]
    threshold: float
    diff_pixels: int = 0
    total_pixels: int = 0
    baseline_created: bool = False
    mismatch: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "diff_ratio": self.diff_ratio,
            "baseline_path": str(self.baseline_path),
            "current_path": str(self.current_path) if self.current_path else None,
            "diff_path": str(self.diff_path) if self.diff_path else None,
            "threshold": self.threshold,
            "diff_pixels": self.diff_pixels,
            "total_pixels": self.total_pixels,
            "baseline_created": self.baseline_created,
            "mismatch": self.mismatch,
        }


def safe_name(name: str) -> str:
    """
    File-system safe artifact name.

    Names that are already safe are returned unchanged. Others are sanitized
    and suffixed with a short hash of the original, so "login page" and
    "login_page" never share a baseline.

    Example:
        >>> safe_name("login_page")
        'login_page'
    """
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", name.strip()).strip("._")
    if not cleaned:
        raise ValueError(f"Invalid baseline name: {name!r}")
    if cleaned == name:
        return cleaned
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
    return f"{cleaned}-{digest}"


def load_image(source: ImageSource) -> Image.Image:
    """Load PNG bytes, a file path or a PIL image as RGBA."""
    if isinstance(source, Image.Image):
        return source.convert("RGBA")
    if isinstance(source, (bytes, bytearray)):
        with Image.open(io.BytesIO(source)) as img:
            return img.convert("RGBA")
    with Image.open(source) as img:
        return img.convert("RGBA")


def apply_ignore_regions(image: Image.Image, regions: Sequence[IgnoreRegion]) -> Image.Image:
    """Copy of image with every (clipped) region set to transparent black."""
    masked = image.copy()
    for region in regions:
        box = region.clip(*masked.size)
        if box is not None:
            masked.paste((0, 0, 0, 0), box)
    return masked


def save_png_atomic(image: Image.Image, path: Path) -> Path:
    """Write a PNG via temp file + rename so readers never see a partial image."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), suffix=".png.tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            image.save(f, format="PNG")
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return path


class VisualValidator:
    """
    Baseline-based visual regression checks.

    Usage:
        >>> validator = VisualValidator(artifacts_dir="test-results")
        >>> result = validator.compare(png_bytes, "dashboard-header")
        >>> assert result.passed, result.diff_ratio

        >>> result = await validator.compare_element(page, "#header", "dashboard-header")
    """

    def __init__(
        self,
        artifacts_dir: Optional[Union[str, Path]] = None,
        threshold: Optional[float] = None,
        pixel_threshold: Optional[float] = None,
        settings: Optional[ReliabilitySettings] = None,
    ):
        """
        Initialize the validator.

        Args:
            artifacts_dir: Root of baselines/, screenshots/ and diffs/
            threshold: Default pass/fail diff ratio (0-1)
            pixel_threshold: Per-pixel color distance sensitivity (0-1)
            settings: Settings snapshot (defaults to the loaded configuration)
        """
        settings = settings or ReliabilitySettings.from_config()
        root = Path(artifacts_dir) if artifacts_dir is not None else Path(settings.artifacts_dir)
        self.baselines_dir = root / "baselines"
        self.screenshots_dir = root / "screenshots"
        self.diffs_dir = root / "diffs"
        self.threshold = settings.visual_threshold if threshold is None else threshold
        self.pixel_threshold = settings.pixel_threshold if pixel_threshold is None else pixel_threshold

        for directory in (self.baselines_dir, self.screenshots_dir, self.diffs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def baseline_path(self, name: str) -> Path:
        return self.baselines_dir / f"{safe_name(name)}.png"

    def has_baseline(self, name: str) -> bool:
        return self.baseline_path(name).exists()

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def compare(
        self,
        current_image: ImageSource,
        baseline_name: str,
        threshold: Optional[float] = None,
        ignore_regions: Optional[Sequence[Union[IgnoreRegion, Dict[str, int]]]] = None,
        update_baseline: bool = False,
    ) -> VisualComparisonResult:
        """
        Compare an image against the named baseline.

        Args:
            current_image: PNG bytes, file path or PIL image
            baseline_name: Baseline key
            threshold: Pass/fail diff ratio (defaults to the validator's)
            ignore_regions: Rectangles excluded from comparison
            update_baseline: Replace the baseline with current_image

        Returns:
            VisualComparisonResult; a dimension mismatch is a failed result,
            not an exception
        """
        threshold = self.threshold if threshold is None else threshold
        regions = [IgnoreRegion.coerce(r) for r in ignore_regions or []]
        name = safe_name(baseline_name)
        baseline_path = self.baseline_path(name)

        with allure.step(f"Visual comparison: {name}"):
            current = load_image(current_image)
            current_path = save_png_atomic(current, self.screenshots_dir / f"{name}-current.png")
            total_pixels = current.width * current.height

            if update_baseline or not baseline_path.exists():
                if not update_baseline:
                    logger.warning(f"No baseline found for {name}, creating new baseline")
                save_png_atomic(current, baseline_path)
                logger.info(f"Baseline updated: {baseline_path}")
                return VisualComparisonResult(
                    passed=True,
                    diff_ratio=0.0,
                    baseline_path=baseline_path,
                    current_path=current_path,
                    diff_path=None,
                    threshold=threshold,
                    total_pixels=total_pixels,
                    baseline_created=True,
                )

            baseline = load_image(baseline_path)
            if baseline.size != current.size:
                mismatch = DimensionMismatch(name, baseline.size, current.size)
                logger.warning(str(mismatch))
                result = VisualComparisonResult(
                    passed=False,
                    diff_ratio=1.0,
                    baseline_path=baseline_path,
                    current_path=current_path,
                    diff_path=None,
                    threshold=threshold,
                    total_pixels=total_pixels,
                    mismatch=str(mismatch),
                )
                attach_visual_comparison(result, name=name)
                return result

            result = self._compare_images(name, baseline, current, regions, threshold)
            result.baseline_path = baseline_path
            result.current_path = current_path

            log = logger.info if result.passed else logger.warning
            log(
                f"Visual comparison {name}: {'PASSED' if result.passed else 'FAILED'} "
                f"(diff {result.diff_ratio:.4%}, threshold {threshold:.2%})"
            )
            if not result.passed:
                attach_visual_comparison(result, name=name)
            return result

    async def compare_element(
        self,
        page: Page,
        selector: str,
        name: str,
        threshold: Optional[float] = None,
        ignore_regions: Optional[Sequence[Union[IgnoreRegion, Dict[str, int]]]] = None,
        update_baseline: bool = False,
        timeout: Optional[int] = None,
    ) -> VisualComparisonResult:
        """Capture the element matched by selector and compare it."""
        element = page.locator(selector).first
        await element.wait_for(state="visible", timeout=timeout)
        png = await element.screenshot(animations="disabled")
        return self.compare(
            png,
            name,
            threshold=threshold,
            ignore_regions=ignore_regions,
            update_baseline=update_baseline,
        )

    async def compare_full_page(
        self,
        page: Page,
        name: str,
        threshold: Optional[float] = None,
        ignore_regions: Optional[Sequence[Union[IgnoreRegion, Dict[str, int]]]] = None,
        update_baseline: bool = False,
        timeout: Optional[int] = None,
    ) -> VisualComparisonResult:
        """Capture the full page (after network idle) and compare it as `<name>-fullpage`."""
        try:
            await page.wait_for_load_state("networkidle", timeout=timeout)
        except PlaywrightError as e:
            logger.warning(f"Network idle not reached before full page capture: {str(e)[:100]}")

        png = await page.screenshot(full_page=True, animations="disabled")
        return self.compare(
            png,
            f"{name}-fullpage",
            threshold=threshold,
            ignore_regions=ignore_regions,
            update_baseline=update_baseline,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup_old_artifacts(self, days_to_keep: int = 7) -> int:
        """
        Delete screenshots and diffs older than days_to_keep.

        Baselines are never deleted.

        Returns:
            Number of files deleted
        """
        cutoff = time.time() - days_to_keep * SECONDS_PER_DAY
        deleted = 0
        for directory in (self.screenshots_dir, self.diffs_dir):
            for path in directory.glob("*.png"):
                try:
                    if path.stat().st_mtime < cutoff:
                        path.unlink()
                        deleted += 1
                        logger.debug(f"Deleted old screenshot: {path}")
                except OSError as e:
                    logger.error(f"Failed to cleanup {path}: {e}")
        return deleted

    def get_stats(self) -> Dict[str, int]:
        """Artifact counts; recent_failures counts diffs from the last 24 hours."""
        cutoff = time.time() - SECONDS_PER_DAY
        diffs = list(self.diffs_dir.glob("*.png"))
        return {
            "total_baselines": len(list(self.baselines_dir.glob("*.png"))),
            "total_screenshots": len(list(self.screenshots_dir.glob("*.png"))),
            "total_diffs": len(diffs),
            "recent_failures": sum(1 for p in diffs if p.stat().st_mtime > cutoff),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _compare_images(
        self,
        name: str,
        baseline: Image.Image,
        current: Image.Image,
        regions: List[IgnoreRegion],
        threshold: float,
    ) -> VisualComparisonResult:
        baseline = apply_ignore_regions(baseline, regions)
        current = apply_ignore_regions(current, regions)

        diff_image = Image.new("RGBA", baseline.size)
        diff_pixels = pixelmatch(
            baseline,
            current,
            diff_image,
            threshold=self.pixel_threshold,
            includeAA=False,
            alpha=0.1,
            diff_color=(255, 0, 0),
        )

        total_pixels = baseline.width * baseline.height
        diff_ratio = diff_pixels / total_pixels if total_pixels else 0.0
        passed = diff_ratio <= threshold

        diff_path = None
        if not passed and diff_pixels > 0:
            diff_path = save_png_atomic(diff_image, self.diffs_dir / f"{name}-diff.png")
            logger.info(f"Saved pixel difference image to: {diff_path}")

        return VisualComparisonResult(
            passed=passed,
            diff_ratio=diff_ratio,
            baseline_path=self.baseline_path(name),
            current_path=None,
            diff_path=diff_path,
            threshold=threshold,
            diff_pixels=diff_pixels,
            total_pixels=total_pixels,
        )


__all__ = [
    "VisualValidator",
    "VisualComparisonResult",
    "IgnoreRegion",
    "DimensionMismatch",
    "load_image",
    "apply_ignore_regions",
]
