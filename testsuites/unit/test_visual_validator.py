import io
import os
import time

import pytest
from PIL import Image

from testsuites.ui_testing.framework.visual_validator import (
    IgnoreRegion,
    VisualValidator,
    apply_ignore_regions,
    safe_name,
)
from testsuites.unit.fake_browser import FakePage


def solid(size=(100, 100), color=(0, 0, 0, 255)):
    return Image.new("RGBA", size, color)


def with_square(base, box, color=(255, 255, 255, 255)):
    image = base.copy()
    image.paste(color, box)
    return image


def png_bytes(image):
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def validator(tmp_path):
    return VisualValidator(artifacts_dir=tmp_path, threshold=0.2, pixel_threshold=0.1)


def test_first_comparison_creates_baseline_and_passes(validator):
    result = validator.compare(solid(), "header")

    assert result.passed is True
    assert result.baseline_created is True
    assert result.diff_ratio == 0.0
    assert result.baseline_path.exists()
    assert result.diff_path is None
    assert validator.has_baseline("header")


def test_image_compared_with_itself_has_zero_diff(validator):
    image = with_square(solid(), (40, 40, 60, 60), (12, 200, 90, 255))
    validator.compare(image, "card")

    result = validator.compare(png_bytes(image), "card", threshold=0.0)

    assert result.passed is True
    assert result.baseline_created is False
    assert result.diff_ratio == 0.0
    assert result.diff_pixels == 0
    assert result.total_pixels == 10000


def test_dimension_mismatch_fails_with_max_diff_regardless_of_threshold(validator):
    validator.compare(solid((100, 100)), "banner")

    result = validator.compare(solid((120, 100)), "banner", threshold=1.0)

    assert result.passed is False
    assert result.diff_ratio == 1.0
    assert "100x100" in result.mismatch
    assert "120x100" in result.mismatch
    assert result.diff_path is None


def test_ignore_region_masks_the_only_difference(validator):
    validator.compare(solid(), "dashboard")
    current = with_square(solid(), (30, 30, 40, 40))

    result = validator.compare(
        current,
        "dashboard",
        threshold=0.05,
        ignore_regions=[IgnoreRegion(30, 30, 10, 10)],
    )

    assert result.passed is True
    assert result.diff_ratio == 0.0


def test_ignore_regions_never_increase_diff(validator):
    validator.compare(solid(), "widget")
    current = with_square(solid(), (0, 0, 10, 10))

    unmasked = validator.compare(current, "widget", threshold=1.0)
    masked = validator.compare(
        current,
        "widget",
        threshold=1.0,
        ignore_regions=[{"x": 5, "y": 5, "width": 50, "height": 50}],
    )

    assert unmasked.diff_ratio == pytest.approx(0.01)
    assert masked.diff_ratio < unmasked.diff_ratio


def test_diff_image_written_only_on_failure(validator, tmp_path):
    validator.compare(solid(), "footer")
    current = with_square(solid(), (0, 0, 10, 10))

    passing = validator.compare(current, "footer", threshold=0.05)
    assert passing.passed is True
    assert passing.diff_path is None
    assert list((tmp_path / "diffs").iterdir()) == []

    failing = validator.compare(current, "footer", threshold=0.005)
    assert failing.passed is False
    assert failing.diff_pixels == 100
    assert failing.diff_path == tmp_path / "diffs" / "footer-diff.png"
    with Image.open(failing.diff_path) as diff:
        assert diff.size == (100, 100)


def test_update_baseline_replaces_existing_baseline(validator):
    validator.compare(solid(), "logo")
    white = solid(color=(255, 255, 255, 255))

    updated = validator.compare(white, "logo", update_baseline=True)
    result = validator.compare(white, "logo", threshold=0.0)

    assert updated.passed is True
    assert updated.baseline_created is True
    assert result.passed is True
    assert result.diff_ratio == 0.0


def test_current_image_accepted_as_path(validator, tmp_path):
    source = tmp_path / "capture.png"
    solid().save(source)

    result = validator.compare(str(source), "from-path")

    assert result.passed is True
    assert result.current_path.exists()


def test_ignore_region_clipped_to_image_bounds():
    assert IgnoreRegion(90, 90, 50, 50).clip(100, 100) == (90, 90, 100, 100)
    assert IgnoreRegion(-10, -10, 20, 20).clip(100, 100) == (0, 0, 10, 10)
    assert IgnoreRegion(200, 0, 10, 10).clip(100, 100) is None

    masked = apply_ignore_regions(solid(color=(255, 255, 255, 255)), [IgnoreRegion(95, 95, 20, 20)])
    assert masked.getpixel((99, 99)) == (0, 0, 0, 0)
    assert masked.getpixel((94, 94)) == (255, 255, 255, 255)


def test_baseline_names_are_made_file_safe(validator):
    result = validator.compare(solid(), "checkout page / step 2")

    assert result.baseline_path.name.startswith("checkout_page_step_2-")
    assert result.baseline_path.parent == validator.baselines_dir
    assert validator.has_baseline("checkout page / step 2")
    assert safe_name("checkout_page_step_2") == "checkout_page_step_2"


def test_names_differing_only_in_unsafe_characters_keep_separate_baselines(validator):
    names = ["login page", "login/page", "login_page"]

    paths = {validator.compare(solid(), name).baseline_path for name in names}
    black_vs_white = validator.compare(solid(color=(255, 255, 255, 255)), "login/page", threshold=0.0)

    assert len(paths) == 3
    assert black_vs_white.baseline_created is False
    assert black_vs_white.passed is False


def test_cleanup_removes_only_old_screenshots_and_diffs(validator, tmp_path):
    validator.compare(solid(), "old")
    old_screenshot = tmp_path / "screenshots" / "old-current.png"
    stale = time.time() - 10 * 24 * 60 * 60
    os.utime(old_screenshot, (stale, stale))
    validator.compare(solid(), "fresh")

    deleted = validator.cleanup_old_artifacts(days_to_keep=7)

    assert deleted == 1
    assert not old_screenshot.exists()
    assert (tmp_path / "baselines" / "old.png").exists()


def test_stats_count_artifacts(validator):
    validator.compare(solid(), "stats")
    validator.compare(with_square(solid(), (0, 0, 50, 50)), "stats", threshold=0.01)

    stats = validator.get_stats()

    assert stats == {
        "total_baselines": 1,
        "total_screenshots": 1,
        "total_diffs": 1,
        "recent_failures": 1,
    }


@pytest.mark.asyncio
async def test_compare_element_captures_locator_screenshot(validator):
    page = FakePage(visible=["#chart"], png=png_bytes(solid()))

    first = await validator.compare_element(page, "#chart", "chart")
    second = await validator.compare_element(page, "#chart", "chart")

    assert first.baseline_created is True
    assert second.passed is True
    assert second.diff_ratio == 0.0


@pytest.mark.asyncio
async def test_compare_full_page_uses_fullpage_baseline_name(validator):
    page = FakePage(png=png_bytes(solid((80, 60))))
    page.network_idle = False

    result = await validator.compare_full_page(page, "home")

    assert result.baseline_path.name == "home-fullpage.png"
    assert ("screenshot", {"full_page": True, "animations": "disabled"}) in page.calls
