"""Tests for PayloadSizeOptimizer page selection and quality search."""

import base64
import io

import pytest
from PIL import Image

from cim_extract.core.config import load_quality_presets
from cim_extract.core.exceptions import PayloadError
from cim_extract.payload.optimizer import PayloadSizeOptimizer, PillowReencoder
from cim_extract.payload.presets import DEFAULT_QUALITY_PRESETS, MB, QualityPreset


class ShrinkingReencoder:
    """Deterministic stand-in: output length scales with preset quality."""

    def __init__(self):
        self.calls = []

    def reencode(self, image_b64, preset):
        self.calls.append(preset.name)
        return "B" * int(len(image_b64) * preset.quality)


class StubbornReencoder:
    """Never manages to shrink anything."""

    def reencode(self, image_b64, preset):
        return image_b64 + "=="


def pages_of(total_bytes, count):
    per_page = int(total_bytes / 0.75 / count)
    return ["A" * per_page for _ in range(count)]


def test_within_target_returns_identical_images():
    optimizer = PayloadSizeOptimizer(target_size_bytes=8 * MB, reencoder=ShrinkingReencoder())
    images = pages_of(2 * MB, 4)

    result = optimizer.optimize_images(images)

    assert result.optimization_applied is False
    assert result.images == images
    assert result.quality_level == "original"
    assert result.final_size == result.original_size


def test_fifteen_pages_twelve_mb_fit_eight_mb_target():
    encoder = ShrinkingReencoder()
    optimizer = PayloadSizeOptimizer(target_size_bytes=8 * MB, max_pages=10, reencoder=encoder)
    images = pages_of(12 * MB, 15)

    result = optimizer.optimize_images(images)

    assert result.optimization_applied is True
    assert result.page_count <= 10
    assert result.original_page_count == 15
    assert result.final_size <= result.original_size
    assert result.final_size <= 8 * MB
    assert result.warning is None
    assert result.selected_pages == [0, 1, 2, 3, 4, 5, 11, 12, 13, 14]


def test_presets_tried_from_highest_fidelity():
    encoder = ShrinkingReencoder()
    optimizer = PayloadSizeOptimizer(target_size_bytes=4 * MB, max_pages=10, reencoder=encoder)

    # 10 pages, 10MB; needs quality <= 0.4 -> "minimum" (0.35)
    result = optimizer.optimize_images(pages_of(10 * MB, 10))

    assert result.quality_level == "minimum"
    assert encoder.calls[0] == "ultra-high"
    assert result.final_size <= 4 * MB


def test_emergency_path_halves_pages_and_warns():
    optimizer = PayloadSizeOptimizer(target_size_bytes=1 * MB, max_pages=10, reencoder=StubbornReencoder())
    images = pages_of(12 * MB, 15)

    result = optimizer.optimize_images(images)

    assert result.quality_level == "emergency-minimum"
    assert result.warning
    assert result.page_count == 5
    assert result.final_size <= result.original_size
    assert result.selected_pages == sorted(set(result.selected_pages))
    # Stubborn output is larger, so the originals are kept
    assert all(image.startswith("A") for image in result.images)


def test_override_arguments():
    optimizer = PayloadSizeOptimizer(target_size_bytes=100 * MB, reencoder=ShrinkingReencoder())
    result = optimizer.optimize_images(pages_of(6 * MB, 6), target_size_bytes=5 * MB, max_pages=4)

    assert result.optimization_applied
    assert result.page_count == 4
    assert result.final_size <= 5 * MB


@pytest.mark.parametrize(
    "count,budget,expected",
    [
        (15, 10, [0, 1, 2, 3, 4, 5, 11, 12, 13, 14]),
        (3, 10, [0, 1, 2]),
        (10, 1, [0]),
        (7, 5, [0, 1, 2, 5, 6]),
        (0, 5, []),
    ],
)
def test_select_pages(count, budget, expected):
    assert PayloadSizeOptimizer.select_pages(count, budget) == expected


def test_payload_info_and_recommendations():
    optimizer = PayloadSizeOptimizer(target_size_bytes=8 * MB, max_pages=10, reencoder=ShrinkingReencoder())
    images = pages_of(60 * MB, 12)

    info = optimizer.get_payload_info(images)
    assert info.image_count == 12
    assert info.is_over_limit and info.is_over_warning_limit and info.is_over_hard_limit
    assert info.to_dict()["compressionNeededPercent"] > 80

    kinds = [r["type"] for r in optimizer.get_recommendations(images)]
    assert kinds == ["critical", "info"]

    assert optimizer.get_recommendations(pages_of(1 * MB, 2)) == []


def test_pillow_reencoder_shrinks_real_jpeg(jpeg_page):
    images = [jpeg_page(400, 300), jpeg_page(400, 300)]
    original = sum(len(i) for i in images) * 0.75
    optimizer = PayloadSizeOptimizer(target_size_bytes=int(original * 0.5), max_pages=10)

    result = optimizer.optimize_images(images)

    assert result.optimization_applied
    assert result.warning is None
    assert result.final_size <= original * 0.5
    for image in result.images:
        with Image.open(io.BytesIO(base64.b64decode(image))) as decoded:
            assert decoded.format == "JPEG"
            assert decoded.width <= 400 and decoded.height <= 300


def test_pillow_reencoder_rejects_garbage():
    with pytest.raises(PayloadError):
        PillowReencoder().reencode(base64.b64encode(b"not an image").decode(), DEFAULT_QUALITY_PRESETS[-1])


def test_quality_presets_yaml_matches_default():
    from pathlib import Path

    path = Path(__file__).resolve().parents[1] / "config" / "quality-presets.yaml"
    assert load_quality_presets(path) == DEFAULT_QUALITY_PRESETS
    assert load_quality_presets() == DEFAULT_QUALITY_PRESETS


def test_jpeg_quality_bounds():
    assert QualityPreset("x", 1.0, 0.35).jpeg_quality == 35
    assert QualityPreset("x", 1.0, 1.0).jpeg_quality == 95
