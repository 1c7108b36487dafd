"""
Payload Size Optimizer - fit page-image sequences under a size budget.

Strategies (in order):
1. Nothing to do when the payload is already within target
2. Page reduction (front-weighted: summaries live at the start,
   detailed financial tables at the end)
3. Progressive re-encoding through the quality preset table
4. Emergency: halve the page budget again at the lowest preset

Usage:
    optimizer = PayloadSizeOptimizer(target_size_bytes=8 * MB, max_pages=10)
    info = optimizer.get_payload_info(images)
    result = optimizer.optimize_images(images)
"""

import base64
import binascii
import io
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from PIL import Image, UnidentifiedImageError

from cim_extract.core.exceptions import PayloadError
from cim_extract.payload.presets import (
    BASE64_DECODED_RATIO,
    DEFAULT_MAX_PAGES,
    DEFAULT_QUALITY_PRESETS,
    HARD_TRANSPORT_LIMIT,
    MB,
    SAFE_LIMIT,
    WARNING_LIMIT,
    QualityPreset,
    format_size,
)

logger = logging.getLogger(__name__)

# Share of the page budget taken from the start of the document
FRONT_PAGE_SHARE = 0.6


@dataclass(frozen=True)
class PayloadInfo:
    """Estimated decoded size of a page-image sequence."""

    total_size_bytes: float
    image_count: int
    target_size_bytes: int
    is_over_limit: bool
    is_over_warning_limit: bool
    is_over_hard_limit: bool

    @property
    def total_size_mb(self) -> float:
        return self.total_size_bytes / MB

    @property
    def average_image_size(self) -> float:
        return self.total_size_bytes / self.image_count if self.image_count else 0.0

    @property
    def compression_needed_percent(self) -> float:
        if self.total_size_bytes <= self.target_size_bytes or not self.total_size_bytes:
            return 0.0
        return (self.total_size_bytes - self.target_size_bytes) / self.total_size_bytes * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalSizeBytes": self.total_size_bytes,
            "totalSizeMB": round(self.total_size_mb, 3),
            "imageCount": self.image_count,
            "averageImageSize": self.average_image_size,
            "isOverLimit": self.is_over_limit,
            "isOverWarningLimit": self.is_over_warning_limit,
            "isOverHardLimit": self.is_over_hard_limit,
            "targetSizeBytes": self.target_size_bytes,
            "compressionNeededPercent": round(self.compression_needed_percent, 2),
        }


@dataclass
class OptimizationResult:
    """Outcome of optimize_images."""

    images: List[str]
    optimization_applied: bool
    original_size: float
    final_size: float
    quality_level: str
    original_page_count: int
    selected_pages: List[int] = field(default_factory=list)
    warning: Optional[str] = None

    @property
    def page_count(self) -> int:
        return len(self.images)

    @property
    def compression_ratio(self) -> float:
        return self.final_size / self.original_size if self.original_size else 1.0

    @property
    def is_emergency(self) -> bool:
        return self.warning is not None

    def to_metadata(self) -> Dict[str, Any]:
        """Attempt metadata (no image payloads)."""
        return {
            "applied": self.optimization_applied,
            "originalSizeMB": round(self.original_size / MB, 3),
            "finalSizeMB": round(self.final_size / MB, 3),
            "compressionRatio": round(self.compression_ratio, 4),
            "qualityLevel": self.quality_level,
            "pageCount": self.page_count,
            "originalPageCount": self.original_page_count,
            "selectedPages": self.selected_pages,
            "warning": self.warning,
        }


class ImageReencoder(Protocol):
    """Re-encodes one base64 page image at a quality preset."""

    def reencode(self, image_b64: str, preset: QualityPreset) -> str:
        ...


class PillowReencoder:
    """
    Genuine resize + JPEG re-compression with Pillow.

    Preset scales are render scales; the first (highest) preset maps to the
    image's current resolution and lower presets shrink proportionally.
    """

    def __init__(self, reference_scale: float = DEFAULT_QUALITY_PRESETS[0].scale):
        self.reference_scale = reference_scale

    def reencode(self, image_b64: str, preset: QualityPreset) -> str:
        try:
            raw = base64.b64decode(image_b64)
            with Image.open(io.BytesIO(raw)) as img:
                img = img.convert("RGB")
                factor = preset.scale / self.reference_scale
                if factor < 1.0:
                    new_size = (max(1, int(img.width * factor)), max(1, int(img.height * factor)))
                    img = img.resize(new_size, Image.Resampling.LANCZOS)
                buffer = io.BytesIO()
                img.save(buffer, format="JPEG", quality=preset.jpeg_quality, optimize=True)
        except (binascii.Error, UnidentifiedImageError, OSError, ValueError) as e:
            raise PayloadError(f"Could not re-encode page image: {e}") from e
        return base64.b64encode(buffer.getvalue()).decode("ascii")


class PayloadSizeOptimizer:
    """
    Estimates and reduces page-image payload size.

    Sizes are estimated from the encoded length (base64 -> binary ratio
    0.75), so the same measure is used before and after re-encoding.
    """

    def __init__(
        self,
        target_size_bytes: int = SAFE_LIMIT,
        max_pages: int = DEFAULT_MAX_PAGES,
        warning_limit_bytes: int = WARNING_LIMIT,
        hard_limit_bytes: int = HARD_TRANSPORT_LIMIT,
        presets: Sequence[QualityPreset] = DEFAULT_QUALITY_PRESETS,
        reencoder: Optional[ImageReencoder] = None,
    ):
        if not presets:
            raise ValueError("At least one quality preset is required")
        self.target_size_bytes = target_size_bytes
        self.max_pages = max_pages
        self.warning_limit_bytes = warning_limit_bytes
        self.hard_limit_bytes = hard_limit_bytes
        self.presets = tuple(presets)
        self.reencoder = reencoder or PillowReencoder(reference_scale=self.presets[0].scale)

        logger.info(
            f"[PayloadOptimizer] target={format_size(target_size_bytes)}, max_pages={max_pages}"
        )

    # ------------------------------------------------------------------
    # Size estimation
    # ------------------------------------------------------------------

    @staticmethod
    def estimate_image_size(image: str) -> float:
        return len(image) * BASE64_DECODED_RATIO

    def calculate_payload_size(self, images: Optional[Sequence[str]]) -> float:
        if not images:
            return 0.0
        return sum(self.estimate_image_size(image) for image in images)

    def get_payload_info(
        self, images: Optional[Sequence[str]], target_size_bytes: Optional[int] = None
    ) -> PayloadInfo:
        target = target_size_bytes if target_size_bytes is not None else self.target_size_bytes
        total = self.calculate_payload_size(images)
        return PayloadInfo(
            total_size_bytes=total,
            image_count=len(images) if images else 0,
            target_size_bytes=target,
            is_over_limit=total > target,
            is_over_warning_limit=total > self.warning_limit_bytes,
            is_over_hard_limit=total > self.hard_limit_bytes,
        )

    # ------------------------------------------------------------------
    # Page selection
    # ------------------------------------------------------------------

    @staticmethod
    def select_pages(page_count: int, budget: int) -> List[int]:
        """
        Pick at most budget page indices, ascending, without repeats.

        ~60% of the budget from the start of the document, the rest from
        the end.
        """
        if budget <= 0 or page_count <= 0:
            return []
        if page_count <= budget:
            return list(range(page_count))

        front_count = min(math.ceil(budget * FRONT_PAGE_SHARE), page_count)
        selected = list(range(front_count))

        back_count = budget - front_count
        start_from_end = max(front_count, page_count - back_count)
        for index in range(start_from_end, page_count):
            if len(selected) >= budget:
                break
            selected.append(index)

        return selected

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    def optimize_images(
        self,
        images: Sequence[str],
        target_size_bytes: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> OptimizationResult:
        """
        Fit images under the target size.

        Args:
            images: Page-ordered base64 images
            target_size_bytes: Override of the configured target
            max_pages: Override of the configured page budget

        Returns:
            OptimizationResult; images are returned unchanged when already within target

        Raises:
            PayloadError: If a page cannot be decoded for re-encoding
        """
        target = target_size_bytes if target_size_bytes is not None else self.target_size_bytes
        page_budget = max_pages if max_pages is not None else self.max_pages
        images = list(images)

        initial = self.get_payload_info(images, target)
        logger.info(
            f"[PayloadOptimizer] Initial payload: {format_size(initial.total_size_bytes)} "
            f"across {initial.image_count} pages"
        )

        if not initial.is_over_limit:
            return OptimizationResult(
                images=images,
                optimization_applied=False,
                original_size=initial.total_size_bytes,
                final_size=initial.total_size_bytes,
                quality_level="original",
                original_page_count=len(images),
                selected_pages=list(range(len(images))),
            )

        # Strategy 1: reduce number of pages first
        page_indices = list(range(len(images)))
        if len(images) > page_budget:
            page_indices = self.select_pages(len(images), page_budget)
            logger.info(f"[PayloadOptimizer] Reducing pages {len(images)} -> {len(page_indices)}: {page_indices}")
        working = [images[i] for i in page_indices]

        # Strategy 2: progressive quality reduction
        candidate: List[str] = working
        for preset in self.presets:
            candidate = self._reencode_all(working, preset)
            size = self.calculate_payload_size(candidate)
            logger.info(f"[PayloadOptimizer] {preset.name}: {format_size(size)}")

            if size <= target:
                logger.info(f"[PayloadOptimizer] Fits target with {preset.name} quality")
                return OptimizationResult(
                    images=candidate,
                    optimization_applied=True,
                    original_size=initial.total_size_bytes,
                    final_size=size,
                    quality_level=preset.name,
                    original_page_count=len(images),
                    selected_pages=page_indices,
                )

        # Strategy 3: emergency - fewer pages at the lowest preset
        emergency_budget = max(1, min(len(working), page_budget) // 2)
        keep = self.select_pages(len(working), emergency_budget)
        final_images = [candidate[i] for i in keep]
        final_size = self.calculate_payload_size(final_images)
        warning = "Emergency optimization applied - quality may be reduced"

        logger.warning(
            f"[PayloadOptimizer] {warning}: {len(final_images)} pages, {format_size(final_size)}"
        )
        if final_size > self.hard_limit_bytes:
            logger.error(
                f"[PayloadOptimizer] Emergency payload {format_size(final_size)} still exceeds "
                f"transport limit {format_size(self.hard_limit_bytes)}"
            )

        return OptimizationResult(
            images=final_images,
            optimization_applied=True,
            original_size=initial.total_size_bytes,
            final_size=final_size,
            quality_level="emergency-minimum",
            original_page_count=len(images),
            selected_pages=[page_indices[i] for i in keep],
            warning=warning,
        )

    def _reencode_all(self, images: Sequence[str], preset: QualityPreset) -> List[str]:
        """Re-encode every page, keeping whichever of original/re-encoded is smaller."""
        result = []
        for image in images:
            reencoded = self.reencoder.reencode(image, preset)
            result.append(reencoded if len(reencoded) < len(image) else image)
        return result

    def get_recommendations(self, images: Sequence[str]) -> List[Dict[str, str]]:
        """Advice for callers deciding whether to optimize before sending."""
        info = self.get_payload_info(images)
        recommendations = []

        if info.is_over_hard_limit:
            recommendations.append({
                "type": "critical",
                "message": f"Payload exceeds transport limit ({format_size(self.hard_limit_bytes)})",
                "action": "Reject or apply emergency optimization",
            })
        elif info.is_over_limit:
            recommendations.append({
                "type": "warning",
                "message": f"Payload exceeds safe limit ({format_size(self.target_size_bytes)})",
                "action": "Apply quality optimization",
            })

        if info.image_count > self.max_pages:
            recommendations.append({
                "type": "info",
                "message": f"Too many pages ({info.image_count} > {self.max_pages})",
                "action": "Reduce page count",
            })

        return recommendations
