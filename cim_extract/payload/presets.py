"""Payload size limits and image quality presets."""

from dataclasses import dataclass

MB = 1024 * 1024

# Payload size limits (bytes)
HARD_TRANSPORT_LIMIT = 50 * MB   # upstream request body limit
VISION_ACCEPTABLE_LIMIT = 20 * MB
SAFE_LIMIT = 8 * MB              # default optimization target
WARNING_LIMIT = 5 * MB

DEFAULT_MAX_PAGES = 10

# base64 carries ~33% overhead over the binary it encodes
BASE64_DECODED_RATIO = 0.75


@dataclass(frozen=True)
class QualityPreset:
    """One re-encoding step: render scale plus JPEG quality factor (0-1)."""

    name: str
    scale: float
    quality: float

    @property
    def jpeg_quality(self) -> int:
        return max(1, min(95, int(round(self.quality * 100))))


# Ordered from highest to lowest fidelity
DEFAULT_QUALITY_PRESETS: tuple[QualityPreset, ...] = (
    QualityPreset("ultra-high", 2.0, 0.95),
    QualityPreset("high", 1.8, 0.85),
    QualityPreset("medium-high", 1.5, 0.75),
    QualityPreset("medium", 1.2, 0.65),
    QualityPreset("low-medium", 1.0, 0.55),
    QualityPreset("low", 0.8, 0.45),
    QualityPreset("minimum", 0.6, 0.35),
)


def format_size(num_bytes: float) -> str:
    """Human readable size, e.g. '7.50 MB'."""
    units = ["B", "KB", "MB", "GB"]
    size = float(num_bytes)
    unit_index = 0
    while size >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1
    return f"{size:.2f} {units[unit_index]}"
