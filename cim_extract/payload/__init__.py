"""Page-image payload sizing and optimization."""

from cim_extract.payload.optimizer import (
    ImageReencoder,
    OptimizationResult,
    PayloadInfo,
    PayloadSizeOptimizer,
    PillowReencoder,
)
from cim_extract.payload.presets import DEFAULT_QUALITY_PRESETS, QualityPreset, format_size

__all__ = [
    "ImageReencoder",
    "OptimizationResult",
    "PayloadInfo",
    "PayloadSizeOptimizer",
    "PillowReencoder",
    "DEFAULT_QUALITY_PRESETS",
    "QualityPreset",
    "format_size",
]
