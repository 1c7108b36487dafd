"""
Extraction Planner - choose primary and fallback methods once per request.

Decision table:
    images ok-sized (+ bytes)   -> vision,  fallback text
    images ok-sized only        -> vision,  no fallback
    images oversized + bytes    -> text,    fallback vision (optimized)
    images oversized only       -> vision (optimized), no fallback
    bytes only                  -> text,    no fallback
    neither                     -> ValidationError
"""

import logging
from typing import List

from cim_extract.core.exceptions import ValidationError
from cim_extract.core.models import ExtractionMethod, ExtractionPlan, ExtractionRequest, PlannedMethod
from cim_extract.payload.optimizer import PayloadSizeOptimizer
from cim_extract.payload.presets import VISION_ACCEPTABLE_LIMIT, format_size

logger = logging.getLogger(__name__)

OCR_PROVIDER = "textract"


class ExtractionPlanner:
    """Static method selection from payload shape and size."""

    def __init__(
        self,
        optimizer: PayloadSizeOptimizer,
        vision_acceptable_bytes: int = VISION_ACCEPTABLE_LIMIT,
        vision_provider: str = "openai",
        text_provider: str = "openai",
        text_method: ExtractionMethod = ExtractionMethod.TEXT,
    ):
        if text_method == ExtractionMethod.VISION:
            raise ValueError("text_method must be a document-based method")
        self.optimizer = optimizer
        self.vision_acceptable_bytes = vision_acceptable_bytes
        self.vision_provider = vision_provider
        self.text_provider = text_provider
        self.text_method = ExtractionMethod(text_method)

    def _vision(self, reason: str, requires_optimization: bool) -> PlannedMethod:
        return PlannedMethod(
            method=ExtractionMethod.VISION,
            provider=self.vision_provider,
            reason=reason,
            requires_optimization=requires_optimization,
        )

    def _text(self, reason: str) -> PlannedMethod:
        provider = OCR_PROVIDER if self.text_method == ExtractionMethod.OCR_HYBRID else self.text_provider
        return PlannedMethod(method=self.text_method, provider=provider, reason=reason)

    def plan(self, request: ExtractionRequest) -> ExtractionPlan:
        """
        Build the plan for a request.

        Raises:
            ValidationError: If the request carries neither images nor document bytes
        """
        if not request.has_images and not request.has_file_bytes:
            raise ValidationError(
                "No data provided: either images or fileData is required",
                {"file_name": request.file_name},
            )

        rationale: List[str] = []

        if not request.has_images:
            rationale.append("No page images; document bytes only")
            plan = ExtractionPlan(
                primary=self._text("Document text analysis (no page images)"),
                fallback=None,
                rationale=tuple(rationale),
            )
            self._log(request, plan)
            return plan

        info = self.optimizer.get_payload_info(request.images)
        oversized = info.total_size_bytes >= self.vision_acceptable_bytes
        needs_optimization = info.is_over_limit
        rationale.append(
            f"{info.image_count} page images, {format_size(info.total_size_bytes)} "
            f"(vision limit {format_size(self.vision_acceptable_bytes)}, "
            f"target {format_size(info.target_size_bytes)})"
        )

        if not oversized:
            fallback = None
            if request.has_file_bytes:
                fallback = self._text("Document text analysis if vision fails or is low confidence")
                rationale.append("Document bytes available for fallback")
            plan = ExtractionPlan(
                primary=self._vision("Vision analysis of page images", needs_optimization),
                fallback=fallback,
                rationale=tuple(rationale),
            )
        elif request.has_file_bytes:
            rationale.append("Images too large for vision; text first")
            plan = ExtractionPlan(
                primary=self._text("Document text analysis (images oversized)"),
                fallback=self._vision("Optimized vision analysis of page images", True),
                rationale=tuple(rationale),
            )
        else:
            rationale.append("Images too large and no document bytes; mandatory optimization")
            plan = ExtractionPlan(
                primary=self._vision("Optimized vision analysis (images only)", True),
                fallback=None,
                rationale=tuple(rationale),
            )

        self._log(request, plan)
        return plan

    @staticmethod
    def _log(request: ExtractionRequest, plan: ExtractionPlan):
        logger.info(f"[Planner] {request.file_name}: {plan.reasoning}")
