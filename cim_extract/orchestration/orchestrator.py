"""
Orchestration Core - run the plan, collect attempts, pick the best result.

Sequence per request (strictly sequential):
1. primary method through its circuit breaker
2. fallback when primary failed or scored below the confidence threshold
3. last-resort retry straight against the provider (bypassing the
   breaker) when nothing succeeded, of the most recent method that is
   retry-eligible (vision by default) and did not fail on its input
4. highest confidence wins; ties go to the earlier attempt

Every attempt, successful or not, ends up in the result metadata.

Usage:
    orchestrator = build_orchestrator(get_settings())
    result = await orchestrator.run(ExtractionRequest(images=pages, file_name="cim.pdf"))
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import httpx

from cim_extract.core.exceptions import (
    AggregateFailure,
    CIMExtractError,
    CircuitOpenError,
    DocumentTextError,
    OperationTimeoutError,
    ParseError,
    PayloadError,
    ProviderError,
    ProviderErrorKind,
    ValidationError,
)
from cim_extract.core.logging_config import log_attempt, log_request_end, log_request_start
from cim_extract.core.models import (
    AttemptStage,
    ExtractionAttempt,
    ExtractionMethod,
    ExtractionPlan,
    ExtractionRequest,
    FinalResult,
    PlannedMethod,
    ProviderRawResponse,
)
from cim_extract.documents import DocumentText, DocumentTextExtractor, decode_document
from cim_extract.orchestration.planner import ExtractionPlanner
from cim_extract.orchestration.scoring import CompletenessScorer, ConfidenceScorer
from cim_extract.parsing.response_normalizer import ResponseNormalizer
from cim_extract.payload.optimizer import OptimizationResult, PayloadSizeOptimizer
from cim_extract.payload.presets import BASE64_DECODED_RATIO, HARD_TRANSPORT_LIMIT, format_size
from cim_extract.prompts import SYSTEM_PROMPT, build_extraction_prompt
from cim_extract.providers.base import InvocationConfig, ProviderAdapter
from cim_extract.resilience.circuit_breaker import BreakerRegistry
from cim_extract.resilience.retry import RetryPolicy

logger = logging.getLogger(__name__)

VERSION = "hybrid-v1.0"

BREAKER_FOR_METHOD = {
    ExtractionMethod.VISION: "vision",
    ExtractionMethod.TEXT: "text",
    ExtractionMethod.OCR_HYBRID: "ocr",
}

# Failures the last-resort retry cannot fix
NON_RETRYABLE_KINDS = {"payload_error", "insufficient_text", ProviderErrorKind.AUTH_ERROR.value}


def error_kind(error: Exception) -> str:
    """Stable attempt error_kind for an exception."""
    if isinstance(error, ProviderError):
        return error.kind.value
    if isinstance(error, CircuitOpenError):
        return "circuit_open"
    if isinstance(error, OperationTimeoutError):
        return ProviderErrorKind.TIMEOUT.value
    if isinstance(error, ParseError):
        return "parse_error"
    if isinstance(error, PayloadError):
        return "payload_error"
    if isinstance(error, DocumentTextError):
        return "insufficient_text"
    return "internal_error"


def select_best(attempts: Iterable[ExtractionAttempt]) -> Optional[ExtractionAttempt]:
    """Highest confidence among successful attempts; earliest wins ties."""
    best = None
    for attempt in attempts:
        if not attempt.success:
            continue
        if best is None or (attempt.confidence or 0) > (best.confidence or 0):
            best = attempt
    return best


@dataclass
class _RequestContext:
    """Per-request scratch space so fallback/retry reuse prepared inputs."""
    request: ExtractionRequest
    request_id: str
    optimization: Optional[OptimizationResult] = None
    document_text: Optional[DocumentText] = None
    document_bytes: Optional[bytes] = None
    attempts: List[ExtractionAttempt] = field(default_factory=list)


class Orchestrator:
    """Coordinates planner, breakers, adapters, normalizer and scorer."""

    def __init__(
        self,
        planner: ExtractionPlanner,
        adapters: Mapping[ExtractionMethod, ProviderAdapter],
        breakers: BreakerRegistry,
        optimizer: PayloadSizeOptimizer,
        retry_policy: Optional[RetryPolicy] = None,
        normalizer: Optional[ResponseNormalizer] = None,
        scorer: Optional[ConfidenceScorer] = None,
        text_extractor: Optional[DocumentTextExtractor] = None,
        low_confidence_threshold: float = 60.0,
        hard_limit_bytes: int = HARD_TRANSPORT_LIMIT,
        retry_methods: Iterable[ExtractionMethod] = (ExtractionMethod.VISION,),
        invocation: Optional[InvocationConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.planner = planner
        self.adapters = dict(adapters)
        self.breakers = breakers
        self.optimizer = optimizer
        self.retry_policy = retry_policy or RetryPolicy()
        self.normalizer = normalizer or ResponseNormalizer()
        self.scorer = scorer or CompletenessScorer()
        self.text_extractor = text_extractor or DocumentTextExtractor()
        self.low_confidence_threshold = low_confidence_threshold
        self.hard_limit_bytes = hard_limit_bytes
        self.retry_methods = frozenset(retry_methods)
        self.invocation = invocation or InvocationConfig(system_prompt=SYSTEM_PROMPT)
        self._http_client = http_client

    async def aclose(self):
        """Release the shared HTTP client, if this orchestrator owns one."""
        if self._http_client is not None:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, request: ExtractionRequest) -> FinalResult:
        """
        Extract and always return a FinalResult.

        Raises:
            ValidationError: If the request is unusable (no payload, over transport limit)
        """
        try:
            data = await self.extract(request)
        except AggregateFailure as e:
            return FinalResult(
                success=False,
                error={"message": e.message, "attempts": [a.summary() for a in e.attempts]},
            )
        return FinalResult(success=True, data=data)

    async def extract(self, request: ExtractionRequest) -> Dict[str, Any]:
        """
        Extract and return canonical data with hybridAnalysis metadata.

        Raises:
            ValidationError: If the request is unusable
            AggregateFailure: If every attempt failed
        """
        started = time.perf_counter()
        request.validate_payload()
        self._check_transport_limit(request)
        plan = self.planner.plan(request)

        ctx = _RequestContext(request=request, request_id=uuid.uuid4().hex[:8])
        log_request_start(
            logger,
            ctx.request_id,
            request.file_name,
            len(request.images or []),
            request.has_file_bytes,
        )

        # Primary
        primary = await self._attempt(ctx, plan.primary, AttemptStage.PRIMARY)
        ran = [(plan.primary, primary)]

        # Fallback on failure or low confidence
        primary_confidence = primary.confidence if primary.success and primary.confidence is not None else 0
        if plan.fallback is not None and (not primary.success or primary_confidence < self.low_confidence_threshold):
            logger.info(
                f"[Orchestrator:{ctx.request_id}] Primary "
                f"{'failed' if not primary.success else f'confidence {primary_confidence:g}'}, "
                f"running fallback {plan.fallback.method.value}"
            )
            fallback = await self._attempt(ctx, plan.fallback, AttemptStage.FALLBACK)
            ran.append((plan.fallback, fallback))

        # Last resort
        retry_target = self._retry_target(ran)
        if not any(a.success for a in ctx.attempts) and retry_target is not None:
            logger.info(
                f"[Orchestrator:{ctx.request_id}] All attempts failed, last-resort retry of {retry_target.method.value}"
            )
            await self._attempt(ctx, retry_target, AttemptStage.RETRY)

        elapsed_ms = (time.perf_counter() - started) * 1000
        best = select_best(ctx.attempts)

        if best is None:
            log_request_end(logger, ctx.request_id, False, elapsed_ms)
            failure = AggregateFailure(
                f"All extraction methods failed ({len(ctx.attempts)} attempts)",
                ctx.attempts,
                {"request_id": ctx.request_id, "file_name": request.file_name},
            )
            for reason in failure.reasons():
                logger.error(f"[Orchestrator:{ctx.request_id}] {reason}")
            raise failure

        log_request_end(logger, ctx.request_id, True, elapsed_ms)
        logger.info(
            f"[Orchestrator:{ctx.request_id}] Selected {best.stage.value}:{best.method.value} "
            f"({best.provider}) confidence={best.confidence}"
        )

        result = best.data.to_dict()
        result["hybridAnalysis"] = {
            "selectedMethod": best.method.value,
            "selectedProvider": best.provider,
            "selectedStage": best.stage.value,
            "confidence": best.confidence,
            "attempts": [a.summary() for a in ctx.attempts],
            "extractionPlan": self._plan_metadata(plan),
            "analysisTimestamp": datetime.now(timezone.utc).isoformat(),
            "totalElapsedMs": round(elapsed_ms, 1),
            "version": VERSION,
        }
        return result

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    def _check_transport_limit(self, request: ExtractionRequest):
        total = sum(len(image) for image in request.images or []) + len(request.file_bytes or "")
        size = total * BASE64_DECODED_RATIO
        if size > self.hard_limit_bytes:
            raise ValidationError(
                f"Payload {format_size(size)} exceeds transport limit {format_size(self.hard_limit_bytes)}",
                {"size_bytes": size, "file_name": request.file_name},
            )

    def _retry_target(self, ran: List[Tuple[PlannedMethod, ExtractionAttempt]]) -> Optional[PlannedMethod]:
        """Most recently run method that may be retried, given how it failed."""
        for planned, attempt in reversed(ran):
            if planned.method in self.retry_methods and attempt.error_kind not in NON_RETRYABLE_KINDS:
                return planned
        return None

    async def _attempt(self, ctx: _RequestContext, planned: PlannedMethod, stage: AttemptStage) -> ExtractionAttempt:
        """Run one method and record the outcome; never raises for provider-side failures."""
        breaker_name = BREAKER_FOR_METHOD[planned.method]
        started_at = datetime.now(timezone.utc)
        t0 = time.perf_counter()
        metadata: Dict[str, Any] = {"breaker": breaker_name, "reason": planned.reason}

        try:
            invoke_kwargs = await self._prepare(ctx, planned, metadata)
            adapter = self.adapters[planned.method]
            prompt = build_extraction_prompt(planned.method, ctx.request.file_name)

            async def call_provider() -> ProviderRawResponse:
                return await adapter.invoke(prompt, config=self.invocation, **invoke_kwargs)

            if stage == AttemptStage.RETRY:
                raw, normalized = await self._retry_direct(call_provider, breaker_name, planned)
            else:
                raw = await self.breakers.get(breaker_name).execute(call_provider)
                normalized = self.normalizer.parse_with_strategy(raw.text)

            confidence = self.scorer.score(normalized.data, raw)
            data = normalized.data.model_copy(update={"confidence": confidence})
            metadata.update(raw.metadata)
            metadata.update({
                "model": raw.model,
                "usage": raw.usage,
                "providerElapsedMs": round(raw.elapsed_ms, 1),
                "parseStrategy": normalized.strategy,
            })
            attempt = ExtractionAttempt(
                method=planned.method,
                provider=planned.provider,
                stage=stage,
                success=True,
                data=data,
                confidence=confidence,
                started_at=started_at,
                elapsed_ms=(time.perf_counter() - t0) * 1000,
                metadata=metadata,
            )

        except ValidationError:
            raise

        except CIMExtractError as e:
            attempt = self._failed(planned, stage, e, started_at, t0, metadata)

        except Exception as e:
            logger.exception(f"[Orchestrator:{ctx.request_id}] Unexpected error in {planned.method.value}")
            attempt = self._failed(planned, stage, e, started_at, t0, metadata)

        ctx.attempts.append(attempt)
        log_attempt(
            logger,
            ctx.request_id,
            stage.value,
            f"{planned.method.value}/{planned.provider}",
            attempt.success,
            confidence=attempt.confidence,
            elapsed_ms=attempt.elapsed_ms,
            error=attempt.error,
        )
        return attempt

    @staticmethod
    def _failed(planned, stage, error: Exception, started_at, t0, metadata) -> ExtractionAttempt:
        if isinstance(error, ParseError):
            metadata["rawSample"] = error.sample
        if isinstance(error, ProviderError) and error.status_code is not None:
            metadata["statusCode"] = error.status_code
        retry_attempts = getattr(error, "retry_attempts", None)
        if retry_attempts is not None:
            metadata["retryAttempts"] = retry_attempts
        return ExtractionAttempt(
            method=planned.method,
            provider=planned.provider,
            stage=stage,
            success=False,
            error=str(error),
            error_kind=error_kind(error),
            started_at=started_at,
            elapsed_ms=(time.perf_counter() - t0) * 1000,
            metadata=metadata,
        )

    async def _retry_direct(self, call_provider, breaker_name: str, planned: PlannedMethod):
        """Invoke + parse under RetryPolicy, outside the breaker but keeping its timeout."""
        timeout = self.breakers.get(breaker_name).config.timeout

        async def once():
            try:
                raw = await asyncio.wait_for(call_provider(), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise OperationTimeoutError(f"{breaker_name}-retry", timeout) from e
            return raw, self.normalizer.parse_with_strategy(raw.text)

        return await self.retry_policy.execute(once, context=f"{planned.method.value}-retry")

    async def _prepare(self, ctx: _RequestContext, planned: PlannedMethod, metadata: Dict[str, Any]) -> Dict[str, Any]:
        """Build adapter inputs for a method, caching work across attempts."""
        request = ctx.request

        if planned.method == ExtractionMethod.VISION:
            if not request.has_images:
                raise PayloadError("Vision analysis requires page images")
            if ctx.optimization is None:
                ctx.optimization = await asyncio.to_thread(self.optimizer.optimize_images, request.images)
            metadata["optimization"] = ctx.optimization.to_metadata()
            metadata["pageCount"] = ctx.optimization.page_count
            return {"pages": ctx.optimization.images}

        if not request.has_file_bytes:
            raise PayloadError(f"{planned.method.value} requires document bytes")

        if planned.method == ExtractionMethod.OCR_HYBRID:
            if ctx.document_bytes is None:
                ctx.document_bytes = decode_document(request.file_bytes)
            metadata["documentBytes"] = len(ctx.document_bytes)
            return {"document": ctx.document_bytes}

        if ctx.document_text is None:
            ctx.document_text = await asyncio.to_thread(self.text_extractor.extract, request.file_bytes)
        metadata["textChars"] = ctx.document_text.char_count
        metadata["textMethod"] = ctx.document_text.method
        metadata["pageCount"] = ctx.document_text.page_count
        return {"text": ctx.document_text.text}

    @staticmethod
    def _plan_metadata(plan: ExtractionPlan) -> Dict[str, Any]:
        return {
            "primary": plan.primary.to_dict(),
            "fallback": plan.fallback.to_dict() if plan.fallback else None,
            "reasoning": plan.reasoning,
            "rationale": list(plan.rationale),
        }
