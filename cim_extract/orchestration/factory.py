"""Wires an Orchestrator from Settings. Called once at process start."""

import logging
from typing import Optional

import httpx

from cim_extract.core.config import Settings, load_quality_presets
from cim_extract.core.models import ExtractionMethod
from cim_extract.documents import DocumentTextExtractor
from cim_extract.orchestration.orchestrator import Orchestrator
from cim_extract.orchestration.planner import ExtractionPlanner
from cim_extract.payload.optimizer import PayloadSizeOptimizer
from cim_extract.providers.base import HttpProviderAdapter
from cim_extract.providers.claude import ClaudeAdapter
from cim_extract.providers.grok import GrokAdapter
from cim_extract.providers.openai import OpenAIChatAdapter
from cim_extract.providers.textract import TextractHybridAdapter
from cim_extract.resilience.circuit_breaker import BreakerRegistry
from cim_extract.resilience.retry import RetryPolicy

logger = logging.getLogger(__name__)


def build_llm_adapter(provider: str, settings: Settings, client: httpx.AsyncClient) -> HttpProviderAdapter:
    timeout = settings.orchestrator.request_timeout_seconds
    if provider == "openai":
        return OpenAIChatAdapter(
            client, settings.openai.api_key, settings.openai.base_url, settings.openai.model, timeout
        )
    if provider == "grok":
        return GrokAdapter(client, settings.grok.api_key, settings.grok.base_url, settings.grok.model, timeout)
    if provider == "claude":
        return ClaudeAdapter(
            client,
            settings.anthropic.api_key,
            settings.anthropic.base_url,
            settings.anthropic.model,
            timeout,
            api_version=settings.anthropic.api_version,
        )
    raise ValueError(f"Unknown provider: {provider}")


def build_orchestrator(settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> Orchestrator:
    """
    Build the full component graph.

    Args:
        settings: Application settings
        http_client: Shared client (tests pass one with a MockTransport); created and
            owned by the orchestrator when omitted

    Returns:
        Orchestrator ready to run requests
    """
    owns_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.orchestrator.request_timeout_seconds, connect=10.0)
        )

    payload = settings.payload
    optimizer = PayloadSizeOptimizer(
        target_size_bytes=payload.target_size_bytes,
        max_pages=payload.max_pages,
        warning_limit_bytes=payload.warning_limit_bytes,
        hard_limit_bytes=payload.hard_limit_bytes,
        presets=load_quality_presets(payload.quality_presets_path),
    )

    orch = settings.orchestrator
    text_method = ExtractionMethod(orch.text_method)
    planner = ExtractionPlanner(
        optimizer,
        vision_acceptable_bytes=payload.vision_acceptable_bytes,
        vision_provider=orch.vision_provider,
        text_provider=orch.text_provider,
        text_method=text_method,
    )

    text_adapter = build_llm_adapter(orch.text_provider, settings, http_client)
    adapters = {
        ExtractionMethod.VISION: build_llm_adapter(orch.vision_provider, settings, http_client),
        ExtractionMethod.TEXT: text_adapter,
        ExtractionMethod.OCR_HYBRID: TextractHybridAdapter(
            text_adapter,
            region=settings.aws.region,
            access_key_id=settings.aws.access_key_id,
            secret_access_key=settings.aws.secret_access_key,
            timeout=settings.aws.textract_timeout_seconds,
        ),
    }

    hybrid_budget = settings.aws.textract_timeout_seconds + orch.request_timeout_seconds
    if settings.ocr_breaker.timeout_seconds < hybrid_budget:
        logger.warning(
            f"[Factory] ocr breaker timeout {settings.ocr_breaker.timeout_seconds:g}s is shorter than "
            f"Textract + LLM ({hybrid_budget:g}s); slow interpretations will count as OCR failures"
        )

    logger.info(
        f"[Factory] vision={orch.vision_provider} text={orch.text_provider} "
        f"text_method={text_method.value} threshold={orch.low_confidence_threshold:g}"
    )

    return Orchestrator(
        planner=planner,
        adapters=adapters,
        breakers=BreakerRegistry.from_settings(settings),
        optimizer=optimizer,
        retry_policy=RetryPolicy.from_settings(settings.retry),
        text_extractor=DocumentTextExtractor(min_chars=orch.min_text_chars),
        low_confidence_threshold=orch.low_confidence_threshold,
        hard_limit_bytes=payload.hard_limit_bytes,
        http_client=http_client if owns_client else None,
    )
