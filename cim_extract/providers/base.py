"""
Provider adapter contract and shared HTTP plumbing.

An adapter wraps exactly one upstream call: it builds the provider's
request shape, maps transport and status failures onto ProviderError
kinds and converts the provider's raw response into ProviderRawResponse.
Retrying and circuit breaking live in the orchestrator, never here.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import httpx

from cim_extract.core.exceptions import ProviderError, ProviderErrorKind
from cim_extract.core.models import ProviderRawResponse

logger = logging.getLogger(__name__)

BODY_SAMPLE_LENGTH = 1000


@dataclass(frozen=True)
class InvocationConfig:
    """Per-call generation settings."""
    temperature: float = 0.1
    max_tokens: int = 4096
    image_detail: str = "high"
    system_prompt: Optional[str] = None


DEFAULT_INVOCATION = InvocationConfig()


def detect_media_type(image_b64: str) -> str:
    """Guess the MIME type of a base64 image from its magic bytes."""
    if image_b64.startswith("iVBOR"):
        return "image/png"
    if image_b64.startswith("R0lG"):
        return "image/gif"
    if image_b64.startswith("UklG"):
        return "image/webp"
    return "image/jpeg"


def status_error(provider: str, response: httpx.Response) -> ProviderError:
    """Map a non-2xx response to a ProviderError."""
    status = response.status_code
    body = response.text[:BODY_SAMPLE_LENGTH]

    if status in (401, 403):
        kind = ProviderErrorKind.AUTH_ERROR
    elif status == 429:
        kind = ProviderErrorKind.RATE_LIMITED
    else:
        kind = ProviderErrorKind.HTTP_ERROR

    return ProviderError(
        f"{provider} API error: {status}",
        kind=kind,
        provider=provider,
        status_code=status,
        body=body,
    )


class ProviderAdapter(ABC):
    """One upstream extraction provider."""

    name: str = "provider"

    @abstractmethod
    async def invoke(
        self,
        prompt: str,
        pages: Optional[Sequence[str]] = None,
        text: Optional[str] = None,
        config: Optional[InvocationConfig] = None,
        document: Optional[bytes] = None,
    ) -> ProviderRawResponse:
        """
        Call the provider once.

        Args:
            prompt: Extraction instructions
            pages: Page-ordered base64 images (vision providers)
            text: Plain document text (text providers)
            config: Generation settings
            document: Raw document bytes (OCR providers)

        Returns:
            ProviderRawResponse with the provider's free-form text

        Raises:
            ProviderError: On any upstream failure
        """


class HttpProviderAdapter(ProviderAdapter):
    """Adapter over a shared httpx.AsyncClient."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: Optional[str],
        base_url: str,
        model: str,
        timeout: float = 120.0,
    ):
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    def _require_api_key(self) -> str:
        if not self.api_key:
            raise ProviderError(
                f"{self.name} API key not configured",
                kind=ProviderErrorKind.AUTH_ERROR,
                provider=self.name,
            )
        return self.api_key

    async def _post_json(self, path: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        """POST payload and return the decoded JSON object."""
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.post(url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()

        except httpx.TimeoutException as e:
            raise ProviderError(
                f"{self.name} request timed out after {self.timeout:g}s",
                kind=ProviderErrorKind.TIMEOUT,
                provider=self.name,
            ) from e

        except httpx.HTTPStatusError as e:
            error = status_error(self.name, e.response)
            logger.warning(f"[{self.name}] HTTP {error.status_code}: {error.body[:200] if error.body else ''}")
            raise error from e

        except httpx.RequestError as e:
            raise ProviderError(
                f"{self.name} request failed: {e}",
                kind=ProviderErrorKind.HTTP_ERROR,
                provider=self.name,
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"{self.name} returned non-JSON body",
                kind=ProviderErrorKind.MALFORMED_RESPONSE,
                provider=self.name,
                status_code=response.status_code,
                body=response.text[:BODY_SAMPLE_LENGTH],
            ) from e

        if not isinstance(data, dict):
            raise ProviderError(
                f"{self.name} returned unexpected JSON shape",
                kind=ProviderErrorKind.MALFORMED_RESPONSE,
                provider=self.name,
                status_code=response.status_code,
            )
        return data

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return (time.perf_counter() - started) * 1000

    def _malformed(self, detail: str) -> ProviderError:
        return ProviderError(
            f"{self.name} response missing {detail}",
            kind=ProviderErrorKind.MALFORMED_RESPONSE,
            provider=self.name,
        )
