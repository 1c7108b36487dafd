"""Anthropic Messages API adapter."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from cim_extract.core.models import ProviderRawResponse
from cim_extract.providers.base import (
    DEFAULT_INVOCATION,
    HttpProviderAdapter,
    detect_media_type,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaudeRaw:
    """Decoded Messages API response (text blocks joined)."""
    text: str
    model: Optional[str]
    stop_reason: Optional[str]
    usage: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> Optional["ClaudeRaw"]:
        content = payload.get("content")
        if not isinstance(content, list):
            return None
        texts = [
            block["text"]
            for block in content
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
        ]
        if not texts:
            return None
        return cls(
            text="".join(texts),
            model=payload.get("model"),
            stop_reason=payload.get("stop_reason"),
            usage=payload.get("usage") or {},
        )

    def to_canonical(self, elapsed_ms: float, metadata: Optional[Dict[str, Any]] = None) -> ProviderRawResponse:
        return ProviderRawResponse(
            text=self.text,
            provider="claude",
            model=self.model,
            usage=self.usage,
            elapsed_ms=elapsed_ms,
            metadata={"stopReason": self.stop_reason, **(metadata or {})},
        )


class ClaudeAdapter(HttpProviderAdapter):
    """POST /messages with base64 image blocks."""

    name = "claude"

    def __init__(self, *args, api_version: str = "2023-06-01", **kwargs):
        super().__init__(*args, **kwargs)
        self.api_version = api_version

    async def invoke(self, prompt, pages=None, text=None, config=None, document=None) -> ProviderRawResponse:
        config = config or DEFAULT_INVOCATION
        api_key = self._require_api_key()

        content: List[Dict[str, Any]] = []
        for image in pages or []:
            content.append({
                "type": "image",
                "source": {"type": "base64", "media_type": detect_media_type(image), "data": image},
            })
        content.append({"type": "text", "text": f"{prompt}\n\n{text}" if text else prompt})

        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "messages": [{"role": "user", "content": content}],
        }
        if config.system_prompt:
            payload["system"] = config.system_prompt

        logger.info(f"[claude] {self.model} | pages={len(pages) if pages else 0} | text_chars={len(text or '')}")
        started = time.perf_counter()
        data = await self._post_json(
            "/messages",
            payload,
            headers={
                "x-api-key": api_key,
                "anthropic-version": self.api_version,
                "content-type": "application/json",
            },
        )

        raw = ClaudeRaw.from_payload(data)
        if raw is None:
            raise self._malformed("text content block")

        elapsed_ms = self._elapsed_ms(started)
        logger.info(f"[claude] completed in {elapsed_ms:.0f}ms ({len(raw.text)} chars)")
        return raw.to_canonical(elapsed_ms, {"pageCount": len(pages) if pages else 0})
