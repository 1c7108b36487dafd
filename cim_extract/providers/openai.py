"""OpenAI chat completions adapter (vision and text)."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from cim_extract.core.models import ProviderRawResponse
from cim_extract.providers.base import (
    DEFAULT_INVOCATION,
    HttpProviderAdapter,
    InvocationConfig,
    detect_media_type,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpenAIRaw:
    """Decoded chat completion."""
    content: str
    model: Optional[str]
    finish_reason: Optional[str]
    usage: Dict[str, Any] = field(default_factory=dict)

    provider = "openai"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> Optional["OpenAIRaw"]:
        """Returns None when the payload lacks a message content string."""
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return None
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            return None
        return cls(
            content=content,
            model=payload.get("model"),
            finish_reason=choices[0].get("finish_reason"),
            usage=payload.get("usage") or {},
        )

    def to_canonical(self, elapsed_ms: float, metadata: Optional[Dict[str, Any]] = None) -> ProviderRawResponse:
        return ProviderRawResponse(
            text=self.content,
            provider=self.provider,
            model=self.model,
            usage=self.usage,
            elapsed_ms=elapsed_ms,
            metadata={"finishReason": self.finish_reason, **(metadata or {})},
        )


def build_chat_messages(
    prompt: str,
    pages: Optional[Sequence[str]],
    text: Optional[str],
    config: InvocationConfig,
) -> List[Dict[str, Any]]:
    """OpenAI-style messages: images as data-URI image_url parts."""
    messages: List[Dict[str, Any]] = []
    if config.system_prompt:
        messages.append({"role": "system", "content": config.system_prompt})

    user_text = f"{prompt}\n\n{text}" if text else prompt
    if pages:
        content: List[Dict[str, Any]] = [{"type": "text", "text": user_text}]
        for image in pages:
            content.append({
                "type": "image_url",
                "image_url": {
                    "url": f"data:{detect_media_type(image)};base64,{image}",
                    "detail": config.image_detail,
                },
            })
        messages.append({"role": "user", "content": content})
    else:
        messages.append({"role": "user", "content": user_text})
    return messages


class OpenAIChatAdapter(HttpProviderAdapter):
    """POST /chat/completions with optional page images."""

    name = "openai"
    raw_type = OpenAIRaw

    async def invoke(self, prompt, pages=None, text=None, config=None, document=None) -> ProviderRawResponse:
        config = config or DEFAULT_INVOCATION
        api_key = self._require_api_key()

        payload = {
            "model": self.model,
            "messages": build_chat_messages(prompt, pages, text, config),
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
        }

        logger.info(f"[{self.name}] {self.model} | pages={len(pages) if pages else 0} | text_chars={len(text or '')}")
        started = time.perf_counter()
        data = await self._post_json(
            "/chat/completions",
            payload,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        )

        raw = self.raw_type.from_payload(data)
        if raw is None:
            raise self._malformed("choices[0].message.content")

        elapsed_ms = self._elapsed_ms(started)
        logger.info(f"[{self.name}] completed in {elapsed_ms:.0f}ms ({len(raw.content)} chars)")
        return raw.to_canonical(elapsed_ms, {"pageCount": len(pages) if pages else 0})
