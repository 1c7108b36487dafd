"""xAI Grok adapter (OpenAI-compatible wire format)."""

from dataclasses import dataclass

from cim_extract.providers.openai import OpenAIChatAdapter, OpenAIRaw


@dataclass(frozen=True)
class GrokRaw(OpenAIRaw):
    provider = "grok"


class GrokAdapter(OpenAIChatAdapter):
    name = "grok"
    raw_type = GrokRaw
