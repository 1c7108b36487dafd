"""Provider adapters (one upstream call each)."""

from cim_extract.providers.base import InvocationConfig, ProviderAdapter
from cim_extract.providers.claude import ClaudeAdapter, ClaudeRaw
from cim_extract.providers.grok import GrokAdapter, GrokRaw
from cim_extract.providers.openai import OpenAIChatAdapter, OpenAIRaw
from cim_extract.providers.textract import TextractHybridAdapter, TextractRaw

__all__ = [
    "InvocationConfig",
    "ProviderAdapter",
    # Vision / text LLMs
    "ClaudeAdapter",
    "ClaudeRaw",
    "GrokAdapter",
    "GrokRaw",
    "OpenAIChatAdapter",
    "OpenAIRaw",
    # OCR hybrid
    "TextractHybridAdapter",
    "TextractRaw",
]
