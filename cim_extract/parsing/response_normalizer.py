"""
Response Normalizer - pull one JSON object out of free-form LLM output.

Strategies (in order, first success wins):
1. Direct JSON parse of the whole text
2. Fenced code block (```json ... ```)
3. Bracket scan: first '{' to last '}'

Only JSON objects count; arrays and scalars fall through to the next
strategy. The parsed object is then mapped onto the canonical schema.

Usage:
    normalizer = ResponseNormalizer()
    data = normalizer.parse(raw.text)
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from cim_extract.core.exceptions import ParseError
from cim_extract.core.models import CanonicalFinancialData
from cim_extract.parsing.schema import apply_canonical_schema

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```[ \t]*[\w+-]*[ \t]*\r?\n(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class NormalizedResponse:
    """Canonical data plus the strategy that located the JSON."""
    data: CanonicalFinancialData
    strategy: str


class ResponseNormalizer:
    """Layered JSON extraction followed by canonical schema application."""

    def parse(self, raw_text: str) -> CanonicalFinancialData:
        """
        Normalize provider text into CanonicalFinancialData.

        Raises:
            ParseError: If no JSON object can be located
        """
        return self.parse_with_strategy(raw_text).data

    def parse_with_strategy(self, raw_text: str) -> NormalizedResponse:
        parsed, strategy = self.extract_object(raw_text)
        canonical = CanonicalFinancialData.model_validate(apply_canonical_schema(parsed))
        logger.debug(f"[ResponseNormalizer] Parsed via {strategy}")
        return NormalizedResponse(data=canonical, strategy=strategy)

    def extract_object(self, raw_text: str) -> Tuple[Dict[str, Any], str]:
        """Locate the first JSON object in raw_text."""
        text = (raw_text or "").strip()
        if not text:
            raise ParseError("Empty provider response", raw_text or "")

        # Strategy 1: Direct JSON parse
        data = self._loads_object(text)
        if data is not None:
            return data, "json_direct"

        # Strategy 2: Fenced code block
        for match in _FENCE_RE.finditer(text):
            data = self._loads_object(match.group(1).strip())
            if data is not None:
                return data, "fenced_block"

        # Strategy 3: Bracket scan
        start = text.find("{")
        end = text.rfind("}")
        if start >= 0 and end > start:
            data = self._loads_object(text[start:end + 1])
            if data is not None:
                return data, "bracket_scan"

        logger.warning(f"[ResponseNormalizer] No JSON object found in {len(text)} chars")
        raise ParseError("No JSON object found in provider response", raw_text)

    @staticmethod
    def _loads_object(text: str) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, ValueError):
            return None
        return data if isinstance(data, dict) else None
