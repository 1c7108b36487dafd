"""
Canonical financial schema application and numeric coercion.

Providers are asked to emit plain numbers, but stringly-typed leftovers
("$5.2M", "(1,200)", "12.5%") still show up. Every numeric leaf goes
through coerce_number so the canonical model only ever holds finite
numbers or None.
"""

import math
import re
from typing import Any, Dict, List, Mapping, Optional

from pydantic.alias_generators import to_snake

from cim_extract.core.models import PriceSource

PERIOD_FIELDS = (
    "revenue",
    "commissionIncome",
    "costOfRevenue",
    "grossProfit",
    "operatingExpenses",
    "ebitda",
    "adjustedEbitda",
    "recastEbitda",
    "sde",
    "netIncome",
    "cashFlow",
)

METRIC_INT_FIELDS = ("customerCount",)
METRIC_FLOAT_FIELDS = (
    "averageCustomerValue",
    "customerRetentionRate",
    "recurringRevenuePercent",
    "grossMargin",
    "ebitdaMargin",
    "growthRate",
)

BUSINESS_TEXT_FIELDS = ("name", "type", "description", "location")
BUSINESS_INT_FIELDS = ("employees", "yearEstablished")

SUFFIX_MULTIPLIERS = {
    "k": 1e3,
    "thousand": 1e3,
    "m": 1e6,
    "mm": 1e6,
    "mil": 1e6,
    "million": 1e6,
    "b": 1e9,
    "bn": 1e9,
    "billion": 1e9,
}

_NUMBER_RE = re.compile(r"^([+-]?(?:\d+\.?\d*|\.\d+)(?:e[+-]?\d+)?)([a-z]*)$", re.IGNORECASE)

_VALID_PRICE_SOURCES = {source.value for source in PriceSource}


def coerce_number(value: Any) -> Optional[float]:
    """
    Coerce a numeric leaf to a finite float, or None.

    Handles currency symbols, thousands separators, accounting-style
    parentheses, K/M/B (and word) suffixes and trailing percent signs
    (converted to a 0-1 fraction).
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
        return number if math.isfinite(number) else None

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]

    text = re.sub(r"[\s$,]", "", text)

    percent = text.endswith("%")
    if percent:
        text = text[:-1]

    match = _NUMBER_RE.match(text)
    if not match:
        return None

    try:
        number = float(match.group(1))
    except ValueError:
        return None

    suffix = match.group(2).lower()
    if suffix:
        multiplier = SUFFIX_MULTIPLIERS.get(suffix)
        if multiplier is None:
            return None
        number *= multiplier

    if percent:
        number /= 100
    if negative:
        number = -number

    return number if math.isfinite(number) else None


def coerce_confidence(value: Any) -> Optional[float]:
    """
    Coerce a reported confidence onto the 0-100 scale.

    "85%" is 85, not 0.85. Bare values in (0, 1] are read as fractions.
    """
    if isinstance(value, str) and value.strip().endswith("%"):
        number = coerce_number(value.strip()[:-1])
    else:
        number = coerce_number(value)
    if number is not None and 0 < number <= 1:
        number *= 100
    return number


def coerce_int(value: Any) -> Optional[int]:
    number = coerce_number(value)
    return int(round(number)) if number is not None else None


def coerce_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _pick(source: Mapping[str, Any], camel_key: str) -> Any:
    """Read a key in camelCase, falling back to snake_case."""
    if camel_key in source:
        return source[camel_key]
    return source.get(to_snake(camel_key))


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _period_mapping(value: Any) -> Dict[str, Optional[float]]:
    return {str(period): coerce_number(amount) for period, amount in _as_mapping(value).items()}


def _periods(value: Any, mappings: Dict[str, Dict[str, Optional[float]]]) -> List[str]:
    if isinstance(value, list):
        return [str(period) for period in value if period is not None]

    # Not supplied: collect labels in first-seen order across line items
    seen: List[str] = []
    for mapping in mappings.values():
        for period in mapping:
            if period not in seen:
                seen.append(period)
    return seen


def _price_source(value: Any, purchase_price: Optional[float]) -> str:
    if isinstance(value, str) and value.strip().lower() in _VALID_PRICE_SOURCES:
        return value.strip().lower()
    return PriceSource.EXTRACTED.value if purchase_price is not None else PriceSource.NOT_FOUND.value


def apply_canonical_schema(data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Fill every canonical key from parsed provider JSON.

    Missing scalars become None, missing period mappings become {} and
    all numeric leaves are coerced. Returns the camelCase wire shape.
    """
    business = _as_mapping(_pick(data, "businessInfo"))
    financial = _as_mapping(_pick(data, "financialData"))
    metrics = _as_mapping(_pick(data, "keyMetrics"))

    mappings = {field: _period_mapping(_pick(financial, field)) for field in PERIOD_FIELDS}
    purchase_price = coerce_number(_pick(data, "purchasePrice"))

    business_info: Dict[str, Any] = {field: coerce_text(_pick(business, field)) for field in BUSINESS_TEXT_FIELDS}
    if business_info["type"] is None:
        business_info["type"] = coerce_text(business.get("business_type"))
    business_info.update({field: coerce_int(_pick(business, field)) for field in BUSINESS_INT_FIELDS})

    key_metrics: Dict[str, Any] = {field: coerce_int(_pick(metrics, field)) for field in METRIC_INT_FIELDS}
    key_metrics.update({field: coerce_number(_pick(metrics, field)) for field in METRIC_FLOAT_FIELDS})

    return {
        "purchasePrice": purchase_price,
        "priceSource": _price_source(_pick(data, "priceSource"), purchase_price),
        "businessInfo": business_info,
        "financialData": {"periods": _periods(_pick(financial, "periods"), mappings), **mappings},
        "keyMetrics": key_metrics,
        "confidence": coerce_confidence(_pick(data, "confidence")),
    }
