"""
Confidence scoring for extraction attempts.

The orchestrator only depends on the ConfidenceScorer protocol; the
default CompletenessScorer awards points for populated fields.
"""

import math
from typing import Optional, Protocol

from cim_extract.core.models import CanonicalFinancialData, ProviderRawResponse

MAX_HEURISTIC_CONFIDENCE = 95.0

REVENUE_POINTS = 25
EBITDA_POINTS = 25
PERIODS_POINTS = 20
PRICE_POINTS = 10
METRICS_POINTS = 10
BUSINESS_NAME_POINTS = 10

MIN_PERIODS = 3
MIN_METRICS = 4


class ConfidenceScorer(Protocol):
    def score(self, data: CanonicalFinancialData, raw: Optional[ProviderRawResponse] = None) -> float:
        ...


def _has_values(mapping: dict) -> bool:
    return any(value is not None for value in mapping.values())


class CompletenessScorer:
    """
    Provider-reported confidence when present, else completeness points.

    Points: revenue 25, EBITDA (any variant) 25, at least three periods 20,
    purchase price 10, four or more key metrics 10, business name 10;
    capped at 95.
    """

    def __init__(self, trust_reported: bool = True):
        self.trust_reported = trust_reported

    def score(self, data: CanonicalFinancialData, raw: Optional[ProviderRawResponse] = None) -> float:
        reported = data.confidence
        if self.trust_reported and reported is not None and math.isfinite(reported):
            return max(0.0, min(100.0, float(reported)))
        return self.completeness(data)

    @staticmethod
    def completeness(data: CanonicalFinancialData) -> float:
        financial = data.financial_data
        points = 0

        if _has_values(financial.revenue) or _has_values(financial.commission_income):
            points += REVENUE_POINTS
        if any(
            _has_values(mapping)
            for mapping in (financial.ebitda, financial.adjusted_ebitda, financial.recast_ebitda, financial.sde)
        ):
            points += EBITDA_POINTS
        if len(financial.periods) >= MIN_PERIODS:
            points += PERIODS_POINTS
        if data.purchase_price is not None:
            points += PRICE_POINTS

        populated_metrics = sum(1 for value in data.key_metrics.model_dump().values() if value is not None)
        if populated_metrics >= MIN_METRICS:
            points += METRICS_POINTS
        if data.business_info.name:
            points += BUSINESS_NAME_POINTS

        return float(min(points, MAX_HEURISTIC_CONFIDENCE))
