"""Pydantic models for cim-extract."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from cim_extract.core.exceptions import ValidationError


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# Enums
# =============================================================================

class ExtractionMethod(str, Enum):
    """Extraction strategies the planner can choose from."""

    VISION = "vision-analysis"
    TEXT = "text-analysis"
    OCR_HYBRID = "ocr-hybrid-analysis"


class AttemptStage(str, Enum):
    """Position of an attempt in the orchestration sequence."""

    PRIMARY = "primary"
    FALLBACK = "fallback"
    RETRY = "retry"


class PriceSource(str, Enum):
    """Where the purchase price came from."""

    EXTRACTED = "extracted"
    CALCULATED = "calculated"
    ESTIMATED = "estimated"
    NOT_FOUND = "not_found"


# =============================================================================
# Canonical financial schema
# =============================================================================

class BusinessInfo(CamelModel):
    name: Optional[str] = None
    business_type: Optional[str] = Field(default=None, alias="type")
    description: Optional[str] = None
    location: Optional[str] = None
    employees: Optional[int] = None
    year_established: Optional[int] = None


class FinancialData(CamelModel):
    """Period label ("2021", "TTM") -> value, per line item."""

    periods: list[str] = Field(default_factory=list)
    revenue: dict[str, Optional[float]] = Field(default_factory=dict)
    commission_income: dict[str, Optional[float]] = Field(default_factory=dict)
    cost_of_revenue: dict[str, Optional[float]] = Field(default_factory=dict)
    gross_profit: dict[str, Optional[float]] = Field(default_factory=dict)
    operating_expenses: dict[str, Optional[float]] = Field(default_factory=dict)
    ebitda: dict[str, Optional[float]] = Field(default_factory=dict)
    adjusted_ebitda: dict[str, Optional[float]] = Field(default_factory=dict)
    recast_ebitda: dict[str, Optional[float]] = Field(default_factory=dict)
    sde: dict[str, Optional[float]] = Field(default_factory=dict)
    net_income: dict[str, Optional[float]] = Field(default_factory=dict)
    cash_flow: dict[str, Optional[float]] = Field(default_factory=dict)


class KeyMetrics(CamelModel):
    customer_count: Optional[int] = None
    average_customer_value: Optional[float] = None
    customer_retention_rate: Optional[float] = None
    recurring_revenue_percent: Optional[float] = None
    gross_margin: Optional[float] = None
    ebitda_margin: Optional[float] = None
    growth_rate: Optional[float] = None


class CanonicalFinancialData(CamelModel):
    """Normalized extraction output shared by every provider.

    Numeric leaves are finite numbers or None, never strings.
    """

    purchase_price: Optional[float] = None
    price_source: PriceSource = PriceSource.NOT_FOUND
    business_info: BusinessInfo = Field(default_factory=BusinessInfo)
    financial_data: FinancialData = Field(default_factory=FinancialData)
    key_metrics: KeyMetrics = Field(default_factory=KeyMetrics)
    confidence: Optional[float] = None


# =============================================================================
# Request / plan
# =============================================================================

def _strip_data_uri(value: str) -> str:
    if value.startswith("data:") and "," in value:
        return value.split(",", 1)[1]
    return value


class ExtractionRequest(CamelModel):
    """Inbound bundle: page-ordered encoded images and/or the encoded raw document."""

    images: Optional[list[str]] = None
    file_bytes: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("fileData", "fileBytes", "file_bytes"),
        serialization_alias="fileData",
    )
    file_name: str = "document"

    @field_validator("images")
    @classmethod
    def _clean_images(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        return [_strip_data_uri(img) for img in value if img]

    @field_validator("file_bytes")
    @classmethod
    def _clean_file_bytes(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        return _strip_data_uri(value)

    @property
    def has_images(self) -> bool:
        return bool(self.images)

    @property
    def has_file_bytes(self) -> bool:
        return bool(self.file_bytes)

    def validate_payload(self) -> None:
        """Raise ValidationError unless at least one payload kind is present."""
        if not self.has_images and not self.has_file_bytes:
            raise ValidationError(
                "No data provided: either images or fileData is required",
                {"file_name": self.file_name},
            )


class PlannedMethod(CamelModel):
    """One method chosen by the planner, bound to a provider."""

    model_config = ConfigDict(frozen=True)

    method: ExtractionMethod
    provider: str
    reason: str
    requires_optimization: bool = False


class ExtractionPlan(CamelModel):
    """Primary + optional fallback, created once per request."""

    model_config = ConfigDict(frozen=True)

    primary: PlannedMethod
    fallback: Optional[PlannedMethod] = None
    rationale: tuple[str, ...] = ()

    @property
    def reasoning(self) -> str:
        fallback_reason = self.fallback.reason if self.fallback else "None"
        return f"Primary: {self.primary.reason}. Fallback: {fallback_reason}"


# =============================================================================
# Provider output / attempts
# =============================================================================

class ProviderRawResponse(CamelModel):
    """Unparsed provider output converted at the adapter boundary."""

    model_config = ConfigDict(frozen=True)

    text: str
    provider: str
    model: Optional[str] = None
    usage: dict[str, Any] = Field(default_factory=dict)
    elapsed_ms: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)


class ExtractionAttempt(CamelModel):
    """Immutable outcome of one method invocation."""

    model_config = ConfigDict(frozen=True)

    method: ExtractionMethod
    provider: str
    stage: AttemptStage
    success: bool
    data: Optional[CanonicalFinancialData] = None
    confidence: Optional[float] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    elapsed_ms: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        """Attempt record without the extracted payload (for result metadata)."""
        return self.model_dump(by_alias=True, mode="json", exclude={"data"})


class FinalResult(CamelModel):
    """Either success with data + attempt history, or failure with attempt history."""

    success: bool
    data: Optional[dict[str, Any]] = None
    error: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
