"""Provider response parsing into the canonical schema."""

from cim_extract.parsing.response_normalizer import NormalizedResponse, ResponseNormalizer
from cim_extract.parsing.schema import apply_canonical_schema, coerce_number

__all__ = [
    "NormalizedResponse",
    "ResponseNormalizer",
    "apply_canonical_schema",
    "coerce_number",
]
