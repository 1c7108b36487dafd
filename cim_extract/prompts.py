"""Extraction prompts. The JSON skeleton is generated from the canonical model."""

import json

from cim_extract.core.models import CanonicalFinancialData, ExtractionMethod

SYSTEM_PROMPT = (
    "You are a financial analyst extracting data from Confidential Information "
    "Memorandums. You respond with a single JSON object and nothing else."
)

_SOURCE_DESCRIPTIONS = {
    ExtractionMethod.VISION: "the attached page images",
    ExtractionMethod.TEXT: "the document text below",
    ExtractionMethod.OCR_HYBRID: "the OCR text and financial tables below",
}


def response_skeleton() -> str:
    skeleton = CanonicalFinancialData().to_dict()
    skeleton["financialData"]["periods"] = ["2021", "2022", "2023", "TTM"]
    skeleton["financialData"]["revenue"] = {"2021": None, "2022": None, "2023": None, "TTM": None}
    return json.dumps(skeleton, indent=2)


def build_extraction_prompt(method: ExtractionMethod, file_name: str) -> str:
    source = _SOURCE_DESCRIPTIONS[method]
    return (
        f"Extract the purchase price, business information, multi-year financial data and key "
        f"metrics for the business described in {source} (file: {file_name}).\n\n"
        "Rules:\n"
        "- Numbers are plain numbers in whole currency units (\"$2.5M\" -> 2500000)\n"
        "- Percentages are fractions (\"12.5%\" -> 0.125)\n"
        "- Period labels are column headers such as \"2022\" or \"TTM\"\n"
        "- Use null for anything not found; never estimate\n"
        "- priceSource is one of extracted, calculated, estimated, not_found\n"
        "- confidence is your 0-100 estimate of extraction completeness\n\n"
        f"Return ONLY a JSON object of this shape:\n{response_skeleton()}"
    )
