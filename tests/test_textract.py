"""Tests for Textract table extraction and the Textract hybrid adapter."""

import asyncio
import itertools
import time

import pytest
from botocore.exceptions import ClientError, NoCredentialsError

from cim_extract.core.config import Settings
from cim_extract.core.exceptions import PayloadError, ProviderError, ProviderErrorKind
from cim_extract.core.models import ProviderRawResponse
from cim_extract.payload.presets import MB
from cim_extract.providers.base import ProviderAdapter
from cim_extract.providers.textract import TextractHybridAdapter, map_boto_error
from cim_extract.providers.textract_tables import FinancialTableExtractor
from cim_extract.resilience.circuit_breaker import BreakerRegistry, CircuitBreaker, CircuitBreakerConfig


class BlockBuilder:
    """Builds Textract-shaped TABLE/CELL/WORD/LINE blocks."""

    def __init__(self):
        self.blocks = []
        self._ids = itertools.count(1)

    def _id(self):
        return f"b{next(self._ids)}"

    def table(self, rows):
        cell_ids = []
        for row_index, row in enumerate(rows, start=1):
            for column_index, text in enumerate(row, start=1):
                word_ids = []
                for word in text.split():
                    word_id = self._id()
                    self.blocks.append({"Id": word_id, "BlockType": "WORD", "Text": word})
                    word_ids.append(word_id)
                cell_id = self._id()
                self.blocks.append({
                    "Id": cell_id,
                    "BlockType": "CELL",
                    "RowIndex": row_index,
                    "ColumnIndex": column_index,
                    "Relationships": [{"Type": "CHILD", "Ids": word_ids}] if word_ids else [],
                })
                cell_ids.append(cell_id)
        self.blocks.append({
            "Id": self._id(),
            "BlockType": "TABLE",
            "Relationships": [{"Type": "CHILD", "Ids": cell_ids}],
        })
        return self

    def line(self, text, page, top):
        self.blocks.append({
            "Id": self._id(),
            "BlockType": "LINE",
            "Text": text,
            "Page": page,
            "Geometry": {"BoundingBox": {"Top": top}},
        })
        return self


PNL_ROWS = [
    ["Income Statement", "FY2021", "FY2022", "TTM"],
    ["Total Revenue", "$1,000,000", "$1,200,000", "1.3M"],
    ["Cost of Goods Sold", "400,000", "450,000", "480,000"],
    ["Gross Profit", "600,000", "750,000", "820,000"],
    ["SG&A", "200,000", "220,000", "230,000"],
    ["Marketing Expense", "50,000", "60,000", "70,000"],
    ["Operating Income", "350,000", "470,000", "520,000"],
    ["Depreciation & Amortization", "(20,000)", "(25,000)", "(30,000)"],
    ["Add-back: owner salary", "90,000", "95,000", ""],
    ["Net Income", "250,000", "340,000", "380,000"],
]


def test_extract_pnl_standardizes_rows():
    blocks = BlockBuilder().table([["Headcount", "2022"], ["Employees", "12"]]).table(PNL_ROWS).blocks
    extractor = FinancialTableExtractor(blocks)

    pnl = extractor.extract_pnl()

    assert pnl.periods == ["2021", "2022", "TTM"]
    assert pnl.revenue == {"2021": 1_000_000, "2022": 1_200_000, "TTM": 1_300_000}
    assert pnl.cost_of_revenue["2022"] == 450_000
    assert pnl.gross_profit["TTM"] == 820_000
    assert pnl.operating_expenses == {"2021": 250_000, "2022": 280_000, "TTM": 300_000}
    # No explicit EBITDA row: operating income + |D&A|
    assert pnl.ebitda == {"2021": 370_000, "2022": 495_000, "TTM": 550_000}
    assert pnl.net_income["2021"] == 250_000
    assert pnl.adjustments == [{"label": "Add-back: owner salary", "values": {"2021": 90_000, "2022": 95_000}}]

    data = pnl.to_financial_data()
    assert data["costOfRevenue"]["2021"] == 400_000
    assert data["periods"] == ["2021", "2022", "TTM"]


def test_explicit_ebitda_wins():
    rows = [
        ["P&L", "2022", "2023"],
        ["Revenue", "10", "12"],
        ["Adjusted EBITDA", "3", "4"],
        ["Operating Income", "1", "2"],
    ]
    pnl = FinancialTableExtractor(BlockBuilder().table(rows).blocks).extract_pnl()
    assert pnl.ebitda == {"2022": 3, "2023": 4}


def test_no_pnl_table():
    blocks = BlockBuilder().table([["Balance Sheet", "2023"], ["Total assets", "5"]]).blocks
    pnl = FinancialTableExtractor(blocks).extract_pnl()
    assert pnl.is_empty
    assert pnl.periods == []


def test_table_classification():
    blocks = (
        BlockBuilder()
        .table([["Balance Sheet", "2023"], ["Current Assets", "5"], ["Total Liabilities", "2"]])
        .table(PNL_ROWS)
        .blocks
    )
    tables = FinancialTableExtractor(blocks).extract_all_financial_tables()

    assert [t["type"] for t in tables] == ["balance_sheet", "income_statement"]
    assert tables[1]["rows"][0]["label"] == "Total Revenue"


def test_text_in_reading_order():
    blocks = (
        BlockBuilder()
        .line("page two top", page=2, top=0.1)
        .line("page one bottom", page=1, top=0.9)
        .line("page one top", page=1, top=0.05)
        .blocks
    )
    assert FinancialTableExtractor(blocks).extract_text() == "page one top\npage one bottom\npage two top"


class FakeTextract:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def analyze_document(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return self.response


class RecordingTextAdapter(ProviderAdapter):
    name = "openai"

    def __init__(self):
        self.calls = []

    async def invoke(self, prompt, pages=None, text=None, config=None, document=None):
        self.calls.append({"prompt": prompt, "text": text})
        return ProviderRawResponse(text='{"purchasePrice": 1}', provider="openai", model="gpt-4o")


@pytest.mark.asyncio
async def test_hybrid_adapter_feeds_tables_to_llm():
    builder = BlockBuilder().line("Acme Agency CIM", page=1, top=0.1).table(PNL_ROWS)
    textract = FakeTextract(response={"Blocks": builder.blocks, "DocumentMetadata": {"Pages": 3}})
    llm = RecordingTextAdapter()
    adapter = TextractHybridAdapter(llm, textract_client=textract)

    raw = await adapter.invoke("Extract", document=b"%PDF-1.4 fake")

    assert textract.calls[0]["FeatureTypes"] == ["TABLES", "FORMS"]
    assert textract.calls[0]["Document"] == {"Bytes": b"%PDF-1.4 fake"}
    sent = llm.calls[0]["text"]
    assert "Acme Agency CIM" in sent
    assert "EXTRACTED P&L" in sent
    assert raw.provider == "textract+openai"
    assert raw.metadata["textract"]["pageCount"] == 3
    assert raw.metadata["textract"]["pnlFound"] is True
    assert raw.metadata["tableFinancials"]["revenue"]["2021"] == 1_000_000


@pytest.mark.asyncio
async def test_hybrid_adapter_requires_document():
    adapter = TextractHybridAdapter(RecordingTextAdapter(), textract_client=FakeTextract())
    with pytest.raises(PayloadError):
        await adapter.invoke("Extract", text="only text")


@pytest.mark.asyncio
async def test_hybrid_adapter_rejects_large_documents():
    textract = FakeTextract()
    adapter = TextractHybridAdapter(RecordingTextAdapter(), textract_client=textract)
    with pytest.raises(PayloadError, match="too large"):
        await adapter.invoke("Extract", document=b"x" * (10 * MB + 1))
    assert textract.calls == []


@pytest.mark.asyncio
async def test_hybrid_adapter_maps_client_errors():
    error = ClientError(
        {"Error": {"Code": "ThrottlingException", "Message": "slow down"}, "ResponseMetadata": {"HTTPStatusCode": 400}},
        "AnalyzeDocument",
    )
    adapter = TextractHybridAdapter(RecordingTextAdapter(), textract_client=FakeTextract(error=error))

    with pytest.raises(ProviderError) as exc_info:
        await adapter.invoke("Extract", document=b"%PDF")

    assert exc_info.value.kind == ProviderErrorKind.RATE_LIMITED
    assert exc_info.value.status_code == 400


@pytest.mark.parametrize(
    "code,kind",
    [
        ("AccessDeniedException", ProviderErrorKind.AUTH_ERROR),
        ("UnsupportedDocumentException", ProviderErrorKind.HTTP_ERROR),
        ("ProvisionedThroughputExceededException", ProviderErrorKind.RATE_LIMITED),
    ],
)
def test_map_client_error_codes(code, kind):
    error = ClientError({"Error": {"Code": code, "Message": "m"}}, "AnalyzeDocument")
    assert map_boto_error(error).kind == kind


def test_map_missing_credentials():
    assert map_boto_error(NoCredentialsError()).kind == ProviderErrorKind.AUTH_ERROR


class SlowTextAdapter(RecordingTextAdapter):
    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    async def invoke(self, prompt, pages=None, text=None, config=None, document=None):
        await asyncio.sleep(self.delay)
        return await super().invoke(prompt, pages=pages, text=text, config=config, document=document)


class SlowTextract(FakeTextract):
    def __init__(self, delay, response):
        super().__init__(response=response)
        self.delay = delay

    def analyze_document(self, **kwargs):
        time.sleep(self.delay)
        return super().analyze_document(**kwargs)


@pytest.mark.asyncio
async def test_llm_interpretation_is_not_bound_by_textract_timeout():
    textract = FakeTextract(response={"Blocks": BlockBuilder().table(PNL_ROWS).blocks})
    adapter = TextractHybridAdapter(SlowTextAdapter(0.2), textract_client=textract, timeout=0.05)

    raw = await adapter.invoke("Extract", document=b"%PDF")

    assert raw.provider == "textract+openai"


@pytest.mark.asyncio
async def test_slow_textract_times_out():
    adapter = TextractHybridAdapter(
        RecordingTextAdapter(), textract_client=SlowTextract(0.3, {"Blocks": []}), timeout=0.05
    )

    with pytest.raises(ProviderError) as exc_info:
        await adapter.invoke("Extract", document=b"%PDF")

    assert exc_info.value.kind == ProviderErrorKind.TIMEOUT
    assert exc_info.value.provider == "textract"


@pytest.mark.asyncio
async def test_ocr_breaker_covers_textract_plus_slow_llm():
    settings = Settings()
    registry = BreakerRegistry.from_settings(settings)
    budget = settings.aws.textract_timeout_seconds + settings.orchestrator.request_timeout_seconds
    assert registry.get("ocr").config.timeout >= budget

    # Same proportions scaled down: Textract share 0.05s, LLM takes 0.15s of its 0.2s share
    breaker = CircuitBreaker(
        "ocr", CircuitBreakerConfig(failure_threshold=2, timeout=0.05 * budget / settings.aws.textract_timeout_seconds)
    )
    textract = FakeTextract(response={"Blocks": []})
    adapter = TextractHybridAdapter(SlowTextAdapter(0.15), textract_client=textract, timeout=0.05)

    raw = await breaker.execute(lambda: adapter.invoke("Extract", document=b"%PDF"))

    assert raw.provider == "textract+openai"
    assert breaker.snapshot().failure_count == 0
