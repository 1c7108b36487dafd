"""
Textract + LLM hybrid adapter.

AnalyzeDocument (TABLES + FORMS) pulls text and tables out of the raw
document; the P&L table is standardized locally and everything is handed
to a text LLM, which produces the canonical JSON.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    NoCredentialsError,
    ReadTimeoutError,
)

from cim_extract.core.exceptions import PayloadError, ProviderError, ProviderErrorKind
from cim_extract.core.models import ProviderRawResponse
from cim_extract.payload.presets import MB, format_size
from cim_extract.providers.base import ProviderAdapter
from cim_extract.providers.textract_tables import FinancialTableExtractor, TableFinancials

logger = logging.getLogger(__name__)

TEXTRACT_MAX_BYTES = 10 * MB
MAX_TEXT_CHARS = 50000

AUTH_ERROR_CODES = {
    "AccessDeniedException",
    "UnrecognizedClientException",
    "InvalidSignatureException",
    "ExpiredTokenException",
    "InvalidClientTokenId",
}
THROTTLING_ERROR_CODES = {
    "ThrottlingException",
    "ProvisionedThroughputExceededException",
    "LimitExceededException",
}


@dataclass(frozen=True)
class TextractRaw:
    """Textract analysis plus the LLM completion built on top of it."""
    llm: ProviderRawResponse
    block_count: int
    page_count: int
    table_count: int
    financial_tables: List[Dict[str, Any]] = field(default_factory=list)
    table_financials: Optional[TableFinancials] = None

    def to_canonical(self, elapsed_ms: float) -> ProviderRawResponse:
        pnl = self.table_financials
        return ProviderRawResponse(
            text=self.llm.text,
            provider=f"textract+{self.llm.provider}",
            model=self.llm.model,
            usage=self.llm.usage,
            elapsed_ms=elapsed_ms,
            metadata={
                "textract": {
                    "blockCount": self.block_count,
                    "pageCount": self.page_count,
                    "tableCount": self.table_count,
                    "financialTables": [t["type"] for t in self.financial_tables],
                    "pnlFound": bool(pnl and not pnl.is_empty),
                },
                "tableFinancials": pnl.to_financial_data() if pnl and not pnl.is_empty else None,
            },
        )


def map_boto_error(error: Exception) -> ProviderError:
    """Map a boto3/botocore failure onto ProviderError kinds."""
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = error.response.get("Error", {}).get("Message", str(error))
        if code in AUTH_ERROR_CODES:
            kind = ProviderErrorKind.AUTH_ERROR
        elif code in THROTTLING_ERROR_CODES:
            kind = ProviderErrorKind.RATE_LIMITED
        else:
            kind = ProviderErrorKind.HTTP_ERROR
        return ProviderError(f"Textract {code}: {message}", kind=kind, provider="textract", status_code=status)

    if isinstance(error, NoCredentialsError):
        return ProviderError("AWS credentials not configured", kind=ProviderErrorKind.AUTH_ERROR, provider="textract")

    if isinstance(error, (ReadTimeoutError, ConnectTimeoutError)):
        return ProviderError(f"Textract timed out: {error}", kind=ProviderErrorKind.TIMEOUT, provider="textract")

    return ProviderError(f"Textract request failed: {error}", kind=ProviderErrorKind.HTTP_ERROR, provider="textract")


class TextractHybridAdapter(ProviderAdapter):
    """OCR/table extraction with Textract, interpretation with a text LLM."""

    name = "textract"

    def __init__(
        self,
        text_adapter: ProviderAdapter,
        textract_client: Any = None,
        region: str = "us-east-1",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.text_adapter = text_adapter
        self.region = region
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.timeout = timeout
        self._client = textract_client

    def _get_client(self):
        if self._client is None:
            client_kwargs: dict = {
                "service_name": "textract",
                "region_name": self.region,
                # Retries belong to the orchestrator
                "config": Config(
                    retries={"max_attempts": 1, "mode": "standard"},
                    read_timeout=self.timeout,
                    connect_timeout=10,
                ),
            }
            if self.access_key_id and self.secret_access_key:
                client_kwargs["aws_access_key_id"] = self.access_key_id
                client_kwargs["aws_secret_access_key"] = self.secret_access_key
            self._client = boto3.client(**client_kwargs)
        return self._client

    def _analyze_document(self, document: bytes) -> Dict[str, Any]:
        try:
            return self._get_client().analyze_document(
                Document={"Bytes": document},
                FeatureTypes=["TABLES", "FORMS"],
            )
        except (ClientError, BotoCoreError) as e:
            raise map_boto_error(e) from e

    async def invoke(self, prompt, pages=None, text=None, config=None, document=None) -> ProviderRawResponse:
        if not document:
            raise PayloadError("Textract analysis requires raw document bytes")
        if len(document) > TEXTRACT_MAX_BYTES:
            raise PayloadError(
                f"Document too large for Textract: {format_size(len(document))} "
                f"(limit {format_size(TEXTRACT_MAX_BYTES)})",
                {"size_bytes": len(document)},
            )

        started = time.perf_counter()
        logger.info(f"[textract] analyze_document | {format_size(len(document))}")
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self._analyze_document, document), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"Textract timed out after {self.timeout:g}s", kind=ProviderErrorKind.TIMEOUT, provider="textract"
            ) from e

        blocks = response.get("Blocks") or []
        extractor = FinancialTableExtractor(blocks)
        ocr_text = extractor.extract_text()
        tables = extractor.tables()
        financial_tables = extractor.extract_all_financial_tables()
        pnl = extractor.extract_pnl()
        page_count = (response.get("DocumentMetadata") or {}).get("Pages", 1)

        logger.info(
            f"[textract] blocks={len(blocks)} pages={page_count} tables={len(tables)} "
            f"financial_tables={len(financial_tables)} pnl={'yes' if not pnl.is_empty else 'no'}"
        )

        llm = await self.text_adapter.invoke(
            prompt,
            text=self._compose_context(ocr_text, financial_tables, pnl),
            config=config,
        )

        raw = TextractRaw(
            llm=llm,
            block_count=len(blocks),
            page_count=page_count,
            table_count=len(tables),
            financial_tables=financial_tables,
            table_financials=pnl,
        )
        return raw.to_canonical((time.perf_counter() - started) * 1000)

    @staticmethod
    def _compose_context(ocr_text: str, financial_tables: List[Dict[str, Any]], pnl: TableFinancials) -> str:
        sections = [f"DOCUMENT TEXT (OCR):\n{ocr_text[:MAX_TEXT_CHARS]}"]
        if financial_tables:
            sections.append(f"FINANCIAL TABLES:\n{json.dumps(financial_tables, indent=2)}")
        if not pnl.is_empty:
            sections.append(f"EXTRACTED P&L:\n{json.dumps(pnl.to_financial_data(), indent=2)}")
        return "\n\n".join(sections)
