"""
Plain-text extraction from raw document bytes.

PyMuPDF does the real work; when the bytes are not a readable PDF the
first 10 kB are scanned for printable runs as a last resort.
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass

import fitz  # PyMuPDF

from cim_extract.core.exceptions import DocumentTextError

logger = logging.getLogger(__name__)

RAW_SCAN_BYTES = 10000
MIN_RUN_LENGTH = 4

_PRINTABLE_RUN_RE = re.compile(r"[A-Za-z0-9\s.,$%()\-]+")


@dataclass(frozen=True)
class DocumentText:
    text: str
    page_count: int
    method: str  # "pymupdf" or "raw-scan"

    @property
    def char_count(self) -> int:
        return len(self.text)


def decode_document(file_b64: str) -> bytes:
    try:
        return base64.b64decode("".join(file_b64.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DocumentTextError(f"Document bytes are not valid base64: {e}") from e


class DocumentTextExtractor:
    """Extracts analyzable text from a base64-encoded document."""

    def __init__(self, min_chars: int = 50, max_chars: int = 100000):
        self.min_chars = min_chars
        self.max_chars = max_chars

    def extract(self, file_b64: str) -> DocumentText:
        """
        Raises:
            DocumentTextError: If fewer than min_chars characters could be extracted
        """
        data = decode_document(file_b64)

        try:
            result = self._extract_pdf(data)
        except (RuntimeError, ValueError) as e:
            logger.warning(f"[DocumentText] PyMuPDF could not read document ({e}), scanning raw bytes")
            result = self._scan_raw(data)

        if result.char_count < self.min_chars:
            raise DocumentTextError(
                f"Insufficient text extracted from document ({result.char_count} chars, "
                f"need {self.min_chars})",
                extracted_chars=result.char_count,
            )

        logger.info(
            f"[DocumentText] {result.char_count} chars from {result.page_count} pages via {result.method}"
        )
        return result

    def _extract_pdf(self, data: bytes) -> DocumentText:
        with fitz.open(stream=data, filetype="pdf") as doc:
            parts = [page.get_text() for page in doc]
            page_count = doc.page_count
        if page_count == 0:
            raise ValueError("no pages")
        text = "\n".join(part.strip() for part in parts if part.strip())
        return DocumentText(text=text[: self.max_chars], page_count=page_count, method="pymupdf")

    def _scan_raw(self, data: bytes) -> DocumentText:
        head = data[:RAW_SCAN_BYTES].decode("utf-8", errors="ignore")
        runs = [
            run.strip()
            for run in _PRINTABLE_RUN_RE.findall(head)
            if len(run.strip()) >= MIN_RUN_LENGTH and re.search(r"[A-Za-z0-9]", run)
        ]
        return DocumentText(text=" ".join(runs), page_count=0, method="raw-scan")
