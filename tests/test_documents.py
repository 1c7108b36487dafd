"""Tests for document text extraction."""

import base64

import fitz
import pytest

from cim_extract.core.exceptions import DocumentTextError
from cim_extract.documents import DocumentTextExtractor, decode_document

CIM_TEXT = "Acme Insurance Agency. Revenue 2023: $1,000,000. Adjusted EBITDA 2023: $250,000."


def pdf_b64(*pages):
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return base64.b64encode(data).decode("ascii")


def test_pdf_text_extracted():
    result = DocumentTextExtractor().extract(pdf_b64(CIM_TEXT, "Asking price $2,500,000"))

    assert result.method == "pymupdf"
    assert result.page_count == 2
    assert "Acme Insurance Agency" in result.text
    assert "Asking price" in result.text


def test_short_pdf_text_rejected():
    with pytest.raises(DocumentTextError) as exc_info:
        DocumentTextExtractor(min_chars=50).extract(pdf_b64("Page 1"))

    assert exc_info.value.extracted_chars < 50


def test_text_capped_at_max_chars():
    result = DocumentTextExtractor(min_chars=10, max_chars=20).extract(pdf_b64(CIM_TEXT))
    assert result.char_count == 20


def test_non_pdf_bytes_fall_back_to_raw_scan():
    raw = ("\x00\x01" + CIM_TEXT + "\x02\x03").encode("latin-1")

    result = DocumentTextExtractor().extract(base64.b64encode(raw).decode("ascii"))

    assert result.method == "raw-scan"
    assert "Acme Insurance Agency" in result.text


def test_invalid_base64():
    with pytest.raises(DocumentTextError, match="not valid base64"):
        decode_document("not base64!!")


def test_corrupt_base64_rejected_instead_of_dropped():
    good = pdf_b64(CIM_TEXT)
    corrupt = good[:40] + "#*!" + good[40:]

    with pytest.raises(DocumentTextError, match="not valid base64"):
        DocumentTextExtractor().extract(corrupt)


def test_line_wrapped_base64_accepted():
    good = pdf_b64(CIM_TEXT)
    wrapped = "\n".join(good[i:i + 76] for i in range(0, len(good), 76))

    assert DocumentTextExtractor().extract(wrapped).method == "pymupdf"
