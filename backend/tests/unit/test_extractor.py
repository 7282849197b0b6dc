"""
Unit Tests — TextExtractor
═══════════════════════════
All fetches go through an httpx.MockTransport (conftest `files` / `http_client`).

Coverage:
  ✅ text/plain       → decoded, normalised, method=text
  ✅ PDF              → pypdf text, method=pdf, page count
  ✅ Sniffing         → %PDF magic bytes and URL extension when no content type
  ✅ Octet-stream     → treated as undeclared, URL extension decides
  ✅ HTTP 404         → DocumentFetchError, not retryable
  ✅ HTTP 503 / 429   → DocumentFetchError, retryable
  ✅ Transport error  → DocumentFetchError, retryable
  ✅ Unknown format   → DocumentParseError
  ✅ Corrupt PDF      → DocumentParseError
  ✅ Oversized body   → DocumentParseError, from Content-Length or mid-stream
  ✅ normalize_text   → NFC, zero-width removal, blank-line collapse
"""

from __future__ import annotations

import unicodedata

import httpx
import pytest

from edurag.core.exceptions import DocumentFetchError, DocumentParseError
from edurag.processing.extractor import TextExtractor, normalize_text


def _pdf_with_text(text: bytes) -> bytes:
    """Single-page PDF drawing `text` in Helvetica, with a correct xref table."""
    content = b"BT /F1 12 Tf 72 720 Td (" + text + b") Tj ET"
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(content) + content + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = b"%PDF-1.4\n"
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_at = len(out)
    out += b"xref\n0 %d\n0000000000 65535 f \n" % (len(objects) + 1)
    out += b"".join(b"%010d 00000 n \n" % offset for offset in offsets)
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_at)
    return out


@pytest.fixture
def extractor(http_client) -> TextExtractor:
    return TextExtractor(http_client=http_client)


# ─────────────────────────────────────────────────────────────────────────────
# Formats
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.extraction
class TestFormats:

    async def test_plain_text(self, extractor, lesson_text):
        result = await extractor.extract("https://files.test/lesson.txt")

        assert result.method == "text"
        assert result.text == lesson_text
        assert result.page_count == 1
        assert result.byte_count == len(lesson_text.encode())

    async def test_pdf(self, extractor, files):
        files["https://files.test/notes.pdf"] = (
            200, "application/pdf", _pdf_with_text(b"Photosynthesis makes sugar."),
        )

        result = await extractor.extract("https://files.test/notes.pdf")

        assert result.method == "pdf"
        assert result.page_count == 1
        assert "Photosynthesis makes sugar." in result.text

    async def test_pdf_sniffed_from_magic_bytes(self, extractor, files):
        files["https://files.test/download"] = (
            200, "application/octet-stream", _pdf_with_text(b"Chlorophyll is green."),
        )

        result = await extractor.extract("https://files.test/download")
        assert result.method == "pdf"

    async def test_text_sniffed_from_extension(self, extractor, files):
        files["https://files.test/notes.md"] = (200, "", b"# Cells\n\nCells divide.")

        result = await extractor.extract("https://files.test/notes.md")
        assert result.text == "# Cells\n\nCells divide."

    async def test_request_content_type_wins_over_header(self, extractor, files):
        files["https://files.test/blob"] = (200, "application/octet-stream", b"Plain words.")

        result = await extractor.extract("https://files.test/blob", content_type="text/plain")
        assert result.text == "Plain words."

    async def test_latin1_fallback(self, extractor, files):
        files["https://files.test/latin.txt"] = (200, "text/plain", "Café au lait.".encode("latin-1"))

        result = await extractor.extract("https://files.test/latin.txt")
        assert result.text == "Café au lait."

    async def test_generic_binary_type_falls_back_to_extension(self, extractor, files):
        files["https://files.test/notes.txt"] = (200, "binary/octet-stream", b"Roots take in water.")

        result = await extractor.extract("https://files.test/notes.txt")

        assert result.method == "text"
        assert result.text == "Roots take in water."

    async def test_generic_binary_type_without_text_extension_is_a_parse_error(self, extractor, files):
        files["https://files.test/blob"] = (200, "application/octet-stream", b"Plain words.")

        with pytest.raises(DocumentParseError):
            await extractor.extract("https://files.test/blob")

    async def test_unknown_format_is_a_parse_error(self, extractor, files):
        files["https://files.test/image.png"] = (200, "image/png", b"\x89PNG\r\n\x1a\n")

        with pytest.raises(DocumentParseError) as exc_info:
            await extractor.extract("https://files.test/image.png")

        assert exc_info.value.retryable is False

    async def test_corrupt_pdf_is_a_parse_error(self, extractor, files):
        files["https://files.test/broken.pdf"] = (200, "application/pdf", b"%PDF-1.4\nnot really a pdf")

        with pytest.raises(DocumentParseError):
            await extractor.extract("https://files.test/broken.pdf")


# ─────────────────────────────────────────────────────────────────────────────
# Fetch failures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.extraction
class TestFetchFailures:

    async def test_not_found_is_not_retryable(self, extractor):
        with pytest.raises(DocumentFetchError) as exc_info:
            await extractor.extract("https://files.test/missing.txt")

        assert exc_info.value.status_code == 404
        assert exc_info.value.retryable is False

    @pytest.mark.parametrize("status_code", [429, 500, 503])
    async def test_server_errors_are_retryable(self, extractor, files, status_code):
        files["https://files.test/flaky.txt"] = (status_code, "text/plain", b"")

        with pytest.raises(DocumentFetchError) as exc_info:
            await extractor.extract("https://files.test/flaky.txt")

        assert exc_info.value.retryable is True

    async def test_transport_error_is_retryable(self):
        def _refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(_refuse)) as client:
            extractor = TextExtractor(http_client=client)
            with pytest.raises(DocumentFetchError) as exc_info:
                await extractor.extract("https://files.test/lesson.txt")

        assert exc_info.value.status_code is None
        assert exc_info.value.retryable is True

    async def test_oversized_body_is_rejected(self, http_client):
        extractor = TextExtractor(http_client=http_client, max_bytes=10)

        with pytest.raises(DocumentParseError):
            await extractor.extract("https://files.test/lesson.txt")

    async def test_declared_length_over_limit_is_rejected_before_reading(self):
        sent = []

        async def _body():
            sent.append(b"x" * 5)
            yield sent[-1]

        def _handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, headers={"content-type": "text/plain", "content-length": "1000"}, content=_body(),
            )

        async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
            extractor = TextExtractor(http_client=client, max_bytes=100)
            with pytest.raises(DocumentParseError) as exc_info:
                await extractor.extract("https://files.test/huge.txt")

        assert "1000 bytes" in exc_info.value.detail
        assert sent == []

    async def test_unsized_stream_stops_once_over_limit(self):
        sent = []

        async def _body():
            for _ in range(100):
                sent.append(b"x" * 10)
                yield sent[-1]

        def _handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"content-type": "text/plain"}, content=_body())

        async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
            extractor = TextExtractor(http_client=client, max_bytes=25)
            with pytest.raises(DocumentParseError):
                await extractor.extract("https://files.test/endless.txt")

        assert len(sent) <= 3


# ─────────────────────────────────────────────────────────────────────────────
# Normalisation
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.extraction
class TestNormalizeText:

    def test_nfc(self):
        decomposed = unicodedata.normalize("NFD", "é")
        assert normalize_text(decomposed) == "é"

    def test_zero_width_characters_removed(self):
        assert normalize_text("photo\u200bsynthesis\ufeff") == "photosynthesis"

    def test_non_breaking_space_becomes_space(self):
        assert normalize_text("light\u00a0energy") == "light energy"

    def test_blank_lines_collapse_to_paragraph_break(self):
        assert normalize_text("one\r\n\r\n  \n\n\ntwo  ") == "one\n\ntwo"
