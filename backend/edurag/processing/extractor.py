"""
Text Extraction
═══════════════

Fetches a document from its storage URL and turns it into plain text.

Format selection flow:
  1.  Declared content type (request hint, then response header);
      application/octet-stream counts as undeclared
  2.  Magic bytes (%PDF) and URL extension as tie-breakers
  3.  PDF        → pypdf, page texts joined by blank lines
      text/*     → UTF-8 decode (latin-1 fallback)
      otherwise  → DocumentParseError

The returned text is normalised (NFC, zero-width characters removed,
runs of blank lines collapsed). Every offset the chunker reports refers to
this normalised text.

Bodies are streamed; a download larger than max_bytes is abandoned early.

Fetch failures are transport errors and may be retried; parse failures are
not, since the same bytes will fail the same way.
"""

from __future__ import annotations

import asyncio
import io
import logging
import re
import time
import unicodedata
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from edurag.core.exceptions import DocumentFetchError, DocumentParseError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_BYTES       = 50 * 1024 * 1024   # 50 MB

_PDF_MAGIC = b"%PDF"
_TEXT_EXTENSIONS = frozenset({".txt", ".md", ".markdown", ".csv"})
_GENERIC_TYPES   = frozenset({"application/octet-stream", "binary/octet-stream"})


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass
class ExtractionResult:
    """
    text        : normalised plain text (may be empty; callers decide)
    method      : "pdf" | "text"
    page_count  : PDF pages read (1 for plain text)
    byte_count  : size of the fetched payload
    elapsed_ms  : fetch + parse wall time
    """
    text:       str
    method:     str
    page_count: int
    byte_count: int
    elapsed_ms: float = 0.0


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class TextExtractor:
    """
    Usage:
        extractor = TextExtractor()
        result = await extractor.extract("https://storage.example.com/notes.pdf")

    Pass `http_client` to share a connection pool (or a MockTransport in tests);
    otherwise a short-lived client is opened per fetch.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout:     float = DEFAULT_TIMEOUT_SECONDS,
        max_bytes:   int   = DEFAULT_MAX_BYTES,
    ) -> None:
        self._client    = http_client
        self._timeout   = timeout
        self._max_bytes = max_bytes

    @classmethod
    def from_settings(cls, settings, http_client: httpx.AsyncClient | None = None) -> "TextExtractor":
        return cls(
            http_client=http_client,
            timeout=settings.extraction_timeout_seconds,
            max_bytes=settings.extraction_max_bytes,
        )

    async def extract(self, file_url: str, content_type: str | None = None) -> ExtractionResult:
        t0 = time.monotonic()
        data, header_type = await self.fetch(file_url)
        declared = content_type or header_type

        if _is_pdf(data, declared, file_url):
            result = await asyncio.to_thread(self.extract_pdf, data)
        elif _is_text(declared, file_url):
            result = self.extract_text(data)
        else:
            raise DocumentParseError(
                message="Unsupported document format",
                detail=f"content_type={declared!r} url={file_url}",
            )

        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Extraction | method=%s pages=%d bytes=%d chars=%d elapsed_ms=%.0f",
            result.method, result.page_count, result.byte_count,
            len(result.text), result.elapsed_ms,
        )
        return result

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch(self, file_url: str) -> tuple[bytes, str | None]:
        """
        Download the file; returns (body, content-type header without params).

        The body is streamed and the download abandoned once it passes
        max_bytes, whether or not the server sent a Content-Length.
        """
        try:
            if self._client is not None:
                return await self._download(self._client, file_url, timeout=self._timeout)
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                return await self._download(client, file_url)
        except httpx.HTTPStatusError as exc:
            raise DocumentFetchError(
                message=f"Document download failed with HTTP {exc.response.status_code}",
                detail=file_url,
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise DocumentFetchError(
                message="Document download failed",
                detail=f"{type(exc).__name__}: {exc}",
            ) from exc

    async def _download(self, client: httpx.AsyncClient, file_url: str, **kwargs) -> tuple[bytes, str | None]:
        async with client.stream("GET", file_url, **kwargs) as response:
            response.raise_for_status()

            length = response.headers.get("content-length", "")
            if length.isdigit() and int(length) > self._max_bytes:
                raise self._too_large(int(length))

            body = bytearray()
            async for piece in response.aiter_bytes():
                body.extend(piece)
                if len(body) > self._max_bytes:
                    raise self._too_large(len(body))

            header = response.headers.get("content-type")
        return bytes(body), header.split(";")[0].strip().lower() if header else None

    def _too_large(self, size: int) -> DocumentParseError:
        logger.warning("Document too large | bytes=%d limit=%d", size, self._max_bytes)
        return DocumentParseError(
            message="Document exceeds the maximum supported size",
            detail=f"{size} bytes > {self._max_bytes}",
        )

    # ------------------------------------------------------------------
    # Parsers
    # ------------------------------------------------------------------

    def extract_pdf(self, data: bytes) -> ExtractionResult:
        """Extract text from PDF bytes using pypdf."""
        try:
            reader = PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except (PyPdfError, ValueError) as exc:
            raise DocumentParseError(
                message="PDF could not be parsed",
                detail=f"{type(exc).__name__}: {exc}",
            ) from exc

        text = "\n\n".join(p for p in pages if p.strip())
        return ExtractionResult(
            text=normalize_text(text),
            method="pdf",
            page_count=len(pages),
            byte_count=len(data),
        )

    def extract_text(self, data: bytes) -> ExtractionResult:
        """Plain text / markdown — decode with UTF-8, fallback to latin-1."""
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            text = data.decode("latin-1", errors="replace")
        return ExtractionResult(
            text=normalize_text(text),
            method="text",
            page_count=1,
            byte_count=len(data),
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_text(text: str) -> str:
    """
    NFC-normalize, drop zero-width characters, collapse runs of blank lines.
    Preserves paragraph breaks (double newlines).
    """
    text = unicodedata.normalize("NFC", text)
    text = text.replace("\u00a0", " ")
    text = re.sub(r"[\u200b\u200c\u200d\ufeff]", "", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = "\n".join(line.rstrip() for line in text.splitlines())
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def _extension(file_url: str) -> str:
    path = urlparse(file_url).path.lower()
    dot = path.rfind(".")
    return path[dot:] if dot != -1 else ""


def _is_pdf(data: bytes, content_type: str | None, file_url: str) -> bool:
    if data.startswith(_PDF_MAGIC):
        return True
    if content_type and "pdf" in content_type:
        return True
    return _extension(file_url) == ".pdf"


def _is_text(content_type: str | None, file_url: str) -> bool:
    # object stores label anything they can't classify as octet-stream
    if content_type and content_type not in _GENERIC_TYPES:
        return content_type.startswith("text/") or content_type in ("application/json", "application/markdown")
    return _extension(file_url) in _TEXT_EXTENSIONS
