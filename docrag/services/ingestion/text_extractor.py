"""Text extraction from raw uploaded bytes.

Turns an uploaded file into plain text according to its declared media
type.  Supported paths:

* ``text/plain`` / ``text/markdown`` -- strict UTF-8 decode (BOM removed).
* ``text/csv`` -- UTF-8 decode, rows rendered as readable lines.
* ``application/pdf`` -- page text layer via PyMuPDF, pages joined by a
  blank line.
* anything else -- the fallback path.

The **fallback path** decodes leniently, strips control/non-printable
characters and collapses whitespace.  Every typed path degrades to it on
malformed input, so :meth:`TextExtractor.extract` never raises.  An empty
file yields ``""``; rejecting empty documents is left to the chunking stage.
"""

from __future__ import annotations

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from docrag.utils.text_normalizer import clean_fallback_text, csv_to_text

logger = structlog.get_logger(logger_name=__name__)

_PLAIN_TEXT_TYPES = frozenset({"text/plain", "text/markdown"})
_CSV_TYPES = frozenset({"text/csv", "application/csv"})
_PDF_TYPES = frozenset({"application/pdf"})


class TextExtractor:
    """Converts uploaded file bytes into plain text.  Stateless and pure."""

    def extract(self, file_bytes: bytes, declared_type: str) -> str:
        """Return the plain text of *file_bytes* interpreted as *declared_type*.

        Parameters
        ----------
        file_bytes:
            Raw file content.
        declared_type:
            Media type declared at upload, e.g. ``"text/plain"``.  Parameters
            such as ``; charset=utf-8`` are ignored.

        Returns
        -------
        str
            Extracted text; ``""`` for an empty file.
        """
        if not file_bytes:
            return ""

        media_type = declared_type.split(";", 1)[0].strip().lower()

        if media_type in _PLAIN_TEXT_TYPES:
            text = self._decode_strict(file_bytes)
        elif media_type in _CSV_TYPES:
            text = self._decode_strict(file_bytes)
            text = csv_to_text(text) if text is not None else None
        elif media_type in _PDF_TYPES:
            text = self._extract_pdf(file_bytes)
        else:
            text = None

        if text is None:
            logger.debug("extraction_fallback", declared_type=media_type, size=len(file_bytes))
            return self._fallback(file_bytes)
        return text

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _decode_strict(file_bytes: bytes) -> str | None:
        """Decode UTF-8 (BOM tolerated); ``None`` on malformed input."""
        try:
            return file_bytes.decode("utf-8-sig")
        except UnicodeDecodeError:
            return None

    @staticmethod
    def _extract_pdf(file_bytes: bytes) -> str | None:
        """Return the text layer of a PDF, or ``None`` if it has none or is corrupt."""
        try:
            doc = fitz.open(stream=file_bytes, filetype="pdf")
        except Exception:  # noqa: BLE001 -- corrupt PDFs degrade to fallback
            logger.warning("pdf_open_failed", size=len(file_bytes))
            return None

        pages: list[str] = []
        try:
            for page in doc:
                page_text = page.get_text("text").strip()
                if page_text:
                    pages.append(page_text)
        except Exception:  # noqa: BLE001
            logger.warning("pdf_page_extraction_failed", pages_read=len(pages))
            return None
        finally:
            doc.close()

        if not pages:
            logger.warning("pdf_no_text_extracted", size=len(file_bytes))
            return None
        return "\n\n".join(pages)

    @staticmethod
    def _fallback(file_bytes: bytes) -> str:
        """Best-effort decode: drop undecodable bytes and control characters."""
        return clean_fallback_text(file_bytes.decode("utf-8", errors="ignore"))
