"""Turn attachment bytes into plain text."""

import io
import logging

import pdfplumber

from ..errors import DocumentParseError, UnsupportedDocumentError
from ..models import ExtractedDocument

logger = logging.getLogger(__name__)

PDF_TYPES = {"application/pdf", "application/x-pdf", "application/octet-stream", "binary/octet-stream"}


class DocumentTextExtractor:
    """Extract text from PDF attachments.

    Image OCR is not implemented and fails explicitly. Scanned PDFs come back
    with empty text; rejecting those is left to the caller.
    """

    def extract_text(self, data: bytes, mime_type: str) -> ExtractedDocument:
        """Extract text from a document.

        Args:
            data: Raw document bytes
            mime_type: Declared MIME type

        Returns:
            ExtractedDocument: Text, page count and document metadata

        Raises:
            UnsupportedDocumentError: For images and unknown types
            DocumentParseError: If the PDF cannot be read
        """
        mime_type = (mime_type or "").lower()

        if mime_type in PDF_TYPES:
            return self._extract_pdf(data)

        if mime_type.startswith("image/"):
            raise UnsupportedDocumentError(
                mime_type, f"OCR for image attachments is not implemented ({mime_type})"
            )

        raise UnsupportedDocumentError(mime_type)

    def _extract_pdf(self, data: bytes) -> ExtractedDocument:
        text_parts = []
        try:
            with pdfplumber.open(io.BytesIO(data)) as pdf:
                page_count = len(pdf.pages)
                metadata = dict(pdf.metadata or {})
                for page in pdf.pages:
                    page_text = page.extract_text()
                    if page_text:
                        text_parts.append(page_text)
        except Exception as e:
            raise DocumentParseError(f"Could not read PDF: {e}") from e

        text = "\n\n".join(text_parts)
        logger.debug(f"Extracted {len(text)} chars from {page_count} PDF page(s)")
        return ExtractedDocument(text=text, page_count=page_count, metadata=metadata)
