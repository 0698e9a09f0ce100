"""Exceptions raised by the ingestion pipeline.

Hierarchy:
    PayablesError (base)
    ├── MailboxError
    │   └── MailboxConnectionError
    ├── DocumentError
    │   ├── UnsupportedDocumentError
    │   └── DocumentParseError
    ├── MalformedResponseError
    ├── ExtractionFailedError
    ├── CurrencyConversionError
    ├── DuplicateInvoiceError
    └── RecordValidationError

Mailbox errors raised while fetching abort the whole run. Everything else is
scoped to the email being processed.
"""

from typing import Optional


class PayablesError(Exception):
    """Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        details: Additional context for logs
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# ============================================================================
# Mailbox
# ============================================================================


class MailboxError(PayablesError):
    """Mailbox protocol error affecting the whole batch (search, fetch)."""


class MailboxConnectionError(MailboxError):
    """Could not connect or authenticate to the mailbox."""


# ============================================================================
# Documents
# ============================================================================


class DocumentError(PayablesError):
    """Base exception for document text extraction errors."""


class UnsupportedDocumentError(DocumentError):
    """Document type cannot be turned into text (images, unknown MIME, empty text)."""

    def __init__(self, mime_type: str, reason: Optional[str] = None):
        message = reason or f"Unsupported document type: '{mime_type}'"
        super().__init__(message, {"mime_type": mime_type})
        self.mime_type = mime_type


class DocumentParseError(DocumentError):
    """Document claimed a supported type but could not be read."""


# ============================================================================
# Extraction oracle
# ============================================================================


class MalformedResponseError(PayablesError):
    """Oracle output could not be reduced to the declared shape."""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        details = {"raw_response": raw_response[:300]} if raw_response else None
        super().__init__(message, details)
        self.raw_response = raw_response


class ExtractionFailedError(PayablesError):
    """Structured extraction failed on every attempt."""

    def __init__(self, attempts: int, last_error: Optional[Exception]):
        message = f"Failed to extract structured data after {attempts} attempts: {last_error}"
        super().__init__(message, {"attempts": attempts})
        self.attempts = attempts
        self.last_error = last_error


# ============================================================================
# Currency
# ============================================================================


class CurrencyConversionError(PayablesError):
    """FX provider lookup failed (always degraded by the converter)."""


# ============================================================================
# Persistence
# ============================================================================


class DuplicateInvoiceError(PayablesError):
    """An invoice record already exists for this source email."""

    def __init__(self, source_email_id: str):
        super().__init__(
            f"Invoice already ingested for email {source_email_id}",
            {"source_email_id": source_email_id},
        )
        self.source_email_id = source_email_id


class RecordValidationError(PayablesError):
    """Record to persist violates its shape or amount invariants."""
