"""Email parsing, attachment classification and document text extraction."""

from .classifier import AttachmentClassifier, INVOICE_KEYWORDS
from .documents import DocumentTextExtractor
from .email_parser import EmailParser, decode_email_header

__all__ = [
    "AttachmentClassifier",
    "INVOICE_KEYWORDS",
    "DocumentTextExtractor",
    "EmailParser",
    "decode_email_header",
]
