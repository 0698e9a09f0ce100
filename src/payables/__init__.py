"""Email invoice ingestion - unread mailbox in, deduplicated payables records out."""

# Models
from .models import (
    # Mailbox models
    Email,
    EmailAttachment,
    # Extraction models
    CurrencyLanguage,
    ExtractedInvoice,
    ConversionResult,
    # Database models
    Supplier,
    IncomingInvoiceRecord,
    InvoiceAttachmentRecord,
    # Run models
    IngestionSummary,
    ProcessingState,
)

# Errors
from .errors import (
    PayablesError,
    MailboxError,
    MailboxConnectionError,
    UnsupportedDocumentError,
    ExtractionFailedError,
    DuplicateInvoiceError,
)

# Components
from .ingestion import ImapMailbox, MailboxSource
from .processing import AttachmentClassifier, DocumentTextExtractor, EmailParser
from .semantic import ExtractionClient, InvoiceDataExtractor
from .currency import CurrencyConverter
from .suppliers import SupplierResolver
from .storage import DatabaseClient
from .pipeline import IngestionPipeline, process_invoices

# Configuration
from .config import Config

__version__ = "0.1.0"

__all__ = [
    # Models
    "Email",
    "EmailAttachment",
    "CurrencyLanguage",
    "ExtractedInvoice",
    "ConversionResult",
    "Supplier",
    "IncomingInvoiceRecord",
    "InvoiceAttachmentRecord",
    "IngestionSummary",
    "ProcessingState",
    # Errors
    "PayablesError",
    "MailboxError",
    "MailboxConnectionError",
    "UnsupportedDocumentError",
    "ExtractionFailedError",
    "DuplicateInvoiceError",
    # Components
    "ImapMailbox",
    "MailboxSource",
    "AttachmentClassifier",
    "DocumentTextExtractor",
    "EmailParser",
    "ExtractionClient",
    "InvoiceDataExtractor",
    "CurrencyConverter",
    "SupplierResolver",
    "DatabaseClient",
    "IngestionPipeline",
    "process_invoices",
    "Config",
]
