"""Pydantic models for mailbox input, extraction output and persisted rows."""

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CENT = Decimal("0.01")
RATE_PRECISION = Decimal("0.000001")
AMOUNT_TOLERANCE = Decimal("0.01")

CURRENCY_SYMBOLS = {
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "S$": "SGD",
    "US$": "USD",
    "A$": "AUD",
    "C$": "CAD",
}

LANGUAGE_NAMES = {
    "english": "en",
    "dutch": "nl",
    "french": "fr",
    "german": "de",
    "spanish": "es",
    "italian": "it",
    "portuguese": "pt",
}


def to_money(value: Any) -> Decimal:
    """Quantize an amount to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_rate(value: Any) -> Decimal:
    """Quantize an exchange rate to 6 decimal places."""
    return Decimal(str(value)).quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)


def parse_amount(value: Any) -> Any:
    """Normalize a loosely formatted amount into a Decimal.

    Handles numbers, currency-prefixed strings ("$121.00") and both decimal
    conventions ("1,234.56" and "1.234,56").

    Raises:
        ValueError: If a string cannot be read as an amount
    """
    if value is None or isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not an amount: {value!r}")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if not isinstance(value, str):
        return value

    cleaned = re.sub(r"[^\d,.\-]", "", value)
    if not cleaned:
        return None

    if "," in cleaned and "." in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        whole, _, fraction = cleaned.rpartition(",")
        if whole and len(fraction) == 3:
            cleaned = cleaned.replace(",", "")
        else:
            cleaned = cleaned.replace(",", ".")

    try:
        return Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"Not an amount: {value!r}")


def normalize_currency(value: Any) -> Optional[str]:
    """Return an upper-case ISO 4217 code, or None if the value is not one."""
    if value is None:
        return None
    text = str(value).strip()
    if text in CURRENCY_SYMBOLS:
        return CURRENCY_SYMBOLS[text]
    text = text.upper()
    if re.fullmatch(r"[A-Z]{3}", text):
        return text
    return None


def normalize_language(value: Any) -> Optional[str]:
    """Return an ISO 639-1 code (optionally with a region), or None."""
    if value is None:
        return None
    text = str(value).strip().lower().replace("_", "-")
    code = LANGUAGE_NAMES.get(text, text)
    if re.fullmatch(r"[a-z]{2}(-[a-z]{2})?", code):
        return code
    return None


def clip(value: Optional[str], limit: int) -> Optional[str]:
    """Truncate a string to a column width."""
    if value is None:
        return None
    return value[:limit]


# ============================================================================
# Enums
# ============================================================================


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class AttachmentKind(str, Enum):
    INVOICE = "invoice"
    RECEIPT = "receipt"


class ProcessingState(str, Enum):
    """Per-email pipeline states."""

    FETCHED = "fetched"
    FILTERED = "filtered"
    DEDUP_CHECKED = "dedup_checked"
    EXTRACTED = "extracted"
    CONVERTED = "converted"
    SUPPLIER_RESOLVED = "supplier_resolved"
    PERSISTED = "persisted"
    MARKED_READ = "marked_read"
    SKIPPED = "skipped"
    ERRORED = "errored"


# ============================================================================
# Mailbox Models (transient)
# ============================================================================


class EmailAttachment(BaseModel):
    """Email attachment with raw data."""

    filename: str
    content_type: str
    data: bytes
    size_bytes: int

    model_config = ConfigDict(frozen=True)


class Email(BaseModel):
    """Parsed email fetched from the mailbox."""

    id: str  # IMAP UID
    message_id: Optional[str] = None  # Email Message-ID header
    subject: str = ""
    from_address: str = ""
    to_address: Optional[str] = None
    timestamp: Optional[datetime] = None
    body_text: str = ""
    attachments: list[EmailAttachment] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def source_id(self) -> str:
        """Stable identifier used for deduplication, clipped to its column width."""
        if self.message_id:
            return clip(self.message_id.strip(), COLUMN_WIDTHS["source_email_id"])
        return f"uid:{self.id}"


class ExtractedDocument(BaseModel):
    """Plain text pulled out of an attachment."""

    text: str
    page_count: int = 0
    metadata: dict = Field(default_factory=dict)


# ============================================================================
# Extraction Models (oracle output)
# ============================================================================


class CurrencyLanguage(BaseModel):
    """Result of the narrow currency/language detection call."""

    currency: str = Field(description="ISO 4217 currency code")
    language: str = Field(description="ISO 639-1 language code")

    @field_validator("currency", mode="before")
    @classmethod
    def _currency_code(cls, value: Any) -> str:
        code = normalize_currency(value)
        if code is None:
            raise ValueError(f"Not an ISO currency code: {value!r}")
        return code

    @field_validator("language", mode="before")
    @classmethod
    def _language_code(cls, value: Any) -> str:
        code = normalize_language(value)
        if code is None:
            raise ValueError(f"Not an ISO 639-1 language code: {value!r}")
        return code


class ExtractedInvoice(BaseModel):
    """Invoice fields extracted from a document.

    Accepts the oracle's JSON keys as aliases. currency and language are
    overwritten by the detection call before the invoice is used.
    """

    vendor_name: str = Field(alias="vendor", min_length=1)
    invoice_date: date = Field(alias="date")
    total_amount: Decimal = Field(alias="amount", description="Total including VAT")
    vat_amount: Optional[Decimal] = Field(None, alias="vatAmount")
    description: Optional[str] = None
    invoice_number: Optional[str] = Field(None, alias="invoiceNumber")
    currency: Optional[str] = None
    language: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("vendor_name", mode="before")
    @classmethod
    def _strip_vendor(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("total_amount", "vat_amount", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> Any:
        return parse_amount(value)

    @field_validator("invoice_number", mode="before")
    @classmethod
    def _invoice_number(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(value).strip()

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> Optional[str]:
        return normalize_currency(value)

    @field_validator("language", mode="before")
    @classmethod
    def _language(cls, value: Any) -> Optional[str]:
        return normalize_language(value)


# ============================================================================
# Currency Models
# ============================================================================


class ConversionResult(BaseModel):
    """Outcome of converting one amount into the base currency."""

    original_amount: Decimal
    original_currency: str
    converted_amount: Decimal
    target_currency: str
    rate: Decimal
    rate_date: date
    degraded: bool = False  # True when the 1:1 fallback was used


class ConvertedAmounts(BaseModel):
    """Subtotal/tax/total in the base currency, scaled by one ratio."""

    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    rate: Decimal
    rate_date: date


# ============================================================================
# Database Models (aligned with PostgreSQL schema)
# ============================================================================

# VARCHAR widths from storage.database.SCHEMA_SQL
COLUMN_WIDTHS = {
    "supplier_name": 255,
    "invoice_number": 100,
    "source_email_id": 255,
    "source_email_subject": 500,
    "source_email_from": 255,
    "file_name": 255,
    "file_type": 100,
}


class Supplier(BaseModel):
    """Company row from the supplier registry."""

    id: int
    name: str
    type: str = "supplier"  # "client", "supplier" or "both"
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_supplier(self) -> bool:
        return self.type in ("supplier", "both")


class IncomingInvoiceRecord(BaseModel):
    """Incoming (supplier) invoice header row."""

    id: Optional[int] = None  # Auto-generated

    # References
    supplier_id: Optional[int] = None
    project_id: Optional[int] = None

    # Invoice data
    invoice_number: Optional[str] = None
    invoice_date: date
    description: Optional[str] = None
    language: Optional[str] = None

    # Amounts in base currency
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    currency: str

    # Amounts as invoiced
    original_currency: str
    original_subtotal: Decimal
    original_tax_amount: Decimal
    original_amount: Decimal
    exchange_rate: Decimal = Decimal("1")
    exchange_rate_date: date

    notes: Optional[str] = None
    supplier_name: str

    # Workflow (owned by review after creation)
    review_status: ReviewStatus = ReviewStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.UNPAID

    # Source tracking
    source: str = "email"
    source_email_id: str
    source_email_subject: Optional[str] = None
    source_email_from: Optional[str] = None
    source_email_date: Optional[datetime] = None
    extracted_data: Optional[dict] = None  # Merged oracle output, kept for review

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _amounts_add_up(self) -> "IncomingInvoiceRecord":
        drift = abs(self.subtotal + self.tax_amount - self.total_amount)
        if drift > AMOUNT_TOLERANCE:
            raise ValueError(
                f"subtotal {self.subtotal} + tax {self.tax_amount} != total {self.total_amount}"
            )
        return self


class InvoiceAttachmentRecord(BaseModel):
    """File stored alongside an incoming invoice."""

    invoice_id: Optional[int] = None
    file_name: str
    file_type: str
    file_size: int
    file_data: bytes
    kind: AttachmentKind = AttachmentKind.INVOICE


class PendingInvoice(BaseModel):
    """Everything needed to write one email's invoice, before supplier resolution."""

    vendor_name: str
    record: IncomingInvoiceRecord
    attachments: list[InvoiceAttachmentRecord] = Field(default_factory=list)


# ============================================================================
# Run Models
# ============================================================================


class EmailOutcome(BaseModel):
    """Terminal state reached by one email.

    stage is the furthest pipeline state the email passed through before
    ending, which for errored emails locates the failing step.
    """

    email_id: str
    source_id: str
    state: ProcessingState
    stage: ProcessingState = ProcessingState.FETCHED
    reason: Optional[str] = None
    invoice_id: Optional[int] = None


class IngestionSummary(BaseModel):
    """Metrics for one pipeline run."""

    emails_fetched: int = 0
    invoices_created: int = 0
    skipped: int = 0
    duplicates: int = 0
    errors: list[dict] = Field(default_factory=list)  # [{"email_id": str, "error": str}, ...]
    marked_read: int = 0
    duration_sec: float = 0.0
    extraction_time_sec: float = 0.0
    conversion_time_sec: float = 0.0
    db_commit_time_sec: float = 0.0
    outcomes: list[EmailOutcome] = Field(default_factory=list)
