"""Shared fakes for pipeline tests: no network, no database, no mail server."""

import copy
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import pytest

from payables.errors import DuplicateInvoiceError
from payables.ingestion import MailboxSource
from payables.models import (
    ConversionResult,
    CurrencyLanguage,
    Email,
    EmailAttachment,
    ExtractedDocument,
    ExtractedInvoice,
    Supplier,
    to_money,
)
from payables.pipeline import IngestionPipeline
from payables.semantic import InvoiceDataExtractor
from payables.suppliers import SupplierResolver


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeMailbox(MailboxSource):
    """In-memory mailbox; emails stay unread until mark_read_many flags them."""

    def __init__(self, emails: Optional[list[Email]] = None):
        self.emails = list(emails or [])
        self.seen: set[str] = set()
        self.mark_calls: list[list[str]] = []
        self.fail_fetch: Optional[Exception] = None
        self.fail_mark: Optional[Exception] = None

    def add(self, email: Email) -> Email:
        self.emails.append(email)
        return email

    def fetch_unread(self) -> list[Email]:
        if self.fail_fetch:
            raise self.fail_fetch
        return [e for e in self.emails if e.id not in self.seen]

    def mark_read_many(self, email_ids) -> int:
        ids = list(email_ids)
        self.mark_calls.append(ids)
        if self.fail_mark:
            raise self.fail_mark
        self.seen.update(ids)
        return len(ids)


class InMemoryDatabase:
    """Stand-in for DatabaseClient with the same uniqueness and rollback rules."""

    def __init__(self):
        self.suppliers: list[Supplier] = []
        self.invoices: list[Any] = []
        self.attachments: list[Any] = []
        self.transactions = 0
        self.fail_on_attachments: Optional[Exception] = None
        self.skip_existence_check = False

    def close(self):
        pass

    @contextmanager
    def transaction(self):
        snapshot = copy.deepcopy((self.suppliers, self.invoices, self.attachments))
        self.transactions += 1
        try:
            yield self
        except Exception:
            self.suppliers, self.invoices, self.attachments = snapshot
            raise

    def add_supplier(self, name: str, type: str = "supplier", is_active: bool = True) -> Supplier:
        supplier = Supplier(id=len(self.suppliers) + 1, name=name, type=type, is_active=is_active)
        self.suppliers.append(supplier)
        return supplier

    def get_suppliers(self) -> list[Supplier]:
        return [s for s in self.suppliers if s.is_supplier and s.is_active]

    def create_supplier(self, name: str) -> Supplier:
        return self.add_supplier(name)

    def invoice_exists_for_email(self, source_email_id: str) -> bool:
        if self.skip_existence_check:
            return False
        return any(inv.source_email_id == source_email_id for inv in self.invoices)

    def insert_incoming_invoice(self, record) -> int:
        if any(inv.source_email_id == record.source_email_id for inv in self.invoices):
            raise DuplicateInvoiceError(record.source_email_id)
        invoice_id = len(self.invoices) + 1
        self.invoices.append(record.model_copy(update={"id": invoice_id}))
        return invoice_id

    def insert_invoice_attachments(self, invoice_id: int, attachments) -> None:
        if self.fail_on_attachments:
            raise self.fail_on_attachments
        for att in attachments:
            self.attachments.append(att.model_copy(update={"invoice_id": invoice_id}))


class ScriptedOracle:
    """StructuredExtractor returning canned payloads per response model."""

    def __init__(self, currency: Optional[dict] = None, invoice: Optional[dict] = None):
        self.currency = currency or {"currency": "EUR", "language": "en"}
        self.invoice = invoice or {}
        self.calls: list[dict] = []
        self.error: Optional[Exception] = None

    def extract_structured(self, text, schema, response_model, *, instructions="",
                           trace_name="extract-structured", metadata=None):
        self.calls.append({"text": text, "trace_name": trace_name, "model": response_model})
        if self.error:
            raise self.error
        if response_model is CurrencyLanguage:
            return CurrencyLanguage.model_validate(self.currency)
        return ExtractedInvoice.model_validate(self.invoice)


class FakeDocuments:
    """Treats attachment bytes as their text."""

    def __init__(self):
        self.calls: list[bytes] = []

    def extract_text(self, data: bytes, mime_type: str) -> ExtractedDocument:
        self.calls.append(data)
        return ExtractedDocument(text=data.decode(), page_count=1)


class FakeConverter:
    """Converts at a fixed rate, or fails into the degraded 1:1 result."""

    def __init__(self, rate: str = "0.92", degraded: bool = False):
        self.rate = Decimal(rate)
        self.degraded = degraded
        self.calls: list[tuple] = []

    def convert(self, amount, from_currency, to_currency="EUR", on_date=None) -> ConversionResult:
        self.calls.append((amount, from_currency, to_currency, on_date))
        rate = Decimal("1") if self.degraded else self.rate
        return ConversionResult(
            original_amount=amount,
            original_currency=from_currency,
            converted_amount=to_money(amount * rate),
            target_currency=to_currency,
            rate=rate,
            rate_date=on_date or date.today(),
            degraded=self.degraded,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def pdf():
    """Build a PDF attachment whose bytes double as its extracted text."""
    def _pdf(filename: str = "Invoice_123.pdf", text: str = "Invoice 123 total 121.00",
             content_type: str = "application/pdf") -> EmailAttachment:
        data = text.encode()
        return EmailAttachment(filename=filename, content_type=content_type, data=data, size_bytes=len(data))
    return _pdf


@pytest.fixture
def make_email(pdf):
    def _make(
        id: str = "101",
        subject: str = "Invoice 123 from Globex",
        attachments: Optional[list[EmailAttachment]] = None,
        message_id: Optional[str] = None,
        body: str = "Please find the invoice attached.",
    ) -> Email:
        return Email(
            id=id,
            message_id=message_id if message_id is not None else f"<msg-{id}@globex.example>",
            subject=subject,
            from_address="billing@globex.example",
            timestamp=datetime(2024, 3, 2, 9, 30, tzinfo=timezone.utc),
            body_text=body,
            attachments=attachments if attachments is not None else [pdf()],
        )
    return _make


@pytest.fixture
def mailbox():
    return FakeMailbox()


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def globex_invoice():
    return {
        "vendor": "Globex Corp",
        "date": "2024-03-01",
        "amount": 121.00,
        "vatAmount": 21.00,
        "description": "Consulting services",
        "invoiceNumber": "INV-123",
        "currency": "EUR",
        "language": "en",
    }


@pytest.fixture
def oracle(globex_invoice):
    return ScriptedOracle(currency={"currency": "USD", "language": "en"}, invoice=globex_invoice)


@pytest.fixture
def converter():
    return FakeConverter()


@pytest.fixture
def documents():
    return FakeDocuments()


@pytest.fixture
def pipeline(mailbox, db, oracle, converter, documents):
    return IngestionPipeline(
        mailbox=mailbox,
        extractor=InvoiceDataExtractor(oracle, base_currency="EUR"),
        converter=converter,
        resolver=SupplierResolver(db),
        db=db,
        documents=documents,
        base_currency="EUR",
    )
