"""Two-call invoice extraction: detect currency/language, then the full schema.

The narrow first call is authoritative for currency and language. A single
combined prompt tends to fall back to the base currency when the document
only shows an ambiguous symbol.
"""

import logging
from typing import Optional

from ..models import CurrencyLanguage, Email, ExtractedInvoice
from .inference import StructuredExtractor

logger = logging.getLogger(__name__)

CURRENCY_SCHEMA = """{
  "currency": "string (ISO 4217 currency code, e.g. USD, EUR, GBP, SGD)",
  "language": "string (ISO 639-1 code of the document language, e.g. en, nl, fr, de)"
}"""

INVOICE_SCHEMA = """{
  "vendor": "string (company/supplier name that issued the invoice)",
  "date": "string (invoice date, YYYY-MM-DD format)",
  "amount": "number (total amount including VAT)",
  "vatAmount": "number or null (VAT/tax amount if specified)",
  "description": "string (brief description of the goods or services)",
  "invoiceNumber": "string or null (invoice/reference number if present)",
  "currency": "string (ISO 4217 currency code)",
  "language": "string (ISO 639-1 language code)"
}"""


def currency_instructions(base_currency: str) -> str:
    return f"""CURRENCY DETECTION RULES:
- Map symbols to codes: € = EUR, £ = GBP, ¥ = JPY, S$ = SGD, A$ = AUD, C$ = CAD, US$ = USD.
- A bare "$" is ambiguous between USD, SGD, CAD and AUD. Decide from context such as the
  vendor address or country, the sender's domain, phone prefixes and tax names (GST, HST).
- An explicit currency code anywhere in the text overrides a guess based on symbols.
- DO NOT assume {base_currency}. Only answer {base_currency} if its symbol or code explicitly
  appears in the text.
- language is the language the document itself is written in."""


INVOICE_INSTRUCTIONS = """INVOICE RULES:
- vendor is the party that issued the invoice, not the recipient.
- amount is the grand total payable including VAT/tax.
- vatAmount is the total VAT/tax amount; use null if the document shows none.
- Dates must be YYYY-MM-DD."""


class InvoiceDataExtractor:
    """Extract an invoice from email context plus document text in two oracle calls."""

    def __init__(
        self,
        oracle: StructuredExtractor,
        base_currency: str = "EUR",
        max_body_chars: int = 2000,
        max_document_chars: int = 12000,
    ):
        self.oracle = oracle
        self.base_currency = base_currency.upper()
        self.max_body_chars = max_body_chars
        self.max_document_chars = max_document_chars

    def build_context(self, email: Email, document_text: str) -> str:
        """Combine email metadata and document text into one oracle input."""
        sent = email.timestamp.isoformat() if email.timestamp else "unknown"
        body = (email.body_text or "")[:self.max_body_chars]

        return (
            f"Email subject: {email.subject}\n"
            f"From: {email.from_address}\n"
            f"Date: {sent}\n"
            f"Email body:\n{body}\n\n"
            f"Document text:\n{document_text[:self.max_document_chars]}"
        )

    def detect_currency(self, context: str, metadata: Optional[dict] = None) -> CurrencyLanguage:
        """Phase 1: isolate currency and language."""
        return self.oracle.extract_structured(
            context,
            CURRENCY_SCHEMA,
            CurrencyLanguage,
            instructions=currency_instructions(self.base_currency),
            trace_name="detect-currency-language",
            metadata=metadata,
        )

    def extract(self, email: Email, document_text: str) -> ExtractedInvoice:
        """Run both phases and merge, with phase 1 winning on currency/language.

        Raises:
            ExtractionFailedError: If either oracle call exhausts its retries
        """
        context = self.build_context(email, document_text)
        metadata = {"email_id": email.id, "source_id": email.source_id}

        detected = self.detect_currency(context, metadata)
        logger.info(
            f"Email {email.id}: detected currency={detected.currency} language={detected.language}"
        )

        invoice = self.oracle.extract_structured(
            context,
            INVOICE_SCHEMA,
            ExtractedInvoice,
            instructions=INVOICE_INSTRUCTIONS,
            trace_name="extract-invoice",
            metadata=metadata,
        )

        if invoice.currency and invoice.currency != detected.currency:
            logger.info(
                f"Email {email.id}: full extraction said {invoice.currency}, "
                f"keeping detected {detected.currency}"
            )

        return invoice.model_copy(
            update={"currency": detected.currency, "language": detected.language}
        )
