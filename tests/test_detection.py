"""Tests for the two-call currency/language + invoice extraction protocol."""

from payables.models import CurrencyLanguage, ExtractedInvoice
from payables.semantic import InvoiceDataExtractor
from payables.semantic.detection import CURRENCY_SCHEMA, INVOICE_SCHEMA, currency_instructions


def test_detection_runs_before_full_extraction(oracle, make_email):
    extractor = InvoiceDataExtractor(oracle)

    extractor.extract(make_email(), "Invoice total $121.00")

    assert [call["model"] for call in oracle.calls] == [CurrencyLanguage, ExtractedInvoice]
    assert [call["trace_name"] for call in oracle.calls] == ["detect-currency-language", "extract-invoice"]


def test_detected_currency_and_language_win(oracle, make_email):
    oracle.currency = {"currency": "SGD", "language": "nl"}
    oracle.invoice = {**oracle.invoice, "currency": "EUR", "language": "en"}

    invoice = InvoiceDataExtractor(oracle).extract(make_email(), "S$121.00")

    assert invoice.currency == "SGD"
    assert invoice.language == "nl"
    assert invoice.vendor_name == "Globex Corp"


def test_missing_currency_in_full_extraction_is_filled(oracle, make_email):
    oracle.invoice = {k: v for k, v in oracle.invoice.items() if k not in ("currency", "language")}

    invoice = InvoiceDataExtractor(oracle).extract(make_email(), "text")

    assert invoice.currency == "USD"
    assert invoice.language == "en"


def test_context_contains_email_metadata_and_document(oracle, make_email):
    extractor = InvoiceDataExtractor(oracle)

    extractor.extract(make_email(subject="Your March invoice"), "DOCUMENT BODY")

    context = oracle.calls[0]["text"]
    assert "Email subject: Your March invoice" in context
    assert "From: billing@globex.example" in context
    assert "Please find the invoice attached." in context
    assert "DOCUMENT BODY" in context
    assert oracle.calls[1]["text"] == context


def test_context_truncates_long_document(oracle, make_email):
    extractor = InvoiceDataExtractor(oracle, max_document_chars=10)

    context = extractor.build_context(make_email(), "x" * 50)

    assert context.endswith("x" * 10)
    assert "x" * 11 not in context


def test_instructions_forbid_defaulting_to_base_currency():
    rules = currency_instructions("EUR")
    assert "DO NOT assume EUR" in rules
    assert "S$ = SGD" in rules


def test_schemas_use_oracle_keys():
    assert '"currency"' in CURRENCY_SCHEMA and '"language"' in CURRENCY_SCHEMA
    for key in ("vendor", "date", "amount", "vatAmount", "invoiceNumber"):
        assert f'"{key}"' in INVOICE_SCHEMA
