"""Tests for amount parsing and model validation."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from payables.models import (
    CurrencyLanguage,
    Email,
    ExtractedInvoice,
    IncomingInvoiceRecord,
    normalize_currency,
    parse_amount,
    to_money,
)


@pytest.mark.parametrize("raw,expected", [
    ("$121.00", Decimal("121.00")),
    ("€ 1.234,56", Decimal("1234.56")),
    ("1,234.56", Decimal("1234.56")),
    ("1,234", Decimal("1234")),
    ("121,00", Decimal("121.00")),
    (121, Decimal("121")),
    (21.5, Decimal("21.5")),
])
def test_parse_amount(raw, expected):
    assert parse_amount(raw) == expected


def test_parse_amount_rejects_garbage():
    with pytest.raises(ValueError):
        parse_amount("1.2.3,4,5")


def test_parse_amount_blank_is_none():
    assert parse_amount("n/a") is None


def test_to_money_rounds_half_up():
    assert to_money("2.345") == Decimal("2.35")


def test_normalize_currency():
    assert normalize_currency("€") == "EUR"
    assert normalize_currency(" usd ") == "USD"
    assert normalize_currency("dollars") is None


def test_currency_language_normalizes_names():
    result = CurrencyLanguage.model_validate({"currency": "£", "language": "Dutch"})
    assert (result.currency, result.language) == ("GBP", "nl")


def test_extracted_invoice_requires_vendor():
    with pytest.raises(ValidationError):
        ExtractedInvoice.model_validate({"vendor": "  ", "date": "2024-03-01", "amount": 10})


def _record(**overrides):
    values = dict(
        invoice_date=date(2024, 3, 1),
        subtotal=Decimal("100.00"),
        tax_amount=Decimal("21.00"),
        total_amount=Decimal("121.00"),
        currency="EUR",
        original_currency="EUR",
        original_subtotal=Decimal("100.00"),
        original_tax_amount=Decimal("21.00"),
        original_amount=Decimal("121.00"),
        exchange_rate_date=date(2024, 3, 1),
        supplier_name="Globex Corp",
        source_email_id="<m1@globex.example>",
    )
    values.update(overrides)
    return IncomingInvoiceRecord(**values)


def test_record_accepts_rounding_drift():
    record = _record(subtotal=Decimal("100.01"))
    assert record.review_status.value == "pending"
    assert record.payment_status.value == "unpaid"


def test_record_rejects_inconsistent_amounts():
    with pytest.raises(ValidationError, match="subtotal"):
        _record(subtotal=Decimal("90.00"))


@pytest.mark.parametrize("raw,expected", [
    ("en", "en"),
    ("Portuguese", "pt"),
    ("pt_BR", "pt-br"),
    ("NL", "nl"),
])
def test_language_codes(raw, expected):
    assert CurrencyLanguage.model_validate({"currency": "EUR", "language": raw}).language == expected


def test_currency_language_rejects_language_names_it_cannot_map():
    with pytest.raises(ValidationError, match="ISO 639-1"):
        CurrencyLanguage.model_validate({"currency": "USD", "language": "Brazilian Portuguese"})


def test_extracted_invoice_drops_unreadable_language():
    invoice = ExtractedInvoice.model_validate(
        {"vendor": "Globex", "date": "2024-03-01", "amount": 10, "language": "Brazilian Portuguese"}
    )
    assert invoice.language is None


def test_source_id_fits_its_column():
    email = Email(id="7", message_id="<" + "a" * 300 + "@globex.example>")
    assert len(email.source_id) == 255
    assert email.source_id == Email(id="8", message_id=email.message_id).source_id
