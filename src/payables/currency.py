"""Currency conversion using historical rates from the Frankfurter API (ECB data)."""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests

from .errors import CurrencyConversionError
from .models import ConversionResult, ConvertedAmounts, to_money, to_rate

logger = logging.getLogger(__name__)

ONE = Decimal("1")


def identity_conversion(
    amount: Decimal,
    currency: str,
    on_date: Optional[date] = None,
    target_currency: Optional[str] = None,
    degraded: bool = False,
) -> ConversionResult:
    """Build a 1:1 result (same currency, or the degraded fallback)."""
    return ConversionResult(
        original_amount=amount,
        original_currency=currency.upper(),
        converted_amount=amount,
        target_currency=(target_currency or currency).upper(),
        rate=ONE,
        rate_date=on_date or date.today(),
        degraded=degraded,
    )


def scale_amounts(tax_amount: Decimal, total_amount: Decimal, conversion: ConversionResult) -> ConvertedAmounts:
    """Express tax and subtotal in the target currency using the total's ratio.

    Tax is scaled by converted_total / original_total and the subtotal is the
    remainder, so subtotal + tax equals the converted total exactly.

    Args:
        tax_amount: Tax in the original currency
        total_amount: Total in the original currency (the converted amount)
        conversion: Result of converting total_amount

    Returns:
        ConvertedAmounts: Amounts in the target currency
    """
    if total_amount:
        ratio = conversion.converted_amount / total_amount
    else:
        ratio = conversion.rate

    total = to_money(conversion.converted_amount)
    tax = to_money(tax_amount * ratio)

    return ConvertedAmounts(
        subtotal=total - tax,
        tax_amount=tax,
        total_amount=total,
        rate=to_rate(conversion.rate),
        rate_date=conversion.rate_date,
    )


class CurrencyConverter:
    """Convert amounts between currencies; falls back to 1:1 when the provider fails."""

    def __init__(
        self,
        base_url: str = "https://api.frankfurter.app",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        """Initialize converter.

        Args:
            base_url: Frankfurter-compatible API root
            timeout: Request timeout in seconds
            session: HTTP session (defaults to a new requests.Session)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str = "EUR",
        on_date: Optional[date] = None,
    ) -> ConversionResult:
        """Convert an amount using the historical rate for a date (latest if None).

        Never raises for provider failures; those yield a degraded 1:1 result.

        Args:
            amount: Amount in from_currency
            from_currency: ISO code of the amount
            to_currency: ISO code to convert into
            on_date: Rate date

        Returns:
            ConversionResult: rate == converted_amount / amount
        """
        amount = Decimal(str(amount))
        source = from_currency.strip().upper()
        target = to_currency.strip().upper()

        if source == target:
            return identity_conversion(amount, source, on_date)

        # The provider cannot price zero; ask for one unit and scale.
        query_amount = amount if amount else ONE

        try:
            quoted, rate_date = self._lookup(query_amount, source, target, on_date)
        except CurrencyConversionError as e:
            logger.warning(f"Currency conversion {source}->{target} failed, using 1:1 fallback: {e}")
            return identity_conversion(amount, source, on_date, target_currency=target, degraded=True)

        rate = quoted / query_amount
        converted = quoted if amount else Decimal("0")

        logger.debug(f"Converted {amount} {source} -> {converted} {target} (rate {rate}, {rate_date})")

        return ConversionResult(
            original_amount=amount,
            original_currency=source,
            converted_amount=converted,
            target_currency=target,
            rate=rate,
            rate_date=rate_date,
        )

    def get_rate(self, from_currency: str, to_currency: str = "EUR") -> Decimal:
        """Latest exchange rate, or 1 if the provider is unavailable."""
        source = from_currency.strip().upper()
        target = to_currency.strip().upper()
        if source == target:
            return ONE

        try:
            quoted, _ = self._lookup(ONE, source, target, None)
        except CurrencyConversionError as e:
            logger.warning(f"Failed to get exchange rate {source}->{target}, using 1: {e}")
            return ONE
        return quoted

    def _lookup(
        self,
        amount: Decimal,
        source: str,
        target: str,
        on_date: Optional[date],
    ) -> tuple[Decimal, date]:
        """Query the provider.

        Returns:
            tuple[Decimal, date]: Converted amount and the provider's rate date

        Raises:
            CurrencyConversionError: On network, HTTP or payload errors
        """
        endpoint = on_date.isoformat() if on_date else "latest"
        url = f"{self.base_url}/{endpoint}"
        params = {"amount": str(amount), "from": source, "to": target}

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
            quoted = Decimal(str(data["rates"][target]))
            rate_date = date.fromisoformat(data["date"])
        except (requests.RequestException, InvalidOperation, ValueError, KeyError, TypeError) as e:
            raise CurrencyConversionError(
                f"Rate lookup failed: {e}",
                {"url": url, "from": source, "to": target},
            ) from e

        return quoted, rate_date
