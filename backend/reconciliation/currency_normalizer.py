"""
CURRENCY NORMALIZER

Converts invoice-currency payment amounts into the ledger's base currency.

Conversion factor precedence for a foreign-currency invoice:
1. Stored base-currency equivalent of the full receivable (proportional)
2. Stored exchange rate, unless it is the placeholder value 1
3. DEFAULT_EXCHANGE_RATES

Amounts are rounded to cents immediately after conversion.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping
import logging

from reconciliation.errors import CurrencyConversionError
from reconciliation.financial_precision import round_financial, to_decimal

logger = logging.getLogger(__name__)

BASE_CURRENCY = "INR"

# 1 unit of currency = N INR
DEFAULT_EXCHANGE_RATES: Dict[str, Decimal] = {
    "USD": Decimal("90.13"),
    "CAD": Decimal("67"),
    "AUD": Decimal("60"),
    "AED": Decimal("24.5"),
    "EUR": Decimal("98"),
    "GBP": Decimal("114"),
    "CNY": Decimal("12.5"),
    "BND": Decimal("67"),
    "INR": Decimal("1"),
}


@dataclass
class NormalizedAmounts:
    """Payment money fields expressed in base currency, rounded to cents"""
    amount_received: Decimal
    bank_charges: Decimal
    amount_withheld: Decimal
    currency: str
    conversion_factor: Decimal
    converted: bool


def invoice_currency(invoice: Mapping[str, Any]) -> str:
    return (invoice.get("currency") or BASE_CURRENCY).upper()


def receivable_amount(invoice: Mapping[str, Any]) -> Decimal:
    """Receivable in invoice currency; legacy invoices only carry grand_total."""
    return to_decimal(invoice.get("receivable_amount") or invoice.get("grand_total") or 0)


def conversion_factor(invoice: Mapping[str, Any]) -> Decimal:
    """Multiplier taking an invoice-currency amount to base currency."""
    currency = invoice_currency(invoice)
    if currency == BASE_CURRENCY:
        return Decimal("1")

    receivable = receivable_amount(invoice)
    inr_equivalent = to_decimal(invoice.get("inr_equivalent") or 0)
    if inr_equivalent > 0 and receivable > 0:
        return inr_equivalent / receivable

    exchange_rate = to_decimal(invoice.get("exchange_rate") or 0)
    if exchange_rate > 0 and exchange_rate != Decimal("1"):
        return exchange_rate

    default_rate = DEFAULT_EXCHANGE_RATES.get(currency)
    if default_rate is None:
        raise CurrencyConversionError(
            f"No exchange rate available for {currency}",
            details={"currency": currency},
        )
    logger.warning(f"[CURRENCY] Exchange rate not set for {currency}, using default: {default_rate}")
    return default_rate


def receivable_in_base(invoice: Mapping[str, Any]) -> Decimal:
    """Invoice receivable in base currency, rounded to cents."""
    if invoice_currency(invoice) != BASE_CURRENCY:
        inr_equivalent = to_decimal(invoice.get("inr_equivalent") or 0)
        if inr_equivalent > 0:
            return round_financial(inr_equivalent)
    return round_financial(receivable_amount(invoice) * conversion_factor(invoice))


def total_in_base(invoice: Mapping[str, Any]) -> Decimal:
    """
    Base-currency total used for due_amount.
    Prefers a precomputed total_amount, else the converted receivable.
    """
    total_amount = to_decimal(invoice.get("total_amount") or 0)
    if total_amount > 0:
        return round_financial(total_amount)
    return receivable_in_base(invoice)


def normalize_payment_amounts(
    invoice: Mapping[str, Any],
    amount_received,
    bank_charges=0,
    amount_withheld=0,
    has_department_split: bool = False,
) -> NormalizedAmounts:
    """
    Convert payment money fields to base currency.

    Split-mode payments are submitted in base currency already and pass
    through unconverted. All three fields share one conversion factor.
    """
    currency = invoice_currency(invoice)

    if currency == BASE_CURRENCY or has_department_split:
        if has_department_split and currency != BASE_CURRENCY:
            logger.info(f"[CURRENCY] Department split payment on {currency} invoice, amounts taken as {BASE_CURRENCY}")
        return NormalizedAmounts(
            amount_received=round_financial(amount_received),
            bank_charges=round_financial(bank_charges),
            amount_withheld=round_financial(amount_withheld),
            currency=currency,
            conversion_factor=Decimal("1"),
            converted=False,
        )

    factor = conversion_factor(invoice)
    normalized = NormalizedAmounts(
        amount_received=round_financial(to_decimal(amount_received) * factor),
        bank_charges=round_financial(to_decimal(bank_charges) * factor),
        amount_withheld=round_financial(to_decimal(amount_withheld) * factor),
        currency=currency,
        conversion_factor=factor,
        converted=True,
    )
    logger.info(
        f"[CURRENCY] Payment conversion: {amount_received} {currency} -> "
        f"{normalized.amount_received} {BASE_CURRENCY} (factor {factor})"
    )
    return normalized
