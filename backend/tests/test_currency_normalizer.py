"""
Currency normalization tests: invoice-currency amounts to base currency
"""
import pytest
from decimal import Decimal

from reconciliation.currency_normalizer import (
    conversion_factor, normalize_payment_amounts, receivable_in_base, total_in_base
)
from reconciliation.errors import CurrencyConversionError


class TestConversionFactor:
    """Factor resolution order"""

    def test_base_currency_is_identity(self):
        assert conversion_factor({"currency": "INR", "receivable_amount": 500}) == Decimal("1")

    def test_missing_currency_defaults_to_base(self):
        assert conversion_factor({"grand_total": 500}) == Decimal("1")

    def test_inr_equivalent_wins_over_rate(self):
        invoice = {"currency": "USD", "receivable_amount": 100, "inr_equivalent": 8500, "exchange_rate": 90}
        assert conversion_factor(invoice) == Decimal("85")

    def test_explicit_rate_used_without_equivalent(self):
        invoice = {"currency": "USD", "receivable_amount": 100, "exchange_rate": 90}
        assert conversion_factor(invoice) == Decimal("90")

    def test_rate_of_one_falls_back_to_default_table(self):
        invoice = {"currency": "USD", "receivable_amount": 100, "exchange_rate": 1}
        assert conversion_factor(invoice) == Decimal("90.13")

    def test_default_table_for_cad_and_aud(self):
        assert conversion_factor({"currency": "CAD", "receivable_amount": 10}) == Decimal("67")
        assert conversion_factor({"currency": "AUD", "receivable_amount": 10}) == Decimal("60")

    def test_unknown_currency_without_rate_is_rejected(self):
        with pytest.raises(CurrencyConversionError) as exc_info:
            conversion_factor({"currency": "XYZ", "receivable_amount": 10})
        assert exc_info.value.details["currency"] == "XYZ"


class TestNormalizePaymentAmounts:
    """Payment money fields in base currency"""

    def test_usd_payment_converted_with_invoice_rate(self):
        """USD invoice at 90, receivable 100: paying 50 stores 4500.00"""
        invoice = {"currency": "USD", "receivable_amount": 100, "exchange_rate": 90}
        result = normalize_payment_amounts(invoice, 50)
        assert result.amount_received == Decimal("4500.00")
        assert result.converted is True
        assert result.currency == "USD"

    def test_all_fields_share_one_factor(self):
        invoice = {"currency": "USD", "receivable_amount": 100, "exchange_rate": 90}
        result = normalize_payment_amounts(invoice, 50, bank_charges=1.5, amount_withheld=2)
        assert result.bank_charges == Decimal("135.00")
        assert result.amount_withheld == Decimal("180.00")

    def test_base_currency_passes_through_rounded(self):
        result = normalize_payment_amounts({"currency": "INR", "receivable_amount": 1000}, "400.005")
        assert result.amount_received == Decimal("400.01")
        assert result.conversion_factor == Decimal("1")
        assert result.converted is False

    def test_department_split_payment_is_not_converted(self):
        invoice = {"currency": "USD", "receivable_amount": 100, "exchange_rate": 90}
        result = normalize_payment_amounts(invoice, 4500, has_department_split=True)
        assert result.amount_received == Decimal("4500.00")
        assert result.converted is False


class TestReceivableInBase:

    def test_prefers_inr_equivalent(self):
        invoice = {"currency": "USD", "receivable_amount": 100, "inr_equivalent": 9012.5}
        assert receivable_in_base(invoice) == Decimal("9012.50")

    def test_converts_receivable_with_rate(self):
        invoice = {"currency": "USD", "receivable_amount": 100, "exchange_rate": 90}
        assert receivable_in_base(invoice) == Decimal("9000.00")

    def test_falls_back_to_grand_total(self):
        assert receivable_in_base({"grand_total": 1180}) == Decimal("1180.00")

    def test_total_amount_preferred_for_due(self):
        invoice = {"receivable_amount": 1000, "total_amount": 1180}
        assert total_in_base(invoice) == Decimal("1180.00")
        assert total_in_base({"receivable_amount": 1000}) == Decimal("1000.00")
