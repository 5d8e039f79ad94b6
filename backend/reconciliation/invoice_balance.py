"""
INVOICE BALANCE UPDATER

Recomputes an invoice's collected/due figures and status after a payment
is created (+amount), updated (new - old) or deleted (-amount).

STATUS RULES (evaluated on the new received amount, previous status ignored):
- received >= receivable and receivable > 0 -> Paid
- received > 0                              -> Partial
- otherwise                                 -> Unpaid
Void is terminal and is never recomputed.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping

from reconciliation.currency_normalizer import receivable_in_base, total_in_base
from reconciliation.financial_precision import round_financial, to_decimal, to_float


class InvoiceStatus(str, Enum):
    UNPAID = "Unpaid"
    PARTIAL = "Partial"
    PAID = "Paid"
    VOID = "Void"


def derive_invoice_status(received, receivable) -> InvoiceStatus:
    received = to_decimal(received)
    receivable = to_decimal(receivable)
    if received >= receivable and receivable > 0:
        return InvoiceStatus.PAID
    if received > 0:
        return InvoiceStatus.PARTIAL
    return InvoiceStatus.UNPAID


def current_received(invoice: Mapping[str, Any]) -> Decimal:
    """Base-currency amount collected so far (paid_amount is the legacy mirror)."""
    received = invoice.get("received_amount")
    if received is None:
        received = invoice.get("paid_amount")
    return round_financial(received or 0)


def remaining_balance(invoice: Mapping[str, Any], excluding=0) -> Decimal:
    """
    Base-currency amount still collectable.

    `excluding` is a payment amount already counted in received_amount that
    is being replaced (payment update).
    """
    already_received = current_received(invoice) - to_decimal(excluding)
    return round_financial(receivable_in_base(invoice) - already_received)


def is_void(invoice: Mapping[str, Any]) -> bool:
    return invoice.get("status") == InvoiceStatus.VOID.value


def apply_payment_delta(invoice: Mapping[str, Any], delta) -> Dict[str, Any]:
    """
    Compute the invoice fields to $set after applying a base-currency delta.

    received_amount never drops below zero and due_amount never goes negative.
    """
    new_received = round_financial(current_received(invoice) + to_decimal(delta))
    if new_received < 0:
        new_received = Decimal("0.00")

    due = round_financial(total_in_base(invoice) - new_received)
    if due < 0:
        due = Decimal("0.00")

    if is_void(invoice):
        status = InvoiceStatus.VOID
    else:
        status = derive_invoice_status(new_received, receivable_in_base(invoice))

    return {
        "received_amount": to_float(new_received),
        "paid_amount": to_float(new_received),
        "due_amount": to_float(due),
        "status": status.value,
        "updated_at": datetime.utcnow(),
    }
