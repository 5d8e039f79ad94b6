"""
REVENUE SYNCHRONIZER

Keeps the derived `revenues` rows in step with an invoice's collections.

- One invoice-level row per (invoice, user), refreshed on every call.
- One row per department when a payment carries department splits, with
  amounts scaled by the department's share of the collected total.

Both operations are idempotent upserts. Callers treat them as best-effort.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional
import logging

from reconciliation.currency_normalizer import conversion_factor, total_in_base
from reconciliation.errors import CurrencyConversionError
from reconciliation.financial_precision import FinancialPrecisionError, round_financial, to_decimal, to_float
from reconciliation.invoice_balance import InvoiceStatus, current_received

logger = logging.getLogger(__name__)

MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


class RevenueSyncError(Exception):
    """Raised when a revenue row cannot be built from an invoice"""
    pass


def _invoice_date(invoice: Mapping[str, Any]) -> datetime:
    value = invoice.get("invoice_date")
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.utcnow()


def build_revenue_data(invoice: Mapping[str, Any], user_id: str) -> Dict[str, Any]:
    """Invoice-level revenue figures, all in base currency."""
    client_name = ((invoice.get("client_details") or {}).get("name") or "").strip()
    if not client_name:
        raise RevenueSyncError("Cannot sync revenue: invoice client name is missing")

    invoice_date = _invoice_date(invoice)
    try:
        factor = conversion_factor(invoice)
        base_amount = to_decimal(invoice.get("sub_total") or invoice.get("receivable_amount") or invoice.get("grand_total") or 0)
        gst_amount = sum(
            (to_decimal(invoice.get(key) or 0) for key in ("cgst", "sgst", "igst")),
            Decimal("0"),
        )
        tds_amount = to_decimal(invoice.get("tds_amount") or 0)
        receivable = round_financial(total_in_base(invoice))
    except (FinancialPrecisionError, CurrencyConversionError) as e:
        raise RevenueSyncError(f"Cannot sync revenue for invoice {invoice.get('invoice_number')}: {e}") from e

    received = current_received(invoice)
    due = max(Decimal("0"), receivable - received)

    return {
        "client_name": client_name,
        "invoice_id": str(invoice["_id"]),
        "invoice_number": invoice.get("invoice_number", ""),
        "invoice_date": invoice_date,
        "month": MONTH_NAMES[invoice_date.month - 1],
        "year": invoice_date.year,
        "invoice_amount": to_float(base_amount * factor),
        "gst_amount": to_float(gst_amount * factor),
        "tds_amount": to_float(tds_amount * factor),
        "receivable_amount": to_float(receivable),
        "received_amount": to_float(received),
        "due_amount": to_float(due),
        "invoice_status": invoice.get("status", InvoiceStatus.UNPAID.value),
        "invoice_generated": True,
        "user_id": user_id,
    }


class RevenueSynchronizer:
    """Derived revenue bookkeeping keyed off invoice collection state"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def ensure_revenue_for_invoice(self, invoice: Mapping[str, Any], user_id: str) -> Optional[Dict[str, Any]]:
        """
        Upsert the invoice-level revenue row.

        A row is created only once something has been collected; an existing
        row is always refreshed so reversals (payment deletes) are reflected.
        """
        if not invoice or not invoice.get("_id"):
            return None

        query = {"invoice_id": str(invoice["_id"]), "user_id": user_id, "is_department_split": False}
        existing = await self.db.revenues.find_one(query)

        received = current_received(invoice)
        should_create = received > 0 or invoice.get("status") in (InvoiceStatus.PAID.value, InvoiceStatus.PARTIAL.value)
        if not existing and not should_create:
            return None

        revenue_data = build_revenue_data(invoice, user_id)
        revenue_data["is_department_split"] = False
        revenue_data["updated_at"] = datetime.utcnow()

        await self.db.revenues.update_one(
            query,
            {"$set": revenue_data, "$setOnInsert": {"created_at": datetime.utcnow()}},
            upsert=True
        )
        revenue = await self.db.revenues.find_one(query)

        if revenue and invoice.get("revenue_id") != str(revenue["_id"]):
            await self.db.invoices.update_one(
                {"_id": invoice["_id"], "user_id": user_id},
                {"$set": {"revenue_id": str(revenue["_id"])}}
            )

        logger.info(f"[REVENUE] Synced revenue for invoice:{invoice['_id']} received={revenue_data['received_amount']}")
        return revenue

    async def sync_department_wise_revenue(
        self,
        invoice: Mapping[str, Any],
        splits: List[Mapping[str, Any]],
        user_id: str
    ) -> List[Dict[str, Any]]:
        """Upsert one revenue row per department split."""
        if not invoice or not splits:
            return []

        base = build_revenue_data(invoice, user_id)
        received = current_received(invoice)
        results = []

        for split in splits:
            department_name = (split.get("department_name") or "").strip()
            if not department_name:
                logger.warning(f"[REVENUE] Skipping split without department name: {split}")
                continue

            split_amount = to_decimal(split.get("amount") or 0)
            split_ratio = split_amount / received if received > 0 else Decimal("0")

            department_data = {
                **base,
                "department_name": department_name,
                "invoice_amount": to_float(to_decimal(base["invoice_amount"]) * split_ratio),
                "gst_amount": to_float(to_decimal(base["gst_amount"]) * split_ratio),
                "tds_amount": to_float(to_decimal(base["tds_amount"]) * split_ratio),
                "received_amount": to_float(split_amount),
                "is_department_split": True,
                "split_ratio": float(split_ratio.quantize(Decimal("0.0001"))),
                "updated_at": datetime.utcnow(),
            }

            query = {
                "invoice_id": base["invoice_id"],
                "user_id": user_id,
                "department_name": department_name,
                "is_department_split": True,
            }
            await self.db.revenues.update_one(
                query,
                {"$set": department_data, "$setOnInsert": {"created_at": datetime.utcnow()}},
                upsert=True
            )
            results.append(department_data)

        logger.info(f"[REVENUE] Synced {len(results)} department revenue rows for invoice:{invoice['_id']}")
        return results
