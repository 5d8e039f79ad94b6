"""
PAYMENT RECONCILIATION SERVICE

Creates, updates and deletes payments and keeps the owning invoice's
collected/due figures and status consistent with them.

CREATE:
1. Load invoice (owned, not Void)
2. Normalize currency to base
3. Validate remaining balance and department splits
4. Insert with a unique payment number (allocator strategy chain)
5. Insert PaymentSplit rows                 (best-effort)
6. Apply +amount to the invoice
7. Revenue sync + audit                     (best-effort)

Best-effort effects never fail the payment; they are reported as
soft failures on the returned PaymentOperationResult.

NOTE: the invoice read-modify-write is not guarded by a transaction or a
version token. Concurrent payments against one invoice can lose an update.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from bson import ObjectId
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from pymongo.errors import PyMongoError
import logging

from audit_service import AuditService
from revenue_sync import RevenueSynchronizer, RevenueSyncError
from reconciliation.currency_normalizer import BASE_CURRENCY, normalize_payment_amounts
from reconciliation.department_splits import normalize_splits, validate_department_splits
from reconciliation.errors import (
    BalanceExceededError, InvoiceNotFoundError, PaymentNotFoundError,
    PaymentValidationError, VoidInvoiceError
)
from reconciliation.financial_precision import (
    FinancialPrecisionError, format_money, round_financial, to_decimal, to_float, validate_positive
)
from reconciliation.invoice_balance import apply_payment_delta, current_received, is_void, remaining_balance
from reconciliation.payment_numbering import PaymentNumberAllocator

logger = logging.getLogger(__name__)

INVOICE_JOIN_FIELDS = ("invoice_number", "invoice_date", "grand_total", "receivable_amount", "currency")
CUSTOMER_JOIN_FIELDS = ("display_name", "company_name", "client_name", "email", "pan")

# Fields a payment update may change directly
UPDATABLE_FIELDS = (
    "user_email", "payment_date", "payment_received_on", "payment_mode", "deposit_to",
    "reference_number", "tax_deducted", "tds_type", "tds_tax_account", "notes", "status",
    "send_thank_you_note", "email_recipients",
)


@dataclass
class SoftFailure:
    """A satellite effect that failed while the primary operation committed"""
    effect: str
    error: str


@dataclass
class PaymentOperationResult:
    payment: Optional[Dict[str, Any]]
    invoice: Optional[Dict[str, Any]]
    soft_failures: List[SoftFailure] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.soft_failures)


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if value and ObjectId.is_valid(str(value)):
        return ObjectId(str(value))
    return None


class PaymentReconciliationService:
    """Payment writer + invoice balance updater"""

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        revenue_sync: Optional[RevenueSynchronizer] = None,
        allocator: Optional[PaymentNumberAllocator] = None,
        audit_service: Optional[AuditService] = None,
    ):
        self.db = db
        self.revenue_sync = revenue_sync or RevenueSynchronizer(db)
        self.allocator = allocator or PaymentNumberAllocator.default(db)
        self.audit_service = audit_service or AuditService(db)

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def _get_owned_invoice(self, invoice_id, user_id: str) -> Dict[str, Any]:
        oid = to_object_id(invoice_id)
        invoice = await self.db.invoices.find_one({"_id": oid, "user_id": user_id}) if oid else None
        if not invoice:
            raise InvoiceNotFoundError("Invoice not found", details={"invoice_id": str(invoice_id)})
        return invoice

    async def _get_owned_payment(self, payment_id, user_id: str) -> Dict[str, Any]:
        oid = to_object_id(payment_id)
        payment = await self.db.payments.find_one({"_id": oid, "user_id": user_id}) if oid else None
        if not payment:
            raise PaymentNotFoundError("Payment not found", details={"payment_id": str(payment_id)})
        return payment

    async def _join(self, payment: Dict[str, Any]) -> Dict[str, Any]:
        """Attach invoice and customer summaries to a payment document."""
        joined = dict(payment)

        invoice_oid = to_object_id(payment.get("invoice_id"))
        invoice = await self.db.invoices.find_one({"_id": invoice_oid}) if invoice_oid else None
        joined["invoice"] = (
            {"_id": invoice["_id"], **{k: invoice.get(k) for k in INVOICE_JOIN_FIELDS}} if invoice else None
        )

        customer_oid = to_object_id(payment.get("customer_id"))
        customer = await self.db.customers.find_one({"_id": customer_oid}) if customer_oid else None
        joined["customer"] = (
            {"_id": customer["_id"], **{k: customer.get(k) for k in CUSTOMER_JOIN_FIELDS}} if customer else None
        )
        return joined

    async def get_payment(self, user_id: str, payment_id) -> Dict[str, Any]:
        payment = await self._get_owned_payment(payment_id, user_id)
        return await self._join(payment)

    async def list_payments(
        self,
        user_id: str,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        invoice_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"user_id": user_id}
        if status:
            query["status"] = status
        if start_date or end_date:
            query["payment_date"] = {}
            if start_date:
                query["payment_date"]["$gte"] = start_date
            if end_date:
                query["payment_date"]["$lte"] = end_date
        if invoice_id:
            query["invoice_id"] = invoice_id
        if customer_id:
            query["customer_id"] = customer_id

        cursor = self.db.payments.find(query).sort("payment_date", -1).skip(skip).limit(limit)
        payments = await cursor.to_list(length=limit)
        return [await self._join(p) for p in payments]

    async def get_payment_history(self, user_id: str, invoice_id) -> tuple:
        """Invoice plus its payments in payment-date order."""
        invoice = await self._get_owned_invoice(invoice_id, user_id)
        payments = await self.db.payments.find(
            {"invoice_id": str(invoice["_id"]), "user_id": user_id}
        ).sort("payment_date", 1).to_list(length=None)
        return invoice, payments

    # =========================================================================
    # BEST-EFFORT SATELLITE EFFECTS
    # =========================================================================

    async def _replace_split_rows(
        self,
        payment: Dict[str, Any],
        user_id: str,
        soft_failures: List[SoftFailure],
        delete_existing: bool = True,
    ):
        try:
            if delete_existing:
                await self.db.payment_splits.delete_many({"payment_id": str(payment["_id"])})
            if payment.get("has_department_split") and payment.get("department_splits"):
                rows = [
                    {
                        "payment_id": str(payment["_id"]),
                        "invoice_id": payment["invoice_id"],
                        "department_name": split["department_name"],
                        "amount": split["amount"],
                        "payment_date": payment["payment_date"],
                        "user_id": user_id,
                        "created_at": datetime.utcnow(),
                    }
                    for split in payment["department_splits"]
                ]
                await self.db.payment_splits.insert_many(rows)
                logger.info(f"[PAYMENT] {len(rows)} split rows written for {payment['payment_number']}")
        except PyMongoError as e:
            logger.error(f"[PAYMENT] Split rows failed for {payment.get('payment_number')}: {str(e)}")
            soft_failures.append(SoftFailure("payment_splits", str(e)))

    async def _sync_revenue(
        self,
        invoice: Dict[str, Any],
        payment: Optional[Dict[str, Any]],
        user_id: str,
        soft_failures: List[SoftFailure],
    ):
        try:
            await self.revenue_sync.ensure_revenue_for_invoice(invoice, user_id)
            if payment and payment.get("has_department_split") and payment.get("department_splits"):
                await self.revenue_sync.sync_department_wise_revenue(invoice, payment["department_splits"], user_id)
        except (PyMongoError, RevenueSyncError) as e:
            logger.error(f"[PAYMENT] Revenue sync failed for invoice:{invoice.get('_id')}: {str(e)}")
            soft_failures.append(SoftFailure("revenue_sync", str(e)))

    async def _audit(self, soft_failures: List[SoftFailure], **kwargs):
        if not await self.audit_service.log_action(module_name="PAYMENTS", entity_type="PAYMENT", **kwargs):
            soft_failures.append(SoftFailure("audit_log", f"audit {kwargs.get('action_type')} not recorded"))

    async def _apply_invoice_delta(self, invoice: Dict[str, Any], delta) -> Dict[str, Any]:
        invoice_update = apply_payment_delta(invoice, delta)
        await self.db.invoices.update_one({"_id": invoice["_id"]}, {"$set": invoice_update})
        logger.info(
            f"[PAYMENT] Invoice {invoice.get('invoice_number')} delta={to_float(delta)} "
            f"received={invoice_update['received_amount']} due={invoice_update['due_amount']} "
            f"status={invoice_update['status']}"
        )
        return {**invoice, **invoice_update}

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_payment(self, user_id: str, data: Dict[str, Any]) -> PaymentOperationResult:
        invoice = await self._get_owned_invoice(data.get("invoice_id"), user_id)

        if is_void(invoice):
            logger.error(f"[PAYMENT] Rejected: invoice {invoice.get('invoice_number')} is void")
            raise VoidInvoiceError(
                "Cannot record payment for a voided invoice",
                details={"invoice_id": str(invoice["_id"])},
            )

        has_split = bool(data.get("has_department_split"))
        try:
            validate_positive(data.get("amount_received"), "amount_received")
            amounts = normalize_payment_amounts(
                invoice,
                data.get("amount_received"),
                data.get("bank_charges") or 0,
                data.get("amount_withheld") or 0,
                has_department_split=has_split,
            )
        except FinancialPrecisionError as e:
            raise PaymentValidationError(str(e))

        remaining = remaining_balance(invoice)
        if amounts.amount_received > remaining:
            raise BalanceExceededError(
                f"Payment amount ({format_money(amounts.amount_received, BASE_CURRENCY)}) exceeds remaining "
                f"invoice balance ({format_money(remaining, BASE_CURRENCY)}).",
                details={
                    "amount_received": to_float(amounts.amount_received),
                    "remaining_balance": to_float(remaining),
                },
            )

        splits = data.get("department_splits") or []
        if has_split:
            validate_department_splits(splits, amounts.amount_received)

        now = datetime.utcnow()
        payment_date = data.get("payment_date") or now
        document = {
            "invoice_id": str(invoice["_id"]),
            "customer_id": data.get("customer_id") or invoice.get("customer_id"),
            "user_email": data.get("user_email"),
            "payment_date": payment_date,
            "payment_received_on": data.get("payment_received_on") or payment_date,
            "payment_mode": data.get("payment_mode") or "Cash",
            "deposit_to": data.get("deposit_to") or "Petty Cash",
            "reference_number": data.get("reference_number") or "",
            "amount_received": to_float(amounts.amount_received),
            "bank_charges": to_float(amounts.bank_charges),
            "amount_withheld": to_float(amounts.amount_withheld),
            "original_currency": amounts.currency,
            "conversion_factor": float(amounts.conversion_factor),
            "tax_deducted": bool(data.get("tax_deducted")),
            "tds_type": (data.get("tds_type") or "TDS (Income Tax)") if data.get("tax_deducted") else "",
            "tds_tax_account": data.get("tds_tax_account") or "Advance Tax",
            "notes": data.get("notes") or "",
            "status": data.get("status") or "Paid",
            "send_thank_you_note": bool(data.get("send_thank_you_note")),
            "email_recipients": data.get("email_recipients") or [],
            "has_department_split": has_split,
            "department_splits": normalize_splits(splits) if has_split else [],
            "user_id": user_id,
            "created_at": now,
            "updated_at": now,
        }

        async def insert(payment_number: str) -> Dict[str, Any]:
            candidate = {**document, "payment_number": payment_number}
            result = await self.db.payments.insert_one(candidate)
            candidate["_id"] = result.inserted_id
            return candidate

        payment = await self.allocator.insert_with_unique_number(user_id, insert)
        logger.info(
            f"[PAYMENT] Created {payment['payment_number']} on invoice {invoice.get('invoice_number')} "
            f"amount={payment['amount_received']} {BASE_CURRENCY}"
        )

        soft_failures: List[SoftFailure] = []
        await self._replace_split_rows(payment, user_id, soft_failures, delete_existing=False)
        invoice = await self._apply_invoice_delta(invoice, amounts.amount_received)
        await self._sync_revenue(invoice, payment, user_id, soft_failures)
        await self._audit(
            soft_failures,
            user_id=user_id,
            entity_id=str(payment["_id"]),
            action_type="CREATE",
            new_value={"payment_number": payment["payment_number"], "amount_received": payment["amount_received"]},
        )

        return PaymentOperationResult(await self._join(payment), invoice, soft_failures)

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update_payment(self, user_id: str, payment_id, changes: Dict[str, Any]) -> PaymentOperationResult:
        """
        Apply a partial update. Amounts on update are base currency, as stored.

        The new amount is checked against the invoice balance with the old
        amount excluded, and split totals are checked against the new amount,
        before anything is written.
        """
        payment = await self._get_owned_payment(payment_id, user_id)
        invoice_oid = to_object_id(payment["invoice_id"])
        invoice = await self.db.invoices.find_one({"_id": invoice_oid}) if invoice_oid else None

        old_amount = round_financial(payment.get("amount_received") or 0)
        new_amount = old_amount
        update: Dict[str, Any] = {k: changes[k] for k in UPDATABLE_FIELDS if changes.get(k) is not None}

        try:
            if changes.get("amount_received") is not None:
                validate_positive(changes["amount_received"], "amount_received")
                new_amount = round_financial(changes["amount_received"])
                update["amount_received"] = to_float(new_amount)
            for key in ("bank_charges", "amount_withheld"):
                if changes.get(key) is not None:
                    update[key] = to_float(changes[key])
        except FinancialPrecisionError as e:
            raise PaymentValidationError(str(e))

        if "tax_deducted" in update and not update["tax_deducted"]:
            update["tds_type"] = ""

        amount_changed = new_amount != old_amount
        if amount_changed and invoice:
            remaining = remaining_balance(invoice, excluding=old_amount)
            if new_amount > remaining:
                raise BalanceExceededError(
                    f"Payment amount ({format_money(new_amount, BASE_CURRENCY)}) exceeds remaining "
                    f"balance ({format_money(remaining, BASE_CURRENCY)}).",
                    details={
                        "amount_received": to_float(new_amount),
                        "remaining_balance": to_float(remaining),
                        "already_received": to_float(current_received(invoice) - old_amount),
                    },
                )

        splits_touched = changes.get("has_department_split") is not None or changes.get("department_splits") is not None
        has_split = payment.get("has_department_split", False)
        if changes.get("has_department_split") is not None:
            has_split = bool(changes["has_department_split"])
        splits = payment.get("department_splits") or []
        if changes.get("department_splits") is not None:
            splits = changes["department_splits"]

        if has_split and (splits_touched or amount_changed):
            validate_department_splits(splits, new_amount)
        if splits_touched:
            update["has_department_split"] = has_split
            update["department_splits"] = normalize_splits(splits) if has_split else []

        old_snapshot = {k: payment.get(k) for k in update}
        update["updated_at"] = datetime.utcnow()
        await self.db.payments.update_one({"_id": payment["_id"]}, {"$set": update})
        payment = {**payment, **update}
        logger.info(f"[PAYMENT] Updated {payment['payment_number']} fields={sorted(update)}")

        soft_failures: List[SoftFailure] = []
        if splits_touched:
            await self._replace_split_rows(payment, user_id, soft_failures)

        if amount_changed and invoice:
            invoice = await self._apply_invoice_delta(invoice, new_amount - old_amount)
            await self._sync_revenue(invoice, payment, user_id, soft_failures)

        await self._audit(
            soft_failures,
            user_id=user_id,
            entity_id=str(payment["_id"]),
            action_type="UPDATE",
            old_value=old_snapshot,
            new_value={k: v for k, v in update.items() if k != "updated_at"},
        )

        return PaymentOperationResult(await self._join(payment), invoice, soft_failures)

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_payment(self, user_id: str, payment_id) -> PaymentOperationResult:
        payment = await self._get_owned_payment(payment_id, user_id)
        amount = round_financial(payment.get("amount_received") or 0)
        soft_failures: List[SoftFailure] = []

        if payment.get("has_department_split"):
            try:
                await self.db.payment_splits.delete_many({"payment_id": str(payment["_id"])})
            except PyMongoError as e:
                logger.error(f"[PAYMENT] Split rows not deleted for {payment['payment_number']}: {str(e)}")
                soft_failures.append(SoftFailure("payment_splits", str(e)))

        await self.db.payments.delete_one({"_id": payment["_id"]})
        logger.info(f"[PAYMENT] Deleted {payment['payment_number']} amount={to_float(amount)}")

        invoice_oid = to_object_id(payment["invoice_id"])
        invoice = await self.db.invoices.find_one({"_id": invoice_oid}) if invoice_oid else None
        if invoice:
            invoice = await self._apply_invoice_delta(invoice, -amount)
            await self._sync_revenue(invoice, None, user_id, soft_failures)

        await self._audit(
            soft_failures,
            user_id=user_id,
            entity_id=str(payment["_id"]),
            action_type="DELETE",
            old_value={"payment_number": payment["payment_number"], "amount_received": to_float(amount)},
        )

        return PaymentOperationResult(None, invoice, soft_failures)
