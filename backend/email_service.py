"""
PAYMENT SLIP EMAIL SERVICE

Sends the payment receipt email (payment history PDF attached) through the
Brevo transactional email REST API.

RULES:
- Sending must NOT block the API response (fire-and-forget tasks)
- The mailer never raises; every outcome is an EmailResult
- Up to 3 attempts with exponential backoff (2s, 4s)
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from pymongo.errors import PyMongoError
import asyncio
import base64
import html
import httpx
import logging
import os

from reconciliation.financial_precision import format_money
from reconciliation.payment_service import to_object_id
from reconciliation.pdf_service import PaymentHistoryPDFGenerator

logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"

BREVO_API_KEY = os.environ.get("BREVO_API_KEY", "")
EMAIL_SENDER_ADDRESS = os.environ.get("EMAIL_SENDER_ADDRESS", "")
EMAIL_SENDER_NAME = os.environ.get("EMAIL_SENDER_NAME", "Accounts")

MAX_ATTEMPTS = 3
BASE_RETRY_DELAY = 2  # seconds


@dataclass
class EmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PaymentSlip:
    """Everything needed to render and send one payment receipt"""
    to: str
    payment_number: str
    customer_name: str
    invoice_number: str
    amount_received: float
    payment_mode: str
    payment_date: Any
    invoice: Dict[str, Any]
    payments: List[Dict[str, Any]]
    reference_number: str = ""
    has_department_split: bool = False
    department_splits: List[Dict[str, Any]] = field(default_factory=list)


def _default_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=30.0)


def render_payment_slip_html(slip: PaymentSlip) -> str:
    payment_date = slip.payment_date.strftime("%d/%m/%Y") if isinstance(slip.payment_date, datetime) else str(slip.payment_date)
    rows = [
        ("Payment Number", slip.payment_number),
        ("Invoice Number", slip.invoice_number),
        ("Payment Date", payment_date),
        ("Payment Mode", slip.payment_mode),
    ]
    if slip.reference_number:
        rows.append(("Reference Number", slip.reference_number))

    detail_rows = "".join(
        f"<tr><td><b>{html.escape(label)}:</b></td><td>{html.escape(str(value))}</td></tr>"
        for label, value in rows
    )

    split_block = ""
    if slip.has_department_split and slip.department_splits:
        split_rows = "".join(
            f"<tr><td>{html.escape(s.get('department_name', ''))}</td><td>{format_money(s.get('amount') or 0)}</td></tr>"
            for s in slip.department_splits
        )
        split_block = f"<h4>Department Allocation</h4><table>{split_rows}</table>"

    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\"></head><body>"
        f"<p>Hello {html.escape(slip.customer_name)},</p>"
        "<p>Thank you for your payment! Please find below the payment receipt details.</p>"
        f"<h3>Payment Receipt</h3><p><b>{format_money(slip.amount_received)}</b></p>"
        f"<table>{detail_rows}</table>{split_block}"
        "<p>The complete payment history for this invoice is attached.</p>"
        "</body></html>"
    )


class PaymentSlipMailer:
    """Brevo REST API client for payment receipts"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        sender_email: Optional[str] = None,
        sender_name: Optional[str] = None,
        http_client_factory: Callable[[], httpx.AsyncClient] = _default_client,
        pdf_generator: Optional[PaymentHistoryPDFGenerator] = None,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay: float = BASE_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = BREVO_API_KEY if api_key is None else api_key
        self.sender_email = sender_email or EMAIL_SENDER_ADDRESS
        self.sender_name = sender_name or EMAIL_SENDER_NAME
        self.http_client_factory = http_client_factory
        self.pdf_generator = pdf_generator or PaymentHistoryPDFGenerator()
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep

    def _build_request(self, slip: PaymentSlip, pdf_bytes: bytes) -> Dict[str, Any]:
        return {
            "sender": {"name": self.sender_name, "email": self.sender_email},
            "to": [{"email": slip.to.strip(), "name": slip.customer_name}],
            "subject": f"Payment Receipt - {slip.payment_number}",
            "htmlContent": render_payment_slip_html(slip),
            "attachment": [{
                "content": base64.b64encode(pdf_bytes).decode("utf-8"),
                "name": self.pdf_generator.get_filename(slip.invoice_number),
            }],
        }

    async def _post(self, body: Dict[str, Any]) -> EmailResult:
        async with self.http_client_factory() as client:
            response = await client.post(
                BREVO_API_URL,
                headers={"api-key": self.api_key, "accept": "application/json"},
                json=body,
            )
        if response.status_code in (200, 201, 202):
            message_id = response.json().get("messageId") if response.content else None
            return EmailResult(success=True, message_id=message_id)
        return EmailResult(success=False, error=f"Brevo API error {response.status_code}: {response.text}")

    async def send_payment_slip_email(self, slip: PaymentSlip) -> EmailResult:
        if not slip.to or not slip.to.strip():
            return EmailResult(success=False, error="Recipient email is required")
        if not self.api_key:
            return EmailResult(success=False, error="BREVO_API_KEY is not set")

        try:
            pdf_bytes = self.pdf_generator.generate_pdf(slip.invoice, slip.payments)
        except Exception as e:
            logger.error(f"[EMAIL] Payment history PDF failed for {slip.invoice_number}: {e}")
            return EmailResult(success=False, error=f"PDF generation failed: {e}")

        body = self._build_request(slip, pdf_bytes)
        result = EmailResult(success=False, error="No attempt made")

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await self._post(body)
            except httpx.HTTPError as e:
                result = EmailResult(success=False, error=f"{type(e).__name__}: {e}")

            if result.success:
                logger.info(f"[EMAIL] Payment slip {slip.payment_number} sent to {slip.to} (id={result.message_id})")
                return result

            if attempt < self.max_attempts:
                delay = self.base_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"[EMAIL] Attempt {attempt}/{self.max_attempts} failed for {slip.to}: {result.error}. "
                    f"Retrying in {delay}s"
                )
                await self.sleep(delay)

        logger.error(f"[EMAIL] Payment slip {slip.payment_number} not sent to {slip.to}: {result.error}")
        return result


class PaymentNotifier:
    """
    Schedules payment slip emails after a payment is recorded.

    Tasks are kept until finished so they are not garbage collected and so
    shutdown (and tests) can wait for them with drain().
    """

    def __init__(self, db: AsyncIOMotorDatabase, mailer: PaymentSlipMailer):
        self.db = db
        self.mailer = mailer
        self._pending: Set[asyncio.Task] = set()

    def dispatch_payment_slips(self, payment: Dict[str, Any], user_id: str) -> Optional[asyncio.Task]:
        recipients = [r for r in payment.get("email_recipients") or [] if r and r.strip()]
        if not payment.get("send_thank_you_note") or not recipients:
            return None

        task = asyncio.create_task(self._send_all(payment, recipients, user_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        logger.info(f"[EMAIL] Queued payment slip {payment.get('payment_number')} for {len(recipients)} recipient(s)")
        return task

    async def _send_all(self, payment: Dict[str, Any], recipients: List[str], user_id: str) -> List[EmailResult]:
        try:
            customer_oid = to_object_id(payment.get("customer_id"))
            customer = await self.db.customers.find_one({"_id": customer_oid}) if customer_oid else None
            invoice = await self.db.invoices.find_one({"_id": to_object_id(payment["invoice_id"])})
            payments = await self.db.payments.find(
                {"invoice_id": payment["invoice_id"], "user_id": user_id}
            ).sort("payment_date", 1).to_list(length=None)
        except PyMongoError as e:
            logger.error(f"[EMAIL] Could not load payment history for {payment.get('payment_number')}: {str(e)}")
            return []

        if not invoice:
            logger.error(f"[EMAIL] Invoice {payment.get('invoice_id')} missing; payment slip not sent")
            return []

        customer = customer or {}
        customer_name = (
            customer.get("display_name") or customer.get("company_name")
            or customer.get("client_name") or "Customer"
        )

        results = []
        for recipient in recipients:
            slip = PaymentSlip(
                to=recipient,
                payment_number=payment["payment_number"],
                customer_name=customer_name,
                invoice_number=invoice.get("invoice_number", ""),
                amount_received=payment["amount_received"],
                payment_mode=payment.get("payment_mode", ""),
                payment_date=payment.get("payment_date"),
                reference_number=payment.get("reference_number") or "",
                invoice=invoice,
                payments=payments,
                has_department_split=payment.get("has_department_split", False),
                department_splits=payment.get("department_splits") or [],
            )
            results.append(await self.mailer.send_payment_slip_email(slip))
        return results

    async def drain(self):
        """Wait for every scheduled send to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
