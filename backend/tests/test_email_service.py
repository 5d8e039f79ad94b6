"""
Payment slip email tests (Brevo API stubbed with httpx.MockTransport)
"""
import base64
import json
import httpx
import pytest
from datetime import datetime

from conftest import no_sleep, payment_data
from email_service import BREVO_API_URL, PaymentNotifier, PaymentSlip, PaymentSlipMailer


def make_slip(**overrides):
    invoice = {
        "_id": "inv-1",
        "invoice_number": "INV-0001",
        "invoice_date": datetime(2026, 3, 1),
        "client_details": {"name": "Acme Corp"},
        "receivable_amount": 1000.0,
        "received_amount": 400.0,
    }
    slip = {
        "to": "accounts@acme.example",
        "payment_number": "PAY20260001",
        "customer_name": "Acme Corp",
        "invoice_number": "INV-0001",
        "amount_received": 400.0,
        "payment_mode": "UPI",
        "payment_date": datetime(2026, 3, 15),
        "invoice": invoice,
        "payments": [{"payment_number": "PAY20260001", "amount_received": 400.0, "payment_date": datetime(2026, 3, 15)}],
    }
    slip.update(overrides)
    return PaymentSlip(**slip)


def mailer_with(handler, **kwargs):
    return PaymentSlipMailer(
        api_key="test-key",
        sender_email="billing@example.com",
        sender_name="Billing",
        http_client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        sleep=no_sleep,
        **kwargs
    )


class TestPaymentSlipMailer:

    @pytest.mark.asyncio
    async def test_sends_receipt_with_pdf_attachment(self):
        captured = {}

        def handler(request: httpx.Request):
            captured["url"] = str(request.url)
            captured["api_key"] = request.headers["api-key"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(201, json={"messageId": "<msg-1@brevo>"})

        result = await mailer_with(handler).send_payment_slip_email(make_slip())

        assert result.success is True
        assert result.message_id == "<msg-1@brevo>"
        assert captured["url"] == BREVO_API_URL
        assert captured["api_key"] == "test-key"
        body = captured["body"]
        assert body["subject"] == "Payment Receipt - PAY20260001"
        assert body["to"] == [{"email": "accounts@acme.example", "name": "Acme Corp"}]
        attachment = body["attachment"][0]
        assert attachment["name"] == "Payment-History-INV-0001.pdf"
        assert base64.b64decode(attachment["content"]).startswith(b"%PDF")

    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff(self):
        calls = []
        delays = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(201, json={"messageId": "m-3"})

        async def record_sleep(seconds):
            delays.append(seconds)

        mailer = mailer_with(handler)
        mailer.sleep = record_sleep
        result = await mailer.send_payment_slip_email(make_slip())

        assert result.success is True
        assert len(calls) == 3
        assert delays == [2, 4]

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts_without_raising(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused")

        result = await mailer_with(handler).send_payment_slip_email(make_slip())

        assert result.success is False
        assert "ConnectError" in result.error
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_blank_recipient_not_sent(self):
        def handler(request):
            raise AssertionError("no request expected")

        result = await mailer_with(handler).send_payment_slip_email(make_slip(to="  "))
        assert result.success is False
        assert "Recipient" in result.error

    @pytest.mark.asyncio
    async def test_missing_api_key_not_sent(self):
        mailer = PaymentSlipMailer(api_key="", sleep=no_sleep)
        result = await mailer.send_payment_slip_email(make_slip())
        assert result.success is False
        assert "BREVO_API_KEY" in result.error


class TestPaymentNotifier:

    @pytest.mark.asyncio
    async def test_dispatches_one_email_per_recipient(self, db, service, make_invoice, user_id):
        sent_to = []

        def handler(request):
            sent_to.append(json.loads(request.content)["to"][0]["email"])
            return httpx.Response(201, json={"messageId": f"m-{len(sent_to)}"})

        notifier = PaymentNotifier(db, mailer_with(handler))
        invoice = await make_invoice()
        result = await service.create_payment(user_id, payment_data(
            invoice, 400,
            send_thank_you_note=True,
            email_recipients=["a@acme.example", "", "b@acme.example"],
        ))

        task = notifier.dispatch_payment_slips(result.payment, user_id)
        await notifier.drain()

        assert task is not None
        assert sent_to == ["a@acme.example", "b@acme.example"]
        results = task.result()
        assert all(r.success for r in results)

    @pytest.mark.asyncio
    async def test_nothing_scheduled_without_thank_you_note(self, db, service, make_invoice, user_id):
        def handler(request):
            raise AssertionError("no request expected")

        notifier = PaymentNotifier(db, mailer_with(handler))
        invoice = await make_invoice()
        result = await service.create_payment(user_id, payment_data(
            invoice, 400, email_recipients=["a@acme.example"],
        ))

        assert notifier.dispatch_payment_slips(result.payment, user_id) is None
        await notifier.drain()
