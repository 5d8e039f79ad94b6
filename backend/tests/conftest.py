"""
Shared fixtures: in-memory Motor database, seeded users/invoices, and
deterministic payment numbering.
"""
import pytest
from bson import ObjectId
from datetime import datetime, timezone
from mongomock_motor import AsyncMongoMockClient

from audit_service import AuditService
from revenue_sync import RevenueSynchronizer
from reconciliation.payment_numbering import PaymentNumberAllocator, ensure_payment_indexes
from reconciliation.payment_service import PaymentReconciliationService

FIXED_NOW = datetime(2026, 3, 15, 10, 30, tzinfo=timezone.utc)


def fixed_clock():
    return FIXED_NOW


async def no_sleep(seconds):
    return None


@pytest.fixture
async def db():
    database = AsyncMongoMockClient()["payment_reconciliation_test"]
    await ensure_payment_indexes(database)
    return database


@pytest.fixture
def user_id():
    return str(ObjectId())


@pytest.fixture
async def customer(db):
    doc = {
        "display_name": "Acme Corp",
        "company_name": "Acme Corporation Pvt Ltd",
        "client_name": "Acme",
        "email": "accounts@acme.example",
        "pan": "ABCDE1234F",
    }
    result = await db.customers.insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


@pytest.fixture
def make_invoice(db, user_id, customer):
    """Insert an invoice owned by user_id; keyword overrides win."""
    counter = {"n": 0}

    async def _make(**overrides):
        counter["n"] += 1
        invoice = {
            "user_id": user_id,
            "invoice_number": f"INV-{counter['n']:04d}",
            "invoice_date": datetime(2026, 3, 1),
            "customer_id": str(customer["_id"]),
            "client_details": {"name": "Acme Corp", "email": "accounts@acme.example", "country": "India"},
            "grand_total": 1000.0,
            "receivable_amount": 1000.0,
            "currency": "INR",
            "received_amount": 0.0,
            "paid_amount": 0.0,
            "due_amount": 1000.0,
            "status": "Unpaid",
        }
        invoice.update(overrides)
        result = await db.invoices.insert_one(invoice)
        invoice["_id"] = result.inserted_id
        return invoice

    return _make


@pytest.fixture
def allocator(db):
    return PaymentNumberAllocator.default(db, clock=fixed_clock, sleep=no_sleep)


@pytest.fixture
def service(db, allocator):
    return PaymentReconciliationService(
        db,
        revenue_sync=RevenueSynchronizer(db),
        allocator=allocator,
        audit_service=AuditService(db),
    )


def payment_data(invoice, amount, **overrides):
    data = {
        "invoice_id": str(invoice["_id"]),
        "amount_received": amount,
        "payment_mode": "Bank Transfer",
        "reference_number": "UTR-1",
    }
    data.update(overrides)
    return data
