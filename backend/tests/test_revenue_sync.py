"""
Revenue synchronization tests
"""
import pytest
from datetime import datetime

from revenue_sync import RevenueSyncError, RevenueSynchronizer, build_revenue_data


def invoice_doc(**overrides):
    invoice = {
        "_id": "inv-1",
        "invoice_number": "INV-0001",
        "invoice_date": datetime(2026, 3, 1),
        "client_details": {"name": "Acme Corp"},
        "sub_total": 1000.0,
        "cgst": 90.0,
        "sgst": 90.0,
        "receivable_amount": 1180.0,
        "received_amount": 0.0,
        "status": "Unpaid",
    }
    invoice.update(overrides)
    return invoice


class TestBuildRevenueData:

    def test_invoice_level_figures(self):
        data = build_revenue_data(invoice_doc(received_amount=500.0, status="Partial"), "u1")
        assert data["client_name"] == "Acme Corp"
        assert data["month"] == "Mar"
        assert data["year"] == 2026
        assert data["invoice_amount"] == 1000.0
        assert data["gst_amount"] == 180.0
        assert data["receivable_amount"] == 1180.0
        assert data["received_amount"] == 500.0
        assert data["due_amount"] == 680.0
        assert data["invoice_status"] == "Partial"

    def test_foreign_currency_figures_in_base(self):
        invoice = invoice_doc(currency="USD", exchange_rate=90, sub_total=100.0, cgst=0, sgst=0, receivable_amount=100.0)
        data = build_revenue_data(invoice, "u1")
        assert data["invoice_amount"] == 9000.0
        assert data["receivable_amount"] == 9000.0

    def test_missing_client_name_rejected(self):
        with pytest.raises(RevenueSyncError):
            build_revenue_data(invoice_doc(client_details={"name": "  "}), "u1")

    def test_malformed_tax_figure_rejected_as_sync_error(self):
        with pytest.raises(RevenueSyncError, match="INV-0001"):
            build_revenue_data(invoice_doc(cgst="n/a"), "u1")

    def test_unknown_currency_rejected_as_sync_error(self):
        with pytest.raises(RevenueSyncError):
            build_revenue_data(invoice_doc(currency="XYZ"), "u1")


class TestRevenueSynchronizer:

    @pytest.mark.asyncio
    async def test_nothing_created_before_collection(self, db, make_invoice, user_id):
        invoice = await make_invoice()
        assert await RevenueSynchronizer(db).ensure_revenue_for_invoice(invoice, user_id) is None
        assert await db.revenues.count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent_and_links_invoice(self, db, make_invoice, user_id):
        invoice = await make_invoice(received_amount=400.0, status="Partial")
        sync = RevenueSynchronizer(db)

        first = await sync.ensure_revenue_for_invoice(invoice, user_id)
        second = await sync.ensure_revenue_for_invoice(invoice, user_id)

        assert first["_id"] == second["_id"]
        assert await db.revenues.count_documents({}) == 1
        stored_invoice = await db.invoices.find_one({"_id": invoice["_id"]})
        assert stored_invoice["revenue_id"] == str(first["_id"])

    @pytest.mark.asyncio
    async def test_existing_row_refreshed_after_reversal(self, db, make_invoice, user_id):
        invoice = await make_invoice(received_amount=400.0, status="Partial")
        sync = RevenueSynchronizer(db)
        await sync.ensure_revenue_for_invoice(invoice, user_id)

        reversed_invoice = {**invoice, "received_amount": 0.0, "status": "Unpaid"}
        revenue = await sync.ensure_revenue_for_invoice(reversed_invoice, user_id)
        assert revenue["received_amount"] == 0.0
        assert revenue["due_amount"] == 1000.0

    @pytest.mark.asyncio
    async def test_department_rows_are_proportional(self, db, make_invoice, user_id):
        invoice = await make_invoice(received_amount=1000.0, status="Paid", sub_total=1000.0)
        rows = await RevenueSynchronizer(db).sync_department_wise_revenue(
            invoice,
            [{"department_name": "Design", "amount": 750.0}, {"department_name": "Ops", "amount": 250.0}],
            user_id,
        )

        by_name = {row["department_name"]: row for row in rows}
        assert by_name["Design"]["split_ratio"] == 0.75
        assert by_name["Design"]["invoice_amount"] == 750.0
        assert by_name["Ops"]["received_amount"] == 250.0
        assert await db.revenues.count_documents({"is_department_split": True}) == 2

    @pytest.mark.asyncio
    async def test_department_rows_upserted_per_department(self, db, make_invoice, user_id):
        invoice = await make_invoice(received_amount=500.0, status="Partial")
        sync = RevenueSynchronizer(db)
        splits = [{"department_name": "Design", "amount": 500.0}]
        await sync.sync_department_wise_revenue(invoice, splits, user_id)
        await sync.sync_department_wise_revenue(invoice, splits, user_id)
        assert await db.revenues.count_documents({"department_name": "Design"}) == 1
