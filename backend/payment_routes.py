# Payment API Endpoints
#
# To integrate: Add to main server.py with:
# from payment_routes import create_payment_routes, create_currency_routes
# app.include_router(create_payment_routes(permission_checker, service, notifier, pdf_generator))
# app.include_router(create_currency_routes(currency_service, permission_checker))

from fastapi import APIRouter, HTTPException, Query, status, Depends
from fastapi.responses import Response
from datetime import datetime
from typing import Optional
from urllib.parse import quote
import logging

from models import PaymentCreate, PaymentUpdate, CurrencyConvertRequest, serialize_doc
from auth import get_current_user
from permissions import PermissionChecker
from email_service import PaymentNotifier
from currency_service import CurrencyService
from reconciliation.errors import (
    PaymentError, NotFoundError, PaymentCreationFailedError, PaymentValidationError
)
from reconciliation.financial_precision import to_float
from reconciliation.payment_service import PaymentOperationResult, PaymentReconciliationService
from reconciliation.pdf_service import PaymentHistoryPDFGenerator

logger = logging.getLogger(__name__)

SALES_MODULE = "sales"


def to_http_exception(error: PaymentError) -> HTTPException:
    """Map a domain error onto its HTTP status with a structured detail."""
    if isinstance(error, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, PaymentCreationFailedError):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(error, PaymentValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=status_code, detail=error.to_detail())


def content_disposition(filename: str) -> str:
    """Attachment header that survives non-latin-1 filenames (RFC 6266)."""
    fallback = filename.encode("ascii", "ignore").decode("ascii").replace('"', "").replace("\\", "")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


def operation_response(result: PaymentOperationResult) -> dict:
    response = serialize_doc(result.payment) if result.payment else {}
    response["soft_failures"] = [
        {"effect": failure.effect, "error": failure.error} for failure in result.soft_failures
    ]
    if result.invoice:
        response["invoice_balance"] = {
            "invoice_id": str(result.invoice["_id"]),
            "received_amount": result.invoice.get("received_amount"),
            "due_amount": result.invoice.get("due_amount"),
            "status": result.invoice.get("status"),
        }
    return response


def create_payment_routes(
    permission_checker: PermissionChecker,
    service: PaymentReconciliationService,
    notifier: PaymentNotifier,
    pdf_generator: PaymentHistoryPDFGenerator
) -> APIRouter:
    """Create the payment API router"""

    router = APIRouter(prefix="/api/payments", tags=["Payments"])

    async def sales_user(current_user: dict = Depends(get_current_user)) -> dict:
        user = await permission_checker.get_authenticated_user(current_user)
        await permission_checker.check_module_access(user, SALES_MODULE)
        return user

    @router.get("")
    async def list_payments(
        status_filter: Optional[str] = Query(default=None, alias="status"),
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        invoice_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        skip: int = Query(default=0, ge=0),
        limit: int = Query(default=100, ge=1, le=500),
        user: dict = Depends(sales_user)
    ):
        """List payments, newest payment date first"""
        payments = await service.list_payments(
            user["user_id"],
            status=status_filter,
            start_date=start_date,
            end_date=end_date,
            invoice_id=invoice_id,
            customer_id=customer_id,
            skip=skip,
            limit=limit,
        )
        return [serialize_doc(p) for p in payments]

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_payment(payment_data: PaymentCreate, user: dict = Depends(sales_user)):
        """
        Record a payment against an invoice.

        The invoice balance is updated before responding. Payment slip emails
        are sent in the background after the response.
        """
        try:
            result = await service.create_payment(user["user_id"], payment_data.model_dump())
        except PaymentError as e:
            logger.error(f"[PAYMENT] Create failed ({e.code}): {e.message}")
            raise to_http_exception(e)

        notifier.dispatch_payment_slips(result.payment, user["user_id"])
        return operation_response(result)

    @router.get("/invoice/{invoice_id}/pdf")
    async def download_payment_history_pdf(invoice_id: str, user: dict = Depends(sales_user)):
        """Payment history PDF for one invoice"""
        try:
            invoice, payments = await service.get_payment_history(user["user_id"], invoice_id)
        except PaymentError as e:
            raise to_http_exception(e)

        pdf_bytes = pdf_generator.generate_pdf(invoice, payments)
        filename = pdf_generator.get_filename(invoice.get("invoice_number", invoice_id))
        return Response(
            content=pdf_bytes,
            media_type="application/pdf",
            headers={"Content-Disposition": content_disposition(filename)}
        )

    @router.get("/{payment_id}")
    async def get_payment(payment_id: str, user: dict = Depends(sales_user)):
        try:
            payment = await service.get_payment(user["user_id"], payment_id)
        except PaymentError as e:
            raise to_http_exception(e)
        return serialize_doc(payment)

    @router.put("/{payment_id}")
    async def update_payment(payment_id: str, payment_data: PaymentUpdate, user: dict = Depends(sales_user)):
        try:
            result = await service.update_payment(
                user["user_id"], payment_id, payment_data.model_dump(exclude_unset=True)
            )
        except PaymentError as e:
            logger.error(f"[PAYMENT] Update failed ({e.code}): {e.message}")
            raise to_http_exception(e)
        return operation_response(result)

    @router.delete("/{payment_id}")
    async def delete_payment(payment_id: str, user: dict = Depends(sales_user)):
        try:
            result = await service.delete_payment(user["user_id"], payment_id)
        except PaymentError as e:
            raise to_http_exception(e)

        response = operation_response(result)
        response["message"] = "Payment deleted successfully"
        return response

    return router


def create_currency_routes(currency_service: CurrencyService, permission_checker: PermissionChecker) -> APIRouter:
    """Create the exchange rate router"""

    router = APIRouter(prefix="/api/currency", tags=["Currency"])

    async def authenticated_user(current_user: dict = Depends(get_current_user)) -> dict:
        return await permission_checker.get_authenticated_user(current_user)

    @router.get("/rates")
    async def get_rates(force_refresh: bool = False, user: dict = Depends(authenticated_user)):
        rates = await currency_service.get_exchange_rates(force_refresh=force_refresh)
        return {"success": True, "data": rates.to_response()}

    @router.get("/supported")
    async def get_supported(user: dict = Depends(authenticated_user)):
        return {"success": True, "data": currency_service.supported_currencies()}

    @router.post("/convert")
    async def convert(request: CurrencyConvertRequest, user: dict = Depends(authenticated_user)):
        try:
            converted = await currency_service.convert(request.amount, request.from_currency, request.to_currency)
        except PaymentError as e:
            raise to_http_exception(e)
        return {
            "success": True,
            "data": {
                "original_amount": request.amount,
                "from_currency": request.from_currency,
                "to_currency": request.to_currency,
                "converted_amount": to_float(converted),
            }
        }

    return router
