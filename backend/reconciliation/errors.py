"""
Domain errors raised by the payment reconciliation core.

Every error carries a stable `code` for clients plus the computed figures
that explain it in `details`.
"""

from typing import Any, Dict, Optional


class PaymentError(Exception):
    """Base class for payment reconciliation failures"""

    code = "PAYMENT_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, code: Optional[str] = None):
        self.message = message
        self.details = details or {}
        if code:
            self.code = code
        super().__init__(message)

    def to_detail(self) -> Dict[str, Any]:
        return {"message": self.message, "error_code": self.code, **self.details}


# Validation: caller input is malformed or out of policy. Never retried.

class PaymentValidationError(PaymentError):
    code = "PAYMENT_VALIDATION_ERROR"


class BalanceExceededError(PaymentValidationError):
    code = "BALANCE_EXCEEDED"


class DepartmentSplitError(PaymentValidationError):
    code = "DEPARTMENT_SPLIT_INVALID"


class CurrencyConversionError(PaymentValidationError):
    code = "CURRENCY_CONVERSION_FAILED"


class VoidInvoiceError(PaymentValidationError):
    code = "INVOICE_VOID"


# Not found: missing or not owned by the requesting user.

class NotFoundError(PaymentError):
    code = "NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    code = "INVOICE_NOT_FOUND"


class PaymentNotFoundError(NotFoundError):
    code = "PAYMENT_NOT_FOUND"


# Conflict: numbering could not produce a unique payment number.

class PaymentCreationFailedError(PaymentError):
    code = "PAYMENT_CREATION_FAILED"
