"""
Payment Reconciliation Core Modules
"""
from .financial_precision import (
    to_decimal,
    round_financial,
    to_float,
    amounts_match,
    validate_positive,
    format_money,
    FinancialPrecisionError
)

from .errors import (
    PaymentError,
    PaymentValidationError,
    BalanceExceededError,
    DepartmentSplitError,
    CurrencyConversionError,
    VoidInvoiceError,
    NotFoundError,
    InvoiceNotFoundError,
    PaymentNotFoundError,
    PaymentCreationFailedError
)

from .currency_normalizer import (
    BASE_CURRENCY,
    NormalizedAmounts,
    normalize_payment_amounts,
    receivable_in_base
)

from .department_splits import (
    validate_department_splits,
    normalize_splits
)

from .invoice_balance import (
    InvoiceStatus,
    derive_invoice_status,
    apply_payment_delta,
    remaining_balance
)

from .payment_numbering import (
    PaymentNumberAllocator,
    SequenceNumberingStrategy,
    TimestampNumberingStrategy,
    ensure_payment_indexes
)

__all__ = [
    # Financial Precision
    'to_decimal',
    'round_financial',
    'to_float',
    'amounts_match',
    'validate_positive',
    'format_money',
    'FinancialPrecisionError',
    # Errors
    'PaymentError',
    'PaymentValidationError',
    'BalanceExceededError',
    'DepartmentSplitError',
    'CurrencyConversionError',
    'VoidInvoiceError',
    'NotFoundError',
    'InvoiceNotFoundError',
    'PaymentNotFoundError',
    'PaymentCreationFailedError',
    # Currency
    'BASE_CURRENCY',
    'NormalizedAmounts',
    'normalize_payment_amounts',
    'receivable_in_base',
    # Department Splits
    'validate_department_splits',
    'normalize_splits',
    # Invoice Balance
    'InvoiceStatus',
    'derive_invoice_status',
    'apply_payment_delta',
    'remaining_balance',
    # Payment Numbering
    'PaymentNumberAllocator',
    'SequenceNumberingStrategy',
    'TimestampNumberingStrategy',
    'ensure_payment_indexes',
]
