from pydantic import BaseModel, Field, EmailStr
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum
from bson import ObjectId, Decimal128


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize MongoDB document for JSON response (handles Decimal128, ObjectId, datetime)"""
    if doc is None:
        return None
    result = {}
    for key, value in doc.items():
        result[key] = _serialize_value(value)
    return result


def _serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, Decimal128):
        return float(value.to_decimal())
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(item) for item in value]
    return value


# ============================================
# ENUMS
# ============================================
class PaymentMode(str, Enum):
    CASH = "Cash"
    BANK_TRANSFER = "Bank Transfer"
    BANK_REMITTANCE = "Bank Remittance"
    CHEQUE = "Cheque"
    CREDIT_CARD = "Credit Card"
    UPI = "UPI"
    ZOHO_PAYMENTS = "Zoho Payments"


class DepositTo(str, Enum):
    PETTY_CASH = "Petty Cash"
    BANK_ACCOUNT = "Bank Account"
    CASH_ACCOUNT = "Cash Account"
    OTHER = "Other"


class TDSTaxAccount(str, Enum):
    ADVANCE_TAX = "Advance Tax"
    TDS_PAYABLE = "TDS Payable"
    TDS_RECEIVABLE = "TDS Receivable"


class PaymentStatus(str, Enum):
    DRAFT = "Draft"
    PAID = "Paid"


# ============================================
# PAYMENT MODELS
# ============================================
class DepartmentSplitInput(BaseModel):
    department_name: str
    amount: float = Field(..., allow_inf_nan=False)


class PaymentCreate(BaseModel):
    invoice_id: str
    customer_id: Optional[str] = None
    user_email: Optional[EmailStr] = None
    payment_date: Optional[datetime] = None
    payment_received_on: Optional[datetime] = None
    payment_mode: PaymentMode = PaymentMode.CASH
    deposit_to: DepositTo = DepositTo.PETTY_CASH
    reference_number: Optional[str] = ""
    amount_received: float = Field(..., gt=0, allow_inf_nan=False)
    bank_charges: float = Field(default=0, ge=0, allow_inf_nan=False)
    amount_withheld: float = Field(default=0, ge=0, allow_inf_nan=False)
    tax_deducted: bool = False
    tds_type: Optional[str] = None
    tds_tax_account: TDSTaxAccount = TDSTaxAccount.ADVANCE_TAX
    notes: Optional[str] = ""
    status: PaymentStatus = PaymentStatus.PAID
    send_thank_you_note: bool = False
    email_recipients: List[str] = []
    has_department_split: bool = False
    department_splits: List[DepartmentSplitInput] = []

    class Config:
        use_enum_values = True


class PaymentUpdate(BaseModel):
    user_email: Optional[EmailStr] = None
    payment_date: Optional[datetime] = None
    payment_received_on: Optional[datetime] = None
    payment_mode: Optional[PaymentMode] = None
    deposit_to: Optional[DepositTo] = None
    reference_number: Optional[str] = None
    amount_received: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)
    bank_charges: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    amount_withheld: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    tax_deducted: Optional[bool] = None
    tds_type: Optional[str] = None
    tds_tax_account: Optional[TDSTaxAccount] = None
    notes: Optional[str] = None
    status: Optional[PaymentStatus] = None
    send_thank_you_note: Optional[bool] = None
    email_recipients: Optional[List[str]] = None
    has_department_split: Optional[bool] = None
    department_splits: Optional[List[DepartmentSplitInput]] = None

    class Config:
        use_enum_values = True


# ============================================
# CURRENCY MODELS
# ============================================
class CurrencyConvertRequest(BaseModel):
    amount: float = Field(..., gt=0, allow_inf_nan=False)
    from_currency: str
    to_currency: str

