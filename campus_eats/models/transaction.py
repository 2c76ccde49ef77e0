# campus_eats/models/transaction.py
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel
from .base import TimeStampedModel

class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

class Transaction(TimeStampedModel):
    """One mobile-money payment attempt"""
    transaction_id: str
    order_id: str
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    phone_number: str
    amount: Decimal
    status: TransactionStatus = TransactionStatus.PENDING
    mpesa_receipt_number: Optional[str] = None
    result_code: Optional[int] = None
    result_desc: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != TransactionStatus.PENDING

class StkPushResponse(BaseModel):
    """Gateway acknowledgement of an STK push"""
    checkout_request_id: str
    merchant_request_id: Optional[str] = None
    response_code: str = "0"
    response_description: Optional[str] = None
    customer_message: Optional[str] = None

class CallbackOutcome(BaseModel):
    """Result reported by the gateway for a checkout request"""
    checkout_request_id: str
    success: bool
    result_code: int
    result_desc: Optional[str] = None
    mpesa_receipt_number: Optional[str] = None
    amount: Optional[Decimal] = None
    phone_number: Optional[str] = None
    transaction_date: Optional[str] = None
