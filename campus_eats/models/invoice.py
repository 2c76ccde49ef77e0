# campus_eats/models/invoice.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel
from .base import TimeStampedModel

class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"

class InvoiceItem(BaseModel):
    description: str
    quantity: int
    unit_price: Decimal

class Invoice(TimeStampedModel):
    invoice_id: str
    invoice_number: str
    order_id: str
    cafeteria_id: str
    user_id: str
    items: List[InvoiceItem]
    subtotal: Decimal
    discount_amount: Decimal
    total: Decimal
    status: InvoiceStatus = InvoiceStatus.PAID
    due_date: datetime
    notes: Optional[str] = None
    payment_terms: Optional[str] = None
