# campus_eats/models/order.py
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional
from pydantic import BaseModel, Field
from .base import TimeStampedModel

class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"

class PaymentMethod(str, Enum):
    MPESA = "mpesa"
    CASH = "cash"

# Linear forward path; cancellation from any non-terminal state
ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ORDER_TRANSITIONS[current]

class OrderItemRequest(BaseModel):
    """One cart line submitted by the client"""
    menu_item_id: str
    quantity: int = Field(..., ge=1)

class OrderItem(BaseModel):
    """Individual item in an order"""
    menu_item_id: str
    name: Optional[str] = None
    quantity: int
    price: Decimal  # unit price snapshot at purchase time
    discounted_price: Decimal
    discount_id: Optional[int] = None

class Order(TimeStampedModel):
    """A placed purchase"""
    order_id: str
    user_id: str
    cafeteria_id: str
    subtotal: Decimal
    discount_amount: Decimal = Decimal("0.00")
    total: Decimal = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING
    payment_method: Optional[PaymentMethod] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    checkout_request_id: Optional[str] = None
    mpesa_receipt_number: Optional[str] = None
    items: List[OrderItem] = []

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)

    @property
    def discount_ids(self) -> List[int]:
        return sorted({item.discount_id for item in self.items if item.discount_id is not None})
