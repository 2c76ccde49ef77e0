# campus_eats/models/discount.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
import pytz
from pydantic import BaseModel, Field, field_validator
from .base import TimeStampedModel

class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"

class DiscountScope(str, Enum):
    GLOBAL = "global"      # whole cafeteria
    CATEGORY = "category"
    ITEM = "item"

# Higher wins
SCOPE_PRECEDENCE = {
    DiscountScope.ITEM: 3,
    DiscountScope.CATEGORY: 2,
    DiscountScope.GLOBAL: 1,
}

class Discount(TimeStampedModel):
    """A pricing rule scoped to a cafeteria, category or item"""
    discount_id: int
    cafeteria_id: str
    name: str
    description: Optional[str] = None
    type: DiscountType
    value: Decimal
    scope: DiscountScope
    category_id: Optional[str] = None
    menu_item_id: Optional[str] = None
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    usage_limit: Optional[int] = None
    usage_count: int = 0

    def is_available(self, now: datetime) -> bool:
        if not self.is_active:
            return False
        if not (self.start_date <= now <= self.end_date):
            return False
        if self.usage_limit is not None and self.usage_count >= self.usage_limit:
            return False
        return True

    def matches(self, menu_item_id: str, category_id: Optional[str]) -> bool:
        if self.scope == DiscountScope.ITEM:
            return self.menu_item_id == menu_item_id
        if self.scope == DiscountScope.CATEGORY:
            return category_id is not None and self.category_id == category_id
        return True

class DiscountCreate(BaseModel):
    """Administrator input for a new discount"""
    cafeteria_id: str
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    type: DiscountType = DiscountType.PERCENTAGE
    value: Decimal = Field(..., gt=0)
    scope: DiscountScope = DiscountScope.GLOBAL
    category_id: Optional[str] = None
    menu_item_id: Optional[str] = None
    start_date: datetime
    end_date: datetime
    usage_limit: Optional[int] = Field(None, ge=1)
    is_active: bool = True

    @field_validator("start_date", "end_date")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        """Dates without an offset are read as UTC"""
        if value.tzinfo is None:
            return pytz.utc.localize(value)
        return value

class DiscountLine(BaseModel):
    """A line submitted to the resolver"""
    menu_item_id: str
    category_id: Optional[str] = None
    unit_price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., ge=1)

class ResolvedLine(BaseModel):
    menu_item_id: str
    quantity: int
    unit_price: Decimal
    discounted_price: Decimal
    discount_id: Optional[int] = None

    @property
    def line_total(self) -> Decimal:
        return self.discounted_price * self.quantity

class DiscountResult(BaseModel):
    """Per-line pricing plus order totals"""
    lines: List[ResolvedLine]
    subtotal: Decimal
    discount_amount: Decimal
    total: Decimal

    @property
    def discount_ids(self) -> List[int]:
        return sorted({line.discount_id for line in self.lines if line.discount_id is not None})
