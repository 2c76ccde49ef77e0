# campus_eats/models/price_history.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict

class PriceChangeType(str, Enum):
    INDIVIDUAL = "individual"
    BULK_PERCENTAGE = "bulk_percentage"
    BULK_FIXED = "bulk_fixed"

class PriceHistory(BaseModel):
    """Immutable audit record of a menu price change"""
    history_id: int
    menu_item_id: str
    old_price: Decimal
    new_price: Decimal
    change_type: PriceChangeType
    change_reason: Optional[str] = None
    changed_by: str
    cafeteria_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)
