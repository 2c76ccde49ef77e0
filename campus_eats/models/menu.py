# campus_eats/models/menu.py
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field
from .base import TimeStampedModel

class Category(TimeStampedModel):
    """Menu section owned by one cafeteria"""
    category_id: str
    cafeteria_id: str
    name: str
    description: Optional[str] = None

class CategoryInput(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None

class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None

class MenuItem(TimeStampedModel):
    """A purchasable item on a cafeteria menu"""
    menu_item_id: str
    cafeteria_id: str
    category_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    available: bool = True
    image_url: Optional[str] = None

    def can_fulfil(self, quantity: int) -> bool:
        return self.available and self.stock > 0 and self.stock >= quantity

class MenuItemInput(BaseModel):
    """Administrator input for a new menu item"""
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    category_id: Optional[str] = None
    stock: int = Field(0, ge=0)
    available: bool = True
    image_url: Optional[str] = None

class MenuItemUpdate(BaseModel):
    """Partial edit; stock changes go through restock"""
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    category_id: Optional[str] = None
    available: Optional[bool] = None
    image_url: Optional[str] = None
    change_reason: Optional[str] = None
