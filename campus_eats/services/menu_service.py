# campus_eats/services/menu_service.py
import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union
from pydantic import ValidationError as SchemaError
from ..exceptions import NotFound, ValidationError
from ..models.menu import MenuItem, MenuItemInput, MenuItemUpdate
from ..models.price_history import PriceChangeType, PriceHistory
from ..utils.formatters import schema_errors, to_money
from .price_history_service import PriceHistoryRecorder

BULK_MODES = (PriceChangeType.BULK_PERCENTAGE, PriceChangeType.BULK_FIXED)
NULLABLE_MENU_FIELDS = ("description", "category_id", "image_url")

def adjusted_price(price: Decimal, mode: PriceChangeType, value: Decimal) -> Decimal:
    """New price after a bulk adjustment, floored at zero"""
    if mode == PriceChangeType.BULK_PERCENTAGE:
        new_price = price * (Decimal(1) + value / Decimal(100))
    else:
        new_price = price + value
    return to_money(max(new_price, Decimal(0)))

def _parse_money(value, field: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field} must be a number", {field: value}) from e
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number", {field: str(value)})
    return amount

class MenuService:
    """Menu items, pricing, stock and availability"""

    def __init__(self, db, price_history: Optional[PriceHistoryRecorder] = None):
        self.db = db
        self.price_history = price_history or PriceHistoryRecorder(db)
        self.logger = logging.getLogger(__name__)

    async def get_menu_item(self, menu_item_id: str) -> MenuItem:
        async with self.db.unit_of_work() as uow:
            menu_item = await uow.menu_items.get(menu_item_id)
        if not menu_item:
            raise NotFound(f"Menu item {menu_item_id} not found")
        return menu_item

    async def list_menu_items(self, cafeteria_id: str,
                              category_id: Optional[str] = None) -> List[MenuItem]:
        async with self.db.unit_of_work() as uow:
            return await uow.menu_items.list_for_cafeteria(cafeteria_id, category_id=category_id)

    async def create_menu_item(self, cafeteria_id: str, item_data: Dict[str, Any]) -> MenuItem:
        """Add an item to a cafeteria's menu"""
        try:
            data = MenuItemInput.model_validate(item_data).model_dump()
        except SchemaError as e:
            raise ValidationError("Invalid menu item", {"errors": schema_errors(e)}) from e
        data['price'] = to_money(data['price'])

        async with self.db.unit_of_work() as uow:
            if data['category_id'] is not None:
                await self._check_category(uow, data['category_id'], cafeteria_id)
            menu_item = await uow.menu_items.insert(str(uuid.uuid4()), cafeteria_id, data)

        self.logger.info(
            f"Menu item {menu_item.menu_item_id} '{menu_item.name}' added to cafeteria {cafeteria_id}"
        )
        return menu_item

    async def update_menu_item(self, menu_item_id: str, update_data: Dict[str, Any],
                               changed_by: str,
                               actor_cafeteria_id: Optional[str] = None) -> MenuItem:
        """Edit an item; a price edit leaves an individual price history row"""
        try:
            changes = MenuItemUpdate.model_validate(update_data).model_dump(exclude_unset=True)
        except SchemaError as e:
            raise ValidationError("Invalid menu item", {"errors": schema_errors(e)}) from e
        reason = changes.pop('change_reason', None)
        price = changes.pop('price', None)
        changes = {
            key: value for key, value in changes.items()
            if value is not None or key in NULLABLE_MENU_FIELDS
        }

        async with self.db.unit_of_work() as uow:
            menu_item = await uow.menu_items.get(menu_item_id, for_update=True)
            if not menu_item:
                raise NotFound(f"Menu item {menu_item_id} not found")
            if actor_cafeteria_id is not None and menu_item.cafeteria_id != actor_cafeteria_id:
                raise ValidationError("Menu item belongs to another cafeteria")

            if changes.get('category_id') is not None:
                await self._check_category(uow, changes['category_id'], menu_item.cafeteria_id)

            if price is not None:
                await self._change_price(uow, menu_item, to_money(price), changed_by, reason)

            menu_item = await uow.menu_items.update(menu_item_id, changes)

        self.logger.info(f"Menu item {menu_item_id} updated by {changed_by}")
        return menu_item

    async def delete_menu_item(self, menu_item_id: str,
                               actor_cafeteria_id: Optional[str] = None) -> None:
        """Delete an item that was never ordered, discounted or repriced"""
        async with self.db.unit_of_work() as uow:
            menu_item = await uow.menu_items.get(menu_item_id, for_update=True)
            if not menu_item:
                raise NotFound(f"Menu item {menu_item_id} not found")
            if actor_cafeteria_id is not None and menu_item.cafeteria_id != actor_cafeteria_id:
                raise ValidationError("Menu item belongs to another cafeteria")
            await uow.menu_items.delete(menu_item_id)

        self.logger.info(f"Menu item {menu_item_id} deleted")

    async def update_price(self, menu_item_id: str, new_price: Union[Decimal, str, float],
                           changed_by: str, reason: Optional[str] = None,
                           actor_cafeteria_id: Optional[str] = None) -> Optional[PriceHistory]:
        """Change one item's price; returns the history row, or None if the price did not change"""
        price = _parse_money(new_price, "price")
        if price < 0:
            raise ValidationError("Price cannot be negative")
        price = to_money(price)

        async with self.db.unit_of_work() as uow:
            menu_item = await uow.menu_items.get(menu_item_id, for_update=True)
            if not menu_item:
                raise NotFound(f"Menu item {menu_item_id} not found")
            if actor_cafeteria_id is not None and menu_item.cafeteria_id != actor_cafeteria_id:
                raise ValidationError("Menu item belongs to another cafeteria")

            return await self._change_price(uow, menu_item, price, changed_by, reason)

    async def bulk_update_prices(self, cafeteria_id: str, mode: Union[PriceChangeType, str],
                                 value: Union[Decimal, str, float], changed_by: str,
                                 menu_item_ids: Optional[List[str]] = None,
                                 category_id: Optional[str] = None,
                                 reason: Optional[str] = None) -> List[PriceHistory]:
        """Adjust many prices at once, one history row per item whose price changed.

        mode is bulk_percentage (value is a percent, may be negative) or
        bulk_fixed (value is added to each price). All rows commit together.
        """
        try:
            mode = PriceChangeType(mode)
        except ValueError as e:
            raise ValidationError(f"Unknown bulk price mode: {mode}") from e
        if mode not in BULK_MODES:
            raise ValidationError("Bulk updates must be bulk_percentage or bulk_fixed")

        amount = _parse_money(value, "value")
        if amount == 0:
            raise ValidationError("Adjustment value cannot be zero")
        if mode == PriceChangeType.BULK_PERCENTAGE and amount <= -100:
            raise ValidationError("A percentage decrease must be smaller than 100")

        entries = []
        async with self.db.unit_of_work() as uow:
            menu_items = await uow.menu_items.list_for_cafeteria(
                cafeteria_id,
                menu_item_ids=menu_item_ids,
                category_id=category_id,
                for_update=True
            )

            if menu_item_ids is not None:
                missing = set(menu_item_ids) - {item.menu_item_id for item in menu_items}
                if missing:
                    raise ValidationError(
                        "Some menu items are not on this cafeteria's menu",
                        {"menu_item_ids": sorted(missing)}
                    )

            for menu_item in menu_items:
                new_price = adjusted_price(menu_item.price, mode, amount)
                if new_price == menu_item.price:
                    continue

                await uow.menu_items.set_price(menu_item.menu_item_id, new_price)
                entries.append(await self.price_history.record_price_change(
                    uow,
                    menu_item_id=menu_item.menu_item_id,
                    old_price=menu_item.price,
                    new_price=new_price,
                    change_type=mode,
                    changed_by=changed_by,
                    cafeteria_id=cafeteria_id,
                    reason=reason
                ))

        self.logger.info(
            f"Bulk {mode.value} price update of {amount} at cafeteria {cafeteria_id} "
            f"changed {len(entries)} items"
        )
        return entries

    async def restock(self, menu_item_id: str, quantity: int,
                      actor_cafeteria_id: Optional[str] = None) -> MenuItem:
        """Add stock to an item"""
        if quantity < 1:
            raise ValidationError("Restock quantity must be at least 1")
        async with self.db.unit_of_work() as uow:
            await self._check_owner(uow, menu_item_id, actor_cafeteria_id)
            if not await uow.menu_items.add_stock(menu_item_id, quantity):
                raise NotFound(f"Menu item {menu_item_id} not found")
            return await uow.menu_items.get(menu_item_id)

    async def set_availability(self, menu_item_id: str, available: bool,
                               actor_cafeteria_id: Optional[str] = None) -> MenuItem:
        async with self.db.unit_of_work() as uow:
            await self._check_owner(uow, menu_item_id, actor_cafeteria_id)
            if not await uow.menu_items.set_availability(menu_item_id, available):
                raise NotFound(f"Menu item {menu_item_id} not found")
            return await uow.menu_items.get(menu_item_id)

    async def _change_price(self, uow, menu_item: MenuItem, price: Decimal, changed_by: str,
                            reason: Optional[str]) -> Optional[PriceHistory]:
        if menu_item.price == price:
            return None
        await uow.menu_items.set_price(menu_item.menu_item_id, price)
        return await self.price_history.record_price_change(
            uow,
            menu_item_id=menu_item.menu_item_id,
            old_price=menu_item.price,
            new_price=price,
            change_type=PriceChangeType.INDIVIDUAL,
            changed_by=changed_by,
            cafeteria_id=menu_item.cafeteria_id,
            reason=reason
        )

    @staticmethod
    async def _check_category(uow, category_id: str, cafeteria_id: str):
        category = await uow.categories.get(category_id)
        if not category or category.cafeteria_id != cafeteria_id:
            raise ValidationError(
                "Category does not belong to this cafeteria",
                {"category_id": category_id}
            )

    @staticmethod
    async def _check_owner(uow, menu_item_id: str, actor_cafeteria_id: Optional[str]):
        if actor_cafeteria_id is None:
            return
        menu_item = await uow.menu_items.get(menu_item_id)
        if menu_item and menu_item.cafeteria_id != actor_cafeteria_id:
            raise ValidationError("Menu item belongs to another cafeteria")
