# campus_eats/services/discount_service.py
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
from pydantic import ValidationError as SchemaError
from ..exceptions import NotFound, ValidationError
from ..models.discount import (
    SCOPE_PRECEDENCE,
    Discount,
    DiscountCreate,
    DiscountLine,
    DiscountResult,
    DiscountScope,
    DiscountType,
    ResolvedLine,
)
from ..utils.clock import Clock, utc_now
from ..utils.formatters import schema_errors, to_money
from .cart import merge_cart_lines

def apply_discount(discount: Discount, unit_price: Decimal) -> Decimal:
    """Discounted unit price, never below zero"""
    if discount.type == DiscountType.PERCENTAGE:
        price = unit_price * (Decimal(1) - discount.value / Decimal(100))
    else:
        price = unit_price - discount.value
    return to_money(max(price, Decimal(0)))

def select_discount(line: DiscountLine, candidates: Iterable[Discount]) -> Optional[Discount]:
    """Most specific scope wins; within a scope the cheapest result, then the oldest rule"""
    matching = [d for d in candidates if d.matches(line.menu_item_id, line.category_id)]
    if not matching:
        return None
    return max(
        matching,
        key=lambda d: (
            SCOPE_PRECEDENCE[d.scope],
            -apply_discount(d, line.unit_price),
            -d.discount_id,
        )
    )

class DiscountResolver:
    """Works out which discount applies to each order line"""

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    async def compute_discount(self, uow, cafeteria_id: str,
                               items: Sequence[Union[DiscountLine, Dict[str, Any]]],
                               redeem: bool = True) -> DiscountResult:
        """Price every line and, when redeeming, consume one use per applied discount.

        Must run inside the caller's unit of work so that usage increments commit
        or roll back together with the order. A discount whose conditional
        increment fails is treated as exhausted and its lines are priced without
        a discount.
        """
        lines = self._parse_lines(items)
        now = self.clock()

        candidates = await uow.discounts.find_candidates(
            cafeteria_id,
            sorted({line.menu_item_id for line in lines}),
            sorted({line.category_id for line in lines if line.category_id}),
            now
        )
        candidates = [d for d in candidates if d.cafeteria_id == cafeteria_id and d.is_available(now)]

        chosen = [select_discount(line, candidates) for line in lines]

        exhausted = set()
        if redeem:
            # One use per order, not per line
            for discount_id in sorted({d.discount_id for d in chosen if d is not None}):
                if not await uow.discounts.try_redeem(discount_id):
                    self.logger.warning(
                        f"Discount {discount_id} reached its usage limit during checkout; "
                        f"pricing without it"
                    )
                    exhausted.add(discount_id)

        resolved = []
        for line, discount in zip(lines, chosen):
            unit_price = to_money(line.unit_price)
            if discount is None or discount.discount_id in exhausted:
                resolved.append(ResolvedLine(
                    menu_item_id=line.menu_item_id,
                    quantity=line.quantity,
                    unit_price=unit_price,
                    discounted_price=unit_price
                ))
            else:
                resolved.append(ResolvedLine(
                    menu_item_id=line.menu_item_id,
                    quantity=line.quantity,
                    unit_price=unit_price,
                    discounted_price=apply_discount(discount, unit_price),
                    discount_id=discount.discount_id
                ))

        subtotal = to_money(sum((line.unit_price * line.quantity for line in resolved), Decimal(0)))
        total = to_money(sum((line.line_total for line in resolved), Decimal(0)))

        return DiscountResult(
            lines=resolved,
            subtotal=subtotal,
            discount_amount=subtotal - total,
            total=total
        )

    @staticmethod
    def _parse_lines(items: Sequence[Union[DiscountLine, Dict[str, Any]]]) -> List[DiscountLine]:
        try:
            return [
                item if isinstance(item, DiscountLine) else DiscountLine.model_validate(item)
                for item in items
            ]
        except SchemaError as e:
            raise ValidationError("Invalid discount line", {"errors": schema_errors(e)}) from e

class DiscountService:
    """Discount administration and cart previews"""

    def __init__(self, db, resolver: Optional[DiscountResolver] = None):
        self.db = db
        self.resolver = resolver or DiscountResolver()
        self.logger = logging.getLogger(__name__)

    async def create_discount(self, discount_data: Dict[str, Any]) -> Discount:
        """Create a new discount"""
        data = self._validate(discount_data)

        async with self.db.unit_of_work() as uow:
            await self._check_target(uow, data)
            discount = await uow.discounts.insert(data)

        self.logger.info(
            f"Discount {discount.discount_id} '{discount.name}' created for cafeteria "
            f"{discount.cafeteria_id} ({discount.scope.value}, {discount.type.value} {discount.value})"
        )
        return discount

    async def get_discount(self, discount_id: int) -> Discount:
        async with self.db.unit_of_work() as uow:
            discount = await uow.discounts.get(discount_id)
        if not discount:
            raise NotFound(f"Discount {discount_id} not found")
        return discount

    async def list_discounts(self, cafeteria_id: str, scope: Optional[str] = None,
                             is_active: Optional[bool] = None) -> List[Discount]:
        async with self.db.unit_of_work() as uow:
            return await uow.discounts.list(cafeteria_id, scope=scope, is_active=is_active)

    async def update_discount(self, discount_id: int, update_data: Dict[str, Any]) -> Discount:
        """Update a discount; the merged result is validated like a new one"""
        async with self.db.unit_of_work() as uow:
            existing = await uow.discounts.get(discount_id)
            if not existing:
                raise NotFound(f"Discount {discount_id} not found")

            merged = existing.model_dump(include=set(DiscountCreate.model_fields))
            merged.update({k: v for k, v in update_data.items() if v is not None or k == 'usage_limit'})
            merged['cafeteria_id'] = existing.cafeteria_id
            data = self._validate(merged)

            if data.get('usage_limit') is not None and data['usage_limit'] < existing.usage_count:
                raise ValidationError(
                    "Usage limit cannot be lower than the number of times the discount was used",
                    {"usage_count": existing.usage_count}
                )

            await self._check_target(uow, data)
            data.pop('cafeteria_id')
            discount = await uow.discounts.update(discount_id, data)

        self.logger.info(f"Discount {discount_id} updated")
        return discount

    async def toggle_discount(self, discount_id: int) -> Discount:
        """Flip is_active"""
        async with self.db.unit_of_work() as uow:
            existing = await uow.discounts.get(discount_id)
            if not existing:
                raise NotFound(f"Discount {discount_id} not found")
            discount = await uow.discounts.update(discount_id, {'is_active': not existing.is_active})

        self.logger.info(f"Discount {discount_id} is_active set to {discount.is_active}")
        return discount

    async def delete_discount(self, discount_id: int) -> None:
        async with self.db.unit_of_work() as uow:
            if not await uow.discounts.delete(discount_id):
                raise NotFound(f"Discount {discount_id} not found")
        self.logger.info(f"Discount {discount_id} deleted")

    async def preview_discount(self, cafeteria_id: str,
                               items: Sequence[Dict[str, Any]]) -> DiscountResult:
        """Price cart lines against current menu prices without consuming usage"""
        quantities = merge_cart_lines(items)

        async with self.db.unit_of_work() as uow:
            menu_items = await uow.menu_items.get_many(quantities)
            lines = []
            for menu_item_id, quantity in quantities.items():
                menu_item = menu_items.get(menu_item_id)
                if not menu_item or menu_item.cafeteria_id != cafeteria_id:
                    raise ValidationError(
                        f"Menu item {menu_item_id} is not on this cafeteria's menu",
                        {"menu_item_id": menu_item_id}
                    )
                lines.append({
                    'menu_item_id': menu_item_id,
                    'category_id': menu_item.category_id,
                    'unit_price': menu_item.price,
                    'quantity': quantity,
                })
            return await self.resolver.compute_discount(uow, cafeteria_id, lines, redeem=False)

    @staticmethod
    def _validate(discount_data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            discount = DiscountCreate.model_validate(discount_data)
        except SchemaError as e:
            raise ValidationError("Invalid discount", {"errors": schema_errors(e)}) from e

        if discount.scope == DiscountScope.CATEGORY and not discount.category_id:
            raise ValidationError("Category ID is required for category scope")
        if discount.scope == DiscountScope.ITEM and not discount.menu_item_id:
            raise ValidationError("Menu item ID is required for item scope")
        if discount.start_date >= discount.end_date:
            raise ValidationError("End date must be after start date")
        if discount.type == DiscountType.PERCENTAGE and discount.value > 100:
            raise ValidationError("Percentage discounts cannot exceed 100")

        data = discount.model_dump()
        data['type'] = discount.type.value
        data['scope'] = discount.scope.value
        data['category_id'] = discount.category_id if discount.scope == DiscountScope.CATEGORY else None
        data['menu_item_id'] = discount.menu_item_id if discount.scope == DiscountScope.ITEM else None
        return data

    @staticmethod
    async def _check_target(uow, data: Dict[str, Any]):
        if data['scope'] != DiscountScope.ITEM.value:
            return
        menu_item = await uow.menu_items.get(data['menu_item_id'])
        if not menu_item or menu_item.cafeteria_id != data['cafeteria_id']:
            raise ValidationError(
                "Discounted menu item does not belong to this cafeteria",
                {"menu_item_id": data['menu_item_id']}
            )
