# campus_eats/services/order_service.py
import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence, Union
from ..exceptions import (
    ConcurrencyConflict,
    InvalidStateTransition,
    NotFound,
    StockError,
    ValidationError,
)
from ..models.order import (
    Order,
    OrderItem,
    OrderItemRequest,
    OrderStatus,
    PaymentMethod,
    can_transition,
)
from .cart import merge_cart_lines
from .discount_service import DiscountResolver
from .invoice_service import InvoiceService

class OrderService:
    """Cart-to-order conversion and the order status lifecycle"""

    def __init__(self, db, discount_resolver: Optional[DiscountResolver] = None,
                 invoice_service: Optional[InvoiceService] = None):
        self.db = db
        self.discount_resolver = discount_resolver or DiscountResolver()
        self.invoice_service = invoice_service or InvoiceService(db)
        self.logger = logging.getLogger(__name__)

    async def create_order(self, user_id: str, cafeteria_id: str,
                           items: Sequence[Union[OrderItemRequest, Dict[str, Any]]],
                           payment_method: Union[PaymentMethod, str] = PaymentMethod.MPESA) -> Order:
        """Create an order from cart lines.

        Everything happens in one database transaction: menu validation,
        discount redemption, order and line inserts, and stock decrements. Any
        failure rolls all of it back.
        """
        if not user_id or not cafeteria_id:
            raise ValidationError("user_id and cafeteria_id are required")
        quantities = merge_cart_lines(items)
        method = self._parse_payment_method(payment_method)

        async with self.db.unit_of_work() as uow:
            menu_items = await uow.menu_items.get_many(quantities)

            lines = []
            for menu_item_id, quantity in quantities.items():
                menu_item = menu_items.get(menu_item_id)
                if not menu_item:
                    raise ValidationError(
                        f"Menu item {menu_item_id} does not exist",
                        {"menu_item_id": menu_item_id}
                    )
                if menu_item.cafeteria_id != cafeteria_id:
                    raise ValidationError(
                        f"Menu item {menu_item.name} is not sold by this cafeteria",
                        {"menu_item_id": menu_item_id}
                    )
                if not menu_item.available:
                    raise ValidationError(
                        f"Menu item {menu_item.name} is not available",
                        {"menu_item_id": menu_item_id}
                    )
                if not menu_item.can_fulfil(quantity):
                    raise StockError(
                        f"Only {menu_item.stock} of {menu_item.name} left",
                        {"menu_item_id": menu_item_id, "requested": quantity, "stock": menu_item.stock}
                    )
                lines.append({
                    'menu_item_id': menu_item_id,
                    'category_id': menu_item.category_id,
                    'unit_price': menu_item.price,
                    'quantity': quantity,
                })

            pricing = await self.discount_resolver.compute_discount(uow, cafeteria_id, lines)

            order_id = str(uuid.uuid4())
            order = await uow.orders.insert(
                order_id=order_id,
                user_id=user_id,
                cafeteria_id=cafeteria_id,
                subtotal=pricing.subtotal,
                discount_amount=pricing.discount_amount,
                total=pricing.total,
                payment_method=method.value
            )

            order_items = []
            for line in pricing.lines:
                item = OrderItem(
                    menu_item_id=line.menu_item_id,
                    name=menu_items[line.menu_item_id].name,
                    quantity=line.quantity,
                    price=line.unit_price,
                    discounted_price=line.discounted_price,
                    discount_id=line.discount_id
                )
                await uow.orders.add_item(order_id, item)
                order_items.append(item)

            # Stable lock order across concurrent orders
            for menu_item_id in sorted(quantities):
                if not await uow.menu_items.decrement_stock(menu_item_id, quantities[menu_item_id]):
                    raise ConcurrencyConflict(
                        f"Stock for {menu_items[menu_item_id].name} changed while the order was being placed",
                        {"menu_item_id": menu_item_id}
                    )

            order = order.model_copy(update={'items': order_items})

        self.logger.info(
            f"Order {order.order_id} created for user {user_id} at cafeteria {cafeteria_id}: "
            f"subtotal={order.subtotal} discount={order.discount_amount} total={order.total}"
        )
        return order

    async def get_order(self, order_id: str, user_id: Optional[str] = None) -> Order:
        """Fetch an order, optionally only if it belongs to user_id"""
        async with self.db.unit_of_work() as uow:
            order = await uow.orders.get(order_id)
        if not order or (user_id is not None and order.user_id != user_id):
            raise NotFound(f"Order {order_id} not found")
        return order

    async def list_user_orders(self, user_id: str, limit: int = 20) -> List[Order]:
        async with self.db.unit_of_work() as uow:
            return await uow.orders.list_for_user(user_id, limit)

    async def list_cafeteria_orders(self, cafeteria_id: str,
                                    status: Optional[Union[OrderStatus, str]] = None,
                                    limit: int = 50) -> List[Order]:
        if status is not None:
            status = self._parse_status(status)
        async with self.db.unit_of_work() as uow:
            return await uow.orders.list_for_cafeteria(cafeteria_id, status, limit)

    async def update_order_status(self, order_id: str, status: Union[OrderStatus, str],
                                  actor_cafeteria_id: Optional[str] = None) -> Order:
        """Apply one status transition"""
        new_status = self._parse_status(status)

        async with self.db.unit_of_work() as uow:
            order = await uow.orders.get(order_id, for_update=True)
            if not order:
                raise NotFound(f"Order {order_id} not found")

            if actor_cafeteria_id is not None and order.cafeteria_id != actor_cafeteria_id:
                raise ValidationError("Order belongs to another cafeteria")

            if not can_transition(order.status, new_status):
                raise InvalidStateTransition(order.status.value, new_status.value)

            if not await uow.orders.update_status(order_id, new_status, expected=order.status):
                raise ConcurrencyConflict(f"Order {order_id} was updated concurrently")

            previous_status = order.status
            order = order.model_copy(update={'status': new_status})

        self.logger.info(f"Order {order_id} moved from {previous_status.value} to {new_status.value}")

        if self.invoice_service.should_generate_invoice(order, new_status):
            await self.invoice_service.try_generate_for_order(order_id)

        return order

    async def cancel_order(self, order_id: str, user_id: Optional[str] = None) -> Order:
        """Cancel an order that has not been delivered"""
        if user_id is not None:
            await self.get_order(order_id, user_id=user_id)
        return await self.update_order_status(order_id, OrderStatus.CANCELLED)

    @staticmethod
    def _parse_payment_method(payment_method: Union[PaymentMethod, str]) -> PaymentMethod:
        try:
            return PaymentMethod(payment_method)
        except ValueError as e:
            raise ValidationError(f"Unsupported payment method: {payment_method}") from e

    @staticmethod
    def _parse_status(status: Union[OrderStatus, str]) -> OrderStatus:
        try:
            return OrderStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown order status: {status}") from e
