# campus_eats/services/invoice_service.py
import logging
import uuid
from datetime import timedelta
from typing import List, Optional, Union
from ..config import Config
from ..exceptions import NotFound, ValidationError
from ..models.invoice import Invoice, InvoiceItem, InvoiceStatus
from ..models.order import Order, OrderStatus, PaymentStatus
from ..utils.clock import Clock, utc_now
from ..utils.formatters import format_datetime

class InvoiceService:
    """Invoices generated from paid orders"""

    def __init__(self, db, clock: Clock = utc_now):
        self.db = db
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def should_generate_invoice(order: Order, new_status: OrderStatus) -> bool:
        return new_status == OrderStatus.DELIVERED and order.payment_status == PaymentStatus.PAID

    @staticmethod
    def invoice_prefix(cafeteria_id: str, year: int) -> str:
        return f"ORD-{cafeteria_id[-4:].upper()}-{year}"

    async def generate_invoice_from_order(self, order_id: str) -> Invoice:
        """Create the invoice for an order; an order gets at most one"""
        now = self.clock()

        async with self.db.unit_of_work() as uow:
            order = await uow.orders.get(order_id)
            if not order:
                raise NotFound(f"Order {order_id} not found")

            if await uow.invoices.get_for_order(order_id):
                raise ValidationError(f"Invoice already exists for order {order_id}")

            prefix = self.invoice_prefix(order.cafeteria_id, now.year)
            latest = await uow.invoices.latest_number(order.cafeteria_id, prefix)
            sequence = int(latest.rsplit('-', 1)[-1]) + 1 if latest else 1

            items = [
                InvoiceItem(
                    description=item.name or item.menu_item_id,
                    quantity=item.quantity,
                    unit_price=item.discounted_price
                )
                for item in order.items
            ]

            invoice = await uow.invoices.insert(
                invoice_id=str(uuid.uuid4()),
                invoice_number=f"{prefix}-{sequence:04d}",
                order=order,
                items=items,
                due_date=now + timedelta(days=Config.INVOICE_DUE_DAYS),
                notes=f"Invoice generated from Order #{order.order_id} on {format_datetime(now)}",
                payment_terms=f"Payment due within {Config.INVOICE_DUE_DAYS} days"
            )

        self.logger.info(f"Invoice {invoice.invoice_number} generated for order {order_id}")
        return invoice

    async def try_generate_for_order(self, order_id: str) -> Optional[Invoice]:
        """Generate the invoice unless one exists; failures are logged, not raised"""
        try:
            existing = await self.get_invoice_for_order(order_id)
            if existing:
                return existing
            return await self.generate_invoice_from_order(order_id)
        except Exception as e:
            self.logger.error(f"Failed to generate invoice for order {order_id}: {e}", exc_info=True)
            return None

    async def get_invoice_for_order(self, order_id: str) -> Optional[Invoice]:
        async with self.db.unit_of_work() as uow:
            return await uow.invoices.get_for_order(order_id)

    async def get_invoice(self, invoice_id: str, cafeteria_id: Optional[str] = None) -> Invoice:
        """Fetch an invoice, optionally only within one cafeteria"""
        async with self.db.unit_of_work() as uow:
            invoice = await uow.invoices.get(invoice_id)
        if not invoice or (cafeteria_id is not None and invoice.cafeteria_id != cafeteria_id):
            raise NotFound(f"Invoice {invoice_id} not found")
        return invoice

    async def list_invoices(self, cafeteria_id: str,
                            status: Optional[Union[InvoiceStatus, str]] = None,
                            limit: int = 50) -> List[Invoice]:
        if status is not None:
            try:
                status = InvoiceStatus(status)
            except ValueError as e:
                raise ValidationError(f"Unknown invoice status: {status}") from e
        async with self.db.unit_of_work() as uow:
            return await uow.invoices.list_for_cafeteria(cafeteria_id, status, limit)
