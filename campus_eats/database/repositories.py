# campus_eats/database/repositories.py
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
import asyncpg
from ..exceptions import ConcurrencyConflict, ValidationError
from ..models.discount import Discount
from ..models.invoice import Invoice, InvoiceItem, InvoiceStatus
from ..models.menu import Category, MenuItem
from ..models.order import Order, OrderItem, OrderStatus, PaymentStatus
from ..models.price_history import PriceChangeType, PriceHistory
from ..models.transaction import Transaction, TransactionStatus

class MenuItemRepository:
    """Queries on menu_items"""

    UPDATABLE_COLUMNS = ('name', 'description', 'category_id', 'available', 'image_url')

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def insert(self, menu_item_id: str, cafeteria_id: str, data: Dict[str, Any]) -> MenuItem:
        row = await self.conn.fetchrow("""
            INSERT INTO menu_items (
                menu_item_id, cafeteria_id, category_id, name,
                description, price, stock, available, image_url
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING *
        """,
            menu_item_id,
            cafeteria_id,
            data.get('category_id'),
            data['name'],
            data.get('description'),
            data['price'],
            data.get('stock', 0),
            data.get('available', True),
            data.get('image_url')
        )
        return MenuItem.model_validate(dict(row))

    async def update(self, menu_item_id: str, update_data: Dict[str, Any]) -> Optional[MenuItem]:
        query_parts = []
        params = []
        param_count = 1

        for key, value in update_data.items():
            if key not in self.UPDATABLE_COLUMNS:
                continue
            query_parts.append(f"{key} = ${param_count}")
            params.append(value)
            param_count += 1

        if not query_parts:
            return await self.get(menu_item_id)

        params.append(menu_item_id)
        row = await self.conn.fetchrow(f"""
            UPDATE menu_items
            SET {', '.join(query_parts)}, updated_at = NOW()
            WHERE menu_item_id = ${param_count}
            RETURNING *
        """, *params)
        return MenuItem.model_validate(dict(row)) if row else None

    async def delete(self, menu_item_id: str) -> bool:
        """Remove an item nothing refers to yet"""
        try:
            result = await self.conn.execute("""
                DELETE FROM menu_items WHERE menu_item_id = $1
            """, menu_item_id)
        except asyncpg.ForeignKeyViolationError as e:
            raise ValidationError(
                "Menu item has orders, discounts or price history; mark it unavailable instead",
                {"menu_item_id": menu_item_id}
            ) from e
        return result == "DELETE 1"

    async def get(self, menu_item_id: str, for_update: bool = False) -> Optional[MenuItem]:
        query = "SELECT * FROM menu_items WHERE menu_item_id = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await self.conn.fetchrow(query, menu_item_id)
        return MenuItem.model_validate(dict(row)) if row else None

    async def get_many(self, menu_item_ids: Iterable[str]) -> Dict[str, MenuItem]:
        rows = await self.conn.fetch("""
            SELECT *
            FROM menu_items
            WHERE menu_item_id = ANY($1::varchar[])
        """, list(menu_item_ids))
        return {row['menu_item_id']: MenuItem.model_validate(dict(row)) for row in rows}

    async def list_for_cafeteria(self, cafeteria_id: str,
                                 menu_item_ids: Optional[List[str]] = None,
                                 category_id: Optional[str] = None,
                                 for_update: bool = False) -> List[MenuItem]:
        query = "SELECT * FROM menu_items WHERE cafeteria_id = $1"
        params: List[Any] = [cafeteria_id]

        if menu_item_ids is not None:
            params.append(list(menu_item_ids))
            query += f" AND menu_item_id = ANY(${len(params)}::varchar[])"

        if category_id is not None:
            params.append(category_id)
            query += f" AND category_id = ${len(params)}"

        # Stable lock order for bulk updates
        query += " ORDER BY menu_item_id"
        if for_update:
            query += " FOR UPDATE"

        rows = await self.conn.fetch(query, *params)
        return [MenuItem.model_validate(dict(row)) for row in rows]

    async def decrement_stock(self, menu_item_id: str, quantity: int) -> bool:
        """Take stock only if enough remains"""
        result = await self.conn.execute("""
            UPDATE menu_items
            SET stock = stock - $2, updated_at = NOW()
            WHERE menu_item_id = $1 AND available = true AND stock >= $2
        """, menu_item_id, quantity)
        return result == "UPDATE 1"

    async def add_stock(self, menu_item_id: str, quantity: int) -> bool:
        result = await self.conn.execute("""
            UPDATE menu_items
            SET stock = stock + $2, updated_at = NOW()
            WHERE menu_item_id = $1
        """, menu_item_id, quantity)
        return result == "UPDATE 1"

    async def set_price(self, menu_item_id: str, price: Decimal) -> bool:
        result = await self.conn.execute("""
            UPDATE menu_items
            SET price = $2, updated_at = NOW()
            WHERE menu_item_id = $1
        """, menu_item_id, price)
        return result == "UPDATE 1"

    async def set_availability(self, menu_item_id: str, available: bool) -> bool:
        result = await self.conn.execute("""
            UPDATE menu_items
            SET available = $2, updated_at = NOW()
            WHERE menu_item_id = $1
        """, menu_item_id, available)
        return result == "UPDATE 1"

class CategoryRepository:
    """Queries on categories"""

    UPDATABLE_COLUMNS = ('name', 'description')

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def insert(self, category_id: str, cafeteria_id: str, name: str,
                     description: Optional[str]) -> Category:
        try:
            row = await self.conn.fetchrow("""
                INSERT INTO categories (category_id, cafeteria_id, name, description)
                VALUES ($1, $2, $3, $4)
                RETURNING *
            """, category_id, cafeteria_id, name, description)
        except asyncpg.UniqueViolationError as e:
            raise ValidationError(f"Category '{name}' already exists", {"name": name}) from e
        return Category.model_validate(dict(row))

    async def get(self, category_id: str) -> Optional[Category]:
        row = await self.conn.fetchrow("""
            SELECT * FROM categories WHERE category_id = $1
        """, category_id)
        return Category.model_validate(dict(row)) if row else None

    async def list_for_cafeteria(self, cafeteria_id: str) -> List[Category]:
        rows = await self.conn.fetch("""
            SELECT *
            FROM categories
            WHERE cafeteria_id = $1
            ORDER BY name
        """, cafeteria_id)
        return [Category.model_validate(dict(row)) for row in rows]

    async def update(self, category_id: str, update_data: Dict[str, Any]) -> Optional[Category]:
        query_parts = []
        params = []
        param_count = 1

        for key, value in update_data.items():
            if key not in self.UPDATABLE_COLUMNS:
                continue
            query_parts.append(f"{key} = ${param_count}")
            params.append(value)
            param_count += 1

        if not query_parts:
            return await self.get(category_id)

        params.append(category_id)
        try:
            row = await self.conn.fetchrow(f"""
                UPDATE categories
                SET {', '.join(query_parts)}, updated_at = NOW()
                WHERE category_id = ${param_count}
                RETURNING *
            """, *params)
        except asyncpg.UniqueViolationError as e:
            raise ValidationError(
                f"Category '{update_data.get('name')}' already exists",
                {"name": update_data.get('name')}
            ) from e
        return Category.model_validate(dict(row)) if row else None

    async def delete(self, category_id: str) -> bool:
        try:
            result = await self.conn.execute("""
                DELETE FROM categories WHERE category_id = $1
            """, category_id)
        except asyncpg.ForeignKeyViolationError as e:
            raise ValidationError(
                "Category still has menu items or discounts",
                {"category_id": category_id}
            ) from e
        return result == "DELETE 1"

class OrderRepository:
    """Queries on orders and order_items"""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def insert(self, order_id: str, user_id: str, cafeteria_id: str,
                     subtotal: Decimal, discount_amount: Decimal, total: Decimal,
                     payment_method: Optional[str]) -> Order:
        row = await self.conn.fetchrow("""
            INSERT INTO orders (
                order_id, user_id, cafeteria_id, subtotal,
                discount_amount, total, status, payment_method, payment_status
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING *
        """,
            order_id,
            user_id,
            cafeteria_id,
            subtotal,
            discount_amount,
            total,
            OrderStatus.PENDING.value,
            payment_method,
            PaymentStatus.PENDING.value
        )
        return Order.model_validate(dict(row))

    async def add_item(self, order_id: str, item: OrderItem) -> None:
        await self.conn.execute("""
            INSERT INTO order_items (
                order_id, menu_item_id, name, quantity,
                price, discounted_price, discount_id
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
        """,
            order_id,
            item.menu_item_id,
            item.name,
            item.quantity,
            item.price,
            item.discounted_price,
            item.discount_id
        )

    async def get(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        query = "SELECT * FROM orders WHERE order_id = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await self.conn.fetchrow(query, order_id)
        if not row:
            return None
        return await self._with_items(row)

    async def list_for_user(self, user_id: str, limit: int = 20) -> List[Order]:
        rows = await self.conn.fetch("""
            SELECT *
            FROM orders
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT $2
        """, user_id, limit)
        return [await self._with_items(row) for row in rows]

    async def list_for_cafeteria(self, cafeteria_id: str, status: Optional[OrderStatus] = None,
                                 limit: int = 50) -> List[Order]:
        query = "SELECT * FROM orders WHERE cafeteria_id = $1"
        params: List[Any] = [cafeteria_id]

        if status is not None:
            params.append(status.value)
            query += f" AND status = ${len(params)}"

        params.append(limit)
        query += f" ORDER BY created_at DESC LIMIT ${len(params)}"

        rows = await self.conn.fetch(query, *params)
        return [await self._with_items(row) for row in rows]

    async def update_status(self, order_id: str, status: OrderStatus,
                            expected: OrderStatus) -> bool:
        """Move the order only if nobody changed its status meanwhile"""
        result = await self.conn.execute("""
            UPDATE orders
            SET status = $2, updated_at = NOW()
            WHERE order_id = $1 AND status = $3
        """, order_id, status.value, expected.value)
        return result == "UPDATE 1"

    async def update_payment(self, order_id: str, payment_status: PaymentStatus,
                             status: Optional[OrderStatus] = None,
                             mpesa_receipt_number: Optional[str] = None) -> bool:
        result = await self.conn.execute("""
            UPDATE orders
            SET payment_status = $2,
                status = COALESCE($3, status),
                mpesa_receipt_number = COALESCE($4, mpesa_receipt_number),
                updated_at = NOW()
            WHERE order_id = $1
        """,
            order_id,
            payment_status.value,
            status.value if status else None,
            mpesa_receipt_number
        )
        return result == "UPDATE 1"

    async def set_checkout_request(self, order_id: str, checkout_request_id: str,
                                   payment_method: str) -> bool:
        result = await self.conn.execute("""
            UPDATE orders
            SET checkout_request_id = $2,
                payment_method = $3,
                updated_at = NOW()
            WHERE order_id = $1
        """, order_id, checkout_request_id, payment_method)
        return result == "UPDATE 1"

    async def _with_items(self, row: asyncpg.Record) -> Order:
        items = await self.conn.fetch("""
            SELECT menu_item_id, name, quantity, price, discounted_price, discount_id
            FROM order_items
            WHERE order_id = $1
            ORDER BY order_item_id
        """, row['order_id'])
        return Order.model_validate({
            **dict(row),
            'items': [dict(item) for item in items]
        })

class DiscountRepository:
    """Queries on discounts"""

    UPDATABLE_COLUMNS = (
        'name', 'description', 'type', 'value', 'scope', 'category_id',
        'menu_item_id', 'start_date', 'end_date', 'usage_limit', 'is_active'
    )

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def insert(self, data: Dict[str, Any]) -> Discount:
        row = await self.conn.fetchrow("""
            INSERT INTO discounts (
                cafeteria_id, name, description, type, value, scope,
                category_id, menu_item_id, start_date, end_date,
                usage_limit, is_active
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            RETURNING *
        """,
            data['cafeteria_id'],
            data['name'],
            data.get('description'),
            data['type'],
            data['value'],
            data['scope'],
            data.get('category_id'),
            data.get('menu_item_id'),
            data['start_date'],
            data['end_date'],
            data.get('usage_limit'),
            data.get('is_active', True)
        )
        return Discount.model_validate(dict(row))

    async def get(self, discount_id: int) -> Optional[Discount]:
        row = await self.conn.fetchrow("""
            SELECT * FROM discounts WHERE discount_id = $1
        """, discount_id)
        return Discount.model_validate(dict(row)) if row else None

    async def list(self, cafeteria_id: str, scope: Optional[str] = None,
                   is_active: Optional[bool] = None) -> List[Discount]:
        query = "SELECT * FROM discounts WHERE cafeteria_id = $1"
        params: List[Any] = [cafeteria_id]

        if scope is not None:
            params.append(scope)
            query += f" AND scope = ${len(params)}"

        if is_active is not None:
            params.append(is_active)
            query += f" AND is_active = ${len(params)}"

        query += " ORDER BY created_at DESC"
        rows = await self.conn.fetch(query, *params)
        return [Discount.model_validate(dict(row)) for row in rows]

    async def update(self, discount_id: int, update_data: Dict[str, Any]) -> Optional[Discount]:
        query_parts = []
        params = []
        param_count = 1

        for key, value in update_data.items():
            if key not in self.UPDATABLE_COLUMNS:
                continue
            query_parts.append(f"{key} = ${param_count}")
            params.append(value)
            param_count += 1

        if not query_parts:
            return await self.get(discount_id)

        params.append(discount_id)
        row = await self.conn.fetchrow(f"""
            UPDATE discounts
            SET {', '.join(query_parts)}, updated_at = NOW()
            WHERE discount_id = ${param_count}
            RETURNING *
        """, *params)
        return Discount.model_validate(dict(row)) if row else None

    async def delete(self, discount_id: int) -> bool:
        result = await self.conn.execute("""
            DELETE FROM discounts WHERE discount_id = $1
        """, discount_id)
        return result == "DELETE 1"

    async def find_candidates(self, cafeteria_id: str, menu_item_ids: List[str],
                              category_ids: List[str], now: datetime) -> List[Discount]:
        """Active, in-window, not exhausted discounts touching any of the lines"""
        rows = await self.conn.fetch("""
            SELECT *
            FROM discounts
            WHERE cafeteria_id = $1
            AND is_active = true
            AND start_date <= $2 AND end_date >= $2
            AND (usage_limit IS NULL OR usage_count < usage_limit)
            AND (
                scope = 'global'
                OR (scope = 'category' AND category_id = ANY($3::varchar[]))
                OR (scope = 'item' AND menu_item_id = ANY($4::varchar[]))
            )
            ORDER BY discount_id
        """, cafeteria_id, now, category_ids, menu_item_ids)
        return [Discount.model_validate(dict(row)) for row in rows]

    async def try_redeem(self, discount_id: int) -> bool:
        """Increment usage_count only while below usage_limit"""
        result = await self.conn.execute("""
            UPDATE discounts
            SET usage_count = usage_count + 1, updated_at = NOW()
            WHERE discount_id = $1
            AND is_active = true
            AND (usage_limit IS NULL OR usage_count < usage_limit)
        """, discount_id)
        return result == "UPDATE 1"

class TransactionRepository:
    """Queries on mobile-money transactions"""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def insert(self, transaction_id: str, order_id: str, phone_number: str,
                     amount: Decimal) -> Transaction:
        row = await self.conn.fetchrow("""
            INSERT INTO transactions (
                transaction_id, order_id, phone_number, amount, status
            ) VALUES ($1, $2, $3, $4, $5)
            RETURNING *
        """, transaction_id, order_id, phone_number, amount, TransactionStatus.PENDING.value)
        return Transaction.model_validate(dict(row))

    async def attach_checkout_request(self, transaction_id: str, checkout_request_id: str,
                                      merchant_request_id: Optional[str]) -> bool:
        result = await self.conn.execute("""
            UPDATE transactions
            SET checkout_request_id = $2,
                merchant_request_id = $3,
                updated_at = NOW()
            WHERE transaction_id = $1
        """, transaction_id, checkout_request_id, merchant_request_id)
        return result == "UPDATE 1"

    async def get_by_checkout_request_id(self, checkout_request_id: str,
                                         for_update: bool = False) -> Optional[Transaction]:
        query = "SELECT * FROM transactions WHERE checkout_request_id = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await self.conn.fetchrow(query, checkout_request_id)
        return Transaction.model_validate(dict(row)) if row else None

    async def list_for_order(self, order_id: str) -> List[Transaction]:
        rows = await self.conn.fetch("""
            SELECT * FROM transactions
            WHERE order_id = $1
            ORDER BY created_at
        """, order_id)
        return [Transaction.model_validate(dict(row)) for row in rows]

    async def complete(self, transaction_id: str, mpesa_receipt_number: Optional[str],
                       result_code: int, result_desc: Optional[str]) -> bool:
        """pending -> completed; False when already terminal"""
        result = await self.conn.execute("""
            UPDATE transactions
            SET status = 'completed',
                mpesa_receipt_number = $2,
                result_code = $3,
                result_desc = $4,
                updated_at = NOW()
            WHERE transaction_id = $1 AND status = 'pending'
        """, transaction_id, mpesa_receipt_number, result_code, result_desc)
        return result == "UPDATE 1"

    async def fail(self, transaction_id: str, result_code: int,
                   result_desc: Optional[str]) -> bool:
        """pending -> failed; False when already terminal"""
        result = await self.conn.execute("""
            UPDATE transactions
            SET status = 'failed',
                result_code = $2,
                result_desc = $3,
                updated_at = NOW()
            WHERE transaction_id = $1 AND status = 'pending'
        """, transaction_id, result_code, result_desc)
        return result == "UPDATE 1"

class PriceHistoryRepository:
    """Append-only access to price_history"""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def append(self, menu_item_id: str, old_price: Decimal, new_price: Decimal,
                     change_type: PriceChangeType, changed_by: str, cafeteria_id: str,
                     change_reason: Optional[str] = None) -> PriceHistory:
        row = await self.conn.fetchrow("""
            INSERT INTO price_history (
                menu_item_id, old_price, new_price, change_type,
                change_reason, changed_by, cafeteria_id
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
            RETURNING *
        """,
            menu_item_id,
            old_price,
            new_price,
            change_type.value,
            change_reason,
            changed_by,
            cafeteria_id
        )
        return PriceHistory.model_validate(dict(row))

    async def list_for_item(self, menu_item_id: str, limit: int = 50) -> List[PriceHistory]:
        rows = await self.conn.fetch("""
            SELECT * FROM price_history
            WHERE menu_item_id = $1
            ORDER BY created_at DESC, history_id DESC
            LIMIT $2
        """, menu_item_id, limit)
        return [PriceHistory.model_validate(dict(row)) for row in rows]

    async def list_for_cafeteria(self, cafeteria_id: str, limit: int = 100) -> List[PriceHistory]:
        rows = await self.conn.fetch("""
            SELECT * FROM price_history
            WHERE cafeteria_id = $1
            ORDER BY created_at DESC, history_id DESC
            LIMIT $2
        """, cafeteria_id, limit)
        return [PriceHistory.model_validate(dict(row)) for row in rows]

class InvoiceRepository:
    """Queries on invoices"""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def get(self, invoice_id: str) -> Optional[Invoice]:
        row = await self.conn.fetchrow("""
            SELECT * FROM invoices WHERE invoice_id = $1
        """, invoice_id)
        return Invoice.model_validate(dict(row)) if row else None

    async def list_for_cafeteria(self, cafeteria_id: str, status: Optional[InvoiceStatus] = None,
                                 limit: int = 50) -> List[Invoice]:
        query = "SELECT * FROM invoices WHERE cafeteria_id = $1"
        params: List[Any] = [cafeteria_id]

        if status is not None:
            params.append(status.value)
            query += f" AND status = ${len(params)}"

        params.append(limit)
        query += f" ORDER BY created_at DESC LIMIT ${len(params)}"

        rows = await self.conn.fetch(query, *params)
        return [Invoice.model_validate(dict(row)) for row in rows]

    async def get_for_order(self, order_id: str) -> Optional[Invoice]:
        row = await self.conn.fetchrow("""
            SELECT * FROM invoices WHERE order_id = $1
        """, order_id)
        return Invoice.model_validate(dict(row)) if row else None

    async def latest_number(self, cafeteria_id: str, prefix: str) -> Optional[str]:
        return await self.conn.fetchval("""
            SELECT invoice_number
            FROM invoices
            WHERE cafeteria_id = $1 AND invoice_number LIKE $2
            ORDER BY invoice_number DESC
            LIMIT 1
        """, cafeteria_id, f"{prefix}%")

    async def insert(self, invoice_id: str, invoice_number: str, order: Order,
                     items: List[InvoiceItem], due_date: datetime, notes: str,
                     payment_terms: str) -> Invoice:
        try:
            row = await self.conn.fetchrow("""
                INSERT INTO invoices (
                    invoice_id, invoice_number, order_id, cafeteria_id, user_id,
                    items, subtotal, discount_amount, total, due_date,
                    notes, payment_terms
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                RETURNING *
            """,
                invoice_id,
                invoice_number,
                order.order_id,
                order.cafeteria_id,
                order.user_id,
                [item.model_dump(mode="json") for item in items],
                order.subtotal,
                order.discount_amount,
                order.total,
                due_date,
                notes,
                payment_terms
            )
        except asyncpg.UniqueViolationError as e:
            raise ConcurrencyConflict(
                f"Invoice for order {order.order_id} collided with a concurrent insert",
                {"constraint": e.constraint_name}
            ) from e
        return Invoice.model_validate(dict(row))

class UnitOfWork:
    """Repositories bound to one connection inside one transaction"""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn
        self.menu_items = MenuItemRepository(conn)
        self.categories = CategoryRepository(conn)
        self.orders = OrderRepository(conn)
        self.discounts = DiscountRepository(conn)
        self.transactions = TransactionRepository(conn)
        self.price_history = PriceHistoryRepository(conn)
        self.invoices = InvoiceRepository(conn)
