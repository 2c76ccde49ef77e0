"""Repository checks against a real PostgreSQL; set TEST_DATABASE_URL to run them."""

import asyncio
import os
import uuid
from datetime import timedelta
from decimal import Decimal

import asyncpg
import pytest

from campus_eats.database import Database
from campus_eats.exceptions import StockError
from campus_eats.models.price_history import PriceChangeType
from campus_eats.services import DiscountResolver, OrderService
from campus_eats.utils.clock import utc_now

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL not set")


def _with_database(scenario):
    async def run():
        db = Database(TEST_DATABASE_URL)
        await db.connect()
        try:
            suffix = uuid.uuid4().hex[:8]
            ids = {
                "cafeteria": f"caf-{suffix}",
                "user": f"user-{suffix}",
                "item": f"item-{suffix}",
            }
            async with db.pool.acquire() as conn:
                await conn.execute(
                    "INSERT INTO cafeterias (cafeteria_id, name) VALUES ($1, 'Test Cafeteria')",
                    ids["cafeteria"]
                )
                await conn.execute(
                    "INSERT INTO users (user_id, name) VALUES ($1, 'Test Student')", ids["user"]
                )
                await conn.execute("""
                    INSERT INTO menu_items (menu_item_id, cafeteria_id, name, price, stock)
                    VALUES ($1, $2, 'Burger', 100.00, 3)
                """, ids["item"], ids["cafeteria"])
            return await scenario(db, ids)
        finally:
            await db.close()
    return asyncio.run(run())


async def _insert_discount(db, ids, usage_limit=None):
    now = utc_now()
    async with db.unit_of_work() as uow:
        return await uow.discounts.insert({
            "cafeteria_id": ids["cafeteria"],
            "name": "Test promo",
            "type": "percentage",
            "value": Decimal("20"),
            "scope": "item",
            "menu_item_id": ids["item"],
            "start_date": now - timedelta(days=1),
            "end_date": now + timedelta(days=1),
            "usage_limit": usage_limit,
        })


class TestConditionalUpdates:
    def test_concurrent_redemptions_respect_usage_limit(self):
        async def scenario(db, ids):
            discount = await _insert_discount(db, ids, usage_limit=1)

            async def redeem():
                async with db.unit_of_work() as uow:
                    return await uow.discounts.try_redeem(discount.discount_id)

            results = await asyncio.gather(*[redeem() for _ in range(5)])
            async with db.unit_of_work() as uow:
                stored = await uow.discounts.get(discount.discount_id)
            return results, stored

        results, stored = _with_database(scenario)

        assert results.count(True) == 1
        assert stored.usage_count == 1

    def test_stock_never_goes_negative(self):
        async def scenario(db, ids):
            async with db.unit_of_work() as uow:
                first = await uow.menu_items.decrement_stock(ids["item"], 2)
                second = await uow.menu_items.decrement_stock(ids["item"], 2)
                item = await uow.menu_items.get(ids["item"])
            return first, second, item

        first, second, item = _with_database(scenario)

        assert first is True
        assert second is False
        assert item.stock == 1


class TestOrderPersistence:
    def test_failed_order_rolls_back_discount_usage(self):
        async def scenario(db, ids):
            discount = await _insert_discount(db, ids, usage_limit=5)
            service = OrderService(db, DiscountResolver())

            order = await service.create_order(ids["user"], ids["cafeteria"],
                                               [{"menu_item_id": ids["item"], "quantity": 2}])
            with pytest.raises(StockError):
                await service.create_order(ids["user"], ids["cafeteria"],
                                           [{"menu_item_id": ids["item"], "quantity": 2}])

            async with db.unit_of_work() as uow:
                stored = await uow.discounts.get(discount.discount_id)
                item = await uow.menu_items.get(ids["item"])
            return order, stored, item

        order, discount, item = _with_database(scenario)

        assert order.total == Decimal("160.00")
        assert discount.usage_count == 1
        assert item.stock == 1

    def test_concurrent_orders_share_a_single_use_discount(self):
        async def scenario(db, ids):
            discount = await _insert_discount(db, ids, usage_limit=1)
            service = OrderService(db, DiscountResolver())

            orders = await asyncio.gather(*[
                service.create_order(ids["user"], ids["cafeteria"],
                                     [{"menu_item_id": ids["item"], "quantity": 1}])
                for _ in range(3)
            ])

            async with db.unit_of_work() as uow:
                stored = await uow.discounts.get(discount.discount_id)
                item = await uow.menu_items.get(ids["item"])
            return orders, stored, item

        orders, discount, item = _with_database(scenario)

        assert len([order for order in orders if order.discount_ids]) == 1
        assert discount.usage_count == 1
        assert item.stock == 0

    def test_carts_listing_items_in_opposite_order_both_commit(self):
        async def scenario(db, ids):
            fries = f"{ids['item']}-fries"
            async with db.pool.acquire() as conn:
                await conn.execute("""
                    INSERT INTO menu_items (menu_item_id, cafeteria_id, name, price, stock)
                    VALUES ($1, $2, 'Fries', 60.00, 10)
                """, fries, ids["cafeteria"])
            service = OrderService(db, DiscountResolver())
            carts = [
                [{"menu_item_id": ids["item"], "quantity": 1}, {"menu_item_id": fries, "quantity": 1}],
                [{"menu_item_id": fries, "quantity": 1}, {"menu_item_id": ids["item"], "quantity": 1}],
            ]

            orders = await asyncio.gather(*[
                service.create_order(ids["user"], ids["cafeteria"], cart) for cart in carts
            ])

            async with db.unit_of_work() as uow:
                stock = await uow.menu_items.get_many([ids["item"], fries])
            return orders, stock[ids["item"]].stock, stock[fries].stock

        orders, burger_stock, fries_stock = _with_database(scenario)

        assert len(orders) == 2
        assert burger_stock == 1
        assert fries_stock == 8


class TestPriceHistoryTable:
    def test_rows_cannot_be_updated(self):
        async def scenario(db, ids):
            async with db.unit_of_work() as uow:
                entry = await uow.price_history.append(
                    ids["item"], Decimal("100.00"), Decimal("120.00"),
                    PriceChangeType.INDIVIDUAL, ids["user"], ids["cafeteria"]
                )
            with pytest.raises(asyncpg.PostgresError):
                async with db.pool.acquire() as conn:
                    await conn.execute(
                        "UPDATE price_history SET new_price = 1 WHERE history_id = $1",
                        entry.history_id
                    )

        _with_database(scenario)
