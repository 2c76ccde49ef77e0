"""Tests for discount selection, pricing and usage redemption."""

import asyncio
from datetime import timedelta
from decimal import Decimal

from campus_eats.models.discount import DiscountLine
from campus_eats.services.discount_service import DiscountResolver, apply_discount, select_discount

from .fakes import InMemoryDatabase


def _line(menu_item_id="burger", unit_price="100", quantity=1, category_id="mains"):
    return {
        "menu_item_id": menu_item_id,
        "category_id": category_id,
        "unit_price": Decimal(unit_price),
        "quantity": quantity,
    }


def _compute(db, lines, redeem=True, cafeteria_id="caf-main"):
    async def run():
        async with db.unit_of_work() as uow:
            return await DiscountResolver().compute_discount(uow, cafeteria_id, lines, redeem=redeem)
    return asyncio.run(run())


class TestApplyDiscount:
    def test_percentage(self):
        discount = InMemoryDatabase().add_discount(20)
        assert apply_discount(discount, Decimal("100")) == Decimal("80.00")

    def test_fixed(self):
        discount = InMemoryDatabase().add_discount(15, type="fixed")
        assert apply_discount(discount, Decimal("100")) == Decimal("85.00")

    def test_fixed_larger_than_price_floors_at_zero(self):
        discount = InMemoryDatabase().add_discount(150, type="fixed")
        assert apply_discount(discount, Decimal("100")) == Decimal("0.00")

    def test_rounds_to_cents(self):
        discount = InMemoryDatabase().add_discount("33.333")
        assert apply_discount(discount, Decimal("10")) == Decimal("6.67")


class TestSelectDiscount:
    def test_item_scope_beats_larger_category_and_global(self):
        db = InMemoryDatabase()
        global_discount = db.add_discount(50)
        category = db.add_discount(40, scope="category", category_id="mains")
        item = db.add_discount(10, scope="item", menu_item_id="burger")
        line = DiscountLine(**_line())

        chosen = select_discount(line, [global_discount, category, item])

        assert chosen.discount_id == item.discount_id

    def test_category_beats_global(self):
        db = InMemoryDatabase()
        global_discount = db.add_discount(50)
        category = db.add_discount(5, scope="category", category_id="mains")

        chosen = select_discount(DiscountLine(**_line()), [global_discount, category])

        assert chosen.discount_id == category.discount_id

    def test_same_scope_picks_lowest_price(self):
        db = InMemoryDatabase()
        small = db.add_discount(10)
        large = db.add_discount(30, type="fixed")

        chosen = select_discount(DiscountLine(**_line()), [small, large])

        assert chosen.discount_id == large.discount_id

    def test_same_scope_same_price_picks_oldest(self):
        db = InMemoryDatabase()
        first = db.add_discount(10)
        second = db.add_discount(10)

        chosen = select_discount(DiscountLine(**_line()), [second, first])

        assert chosen.discount_id == first.discount_id

    def test_category_discount_ignores_other_categories(self):
        db = InMemoryDatabase()
        drinks = db.add_discount(10, scope="category", category_id="drinks")

        assert select_discount(DiscountLine(**_line()), [drinks]) is None


class TestComputeDiscount:
    def test_item_discount_on_two_units(self):
        db = InMemoryDatabase()
        discount = db.add_discount(20, scope="item", menu_item_id="burger")

        result = _compute(db, [_line(quantity=2)])

        line = result.lines[0]
        assert line.discounted_price == Decimal("80.00")
        assert line.discount_id == discount.discount_id
        assert result.subtotal == Decimal("200.00")
        assert result.total == Decimal("160.00")
        assert result.discount_amount == Decimal("40.00")

    def test_total_equals_subtotal_minus_discount(self):
        db = InMemoryDatabase()
        db.add_discount("12.5", scope="category", category_id="mains")
        db.add_discount(7, type="fixed", scope="item", menu_item_id="soda")

        result = _compute(db, [
            _line(unit_price="149.99", quantity=3),
            _line(menu_item_id="soda", unit_price="45", quantity=2, category_id="drinks"),
            _line(menu_item_id="fries", unit_price="60", quantity=1, category_id="sides"),
        ])

        assert result.total == result.subtotal - result.discount_amount
        assert result.total == sum(line.line_total for line in result.lines)
        assert result.total >= 0

    def test_no_discounts_means_full_price(self):
        result = _compute(InMemoryDatabase(), [_line(quantity=2)])

        assert result.total == Decimal("200.00")
        assert result.discount_amount == Decimal("0.00")
        assert result.discount_ids == []

    def test_expired_discount_is_ignored(self):
        db = InMemoryDatabase()
        db.add_discount(20, starts_in=timedelta(days=-10), ends_in=timedelta(days=-1))

        assert _compute(db, [_line()]).total == Decimal("100.00")

    def test_future_discount_is_ignored(self):
        db = InMemoryDatabase()
        db.add_discount(20, starts_in=timedelta(days=1), ends_in=timedelta(days=5))

        assert _compute(db, [_line()]).total == Decimal("100.00")

    def test_inactive_discount_is_ignored(self):
        db = InMemoryDatabase()
        db.add_discount(20, is_active=False)

        assert _compute(db, [_line()]).total == Decimal("100.00")

    def test_exhausted_discount_is_ignored(self):
        db = InMemoryDatabase()
        db.add_discount(20, usage_limit=3, usage_count=3)

        assert _compute(db, [_line()]).total == Decimal("100.00")

    def test_other_cafeteria_discount_is_ignored(self):
        db = InMemoryDatabase()
        db.add_discount(20, cafeteria_id="caf-annex")

        assert _compute(db, [_line()]).total == Decimal("100.00")

    def test_redeem_counts_one_use_per_order(self):
        db = InMemoryDatabase()
        discount = db.add_discount(10)

        _compute(db, [_line(), _line(menu_item_id="fries", unit_price="60")])

        assert db.state.discounts[discount.discount_id].usage_count == 1

    def test_preview_does_not_consume_usage(self):
        db = InMemoryDatabase()
        discount = db.add_discount(10, usage_limit=1)

        result = _compute(db, [_line()], redeem=False)

        assert result.discount_ids == [discount.discount_id]
        assert db.state.discounts[discount.discount_id].usage_count == 0

    def test_lost_redemption_race_prices_without_discount(self):
        db = InMemoryDatabase()
        discount = db.add_discount(20, usage_limit=1)

        class ExhaustedDiscounts:
            async def find_candidates(self, *args):
                return [discount]

            async def try_redeem(self, discount_id):
                return False

        class UnitOfWork:
            discounts = ExhaustedDiscounts()

        result = asyncio.run(DiscountResolver().compute_discount(UnitOfWork(), "caf-main", [_line()]))

        assert result.total == Decimal("100.00")
        assert result.lines[0].discount_id is None
