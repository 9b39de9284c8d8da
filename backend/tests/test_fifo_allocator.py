"""
Tests for FIFO planning.

plan_draws is pure, so most cases run on unsaved ProductBatch instances;
allocate is exercised against the database for ordering and validation.
"""

from decimal import Decimal

import pytest

from medcure.core.errors import InsufficientStockError, ValidationError
from medcure.models.batch import ProductBatch, BATCH_ACTIVE, BATCH_DEPLETED
from medcure.services.fifo_allocator import allocate, get_current_batch, plan_draws, validate_quantity

from conftest import DAY1, DAY2, DAY3


def batch(batch_id: int, remaining: int, status: str = BATCH_ACTIVE) -> ProductBatch:
    return ProductBatch(
        id=batch_id,
        product_id=1,
        initial_quantity=max(remaining, 1),
        quantity_remaining=remaining,
        purchase_price=Decimal("1"),
        selling_price=Decimal("2"),
        status=status,
    )


class TestPlanDraws:
    """Greedy oldest-first planning."""

    def test_spills_into_next_batch(self):
        plan = plan_draws(1, [batch(1, 100), batch(2, 200)], 150)

        assert plan.as_pairs() == [(1, 100), (2, 50)]
        assert plan.quantity_requested == 150

    def test_single_batch_covers_request(self):
        plan = plan_draws(1, [batch(1, 100), batch(2, 200)], 30)

        assert plan.as_pairs() == [(1, 30)]

    def test_exact_total_uses_every_batch(self):
        plan = plan_draws(1, [batch(1, 3), batch(2, 4)], 7)

        assert plan.as_pairs() == [(1, 3), (2, 4)]

    def test_draws_sum_to_request(self):
        plan = plan_draws(1, [batch(1, 5), batch(2, 5), batch(3, 5)], 12)

        assert sum(d.quantity for d in plan.draws) == 12
        assert plan.batch_ids == [1, 2, 3]

    def test_skips_unavailable_batches(self):
        batches = [batch(1, 0, BATCH_DEPLETED), batch(2, 10)]

        plan = plan_draws(1, batches, 4)

        assert plan.as_pairs() == [(2, 4)]

    def test_insufficient_stock_reports_available(self):
        with pytest.raises(InsufficientStockError) as exc_info:
            plan_draws(7, [batch(1, 10)], 15)

        assert exc_info.value.requested == 15
        assert exc_info.value.available == 10
        assert exc_info.value.product_id == 7

    def test_no_batches_is_insufficient(self):
        with pytest.raises(InsufficientStockError) as exc_info:
            plan_draws(1, [], 1)

        assert exc_info.value.available == 0

    def test_does_not_mutate_batches(self):
        batches = [batch(1, 10), batch(2, 10)]

        plan_draws(1, batches, 15)

        assert [b.quantity_remaining for b in batches] == [10, 10]


class TestValidateQuantity:
    """Quantities are positive whole pieces."""

    @pytest.mark.parametrize("quantity", [0, -1, -100])
    def test_rejects_non_positive(self, quantity):
        with pytest.raises(ValidationError):
            validate_quantity(quantity)

    @pytest.mark.parametrize("quantity", [1.5, "3", None, True])
    def test_rejects_non_integers(self, quantity):
        with pytest.raises(ValidationError):
            validate_quantity(quantity)

    def test_accepts_positive_int(self):
        assert validate_quantity(3) == 3


class TestAllocate:
    """Planning against stored batches."""

    async def test_orders_by_stock_in_time_not_id(self, db_session, make_product, stock_in):
        product_id = await make_product()
        newer = await stock_in(product_id, 10, "1", "2", DAY3)
        older = await stock_in(product_id, 10, "1", "3", DAY1)

        plan = await allocate(db_session, product_id, 15)

        assert plan.as_pairs() == [(older, 10), (newer, 5)]

    async def test_same_timestamp_falls_back_to_id(self, db_session, make_product, stock_in):
        product_id = await make_product()
        first = await stock_in(product_id, 5, "1", "2", DAY2)
        second = await stock_in(product_id, 5, "1", "2", DAY2)

        plan = await allocate(db_session, product_id, 6)

        assert plan.as_pairs() == [(first, 5), (second, 1)]

    async def test_rejects_bad_quantity(self, db_session, make_product):
        product_id = await make_product()

        with pytest.raises(ValidationError):
            await allocate(db_session, product_id, 0)

    async def test_unknown_product_has_no_stock(self, db_session):
        with pytest.raises(InsufficientStockError):
            await allocate(db_session, 9999, 1)

    async def test_current_batch_is_oldest_with_stock(self, db_session, make_product, stock_in):
        product_id = await make_product()
        first = await stock_in(product_id, 5, "1", "2", DAY1)
        await stock_in(product_id, 5, "1", "2", DAY2)

        current = await get_current_batch(db_session, product_id)

        assert current.id == first
