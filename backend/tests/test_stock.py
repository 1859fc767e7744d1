"""Stock projector tests — balances folded from the ledger."""

from datetime import date

import pytest

from app.middleware.exceptions import InsufficientStockError, NotFoundError, PermissionDeniedError
from app.services.ledger import OutputSpec, record_transaction, record_transformation
from app.services.stock import (
    current_stock,
    lowest_balance_from,
    stock_as_of,
    stock_by_product,
    stock_status,
    stock_summary,
)


@pytest.mark.unit
class TestStockStatus:

    def test_full(self):
        assert stock_status(100, 0) == "full"

    def test_partial(self):
        assert stock_status(100, 40) == "partial"

    def test_depleted(self):
        assert stock_status(100, 100) == "depleted"

    def test_nothing_received(self):
        assert stock_status(0, 0) == "depleted"


@pytest.mark.unit
@pytest.mark.asyncio
class TestBalances:

    async def test_unknown_batch(self, read, registry):
        with pytest.raises(NotFoundError):
            await read(lambda db: current_stock(db, "MISSING-001"))

    async def test_as_of_cuts_off_later_entries(self, atomic, read, harvested_batch, national_ctx):
        await harvested_batch("CHERRY-001", 300, on_date=date(2026, 3, 1))
        await atomic(lambda db: record_transaction(
            db, national_ctx, "CHERRY-001", "DISPATCH", "sale", 100, date(2026, 3, 10),
        ))

        assert await read(lambda db: stock_as_of(db, "CHERRY-001", date(2026, 2, 28))) == 0
        assert await read(lambda db: stock_as_of(db, "CHERRY-001", date(2026, 3, 9))) == 300
        assert await read(lambda db: stock_as_of(db, "CHERRY-001", date(2026, 3, 10))) == 200
        assert await read(lambda db: current_stock(db, "CHERRY-001")) == 200

    async def test_summary_splits_received_and_issued(self, atomic, read, harvested_batch, national_ctx):
        await harvested_batch("CHERRY-001", 480)
        await atomic(lambda db: record_transformation(
            db, national_ctx, "CHERRY-001", 100, [("GREENBEAN-001", 100)], date(2026, 3, 5),
        ))

        summary = await read(lambda db: stock_summary(db, "CHERRY-001"))
        assert summary.received == 480
        assert summary.issued == 100
        assert summary.on_hand == 380
        assert summary.status == "partial"
        assert summary.unit == "kg"

        child = await read(lambda db: stock_summary(db, "GREENBEAN-001"))
        assert child.status == "full"

    async def test_summary_as_of(self, atomic, read, harvested_batch, national_ctx):
        await harvested_batch("CHERRY-001", 50, on_date=date(2026, 3, 1))
        await atomic(lambda db: record_transaction(
            db, national_ctx, "CHERRY-001", "DISPATCH", "distribution", 50, date(2026, 3, 2),
        ))

        now = await read(lambda db: stock_summary(db, "CHERRY-001"))
        assert now.status == "depleted"
        before = await read(lambda db: stock_summary(db, "CHERRY-001", date(2026, 3, 1)))
        assert before.as_of == date(2026, 3, 1)
        assert before.status == "full"

    async def test_lowest_balance_from_date(self, atomic, read, harvested_batch, national_ctx):
        """300 on 03-01, 250 out on 03-10, 100 back in on 03-20."""
        await harvested_batch("CHERRY-001", 300)
        await atomic(lambda db: record_transaction(
            db, national_ctx, "CHERRY-001", "DISPATCH", "sale", 250, date(2026, 3, 10),
        ))
        await atomic(lambda db: record_transaction(
            db, national_ctx, "CHERRY-001", "RECEIPT", "purchase", 100, date(2026, 3, 20),
        ))

        assert await read(lambda db: lowest_balance_from(db, "CHERRY-001", date(2026, 2, 1))) == 0
        assert await read(lambda db: lowest_balance_from(db, "CHERRY-001", date(2026, 3, 5))) == 50
        assert await read(lambda db: lowest_balance_from(db, "CHERRY-001", date(2026, 3, 20))) == 150

    async def test_as_of_never_negative_after_out_of_order_entries(self, atomic, read, harvested_batch, national_ctx):
        await harvested_batch("CHERRY-001", 100, on_date=date(2026, 6, 1))
        with pytest.raises(InsufficientStockError):
            await atomic(lambda db: record_transaction(
                db, national_ctx, "CHERRY-001", "DISPATCH", "sale", 100, date(2026, 1, 1),
            ))
        await atomic(lambda db: record_transaction(
            db, national_ctx, "CHERRY-001", "RECEIPT", "purchase", 30, date(2026, 4, 1),
        ))
        await atomic(lambda db: record_transaction(
            db, national_ctx, "CHERRY-001", "DISPATCH", "sale", 30, date(2026, 5, 1),
        ))
        await atomic(lambda db: record_transaction(
            db, national_ctx, "CHERRY-001", "DISPATCH", "distribution", 100, date(2026, 6, 15),
        ))

        for day in (date(2026, 1, 1), date(2026, 3, 1), date(2026, 4, 1), date(2026, 5, 1),
                    date(2026, 6, 1), date(2026, 6, 15), date(2026, 12, 31)):
            assert await read(lambda db: stock_as_of(db, "CHERRY-001", day)) >= 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestStockByProduct:

    async def test_totals_per_product(self, atomic, read, harvested_batch, registry, national_ctx):
        await harvested_batch("CHERRY-001", 480)
        await harvested_batch("CHERRY-002", 120)
        await atomic(lambda db: record_transformation(
            db, national_ctx, "CHERRY-001", 100,
            [OutputSpec("GREENBEAN-001", 100, product_type="green_bean")], date(2026, 3, 5),
        ))

        rows = await read(lambda db: stock_by_product(db, national_ctx, registry.gayo))
        by_product = {r.product_type: r for r in rows}

        assert by_product["cherry"].batch_count == 2
        assert by_product["cherry"].on_hand == 500
        assert by_product["green_bean"].on_hand == 100

    async def test_other_cooperative_denied(self, read, registry, gayo_ctx):
        with pytest.raises(PermissionDeniedError):
            await read(lambda db: stock_by_product(db, gayo_ctx, registry.bener))
