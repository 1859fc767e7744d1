"""Stock projector — balances folded from the ledger on every read.

There is no stored quantity and no cache: the on-hand stock of a batch is
the signed sum of its ledger entries, optionally cut off at a date.
"""

from datetime import date

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.context import LedgerContext
from app.config import settings
from app.models.batch import Batch
from app.models.transaction import LedgerTransaction
from app.schemas.batch import StockSummaryOut
from app.schemas.report import ProductStock
from app.services.batch_store import get_batch


async def _fold(
    db: AsyncSession, code: str, as_of: date | None = None
) -> tuple[float, float]:
    """Return (received, issued) for a batch; both non-negative."""
    delta = LedgerTransaction.quantity_delta
    stmt = select(
        func.coalesce(func.sum(case((delta > 0, delta), else_=0.0)), 0.0),
        func.coalesce(func.sum(case((delta < 0, -delta), else_=0.0)), 0.0),
    ).where(LedgerTransaction.batch_code == code)
    if as_of is not None:
        stmt = stmt.where(LedgerTransaction.entry_date <= as_of)
    received, issued = (await db.execute(stmt)).one()
    return float(received), float(issued)


async def balance(db: AsyncSession, code: str) -> float:
    """Signed sum of all entries; no existence check (caller holds the batch)."""
    total = await db.scalar(
        select(func.coalesce(func.sum(LedgerTransaction.quantity_delta), 0.0))
        .where(LedgerTransaction.batch_code == code)
    )
    return float(total or 0.0)


async def lowest_balance_from(db: AsyncSession, code: str, on_date: date) -> float:
    """Lowest end-of-day balance of a batch on ``on_date`` or any later date.

    An outflow dated ``on_date`` fits only if it does not exceed this
    figure; otherwise some later day would be left below zero.
    """
    received, issued = await _fold(db, code, on_date)
    running = lowest = received - issued

    later = (
        select(LedgerTransaction.entry_date, func.sum(LedgerTransaction.quantity_delta))
        .where(LedgerTransaction.batch_code == code, LedgerTransaction.entry_date > on_date)
        .group_by(LedgerTransaction.entry_date)
        .order_by(LedgerTransaction.entry_date)
    )
    for _, delta in (await db.execute(later)).all():
        running += float(delta)
        lowest = min(lowest, running)
    return lowest


async def current_stock(db: AsyncSession, code: str) -> float:
    await get_batch(db, code)
    return await balance(db, code)


async def stock_as_of(db: AsyncSession, code: str, as_of: date) -> float:
    await get_batch(db, code)
    received, issued = await _fold(db, code, as_of)
    return received - issued


def stock_status(received: float, issued: float) -> str:
    on_hand = received - issued
    if on_hand <= settings.quantity_tolerance:
        return "depleted"
    if issued <= settings.quantity_tolerance:
        return "full"
    return "partial"


async def stock_summary(
    db: AsyncSession, code: str, as_of: date | None = None
) -> StockSummaryOut:
    batch = await get_batch(db, code)
    received, issued = await _fold(db, code, as_of)
    return StockSummaryOut(
        batch_code=batch.code,
        unit=batch.unit,
        as_of=as_of,
        received=received,
        issued=issued,
        on_hand=received - issued,
        status=stock_status(received, issued),
    )


async def stock_by_product(
    db: AsyncSession, ctx: LedgerContext, cooperative_id: str
) -> list[ProductStock]:
    """On-hand totals per product type for one cooperative."""
    ctx.require_cooperative(cooperative_id)

    per_batch = (
        select(
            Batch.code.label("code"),
            Batch.product_type.label("product_type"),
            Batch.unit.label("unit"),
            func.coalesce(func.sum(LedgerTransaction.quantity_delta), 0.0).label("on_hand"),
        )
        .join(LedgerTransaction, LedgerTransaction.batch_code == Batch.code, isouter=True)
        .where(Batch.cooperative_id == cooperative_id)
        .group_by(Batch.code, Batch.product_type, Batch.unit)
        .subquery()
    )
    stmt = (
        select(
            per_batch.c.product_type,
            per_batch.c.unit,
            func.count(per_batch.c.code),
            func.sum(per_batch.c.on_hand),
        )
        .group_by(per_batch.c.product_type, per_batch.c.unit)
        .order_by(per_batch.c.product_type, per_batch.c.unit)
    )
    rows = (await db.execute(stmt)).all()
    return [
        ProductStock(
            product_type=product_type,
            unit=unit,
            batch_count=count,
            on_hand=float(on_hand or 0.0),
        )
        for product_type, unit, count, on_hand in rows
    ]
