"""Batch store — identity and parentage of batches.

Batches never carry a quantity; stock is folded from the ledger.  A new
batch may name a parent, which must already exist and belong to the same
cooperative, so lineage can only grow downward from existing batches.
"""

import logging
from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.context import LedgerContext
from app.middleware.exceptions import (
    DuplicateBatchError,
    InvalidParentError,
    NotFoundError,
)
from app.models.batch import Batch
from app.models.registry import Cooperative
from app.utils.numbering import generate_batch_code

logger = logging.getLogger(__name__)


async def get_batch(db: AsyncSession, code: str) -> Batch:
    batch = (
        await db.execute(select(Batch).where(Batch.code == code))
    ).scalar_one_or_none()
    if batch is None:
        raise NotFoundError("Batch", code)
    return batch


async def get_batch_for(db: AsyncSession, ctx: LedgerContext, code: str) -> Batch:
    """get_batch, limited to the caller's cooperatives."""
    batch = await get_batch(db, code)
    ctx.require_cooperative(batch.cooperative_id)
    return batch


async def lock_batch(db: AsyncSession, code: str) -> Batch:
    """Load a batch with a row lock held until the transaction ends.

    Outflows take this lock before reading the balance, so two writers on
    the same batch serialise instead of both passing the stock check.
    """
    batch = (
        await db.execute(
            select(Batch).where(Batch.code == code).with_for_update()
        )
    ).scalar_one_or_none()
    if batch is None:
        raise NotFoundError("Batch", code)
    return batch


async def create_batch(
    db: AsyncSession,
    ctx: LedgerContext,
    cooperative_id: str,
    product_type: str,
    unit: str = "kg",
    parent_code: str | None = None,
    code: str | None = None,
    notes: str | None = None,
    on_date: date | None = None,
) -> Batch:
    """Register a new batch.

    Raises:
        PermissionDeniedError: cooperative outside the caller's scope
        NotFoundError:         unknown cooperative
        InvalidParentError:    parent missing or in another cooperative
        DuplicateBatchError:   explicit code already taken
    """
    ctx.require_cooperative(cooperative_id)

    cooperative = await db.get(Cooperative, cooperative_id)
    if cooperative is None:
        raise NotFoundError("Cooperative", cooperative_id)

    if parent_code is not None:
        parent = (
            await db.execute(select(Batch).where(Batch.code == parent_code))
        ).scalar_one_or_none()
        if parent is None:
            raise InvalidParentError(f"Parent batch does not exist: {parent_code}")
        if parent.cooperative_id != cooperative_id:
            raise InvalidParentError(
                f"Parent batch {parent_code} belongs to another cooperative"
            )

    if code is None:
        code = await generate_batch_code(db, product_type, on_date)
    else:
        existing = (
            await db.execute(select(Batch.id).where(Batch.code == code))
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateBatchError(code)

    batch = Batch(
        code=code,
        cooperative_id=cooperative_id,
        product_type=product_type,
        unit=unit,
        parent_code=parent_code,
        notes=notes,
        created_by=ctx.user_id,
    )
    db.add(batch)
    await db.flush()

    logger.info(
        f"Batch created: {code} ({product_type}) parent={parent_code}",
        extra={"batch_code": code, "cooperative_id": cooperative_id},
    )
    return batch


async def list_batches(
    db: AsyncSession,
    ctx: LedgerContext,
    cooperative_id: str | None = None,
    product_type: str | None = None,
    parent_code: str | None = None,
    limit: int = 50,
    cursor: str | None = None,
) -> tuple[list[Batch], int, str | None]:
    """Cursor-paginated batch listing, oldest first.

    Returns (items, total, next_cursor); next_cursor is None on the last page.
    """
    base_stmt = ctx.restrict(select(Batch), Batch.cooperative_id)
    if cooperative_id:
        ctx.require_cooperative(cooperative_id)
        base_stmt = base_stmt.where(Batch.cooperative_id == cooperative_id)
    if product_type:
        base_stmt = base_stmt.where(Batch.product_type == product_type)
    if parent_code:
        base_stmt = base_stmt.where(Batch.parent_code == parent_code)

    total = await db.scalar(select(func.count()).select_from(base_stmt.subquery())) or 0

    if cursor:
        try:
            base_stmt = base_stmt.where(Batch.created_at > datetime.fromisoformat(cursor))
        except ValueError:
            pass

    # Fetch limit+1 to detect has_more without a second COUNT query
    rows = list(
        (
            await db.execute(
                base_stmt.order_by(Batch.created_at.asc(), Batch.code.asc()).limit(limit + 1)
            )
        ).scalars().all()
    )
    items = rows[:limit]
    next_cursor = items[-1].created_at.isoformat() if len(rows) > limit and items else None
    return items, total, next_cursor
