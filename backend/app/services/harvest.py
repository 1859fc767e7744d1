"""Harvest intake — a land's harvest enters inventory as a new origin batch.

Resolves land → farmer → cooperative from the registry, creates the batch
and records its RECEIPT/harvest entry carrying the farmer and land, so the
traceability origin stage can always be resolved for intake batches.
"""

import logging
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.context import LedgerContext
from app.middleware.exceptions import LedgerValidationError, NotFoundError
from app.models.batch import Batch
from app.models.registry import Farmer, Land
from app.models.transaction import LedgerTransaction, Operation, TransactionKind
from app.services.batch_store import create_batch
from app.services.ledger import record_transaction

logger = logging.getLogger(__name__)


async def intake_harvest(
    db: AsyncSession,
    ctx: LedgerContext,
    land_id: str,
    quantity_kg: float,
    harvest_date: date,
    product_type: str = "cherry",
    code: str | None = None,
    notes: str | None = None,
) -> tuple[Batch, LedgerTransaction]:
    land = await db.get(Land, land_id)
    if land is None:
        raise NotFoundError("Land", land_id)
    ctx.require_cooperative(land.cooperative_id)

    farmer_id = land.farmer_id
    if farmer_id is not None:
        farmer = await db.get(Farmer, farmer_id)
        if farmer is not None and not farmer.is_active:
            raise LedgerValidationError(f"Farmer {farmer_id} is inactive")

    batch = await create_batch(
        db, ctx,
        cooperative_id=land.cooperative_id,
        product_type=product_type,
        unit="kg",
        code=code,
        notes=notes,
        on_date=harvest_date,
    )
    entry = await record_transaction(
        db, ctx,
        batch_code=batch.code,
        kind=TransactionKind.RECEIPT,
        operation=Operation.HARVEST,
        quantity=quantity_kg,
        on_date=harvest_date,
        farmer_id=farmer_id,
        land_id=land.id,
        notes=notes,
    )

    logger.info(
        f"Harvest intake: {quantity_kg:g} kg from land {land.name} → {batch.code}",
        extra={"batch_code": batch.code, "land_id": land.id},
    )
    return batch, entry
