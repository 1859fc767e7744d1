"""Harvest router — land harvest straight into inventory.

Endpoints:
    POST   /api/harvests/    Create an origin batch and its harvest receipt
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.auth.context import LedgerContext
from app.auth.deps import require_permission
from app.database import get_session_factory
from app.schemas.batch import BatchOut
from app.schemas.harvest import HarvestIntakeRequest, HarvestIntakeResponse
from app.schemas.transaction import TransactionOut
from app.services.harvest import intake_harvest
from app.services.unit_of_work import run_atomic

router = APIRouter()


@router.post("/", response_model=HarvestIntakeResponse, status_code=status.HTTP_201_CREATED)
async def harvest_intake(
    body: HarvestIntakeRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ctx: LedgerContext = Depends(require_permission("ledger.write")),
):
    batch, entry = await run_atomic(
        session_factory,
        lambda db: intake_harvest(
            db, ctx,
            land_id=body.land_id,
            quantity_kg=body.quantity_kg,
            harvest_date=body.harvest_date,
            product_type=body.product_type,
            code=body.code,
            notes=body.notes,
        ),
        name="harvest_intake",
    )
    return HarvestIntakeResponse(
        batch=BatchOut.model_validate(batch),
        transaction=TransactionOut.model_validate(entry),
        qr_code_url=f"/api/batches/{batch.code}/qr",
    )
