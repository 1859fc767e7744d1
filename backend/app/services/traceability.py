"""Traceability reconstruction — from cup back to farm.

Given any batch, rebuild its provenance from the ledger and registry:

  1. origin          the root of the lineage path, joined through its
                     harvest receipt to land, farmer and cooperative
  2. harvest         the receipts that brought the origin batch into stock
  3. processing      one step per transformation between path batches
  4. current_status  on-hand stock of the requested batch

Missing registry links never abort the query: the affected stage is
reported as "unknown" and the rest of the report is still produced.
Only an unknown requested batch is an error.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.registry import Cooperative, Farmer, Land, QualityCheckpoint
from app.models.transaction import LedgerTransaction, Operation, TransactionKind
from app.schemas.traceability import (
    CheckpointOut,
    CooperativeRef,
    CurrentStatusStage,
    FarmerRef,
    HarvestReceipt,
    HarvestStage,
    LandRef,
    OriginStage,
    ProcessingStage,
    ProcessingStep,
    TraceabilityReport,
    TraceSummary,
)
from app.schemas.transaction import TransactionOut
from app.services.batch_store import get_batch
from app.services.lineage import lineage_path
from app.services.stock import stock_summary

logger = logging.getLogger(__name__)

ORIGIN_OPERATIONS = (Operation.HARVEST.value, Operation.PURCHASE.value)


async def _origin_stage(db: AsyncSession, origin, receipts) -> OriginStage:
    cooperative = await db.get(Cooperative, origin.cooperative_id)
    linked = next(
        (r for r in receipts if r.land_id is not None or r.farmer_id is not None),
        None,
    )

    land = farmer = None
    if linked is not None:
        if linked.land_id is not None:
            land = await db.get(Land, linked.land_id)
        farmer_id = linked.farmer_id or (land.farmer_id if land else None)
        if farmer_id is not None:
            farmer = await db.get(Farmer, farmer_id)

    if land is not None and farmer is not None:
        status = "known"
    elif land is not None or farmer is not None:
        status = "partial"
    else:
        status = "unknown"
        logger.info(
            f"No harvest-to-land link for origin batch {origin.code}",
            extra={"batch_code": origin.code},
        )

    return OriginStage(
        status=status,
        batch_code=origin.code,
        cooperative=CooperativeRef(
            id=cooperative.id,
            name=cooperative.name,
            province=cooperative.province,
            regency=cooperative.regency,
        ) if cooperative else None,
        farmer=FarmerRef(id=farmer.id, name=farmer.name, contact=farmer.contact) if farmer else None,
        land=LandRef(
            id=land.id,
            name=land.name,
            location=land.location,
            area_hectares=land.area_hectares,
            coffee_variety=land.coffee_variety,
        ) if land else None,
    )


def _processing_steps(path, history) -> list[ProcessingStep]:
    """Every transformation that moved quantity from one path batch to the next."""
    by_code = {b.code: b for b in path}
    next_code = {parent.code: child.code for parent, child in zip(path, path[1:])}
    out_kind = TransactionKind.TRANSFORM_OUT.value
    in_kind = TransactionKind.TRANSFORM_IN.value

    steps = []
    for out in history:
        if out.kind != out_kind or out.operation_ref is None:
            continue
        child_code = next_code.get(out.batch_code)
        legs_in = [
            t for t in history
            if t.operation_ref == out.operation_ref
            and t.kind == in_kind
            and t.batch_code == child_code
        ]
        if not legs_in:
            continue
        steps.append(ProcessingStep(
            operation_ref=out.operation_ref,
            date=out.entry_date,
            source_code=out.batch_code,
            output_code=child_code,
            output_product_type=by_code[child_code].product_type,
            quantity_out=-out.quantity_delta,
            quantity_in=sum(t.quantity_delta for t in legs_in),
            loss_quantity=out.loss_quantity or 0.0,
        ))
    steps.sort(key=lambda s: (s.date, path.index(by_code[s.output_code])))
    return steps


async def reconstruct(db: AsyncSession, code: str) -> TraceabilityReport:
    batch = await get_batch(db, code)
    path = await lineage_path(db, code)
    origin = path[0]
    codes = [b.code for b in path]

    history = list(
        (
            await db.execute(
                select(LedgerTransaction)
                .where(LedgerTransaction.batch_code.in_(codes))
                .order_by(
                    LedgerTransaction.entry_date.asc(),
                    LedgerTransaction.created_at.asc(),
                    LedgerTransaction.id.asc(),
                )
            )
        ).scalars().all()
    )
    receipts = [
        t for t in history
        if t.batch_code == origin.code
        and t.kind == TransactionKind.RECEIPT.value
        and t.operation in ORIGIN_OPERATIONS
    ]

    origin_stage = await _origin_stage(db, origin, receipts)

    harvest_stage = HarvestStage(
        status="known" if receipts else "unknown",
        batch_code=origin.code,
        product_type=origin.product_type,
        receipts=[
            HarvestReceipt(
                transaction_id=r.id,
                date=r.entry_date,
                operation=r.operation,
                quantity=r.quantity_delta,
            )
            for r in receipts
        ],
        total_received=sum(r.quantity_delta for r in receipts),
    )

    steps = _processing_steps(path, history)
    covered = {s.output_code for s in steps}
    processing_stage = ProcessingStage(
        status="recorded" if steps else "none",
        steps=steps,
    )

    stock = await stock_summary(db, code)
    current_stage = CurrentStatusStage(
        status=stock.status,
        batch_code=batch.code,
        product_type=batch.product_type,
        unit=batch.unit,
        received=stock.received,
        issued=stock.issued,
        on_hand=stock.on_hand,
    )

    checkpoints = list(
        (
            await db.execute(
                select(QualityCheckpoint)
                .where(QualityCheckpoint.batch_code == code)
                .order_by(
                    QualityCheckpoint.checkpoint_date.asc(),
                    QualityCheckpoint.created_at.asc(),
                    QualityCheckpoint.id.asc(),
                )
            )
        ).scalars().all()
    )

    # origin, harvest, processing, current; a partial origin counts half
    known = (
        {"known": 1.0, "partial": 0.5}.get(origin_stage.status, 0.0)
        + (1.0 if receipts else 0.0)
        + (1.0 if len(covered) == len(path) - 1 else 0.0)
        + 1.0
    )
    summary = TraceSummary(
        total_farms=len({r.land_id or r.farmer_id for r in receipts if r.land_id or r.farmer_id}),
        total_processing_steps=len(steps),
        quality_checks_total=len(checkpoints),
        quality_checks_passed=sum(1 for c in checkpoints if c.status == "PASSED"),
        completeness=round(known / 4, 4),
    )

    logger.debug(
        f"Traceability for {code}: {len(path)} batches, {len(steps)} steps"
    )

    return TraceabilityReport(
        report_id=f"TR-{batch.code}",
        batch_code=batch.code,
        lineage=codes,
        stages=[origin_stage, harvest_stage, processing_stage, current_stage],
        history=[TransactionOut.model_validate(t) for t in history],
        quality_checkpoints=[CheckpointOut.model_validate(c) for c in checkpoints],
        summary=summary,
    )
