"""Transaction ledger — the only writer of quantity-changing events.

Rules enforced on every write:
  - quantities are positive; the kind fixes the sign of the stored delta
  - the kind/operation pair must be one of ALLOWED_OPERATIONS
  - an outflow never takes a batch below zero on its date or any later
    date; balances are read after the batch row is locked, inside the
    caller's transaction
  - a transformation is recorded as a unit: one TRANSFORM_OUT on the
    source and one TRANSFORM_IN per output, sharing an operation_ref,
    with sum(outputs) + loss == quantity_out
  - entries are never edited; reverse_transaction appends the opposite

Callers run these inside ``run_atomic`` so nothing is half-written.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.context import LedgerContext
from app.config import settings
from app.middleware.exceptions import (
    ConservationError,
    InsufficientStockError,
    InvalidParentError,
    LedgerValidationError,
    NotFoundError,
)
from app.models.batch import Batch
from app.models.registry import Farmer, Land
from app.models.transaction import (
    ALLOWED_OPERATIONS,
    OUTFLOW_KINDS,
    TRANSFORM_KINDS,
    LedgerTransaction,
    Operation,
    TransactionKind,
)
from app.services.batch_store import create_batch, lock_batch
from app.services.stock import lowest_balance_from
from app.utils.numbering import product_type_for_code

logger = logging.getLogger(__name__)


@dataclass
class OutputSpec:
    """One declared output of a transformation."""
    code: str
    quantity: float
    product_type: str | None = None
    unit: str | None = None


def _normalize_kind(kind) -> str:
    try:
        return TransactionKind(kind).value
    except ValueError:
        raise LedgerValidationError(f"Unknown transaction kind: {kind}")


def _normalize_operation(operation) -> str:
    try:
        return Operation(operation).value
    except ValueError:
        raise LedgerValidationError(f"Unknown operation: {operation}")


def _normalize_outputs(outputs) -> list[OutputSpec]:
    specs = []
    for item in outputs:
        if isinstance(item, OutputSpec):
            specs.append(item)
        elif isinstance(item, (tuple, list)):
            specs.append(OutputSpec(code=item[0], quantity=item[1]))
        else:
            # TransformationOutput schema or anything shaped like it
            specs.append(OutputSpec(
                code=item.code,
                quantity=item.quantity,
                product_type=getattr(item, "product_type", None),
                unit=getattr(item, "unit", None),
            ))
    return specs


async def _ensure_available(
    db: AsyncSession, batch: Batch, requested: float, on_date: date
) -> None:
    available = await lowest_balance_from(db, batch.code, on_date)
    if requested > available + settings.quantity_tolerance:
        raise InsufficientStockError(batch.code, available, requested)


async def _check_context_refs(
    db: AsyncSession,
    cooperative_id: str,
    farmer_id: str | None,
    land_id: str | None,
) -> None:
    if farmer_id is not None:
        farmer = await db.get(Farmer, farmer_id)
        if farmer is None or farmer.cooperative_id != cooperative_id:
            raise LedgerValidationError(
                f"Farmer {farmer_id} is not registered with cooperative {cooperative_id}"
            )
    if land_id is not None:
        land = await db.get(Land, land_id)
        if land is None or land.cooperative_id != cooperative_id:
            raise LedgerValidationError(
                f"Land {land_id} is not registered with cooperative {cooperative_id}"
            )
        if farmer_id is not None and land.farmer_id not in (None, farmer_id):
            raise LedgerValidationError(
                f"Land {land_id} is not worked by farmer {farmer_id}"
            )


# ── Single-batch entries ─────────────────────────────────────

async def record_transaction(
    db: AsyncSession,
    ctx: LedgerContext,
    batch_code: str,
    kind,
    operation,
    quantity: float,
    on_date: date,
    farmer_id: str | None = None,
    land_id: str | None = None,
    counterparty: str | None = None,
    price: float | None = None,
    external_ref: str | None = None,
    notes: str | None = None,
) -> LedgerTransaction:
    """Append a RECEIPT or DISPATCH against one batch.

    Raises:
        LedgerValidationError:  bad kind/operation/quantity or context refs
        NotFoundError:          unknown batch
        PermissionDeniedError:  batch outside the caller's scope
        InsufficientStockError: outflow larger than the locked balance
    """
    kind = _normalize_kind(kind)
    operation = _normalize_operation(operation)

    if kind in TRANSFORM_KINDS:
        raise LedgerValidationError(
            "Transformation entries are recorded through record_transformation"
        )
    if operation not in ALLOWED_OPERATIONS[kind]:
        raise LedgerValidationError(
            f"Operation '{operation}' is not valid for {kind}"
        )
    if quantity is None or quantity <= 0:
        raise LedgerValidationError("Quantity must be positive")

    batch = await lock_batch(db, batch_code)
    ctx.require_cooperative(batch.cooperative_id)
    await _check_context_refs(db, batch.cooperative_id, farmer_id, land_id)

    if kind in OUTFLOW_KINDS:
        await _ensure_available(db, batch, quantity, on_date)

    entry = LedgerTransaction(
        batch_code=batch.code,
        cooperative_id=batch.cooperative_id,
        kind=kind,
        operation=operation,
        quantity_delta=-quantity if kind in OUTFLOW_KINDS else quantity,
        entry_date=on_date,
        farmer_id=farmer_id,
        land_id=land_id,
        counterparty=counterparty,
        price=price,
        external_ref=external_ref,
        notes=notes,
        recorded_by=ctx.user_id,
    )
    db.add(entry)
    await db.flush()

    logger.info(
        f"Ledger {kind}/{operation}: {batch.code} {entry.quantity_delta:+g} {batch.unit}",
        extra={"batch_code": batch.code, "transaction_id": entry.id},
    )
    return entry


# ── Transformations ──────────────────────────────────────────

async def record_transformation(
    db: AsyncSession,
    ctx: LedgerContext,
    source_code: str,
    quantity_out: float,
    outputs,
    on_date: date,
    loss_quantity: float = 0.0,
    notes: str | None = None,
) -> list[LedgerTransaction]:
    """Move quantity from a source batch into one or more child batches.

    ``outputs`` is a sequence of (code, quantity) pairs or OutputSpec-like
    objects.  Outputs that don't exist yet are created as children of the
    source, typed by an explicit product_type, else by a stage named in the
    code prefix, else as the source; existing outputs must already be its
    children.

    Returns the TRANSFORM_OUT entry followed by the TRANSFORM_IN entries.

    Raises:
        LedgerValidationError:  bad quantities, duplicate or self outputs
        ConservationError:      sum(outputs) + loss != quantity_out
        InsufficientStockError: source holds less than quantity_out
        InvalidParentError:     existing output is not a child of the source
    """
    specs = _normalize_outputs(outputs)
    loss_quantity = loss_quantity or 0.0

    if not specs:
        raise LedgerValidationError("A transformation needs at least one output")
    if quantity_out is None or quantity_out <= 0:
        raise LedgerValidationError("quantity_out must be positive")
    if loss_quantity < 0:
        raise LedgerValidationError("loss_quantity cannot be negative")
    codes = [s.code for s in specs]
    if len(set(codes)) != len(codes):
        raise LedgerValidationError("Output batch codes must be distinct")
    if source_code in codes:
        raise LedgerValidationError("An output cannot be the source batch")
    if any(s.quantity is None or s.quantity <= 0 for s in specs):
        raise LedgerValidationError("Output quantities must be positive")

    produced = sum(s.quantity for s in specs)
    if abs(produced + loss_quantity - quantity_out) > settings.quantity_tolerance:
        raise ConservationError(
            f"Outputs ({produced:g}) plus loss ({loss_quantity:g}) "
            f"do not equal quantity out ({quantity_out:g})",
            details={
                "quantity_out": quantity_out,
                "outputs_total": produced,
                "loss_quantity": loss_quantity,
            },
        )

    source = await lock_batch(db, source_code)
    ctx.require_cooperative(source.cooperative_id)
    await _ensure_available(db, source, quantity_out, on_date)

    operation_ref = str(uuid.uuid4())
    op = Operation.TRANSFORMATION.value

    out_entry = LedgerTransaction(
        batch_code=source.code,
        cooperative_id=source.cooperative_id,
        kind=TransactionKind.TRANSFORM_OUT.value,
        operation=op,
        quantity_delta=-quantity_out,
        loss_quantity=loss_quantity,
        entry_date=on_date,
        operation_ref=operation_ref,
        notes=notes,
        recorded_by=ctx.user_id,
    )
    db.add(out_entry)
    entries = [out_entry]

    for spec in specs:
        child = (
            await db.execute(select(Batch).where(Batch.code == spec.code))
        ).scalar_one_or_none()
        if child is None:
            child = await create_batch(
                db, ctx,
                cooperative_id=source.cooperative_id,
                product_type=(
                    spec.product_type
                    or product_type_for_code(spec.code)
                    or source.product_type
                ),
                unit=spec.unit or source.unit,
                parent_code=source.code,
                code=spec.code,
                on_date=on_date,
            )
        elif child.parent_code != source.code:
            raise InvalidParentError(
                f"Output batch {spec.code} is not a child of {source.code}"
            )

        in_entry = LedgerTransaction(
            batch_code=child.code,
            cooperative_id=child.cooperative_id,
            kind=TransactionKind.TRANSFORM_IN.value,
            operation=op,
            quantity_delta=spec.quantity,
            entry_date=on_date,
            operation_ref=operation_ref,
            notes=notes,
            recorded_by=ctx.user_id,
        )
        db.add(in_entry)
        entries.append(in_entry)

    await db.flush()

    logger.info(
        f"Transformation {operation_ref}: {source.code} -{quantity_out:g} → "
        + ", ".join(f"{s.code} +{s.quantity:g}" for s in specs)
        + (f" (loss {loss_quantity:g})" if loss_quantity else ""),
        extra={"batch_code": source.code, "operation_ref": operation_ref},
    )
    return entries


# ── Corrections ──────────────────────────────────────────────

async def get_transaction(db: AsyncSession, transaction_id: str) -> LedgerTransaction:
    entry = await db.get(LedgerTransaction, transaction_id)
    if entry is None:
        raise NotFoundError("Transaction", transaction_id)
    return entry


async def reverse_transaction(
    db: AsyncSession,
    ctx: LedgerContext,
    transaction_id: str,
    on_date: date,
    notes: str | None = None,
) -> LedgerTransaction:
    """Append a compensating entry that cancels a RECEIPT or DISPATCH.

    A receipt is cancelled by an adjustment DISPATCH (subject to the stock
    check), a dispatch by an adjustment RECEIPT.  Each entry can be
    reversed once; compensating and transformation entries cannot.
    """
    original = await get_transaction(db, transaction_id)
    ctx.require_cooperative(original.cooperative_id)

    if original.kind in TRANSFORM_KINDS:
        raise LedgerValidationError("Transformation entries cannot be reversed")
    if original.reverses_id is not None:
        raise LedgerValidationError("A compensating entry cannot be reversed")

    already = (
        await db.execute(
            select(LedgerTransaction.id).where(LedgerTransaction.reverses_id == original.id)
        )
    ).scalar_one_or_none()
    if already is not None:
        raise LedgerValidationError(f"Transaction {original.id} is already reversed")

    batch = await lock_batch(db, original.batch_code)
    quantity = abs(original.quantity_delta)

    if original.kind == TransactionKind.RECEIPT.value:
        kind = TransactionKind.DISPATCH.value
        await _ensure_available(db, batch, quantity, on_date)
        delta = -quantity
    else:
        kind = TransactionKind.RECEIPT.value
        delta = quantity

    entry = LedgerTransaction(
        batch_code=batch.code,
        cooperative_id=batch.cooperative_id,
        kind=kind,
        operation=Operation.ADJUSTMENT.value,
        quantity_delta=delta,
        entry_date=on_date,
        farmer_id=original.farmer_id,
        land_id=original.land_id,
        reverses_id=original.id,
        notes=notes or f"Reversal of {original.id}",
        recorded_by=ctx.user_id,
    )
    db.add(entry)
    await db.flush()

    logger.info(
        f"Reversed {original.kind}/{original.operation} {original.id} on {batch.code}",
        extra={"batch_code": batch.code, "transaction_id": entry.id},
    )
    return entry


# ── Queries ──────────────────────────────────────────────────

async def list_transactions(
    db: AsyncSession,
    ctx: LedgerContext,
    batch_code: str | None = None,
    kind: str | None = None,
    operation: str | None = None,
    operation_ref: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 50,
    cursor: str | None = None,
) -> tuple[list[LedgerTransaction], int, str | None]:
    """Cursor-paginated ledger listing in recording order."""
    base_stmt = ctx.restrict(select(LedgerTransaction), LedgerTransaction.cooperative_id)
    if batch_code:
        base_stmt = base_stmt.where(LedgerTransaction.batch_code == batch_code)
    if kind:
        base_stmt = base_stmt.where(LedgerTransaction.kind == _normalize_kind(kind))
    if operation:
        base_stmt = base_stmt.where(LedgerTransaction.operation == _normalize_operation(operation))
    if operation_ref:
        base_stmt = base_stmt.where(LedgerTransaction.operation_ref == operation_ref)
    if date_from:
        base_stmt = base_stmt.where(LedgerTransaction.entry_date >= date_from)
    if date_to:
        base_stmt = base_stmt.where(LedgerTransaction.entry_date <= date_to)

    total = await db.scalar(select(func.count()).select_from(base_stmt.subquery())) or 0

    if cursor:
        try:
            base_stmt = base_stmt.where(
                LedgerTransaction.created_at > datetime.fromisoformat(cursor)
            )
        except ValueError:
            pass

    rows = list(
        (
            await db.execute(
                base_stmt.order_by(LedgerTransaction.created_at.asc()).limit(limit + 1)
            )
        ).scalars().all()
    )
    items = rows[:limit]
    next_cursor = items[-1].created_at.isoformat() if len(rows) > limit and items else None
    return items, total, next_cursor
