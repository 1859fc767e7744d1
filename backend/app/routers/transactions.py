"""Transaction router — append-only ledger entries.

Endpoints:
    POST   /api/transactions/                  Record a RECEIPT or DISPATCH
    POST   /api/transactions/transformations   Record a transformation (all legs)
    POST   /api/transactions/{id}/reverse      Append a compensating entry
    GET    /api/transactions/                  List entries (cursor paginated)
    GET    /api/transactions/{id}              Single entry
"""

from datetime import date

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.auth.context import LedgerContext
from app.auth.deps import require_permission
from app.database import get_db, get_session_factory
from app.schemas.common import CursorPaginatedResponse
from app.schemas.transaction import (
    ReceiptIn,
    ReverseRequest,
    TransactionOut,
    TransactionRequest,
    TransformationRequest,
)
from app.services import ledger
from app.services.unit_of_work import run_atomic

router = APIRouter()


@router.post("/", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
async def record_transaction(
    body: TransactionRequest = Body(...),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ctx: LedgerContext = Depends(require_permission("ledger.write")),
):
    """Record a single-batch movement.

    The body is tagged by ``kind``: RECEIPT accepts harvest / purchase /
    adjustment (with optional farmer and land), DISPATCH accepts
    distribution / sale / adjustment.
    """
    receipt_refs = (
        {"farmer_id": body.farmer_id, "land_id": body.land_id}
        if isinstance(body, ReceiptIn) else {}
    )
    entry = await run_atomic(
        session_factory,
        lambda db: ledger.record_transaction(
            db, ctx,
            batch_code=body.batch_code,
            kind=body.kind,
            operation=body.operation,
            quantity=body.quantity,
            on_date=body.date,
            counterparty=body.counterparty,
            price=body.price,
            external_ref=body.external_ref,
            notes=body.notes,
            **receipt_refs,
        ),
        name="record_transaction",
    )
    return TransactionOut.model_validate(entry)


@router.post(
    "/transformations",
    response_model=list[TransactionOut],
    status_code=status.HTTP_201_CREATED,
)
async def record_transformation(
    body: TransformationRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ctx: LedgerContext = Depends(require_permission("ledger.write")),
):
    """Record a transformation: source outflow, one inflow per output.

    Returns the TRANSFORM_OUT entry first, then the TRANSFORM_IN entries.
    """
    entries = await run_atomic(
        session_factory,
        lambda db: ledger.record_transformation(
            db, ctx,
            source_code=body.source_code,
            quantity_out=body.quantity_out,
            outputs=body.outputs,
            on_date=body.date,
            loss_quantity=body.loss_quantity,
            notes=body.notes,
        ),
        name="record_transformation",
    )
    return [TransactionOut.model_validate(e) for e in entries]


@router.post(
    "/{transaction_id}/reverse",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
)
async def reverse_transaction(
    transaction_id: str,
    body: ReverseRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ctx: LedgerContext = Depends(require_permission("ledger.write")),
):
    entry = await run_atomic(
        session_factory,
        lambda db: ledger.reverse_transaction(
            db, ctx, transaction_id, on_date=body.date, notes=body.notes,
        ),
        name="reverse_transaction",
    )
    return TransactionOut.model_validate(entry)


@router.get("/", response_model=CursorPaginatedResponse[TransactionOut])
async def list_transactions(
    batch_code: str | None = Query(None),
    kind: str | None = Query(None),
    operation: str | None = Query(None),
    operation_ref: str | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    cursor: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("ledger.read")),
):
    items, total, next_cursor = await ledger.list_transactions(
        db, ctx,
        batch_code=batch_code,
        kind=kind,
        operation=operation,
        operation_ref=operation_ref,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        cursor=cursor,
    )
    return CursorPaginatedResponse(
        items=[TransactionOut.model_validate(t) for t in items],
        total=total,
        limit=limit,
        next_cursor=next_cursor,
        has_more=next_cursor is not None,
    )


@router.get("/{transaction_id}", response_model=TransactionOut)
async def get_transaction(
    transaction_id: str,
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("ledger.read")),
):
    entry = await ledger.get_transaction(db, transaction_id)
    ctx.require_cooperative(entry.cooperative_id)
    return TransactionOut.model_validate(entry)
