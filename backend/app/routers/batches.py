"""Batch router — batch registry, stock and lineage queries.

Endpoints:
    POST   /api/batches/                    Register a batch (no quantity)
    GET    /api/batches/                    List batches (cursor paginated)
    GET    /api/batches/{code}              Single batch detail
    GET    /api/batches/{code}/stock        Stock summary (optionally as of a date)
    GET    /api/batches/{code}/children     Direct children
    GET    /api/batches/{code}/ancestors    Ancestors, root first
    GET    /api/batches/{code}/descendants  Everything derived from the batch
    GET    /api/batches/{code}/traceability Full provenance report
    GET    /api/batches/{code}/qr           QR code SVG linking to the report
"""

import io
from datetime import date

import segno
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.auth.context import LedgerContext
from app.auth.deps import require_permission
from app.config import settings
from app.database import get_db, get_session_factory
from app.schemas.batch import BatchCreate, BatchOut, LineageEdgeOut, StockSummaryOut
from app.schemas.common import CursorPaginatedResponse
from app.schemas.traceability import TraceabilityReport
from app.services import batch_store, lineage
from app.services.stock import stock_summary
from app.services.traceability import reconstruct
from app.services.unit_of_work import run_atomic

router = APIRouter()


# ── Create ───────────────────────────────────────────────────

@router.post("/", response_model=BatchOut, status_code=status.HTTP_201_CREATED)
async def create_batch(
    body: BatchCreate,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ctx: LedgerContext = Depends(require_permission("ledger.write")),
):
    """Register a batch.  Stock only ever enters through the ledger."""
    batch = await run_atomic(
        session_factory,
        lambda db: batch_store.create_batch(
            db, ctx,
            cooperative_id=body.cooperative_id,
            product_type=body.product_type,
            unit=body.unit,
            parent_code=body.parent_code,
            code=body.code,
            notes=body.notes,
        ),
        name="create_batch",
    )
    return BatchOut.model_validate(batch)


# ── List / detail ────────────────────────────────────────────

@router.get("/", response_model=CursorPaginatedResponse[BatchOut])
async def list_batches(
    cooperative_id: str | None = Query(None),
    product_type: str | None = Query(None),
    parent_code: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    cursor: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("ledger.read")),
):
    items, total, next_cursor = await batch_store.list_batches(
        db, ctx,
        cooperative_id=cooperative_id,
        product_type=product_type,
        parent_code=parent_code,
        limit=limit,
        cursor=cursor,
    )
    return CursorPaginatedResponse(
        items=[BatchOut.model_validate(b) for b in items],
        total=total,
        limit=limit,
        next_cursor=next_cursor,
        has_more=next_cursor is not None,
    )


@router.get("/{code}", response_model=BatchOut)
async def get_batch(
    code: str,
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("ledger.read")),
):
    return await batch_store.get_batch_for(db, ctx, code)


@router.get("/{code}/stock", response_model=StockSummaryOut)
async def get_stock(
    code: str,
    as_of: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("ledger.read")),
):
    await batch_store.get_batch_for(db, ctx, code)
    return await stock_summary(db, code, as_of)


# ── Lineage ──────────────────────────────────────────────────

@router.get("/{code}/children", response_model=list[BatchOut])
async def get_children(
    code: str,
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("ledger.read")),
):
    await batch_store.get_batch_for(db, ctx, code)
    return await lineage.children(db, code)


@router.get("/{code}/ancestors", response_model=list[BatchOut])
async def get_ancestors(
    code: str,
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("ledger.read")),
):
    await batch_store.get_batch_for(db, ctx, code)
    return await lineage.ancestors(db, code)


@router.get("/{code}/descendants", response_model=list[BatchOut])
async def get_descendants(
    code: str,
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("ledger.read")),
):
    await batch_store.get_batch_for(db, ctx, code)
    return await lineage.descendants(db, code)


@router.get("/{code}/edges", response_model=list[LineageEdgeOut])
async def get_lineage_edges(
    code: str,
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("ledger.read")),
):
    """Edges along the path from the root to this batch."""
    await batch_store.get_batch_for(db, ctx, code)
    path = await lineage.lineage_path(db, code)
    return await lineage.lineage_edges(db, path)


# ── Traceability ─────────────────────────────────────────────

@router.get("/{code}/traceability", response_model=TraceabilityReport)
async def get_traceability(
    code: str,
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("ledger.read")),
):
    await batch_store.get_batch_for(db, ctx, code)
    return await reconstruct(db, code)


@router.get("/{code}/qr")
async def get_batch_qr(
    code: str,
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("ledger.read")),
):
    """Return an SVG QR code pointing at the batch's traceability report."""
    batch = await batch_store.get_batch_for(db, ctx, code)
    url = f"{settings.public_base_url.rstrip('/')}/api/batches/{batch.code}/traceability"

    qr = segno.make(url)
    buf = io.BytesIO()
    qr.save(buf, kind="svg", scale=4, dark="#6f4e37")
    return Response(content=buf.getvalue(), media_type="image/svg+xml")
