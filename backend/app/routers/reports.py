"""Reports router — rollups, supply projection, stock totals, dashboard, ledger audit.

Endpoints:
    GET    /api/reports/rollup                     Metric at a hierarchy level
    GET    /api/reports/supply-projection          Estimated harvest per province/month
    GET    /api/reports/stock/{cooperative_id}     On-hand totals per product
    GET    /api/reports/dashboard/{cooperative_id} Next harvest, stock, latest entries
    GET    /api/reports/integrity                  Ledger invariant audit
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.context import LedgerContext
from app.auth.deps import require_permission
from app.database import get_db
from app.schemas.report import (
    CooperativeDashboard,
    IntegrityReport,
    ProductStock,
    ProjectionRow,
    RollupLevel,
    RollupMetric,
    RollupOut,
)
from app.services.aggregation import cooperative_dashboard, rollup, supply_projection
from app.services.integrity import verify_ledger
from app.services.stock import stock_by_product

router = APIRouter()


@router.get("/rollup", response_model=RollupOut)
async def get_rollup(
    level: RollupLevel = Query(...),
    metric: RollupMetric = Query(...),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("reports.read")),
):
    rows = await rollup(db, ctx, level, metric, date_from=date_from, date_to=date_to)
    return RollupOut(level=level, metric=metric, rows=rows)


@router.get("/supply-projection", response_model=list[ProjectionRow])
async def get_supply_projection(
    month: str | None = Query(None, pattern=r"^\d{4}-\d{2}$"),
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("reports.national")),
):
    return await supply_projection(db, ctx, month=month)


@router.get("/stock/{cooperative_id}", response_model=list[ProductStock])
async def get_cooperative_stock(
    cooperative_id: str,
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("ledger.read")),
):
    return await stock_by_product(db, ctx, cooperative_id)


@router.get("/dashboard/{cooperative_id}", response_model=CooperativeDashboard)
async def get_cooperative_dashboard(
    cooperative_id: str,
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("reports.read")),
):
    return await cooperative_dashboard(db, ctx, cooperative_id)


@router.get("/integrity", response_model=IntegrityReport)
async def get_integrity_report(
    cooperative_id: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: LedgerContext = Depends(require_permission("reports.read")),
):
    return await verify_ledger(db, ctx, cooperative_id=cooperative_id)
