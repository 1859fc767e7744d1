"""Aggregation engine — rollups over land → farmer → cooperative → province → nation.

Every rollup is recomputed from the ledger and registry on request; there
is no materialised view to drift.  The nation row is always the sum of
the province rows, so the two levels can never disagree.

Metrics:
    harvest_total    kg received as RECEIPT/harvest, net of reversals
    active_farmers   distinct active farmers in the registry
    land_area        hectares of registered land
    productivity     harvest_total / land_area  (None where area is 0)

Only harvest_total honours the date range; the registry metrics describe
the current registry.
"""

from collections import defaultdict
from datetime import date

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.auth.context import LedgerContext
from app.middleware.exceptions import LedgerValidationError
from app.models.registry import (
    ActivityType,
    Cooperative,
    CultivationActivity,
    Farmer,
    Land,
)
from app.models.transaction import LedgerTransaction, Operation, TransactionKind
from app.schemas.report import CooperativeDashboard, NextHarvest, ProjectionRow, RollupRow
from app.schemas.transaction import TransactionOut
from app.services.stock import stock_by_product

LEVELS = ("nation", "province", "cooperative", "farmer", "land")
METRICS = ("harvest_total", "active_farmers", "land_area", "productivity")

NATION_KEY = "national"
NATION_LABEL = "National"

# (key, label) → value
Totals = dict[tuple[str, str], float]


def _key_columns(level: str):
    if level == "province":
        return Cooperative.province, Cooperative.province.label("province_label")
    if level == "cooperative":
        return Cooperative.id, Cooperative.name
    if level == "farmer":
        return Farmer.id, Farmer.name
    if level == "land":
        return Land.id, Land.name
    raise LedgerValidationError(f"Unknown rollup level: {level}")


async def _collect(db: AsyncSession, stmt) -> Totals:
    rows = (await db.execute(stmt)).all()
    return {(key, label): float(value or 0.0) for key, label, value in rows}


# ── Metric queries (province level and below) ────────────────

async def _harvest_totals(
    db: AsyncSession,
    ctx: LedgerContext,
    level: str,
    date_from: date | None,
    date_to: date | None,
) -> Totals:
    entry = LedgerTransaction
    reversed_entry = aliased(LedgerTransaction)
    key, label = _key_columns(level)

    is_harvest = and_(
        entry.kind == TransactionKind.RECEIPT.value,
        entry.operation == Operation.HARVEST.value,
    )
    reverses_harvest = and_(
        entry.reverses_id.is_not(None),
        reversed_entry.kind == TransactionKind.RECEIPT.value,
        reversed_entry.operation == Operation.HARVEST.value,
    )

    stmt = (
        select(key, label, func.sum(entry.quantity_delta))
        .select_from(entry)
        .join(reversed_entry, reversed_entry.id == entry.reverses_id, isouter=True)
        .join(Cooperative, Cooperative.id == entry.cooperative_id)
        .where(or_(is_harvest, reverses_harvest))
    )
    # Entries without a farmer / land reference are left out at those levels
    if level == "farmer":
        stmt = stmt.join(Farmer, Farmer.id == entry.farmer_id)
    elif level == "land":
        stmt = stmt.join(Land, Land.id == entry.land_id)

    if date_from:
        stmt = stmt.where(entry.entry_date >= date_from)
    if date_to:
        stmt = stmt.where(entry.entry_date <= date_to)
    stmt = ctx.restrict(stmt, entry.cooperative_id).group_by(key, label)
    return await _collect(db, stmt)


async def _active_farmers(db: AsyncSession, ctx: LedgerContext, level: str) -> Totals:
    key, label = _key_columns(level)
    if level == "land":
        stmt = (
            select(key, label, func.count(func.distinct(Farmer.id)))
            .select_from(Land)
            .join(
                Farmer,
                and_(Farmer.id == Land.farmer_id, Farmer.is_active == True),  # noqa: E712
                isouter=True,
            )
        )
        stmt = ctx.restrict(stmt, Land.cooperative_id)
    else:
        stmt = (
            select(key, label, func.count(func.distinct(Farmer.id)))
            .select_from(Farmer)
            .join(Cooperative, Cooperative.id == Farmer.cooperative_id)
            .where(Farmer.is_active == True)  # noqa: E712
        )
        stmt = ctx.restrict(stmt, Farmer.cooperative_id)
    return await _collect(db, stmt.group_by(key, label))


async def _land_area(db: AsyncSession, ctx: LedgerContext, level: str) -> Totals:
    key, label = _key_columns(level)
    stmt = (
        select(key, label, func.sum(Land.area_hectares))
        .select_from(Land)
        .join(Cooperative, Cooperative.id == Land.cooperative_id)
    )
    if level == "farmer":
        stmt = stmt.join(Farmer, Farmer.id == Land.farmer_id)
    stmt = ctx.restrict(stmt, Land.cooperative_id).group_by(key, label)
    return await _collect(db, stmt)


def _productivity(harvest: Totals, area: Totals) -> dict[tuple[str, str], float | None]:
    result = {}
    for k in set(harvest) | set(area):
        hectares = area.get(k, 0.0)
        result[k] = harvest.get(k, 0.0) / hectares if hectares > 0 else None
    return result


def _nation(totals: Totals) -> Totals:
    if not totals:
        return {}
    return {(NATION_KEY, NATION_LABEL): sum(totals.values())}


# ── Public API ───────────────────────────────────────────────

async def rollup(
    db: AsyncSession,
    ctx: LedgerContext,
    level: str,
    metric: str,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[RollupRow]:
    """Aggregate ``metric`` at ``level`` within the caller's scope.

    Returns rows sorted by label; an empty list when nothing matches.
    """
    if level not in LEVELS:
        raise LedgerValidationError(f"Unknown rollup level: {level}")
    if metric not in METRICS:
        raise LedgerValidationError(f"Unknown rollup metric: {metric}")
    ctx.require("reports.read")
    if level in ("nation", "province"):
        ctx.require("reports.national")

    base_level = "province" if level == "nation" else level
    nation = _nation if level == "nation" else (lambda totals: totals)

    if metric == "harvest_total":
        values = nation(await _harvest_totals(db, ctx, base_level, date_from, date_to))
    elif metric == "active_farmers":
        values = nation(await _active_farmers(db, ctx, base_level))
    elif metric == "land_area":
        values = nation(await _land_area(db, ctx, base_level))
    else:
        values = _productivity(
            nation(await _harvest_totals(db, ctx, base_level, date_from, date_to)),
            nation(await _land_area(db, ctx, base_level)),
        )

    return [
        RollupRow(key=k, label=lbl, value=v)
        for (k, lbl), v in sorted(values.items(), key=lambda item: (item[0][1], item[0][0]))
    ]


async def supply_projection(
    db: AsyncSession,
    ctx: LedgerContext,
    month: str | None = None,
) -> list[ProjectionRow]:
    """Estimated harvest per province and month (YYYY-MM) from HARVEST_ESTIMATE activities."""
    ctx.require("reports.national")

    stmt = (
        select(
            Cooperative.province,
            CultivationActivity.estimated_date,
            CultivationActivity.estimated_kg,
        )
        .select_from(CultivationActivity)
        .join(Land, Land.id == CultivationActivity.land_id)
        .join(Cooperative, Cooperative.id == Land.cooperative_id)
        .where(
            CultivationActivity.activity_type == ActivityType.HARVEST_ESTIMATE.value,
            CultivationActivity.estimated_date.is_not(None),
        )
    )
    stmt = ctx.restrict(stmt, Land.cooperative_id)

    buckets: dict[tuple[str, str], float] = defaultdict(float)
    for province, estimated_date, estimated_kg in (await db.execute(stmt)).all():
        bucket = estimated_date.strftime("%Y-%m")
        if month and bucket != month:
            continue
        buckets[(province, bucket)] += float(estimated_kg or 0.0)

    return [
        ProjectionRow(province=province, month=bucket, estimated_kg=kg)
        for (province, bucket), kg in sorted(buckets.items())
    ]


async def cooperative_dashboard(
    db: AsyncSession,
    ctx: LedgerContext,
    cooperative_id: str,
    today: date | None = None,
    recent: int = 3,
) -> CooperativeDashboard:
    """Next harvest estimate, stock per product and the latest ledger entries."""
    ctx.require("reports.read")
    ctx.require_cooperative(cooperative_id)
    today = today or date.today()

    next_harvest = (
        await db.execute(
            select(Land.id, Land.name, CultivationActivity.estimated_date, CultivationActivity.estimated_kg)
            .select_from(CultivationActivity)
            .join(Land, Land.id == CultivationActivity.land_id)
            .where(
                Land.cooperative_id == cooperative_id,
                CultivationActivity.activity_type == ActivityType.HARVEST_ESTIMATE.value,
                CultivationActivity.estimated_date >= today,
            )
            .order_by(CultivationActivity.estimated_date.asc())
            .limit(1)
        )
    ).first()

    stock = await stock_by_product(db, ctx, cooperative_id)

    latest = (
        await db.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.cooperative_id == cooperative_id)
            .order_by(LedgerTransaction.entry_date.desc(), LedgerTransaction.created_at.desc())
            .limit(recent)
        )
    ).scalars().all()

    return CooperativeDashboard(
        cooperative_id=cooperative_id,
        next_harvest=NextHarvest(
            land_id=next_harvest[0],
            land_name=next_harvest[1],
            estimated_date=next_harvest[2],
            estimated_kg=next_harvest[3],
        ) if next_harvest else None,
        stock=stock,
        total_on_hand=sum(row.on_hand for row in stock),
        recent_transactions=[TransactionOut.model_validate(t) for t in latest],
    )
