"""Ledger integrity audit — detects rows that break the ledger's invariants.

Each check_* function runs one query and returns a list of findings; the
audit never repairs anything.  Writes enforce these invariants already,
so any finding points at data changed outside the ledger service.

Checks:
    negative_balance          batch whose running balance dips below zero
    conservation              transformation whose outputs + loss != outflow
    orphan_transform_in       TRANSFORM_IN without a matching TRANSFORM_OUT
    cross_cooperative_parent  child batch in another cooperative than its parent
    lineage_cycle             parent links that loop
"""

import logging

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.auth.context import LedgerContext
from app.config import settings
from app.models.batch import Batch
from app.models.transaction import LedgerTransaction, TransactionKind
from app.schemas.report import IntegrityFinding, IntegrityReport

logger = logging.getLogger(__name__)


def _scoped(stmt, column, ctx: LedgerContext, cooperative_id: str | None):
    if cooperative_id:
        return stmt.where(column == cooperative_id)
    return ctx.restrict(stmt, column)


# ─────────────────────────────────────────────────────────────
# CHECK 1:  running balance below zero
# ─────────────────────────────────────────────────────────────

async def check_negative_balances(db, ctx, cooperative_id=None) -> list[IntegrityFinding]:
    """First day each batch's running balance drops below zero."""
    t = LedgerTransaction
    stmt = (
        select(t.batch_code, t.entry_date, func.sum(t.quantity_delta))
        .group_by(t.batch_code, t.entry_date)
        .order_by(t.batch_code, t.entry_date)
    )
    stmt = _scoped(stmt, t.cooperative_id, ctx, cooperative_id)

    findings = []
    running: dict[str, float] = {}
    flagged: set[str] = set()
    for code, on_date, delta in (await db.execute(stmt)).all():
        running[code] = running.get(code, 0.0) + float(delta)
        if code in flagged or running[code] >= -settings.quantity_tolerance:
            continue
        flagged.add(code)
        findings.append(IntegrityFinding(
            check="negative_balance",
            severity="critical",
            batch_code=code,
            message=f"Batch {code} balance falls to {running[code]:g} on {on_date.isoformat()}",
        ))
    return findings


# ─────────────────────────────────────────────────────────────
# CHECK 2 + 3:  transformation legs (conservation, orphans)
# ─────────────────────────────────────────────────────────────

async def check_transformations(db, ctx, cooperative_id=None) -> tuple[list[IntegrityFinding], int]:
    """Returns (findings, number of transformations examined)."""
    t = LedgerTransaction
    out_kind = TransactionKind.TRANSFORM_OUT.value
    in_kind = TransactionKind.TRANSFORM_IN.value

    stmt = (
        select(
            t.operation_ref,
            func.sum(case((t.kind == out_kind, -t.quantity_delta), else_=0.0)),
            func.sum(case((t.kind == in_kind, t.quantity_delta), else_=0.0)),
            func.sum(case((t.kind == out_kind, func.coalesce(t.loss_quantity, 0.0)), else_=0.0)),
            func.sum(case((t.kind == out_kind, 1), else_=0)),
            func.min(case((t.kind == out_kind, t.batch_code), else_=None)),
        )
        .where(t.kind.in_([out_kind, in_kind]), t.operation_ref.is_not(None))
        .group_by(t.operation_ref)
        .order_by(t.operation_ref)
    )
    stmt = _scoped(stmt, t.cooperative_id, ctx, cooperative_id)
    rows = (await db.execute(stmt)).all()

    findings = []
    for ref, out_qty, in_qty, loss, out_legs, source in rows:
        if not out_legs:
            findings.append(IntegrityFinding(
                check="orphan_transform_in",
                severity="high",
                operation_ref=ref,
                message=f"Transformation {ref} has inputs but no TRANSFORM_OUT",
            ))
            continue
        if abs(float(in_qty) + float(loss) - float(out_qty)) > settings.quantity_tolerance:
            findings.append(IntegrityFinding(
                check="conservation",
                severity="critical",
                batch_code=source,
                operation_ref=ref,
                message=(
                    f"Transformation {ref} moved {float(out_qty):g} out of {source} "
                    f"but {float(in_qty):g} in plus {float(loss):g} loss"
                ),
            ))

    unlinked = select(t.batch_code, t.id).where(
        t.kind == in_kind, t.operation_ref.is_(None)
    ).order_by(t.batch_code)
    unlinked = _scoped(unlinked, t.cooperative_id, ctx, cooperative_id)
    for code, entry_id in (await db.execute(unlinked)).all():
        findings.append(IntegrityFinding(
            check="orphan_transform_in",
            severity="high",
            batch_code=code,
            message=f"TRANSFORM_IN {entry_id} on {code} has no operation reference",
        ))

    return findings, len(rows)


# ─────────────────────────────────────────────────────────────
# CHECK 4:  parent in another cooperative
# ─────────────────────────────────────────────────────────────

async def check_cross_cooperative_parents(db, ctx, cooperative_id=None) -> list[IntegrityFinding]:
    parent = aliased(Batch)
    stmt = (
        select(Batch.code, parent.code)
        .join(parent, parent.code == Batch.parent_code)
        .where(parent.cooperative_id != Batch.cooperative_id)
        .order_by(Batch.code)
    )
    stmt = _scoped(stmt, Batch.cooperative_id, ctx, cooperative_id)
    return [
        IntegrityFinding(
            check="cross_cooperative_parent",
            severity="high",
            batch_code=child_code,
            message=f"Batch {child_code} and its parent {parent_code} belong to different cooperatives",
        )
        for child_code, parent_code in (await db.execute(stmt)).all()
    ]


# ─────────────────────────────────────────────────────────────
# CHECK 5:  lineage cycles
# ─────────────────────────────────────────────────────────────

async def check_lineage_cycles(db, ctx, cooperative_id=None) -> tuple[list[IntegrityFinding], int]:
    """Returns (findings, number of batches in scope)."""
    scoped = _scoped(select(Batch.code), Batch.cooperative_id, ctx, cooperative_id)
    in_scope = set((await db.execute(scoped)).scalars().all())

    # Parents may sit outside the caller's scope, so walk the full forest
    parents = dict(
        (await db.execute(select(Batch.code, Batch.parent_code))).all()
    )

    findings = []
    reported: set[str] = set()
    cleared: set[str] = set()
    for start in sorted(in_scope):
        trail: list[str] = []
        seen: set[str] = set()
        code = start
        while code is not None and code not in cleared:
            if code in seen:
                loop = trail[trail.index(code):]
                if not reported.intersection(loop):
                    reported.update(loop)
                    logger.error(
                        f"Lineage cycle found during audit: {' -> '.join(loop + [code])}",
                        extra={"batch_code": code},
                    )
                    findings.append(IntegrityFinding(
                        check="lineage_cycle",
                        severity="critical",
                        batch_code=min(loop),
                        message=f"Parent links loop: {' -> '.join(loop + [code])}",
                    ))
                break
            seen.add(code)
            trail.append(code)
            if len(trail) > settings.lineage_max_depth:
                break
            code = parents.get(code)
        else:
            cleared.update(trail)

    return findings, len(in_scope)


async def verify_ledger(
    db: AsyncSession,
    ctx: LedgerContext,
    cooperative_id: str | None = None,
) -> IntegrityReport:
    """Run all checks and return the findings; never mutates."""
    ctx.require("reports.read")
    if cooperative_id:
        ctx.require_cooperative(cooperative_id)

    findings = await check_negative_balances(db, ctx, cooperative_id)
    transform_findings, operations = await check_transformations(db, ctx, cooperative_id)
    findings += transform_findings
    findings += await check_cross_cooperative_parents(db, ctx, cooperative_id)
    cycle_findings, batches = await check_lineage_cycles(db, ctx, cooperative_id)
    findings += cycle_findings

    if findings:
        logger.warning(
            f"Ledger audit found {len(findings)} issue(s)",
            extra={"cooperative_id": cooperative_id},
        )

    return IntegrityReport(
        cooperative_id=cooperative_id,
        batches_checked=batches,
        operations_checked=operations,
        findings=findings,
    )
