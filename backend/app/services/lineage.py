"""Lineage graph — parent/child links between batches.

The graph is stored only as ``Batch.parent_code``; edges are enriched on
demand with the transformation that created the child.  Writes keep the
graph a forest (a parent always predates its child), but traversal still
guards against corrupted rows: every walk tracks visited codes and stops
at ``settings.lineage_max_depth``, raising LineageCycleError instead of
looping.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.middleware.exceptions import LineageCycleError
from app.models.batch import Batch
from app.models.transaction import LedgerTransaction, TransactionKind
from app.services.batch_store import get_batch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineageEdge:
    parent_code: str
    child_code: str
    operation_ref: str | None
    transform_out_id: str | None


def _cycle(code: str, path: list[str]) -> LineageCycleError:
    logger.error(
        f"Lineage cycle detected at {code}: {' -> '.join(path)}",
        extra={"batch_code": code, "path": path},
    )
    return LineageCycleError(code, path)


async def _find(db: AsyncSession, code: str) -> Batch | None:
    return (
        await db.execute(select(Batch).where(Batch.code == code))
    ).scalar_one_or_none()


async def children(db: AsyncSession, code: str) -> list[Batch]:
    await get_batch(db, code)
    result = await db.execute(
        select(Batch)
        .where(Batch.parent_code == code)
        .order_by(Batch.created_at.asc(), Batch.code.asc())
    )
    return list(result.scalars().all())


async def ancestors(db: AsyncSession, code: str) -> list[Batch]:
    """All ancestors, root first, not including the batch itself."""
    batch = await get_batch(db, code)
    visited = {batch.code}
    trail = [batch.code]
    chain: list[Batch] = []

    while batch.parent_code is not None:
        if batch.parent_code in visited or len(chain) >= settings.lineage_max_depth:
            raise _cycle(code, trail + [batch.parent_code])
        parent = await _find(db, batch.parent_code)
        if parent is None:
            # Dangling link; the FK should make this impossible
            logger.warning(
                f"Batch {batch.code} points at missing parent {batch.parent_code}",
                extra={"batch_code": batch.code},
            )
            break
        visited.add(parent.code)
        trail.append(parent.code)
        chain.append(parent)
        batch = parent

    chain.reverse()
    return chain


async def lineage_path(db: AsyncSession, code: str) -> list[Batch]:
    """Root-first path ending at the batch itself."""
    batch = await get_batch(db, code)
    return await ancestors(db, code) + [batch]


async def descendants(db: AsyncSession, code: str) -> list[Batch]:
    """Every batch derived from this one, breadth first."""
    await get_batch(db, code)
    visited = {code}
    frontier = [code]
    found: list[Batch] = []
    depth = 0

    while frontier:
        depth += 1
        if depth > settings.lineage_max_depth:
            raise _cycle(code, [code] + [b.code for b in found])
        result = await db.execute(
            select(Batch)
            .where(Batch.parent_code.in_(frontier))
            .order_by(Batch.created_at.asc(), Batch.code.asc())
        )
        next_frontier = []
        for child in result.scalars().all():
            if child.code in visited:
                raise _cycle(code, [code] + [b.code for b in found] + [child.code])
            visited.add(child.code)
            found.append(child)
            next_frontier.append(child.code)
        frontier = next_frontier

    return found


async def lineage_edges(db: AsyncSession, batches: list[Batch]) -> list[LineageEdge]:
    """Parent → child edges for the given batches, with the creating transformation."""
    linked = [b for b in batches if b.parent_code is not None]
    if not linked:
        return []

    ins = (
        await db.execute(
            select(LedgerTransaction)
            .where(
                LedgerTransaction.batch_code.in_([b.code for b in linked]),
                LedgerTransaction.kind == TransactionKind.TRANSFORM_IN.value,
            )
            .order_by(LedgerTransaction.entry_date.asc(), LedgerTransaction.created_at.asc())
        )
    ).scalars().all()
    refs = {t.operation_ref for t in ins if t.operation_ref}

    outs_by_ref: dict[str, LedgerTransaction] = {}
    if refs:
        outs = (
            await db.execute(
                select(LedgerTransaction).where(
                    LedgerTransaction.operation_ref.in_(sorted(refs)),
                    LedgerTransaction.kind == TransactionKind.TRANSFORM_OUT.value,
                )
            )
        ).scalars().all()
        outs_by_ref = {t.operation_ref: t for t in outs}

    edges = []
    for child in linked:
        # The first transformation from the parent into this child created it
        creating = next(
            (
                t for t in ins
                if t.batch_code == child.code
                and t.operation_ref in outs_by_ref
                and outs_by_ref[t.operation_ref].batch_code == child.parent_code
            ),
            None,
        )
        edges.append(LineageEdge(
            parent_code=child.parent_code,
            child_code=child.code,
            operation_ref=creating.operation_ref if creating else None,
            transform_out_id=outs_by_ref[creating.operation_ref].id if creating else None,
        ))
    return edges
