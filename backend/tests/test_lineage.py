"""Lineage graph tests — children, ancestors, descendants, cycle guard."""

from datetime import date

import pytest
from sqlalchemy import update

from app.middleware.exceptions import LineageCycleError, NotFoundError
from app.models.batch import Batch
from app.services.batch_store import create_batch
from app.services.ledger import OutputSpec, record_transformation
from app.services.lineage import (
    ancestors,
    children,
    descendants,
    lineage_edges,
    lineage_path,
)


@pytest.fixture
def processed_chain(atomic, harvested_batch, national_ctx):
    """CHERRY-001 → GREENBEAN-001 → ROAST-001, with a side split GREENBEAN-002."""
    async def _build():
        await harvested_batch("CHERRY-001", 480)
        await atomic(lambda db: record_transformation(
            db, national_ctx, "CHERRY-001", 150,
            [
                OutputSpec("GREENBEAN-001", 100, product_type="green_bean"),
                OutputSpec("GREENBEAN-002", 50, product_type="green_bean"),
            ],
            date(2026, 3, 5),
        ))
        await atomic(lambda db: record_transformation(
            db, national_ctx, "GREENBEAN-001", 100,
            [OutputSpec("ROAST-001", 85, product_type="roasted")], date(2026, 3, 12),
            loss_quantity=15,
        ))
    return _build


@pytest.mark.unit
@pytest.mark.asyncio
class TestLineageQueries:

    async def test_children(self, read, processed_chain):
        await processed_chain()
        kids = await read(lambda db: children(db, "CHERRY-001"))
        assert sorted(b.code for b in kids) == ["GREENBEAN-001", "GREENBEAN-002"]
        assert await read(lambda db: children(db, "ROAST-001")) == []

    async def test_ancestors_root_first(self, read, processed_chain):
        await processed_chain()
        chain = await read(lambda db: ancestors(db, "ROAST-001"))
        assert [b.code for b in chain] == ["CHERRY-001", "GREENBEAN-001"]

    async def test_root_has_no_ancestors(self, read, processed_chain):
        await processed_chain()
        assert await read(lambda db: ancestors(db, "CHERRY-001")) == []

    async def test_lineage_path_ends_at_batch(self, read, processed_chain):
        await processed_chain()
        path = await read(lambda db: lineage_path(db, "ROAST-001"))
        assert [b.code for b in path] == ["CHERRY-001", "GREENBEAN-001", "ROAST-001"]

    async def test_descendants(self, read, processed_chain):
        await processed_chain()
        found = await read(lambda db: descendants(db, "CHERRY-001"))
        assert sorted(b.code for b in found) == ["GREENBEAN-001", "GREENBEAN-002", "ROAST-001"]
        assert found[-1].code == "ROAST-001"

    async def test_edges_carry_transformation(self, read, processed_chain):
        await processed_chain()

        async def _edges(db):
            return await lineage_edges(db, await lineage_path(db, "ROAST-001"))

        edges = await read(_edges)
        assert [(e.parent_code, e.child_code) for e in edges] == [
            ("CHERRY-001", "GREENBEAN-001"),
            ("GREENBEAN-001", "ROAST-001"),
        ]
        assert all(e.operation_ref and e.transform_out_id for e in edges)
        assert edges[0].operation_ref != edges[1].operation_ref

    async def test_edge_without_transformation(self, atomic, read, registry, national_ctx):
        await atomic(lambda db: create_batch(db, national_ctx, registry.gayo, "cherry", code="A"))
        await atomic(lambda db: create_batch(
            db, national_ctx, registry.gayo, "green_bean", parent_code="A", code="B",
        ))

        async def _edges(db):
            return await lineage_edges(db, await lineage_path(db, "B"))

        (edge,) = await read(_edges)
        assert edge.parent_code == "A"
        assert edge.operation_ref is None

    async def test_unknown_batch(self, read, registry):
        with pytest.raises(NotFoundError):
            await read(lambda db: ancestors(db, "MISSING-001"))


@pytest.mark.unit
@pytest.mark.asyncio
class TestCycleGuard:

    async def _make_cycle(self, atomic, registry, ctx):
        await atomic(lambda db: create_batch(db, ctx, registry.gayo, "cherry", code="A"))
        await atomic(lambda db: create_batch(db, ctx, registry.gayo, "cherry", parent_code="A", code="B"))
        # Corrupt the forest directly; the ledger service never writes this
        await atomic(lambda db: db.execute(
            update(Batch).where(Batch.code == "A").values(parent_code="B")
        ))

    async def test_ancestors_raise(self, atomic, read, registry, national_ctx):
        await self._make_cycle(atomic, registry, national_ctx)
        with pytest.raises(LineageCycleError) as exc_info:
            await read(lambda db: ancestors(db, "B"))
        assert exc_info.value.details["path"][0] == "B"

    async def test_descendants_raise(self, atomic, read, registry, national_ctx):
        await self._make_cycle(atomic, registry, national_ctx)
        with pytest.raises(LineageCycleError):
            await read(lambda db: descendants(db, "A"))
