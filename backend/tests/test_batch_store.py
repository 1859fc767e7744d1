"""Batch store tests — creation rules, parent checks, code generation."""

from datetime import date

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.exceptions import (
    DuplicateBatchError,
    InvalidParentError,
    NotFoundError,
    PermissionDeniedError,
)
from app.services.batch_store import create_batch, get_batch, list_batches
from app.utils.numbering import product_type_for_code


@pytest.mark.unit
@pytest.mark.asyncio
class TestCreateBatch:

    async def test_root_batch_has_no_parent(self, db_session: AsyncSession, registry, national_ctx):
        batch = await create_batch(db_session, national_ctx, registry.gayo, "cherry", code="CHERRY-001")
        assert batch.code == "CHERRY-001"
        assert batch.parent_code is None
        assert batch.unit == "kg"
        assert batch.created_by == "user-national"

    async def test_child_in_same_cooperative(self, db_session, registry, national_ctx):
        await create_batch(db_session, national_ctx, registry.gayo, "cherry", code="CHERRY-001")
        child = await create_batch(
            db_session, national_ctx, registry.gayo, "green_bean",
            parent_code="CHERRY-001", code="GREENBEAN-001",
        )
        assert child.parent_code == "CHERRY-001"

    async def test_missing_parent_rejected(self, db_session, registry, national_ctx):
        with pytest.raises(InvalidParentError):
            await create_batch(
                db_session, national_ctx, registry.gayo, "green_bean", parent_code="NOPE-001",
            )

    async def test_parent_in_other_cooperative_rejected(self, db_session, registry, national_ctx):
        await create_batch(db_session, national_ctx, registry.bener, "cherry", code="CHERRY-B01")
        with pytest.raises(InvalidParentError):
            await create_batch(
                db_session, national_ctx, registry.gayo, "green_bean", parent_code="CHERRY-B01",
            )

    async def test_duplicate_code_rejected(self, db_session, registry, national_ctx):
        await create_batch(db_session, national_ctx, registry.gayo, "cherry", code="CHERRY-001")
        with pytest.raises(DuplicateBatchError):
            await create_batch(db_session, national_ctx, registry.gayo, "cherry", code="CHERRY-001")

    async def test_unknown_cooperative(self, db_session, registry, national_ctx):
        with pytest.raises(NotFoundError):
            await create_batch(db_session, national_ctx, "coop-missing", "cherry")

    async def test_out_of_scope_cooperative(self, db_session, registry, gayo_ctx):
        with pytest.raises(PermissionDeniedError):
            await create_batch(db_session, gayo_ctx, registry.bener, "cherry")

    async def test_generated_codes_are_sequential(self, db_session, registry, national_ctx):
        day = date(2026, 3, 10)
        first = await create_batch(db_session, national_ctx, registry.gayo, "green_bean", on_date=day)
        second = await create_batch(db_session, national_ctx, registry.gayo, "green_bean", on_date=day)
        assert first.code == "GREENBEAN-20260310-001"
        assert second.code == "GREENBEAN-20260310-002"

    async def test_generated_code_skips_taken_slot(self, db_session, registry, national_ctx):
        await create_batch(
            db_session, national_ctx, registry.gayo, "cherry", code="CHERRY-20260310-002",
        )
        generated = await create_batch(
            db_session, national_ctx, registry.gayo, "cherry", on_date=date(2026, 3, 10),
        )
        assert generated.code == "CHERRY-20260310-003"


@pytest.mark.unit
@pytest.mark.asyncio
class TestBatchQueries:

    async def test_get_unknown_batch(self, db_session, registry):
        with pytest.raises(NotFoundError):
            await get_batch(db_session, "MISSING-001")

    async def test_list_is_scoped_to_caller(self, db_session, registry, national_ctx, gayo_ctx):
        await create_batch(db_session, national_ctx, registry.gayo, "cherry", code="CHERRY-G01")
        await create_batch(db_session, national_ctx, registry.bener, "cherry", code="CHERRY-B01")

        items, total, _ = await list_batches(db_session, gayo_ctx)
        assert total == 1
        assert [b.code for b in items] == ["CHERRY-G01"]

        items, total, _ = await list_batches(db_session, national_ctx)
        assert total == 2

    async def test_list_paginates(self, db_session, registry, national_ctx):
        for i in range(3):
            await create_batch(db_session, national_ctx, registry.gayo, "cherry", code=f"CHERRY-P0{i}")

        first, total, cursor = await list_batches(db_session, national_ctx, limit=2)
        assert total == 3
        assert len(first) == 2
        assert cursor is not None

        rest, _, cursor = await list_batches(db_session, national_ctx, limit=2, cursor=cursor)
        assert [b.code for b in rest] == ["CHERRY-P02"]
        assert cursor is None

    async def test_list_other_cooperative_denied(self, db_session, registry, gayo_ctx):
        with pytest.raises(PermissionDeniedError):
            await list_batches(db_session, gayo_ctx, cooperative_id=registry.bener)


@pytest.mark.unit
class TestProductTypeForCode:

    @pytest.mark.parametrize("code, expected", [
        ("GREENBEAN-001", "green_bean"),
        ("CHERRY-001A", "cherry"),
        ("ROAST-001", "roasted"),
        ("parchment-20260310-001", "parchment"),
        ("GB-A", None),
        ("LOT7", None),
    ])
    def test_stage_named_by_prefix(self, code, expected):
        assert product_type_for_code(code) == expected
