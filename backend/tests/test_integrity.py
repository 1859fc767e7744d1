"""Ledger integrity audit tests.

Corrupt rows are written straight through the ORM, bypassing the ledger
service, to prove the audit notices them.
"""

from datetime import date

import pytest
from sqlalchemy import update

from app.middleware.exceptions import PermissionDeniedError
from app.models.batch import Batch
from app.models.transaction import LedgerTransaction
from app.services.batch_store import create_batch
from app.services.integrity import verify_ledger
from app.services.ledger import record_transaction, record_transformation


async def _insert(session_factory, *rows):
    async with session_factory() as db:
        db.add_all(rows)
        await db.commit()


def _checks(report):
    return sorted(f.check for f in report.findings)


@pytest.mark.integration
@pytest.mark.asyncio
class TestVerifyLedger:

    async def test_clean_ledger(self, atomic, read, harvested_batch, national_ctx):
        await harvested_batch("CHERRY-001", 480)
        await atomic(lambda db: record_transformation(
            db, national_ctx, "CHERRY-001", 480, [("GREENBEAN-001", 100)], date(2026, 3, 5),
            loss_quantity=380,
        ))
        await atomic(lambda db: record_transaction(
            db, national_ctx, "GREENBEAN-001", "DISPATCH", "sale", 100, date(2026, 3, 9),
        ))

        report = await read(lambda db: verify_ledger(db, national_ctx))
        assert report.ok
        assert report.findings == []
        assert report.batches_checked == 2
        assert report.operations_checked == 1

    async def test_negative_balance(self, session_factory, read, harvested_batch, registry, national_ctx):
        await harvested_batch("CHERRY-001", 50)
        await _insert(session_factory, LedgerTransaction(
            batch_code="CHERRY-001", cooperative_id=registry.gayo,
            kind="DISPATCH", operation="sale", quantity_delta=-80, entry_date=date(2026, 3, 2),
        ))

        report = await read(lambda db: verify_ledger(db, national_ctx))
        assert not report.ok
        assert _checks(report) == ["negative_balance"]
        assert report.findings[0].batch_code == "CHERRY-001"

    async def test_negative_running_balance_in_the_past(self, session_factory, read, harvested_batch, registry, national_ctx):
        """Final balance 40, but 03-01 sits at -60 before the 03-10 receipt."""
        await harvested_batch("CHERRY-001", 100, on_date=date(2026, 3, 10))
        await _insert(session_factory, LedgerTransaction(
            batch_code="CHERRY-001", cooperative_id=registry.gayo,
            kind="DISPATCH", operation="sale", quantity_delta=-60, entry_date=date(2026, 3, 1),
        ))

        report = await read(lambda db: verify_ledger(db, national_ctx))
        (finding,) = report.findings
        assert finding.check == "negative_balance"
        assert finding.batch_code == "CHERRY-001"
        assert "2026-03-01" in finding.message

    async def test_conservation_and_orphans(
self, atomic, session_factory, read, harvested_batch, registry, national_ctx):
        await harvested_batch("CHERRY-001", 300)
        entries = await atomic(lambda db: record_transformation(
            db, national_ctx, "CHERRY-001", 100, [("GREENBEAN-001", 100)], date(2026, 3, 5),
        ))
        await _insert(
            session_factory,
            LedgerTransaction(
                batch_code="GREENBEAN-001", cooperative_id=registry.gayo,
                kind="TRANSFORM_IN", operation="transformation", quantity_delta=10,
                entry_date=date(2026, 3, 5), operation_ref=entries[0].operation_ref,
            ),
            LedgerTransaction(
                batch_code="GREENBEAN-001", cooperative_id=registry.gayo,
                kind="TRANSFORM_IN", operation="transformation", quantity_delta=5,
                entry_date=date(2026, 3, 6), operation_ref="ref-without-out",
            ),
            LedgerTransaction(
                batch_code="GREENBEAN-001", cooperative_id=registry.gayo,
                kind="TRANSFORM_IN", operation="transformation", quantity_delta=5,
                entry_date=date(2026, 3, 7),
            ),
        )

        report = await read(lambda db: verify_ledger(db, national_ctx))
        assert _checks(report) == ["conservation", "orphan_transform_in", "orphan_transform_in"]
        conservation = next(f for f in report.findings if f.check == "conservation")
        assert conservation.batch_code == "CHERRY-001"
        assert conservation.operation_ref == entries[0].operation_ref

    async def test_cross_cooperative_parent(self, atomic, read, registry, national_ctx):
        await atomic(lambda db: create_batch(db, national_ctx, registry.gayo, "cherry", code="A"))
        await atomic(lambda db: create_batch(db, national_ctx, registry.bener, "cherry", code="B"))
        await atomic(lambda db: db.execute(
            update(Batch).where(Batch.code == "B").values(parent_code="A")
        ))

        report = await read(lambda db: verify_ledger(db, national_ctx))
        assert _checks(report) == ["cross_cooperative_parent"]
        assert report.findings[0].batch_code == "B"

    async def test_lineage_cycle_reported_once(self, atomic, read, registry, national_ctx):
        await atomic(lambda db: create_batch(db, national_ctx, registry.gayo, "cherry", code="A"))
        await atomic(lambda db: create_batch(
            db, national_ctx, registry.gayo, "cherry", parent_code="A", code="B",
        ))
        await atomic(lambda db: db.execute(
            update(Batch).where(Batch.code == "A").values(parent_code="B")
        ))

        report = await read(lambda db: verify_ledger(db, national_ctx))
        assert _checks(report) == ["lineage_cycle"]
        assert report.findings[0].batch_code == "A"

    async def test_scoped_to_cooperative(self, session_factory, read, harvested_batch, registry, national_ctx, gayo_ctx):
        await harvested_batch(
            "CHERRY-B01", 10, cooperative_id=registry.bener,
            land_id=registry.land_bener, farmer_id=registry.farmer_bener,
        )
        await _insert(session_factory, LedgerTransaction(
            batch_code="CHERRY-B01", cooperative_id=registry.bener,
            kind="DISPATCH", operation="sale", quantity_delta=-20, entry_date=date(2026, 3, 2),
        ))

        assert not (await read(lambda db: verify_ledger(db, national_ctx))).ok
        own = await read(lambda db: verify_ledger(db, gayo_ctx))
        assert own.ok
        assert own.batches_checked == 0

        with pytest.raises(PermissionDeniedError):
            await read(lambda db: verify_ledger(db, gayo_ctx, registry.bener))
