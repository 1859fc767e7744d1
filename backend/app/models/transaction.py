"""LedgerTransaction — append-only log of quantity-changing events.

Every receipt, transformation leg, and dispatch against a batch is one
row.  Rows are never updated or deleted; a correction is a new row with
the opposite sign pointing at the original through ``reverses_id``.

Sign convention (callers pass positive quantities, the kind fixes sign):
    RECEIPT        +   harvest | purchase | adjustment
    TRANSFORM_IN   +   transformation
    TRANSFORM_OUT  -   transformation
    DISPATCH       -   distribution | sale | adjustment

All legs of one transformation share an ``operation_ref``; joining a
child's TRANSFORM_IN to the parent's TRANSFORM_OUT on that ref gives the
lineage edge.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class TransactionKind(str, enum.Enum):
    RECEIPT = "RECEIPT"
    TRANSFORM_IN = "TRANSFORM_IN"
    TRANSFORM_OUT = "TRANSFORM_OUT"
    DISPATCH = "DISPATCH"


class Operation(str, enum.Enum):
    HARVEST = "harvest"
    PURCHASE = "purchase"
    TRANSFORMATION = "transformation"
    DISTRIBUTION = "distribution"
    SALE = "sale"
    ADJUSTMENT = "adjustment"


INFLOW_KINDS = {TransactionKind.RECEIPT.value, TransactionKind.TRANSFORM_IN.value}
OUTFLOW_KINDS = {TransactionKind.TRANSFORM_OUT.value, TransactionKind.DISPATCH.value}
TRANSFORM_KINDS = {TransactionKind.TRANSFORM_IN.value, TransactionKind.TRANSFORM_OUT.value}

ALLOWED_OPERATIONS: dict[str, set[str]] = {
    TransactionKind.RECEIPT.value: {
        Operation.HARVEST.value, Operation.PURCHASE.value, Operation.ADJUSTMENT.value,
    },
    TransactionKind.DISPATCH.value: {
        Operation.DISTRIBUTION.value, Operation.SALE.value, Operation.ADJUSTMENT.value,
    },
    TransactionKind.TRANSFORM_IN.value: {Operation.TRANSFORMATION.value},
    TransactionKind.TRANSFORM_OUT.value: {Operation.TRANSFORMATION.value},
}


class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    batch_code: Mapped[str] = mapped_column(
        String(50), ForeignKey("batches.code"), nullable=False, index=True
    )
    cooperative_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cooperatives.id"), nullable=False, index=True
    )

    # ── Classification ───────────────────────────────────────
    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    operation: Mapped[str] = mapped_column(String(30), nullable=False, index=True)

    # ── Quantity ─────────────────────────────────────────────
    quantity_delta: Mapped[float] = mapped_column(Float, nullable=False)
    # Process loss accounted on a TRANSFORM_OUT (hulling, drying, sorting)
    loss_quantity: Mapped[float | None] = mapped_column(Float)

    # Business date of the movement (column "date")
    entry_date: Mapped[date] = mapped_column("date", Date, nullable=False, index=True)

    # ── Context references ───────────────────────────────────
    farmer_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("farmers.id"), index=True
    )
    land_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("lands.id"), index=True
    )
    counterparty: Mapped[str | None] = mapped_column(String(255))  # buyer / supplier
    price: Mapped[float | None] = mapped_column(Float)  # total price

    # ── Linking ──────────────────────────────────────────────
    operation_ref: Mapped[str | None] = mapped_column(String(36), index=True)
    reverses_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("ledger_transactions.id"), unique=True
    )
    # Marketplace / invoice reference supplied by the caller
    external_ref: Mapped[str | None] = mapped_column(String(100))

    notes: Mapped[str | None] = mapped_column(Text)
    recorded_by: Mapped[str | None] = mapped_column(String(36))  # user_id
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )

    batch = relationship("Batch", back_populates="transactions")

    __table_args__ = (
        Index("ix_ledger_batch_date", "batch_code", "date"),
        Index("ix_ledger_kind_operation_date", "kind", "operation", "date"),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerTransaction {self.kind}/{self.operation} "
            f"batch={self.batch_code} delta={self.quantity_delta} date={self.entry_date}>"
        )
