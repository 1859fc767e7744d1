"""Batch — one physical lot of coffee at some stage of processing.

A Batch is created when product enters the cooperative (harvest receipt,
purchase) or when a transformation declares a new output lot.  It never
stores a quantity: on-hand stock is always folded from the ledger.

Lineage is a forest: ``parent_code`` points at the batch this one was
transformed from (null for an original harvest batch).  Parents are
always created before their children and must share the cooperative.

Lifecycle:  created → (partially issued) → depleted.  Never deleted.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class Batch(Base):
    __tablename__ = "batches"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # Human-meaningful code, e.g. CHERRY-20260310-001; the public identity
    code: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )

    cooperative_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cooperatives.id"), nullable=False, index=True
    )
    # cherry | green_bean | roasted | ...
    product_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="kg")

    # ── Lineage ──────────────────────────────────────────────
    parent_code: Mapped[str | None] = mapped_column(
        String(50), ForeignKey("batches.code"), index=True
    )

    # ── Metadata ─────────────────────────────────────────────
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(36))  # user_id
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, index=True
    )

    # ── Relationships ────────────────────────────────────────
    # lazy="select" (default); load explicitly where needed
    cooperative = relationship("Cooperative")
    transactions = relationship(
        "LedgerTransaction", back_populates="batch",
        order_by="LedgerTransaction.created_at",
    )

    def __repr__(self) -> str:
        return f"<Batch {self.code} {self.product_type} parent={self.parent_code}>"
