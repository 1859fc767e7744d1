"""Aggregate model imports for Alembic auto-detection."""

# Reference registry (read-only to the ledger)
from app.models.registry import (  # noqa: F401
    ActivityType,
    Cooperative,
    CultivationActivity,
    Farmer,
    Land,
    QualityCheckpoint,
)

# Ledger
from app.models.batch import Batch  # noqa: F401
from app.models.transaction import LedgerTransaction, Operation, TransactionKind  # noqa: F401
