"""Pydantic schemas for batches, stock and lineage."""

from datetime import date, datetime

from pydantic import BaseModel, Field


# ── Create ───────────────────────────────────────────────────

class BatchCreate(BaseModel):
    cooperative_id: str
    product_type: str = Field(..., min_length=1, max_length=50)
    unit: str = Field("kg", max_length=20)
    parent_code: str | None = None
    # Omit to auto-generate {PRODUCT}-{YYYYMMDD}-{seq}
    code: str | None = Field(None, min_length=1, max_length=50)
    notes: str | None = None


# ── Response ─────────────────────────────────────────────────

class BatchOut(BaseModel):
    id: str
    code: str
    cooperative_id: str
    product_type: str
    unit: str
    parent_code: str | None
    notes: str | None
    created_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class StockSummaryOut(BaseModel):
    batch_code: str
    unit: str
    as_of: date | None = None
    received: float
    issued: float
    on_hand: float
    status: str  # depleted | partial | full


class LineageEdgeOut(BaseModel):
    parent_code: str
    child_code: str
    operation_ref: str | None
    transform_out_id: str | None

    model_config = {"from_attributes": True}
