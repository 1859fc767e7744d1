"""Pydantic schemas for ledger entries.

Single-batch entries are a tagged variant on ``kind``: each variant only
admits the operations that make sense for it, so an inconsistent
kind/operation pair is rejected before it reaches the ledger.
Transformations have their own request shape and endpoint.
"""

from datetime import date, datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, model_validator


class _EntryBase(BaseModel):
    batch_code: str
    quantity: float = Field(..., gt=0)
    date: date
    counterparty: str | None = Field(None, max_length=255)
    price: float | None = Field(None, ge=0)
    external_ref: str | None = Field(None, max_length=100)
    notes: str | None = None


class ReceiptIn(_EntryBase):
    kind: Literal["RECEIPT"]
    operation: Literal["harvest", "purchase", "adjustment"]
    farmer_id: str | None = None
    land_id: str | None = None


class DispatchIn(_EntryBase):
    kind: Literal["DISPATCH"]
    operation: Literal["distribution", "sale", "adjustment"]


TransactionRequest = Annotated[
    Union[ReceiptIn, DispatchIn],
    Field(discriminator="kind"),
]


# ── Transformation ───────────────────────────────────────────

class TransformationOutput(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    quantity: float = Field(..., gt=0)
    # Only used when the output batch does not exist yet
    product_type: str | None = Field(None, max_length=50)
    unit: str | None = Field(None, max_length=20)


class TransformationRequest(BaseModel):
    source_code: str
    quantity_out: float = Field(..., gt=0)
    outputs: list[TransformationOutput] = Field(..., min_length=1)
    loss_quantity: float = Field(0.0, ge=0)
    date: date
    notes: str | None = None

    @model_validator(mode="after")
    def outputs_distinct(self):
        codes = [o.code for o in self.outputs]
        if len(set(codes)) != len(codes):
            raise ValueError("Output batch codes must be distinct")
        if self.source_code in codes:
            raise ValueError("An output cannot be the source batch")
        return self


class ReverseRequest(BaseModel):
    date: date
    notes: str | None = None


# ── Response ─────────────────────────────────────────────────

class TransactionOut(BaseModel):
    id: str
    batch_code: str
    cooperative_id: str
    kind: str
    operation: str
    quantity_delta: float
    loss_quantity: float | None
    entry_date: date = Field(serialization_alias="date")
    farmer_id: str | None
    land_id: str | None
    counterparty: str | None
    price: float | None
    operation_ref: str | None
    reverses_id: str | None
    external_ref: str | None
    notes: str | None
    recorded_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}
