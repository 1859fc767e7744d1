"""Harvest intake schemas — land harvest straight into inventory."""

from datetime import date

from pydantic import BaseModel, Field

from app.schemas.batch import BatchOut
from app.schemas.transaction import TransactionOut


class HarvestIntakeRequest(BaseModel):
    land_id: str
    quantity_kg: float = Field(..., gt=0)
    harvest_date: date
    product_type: str = Field("cherry", max_length=50)
    code: str | None = Field(None, min_length=1, max_length=50)
    notes: str | None = None


class HarvestIntakeResponse(BaseModel):
    batch: BatchOut
    transaction: TransactionOut
    qr_code_url: str
