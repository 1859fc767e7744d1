"""Traceability report schemas.

A report is an ordered list of stages (origin → harvest → processing →
current_status), each tagged by ``stage``, plus the raw ledger history
along the lineage path and the quality checkpoints of the batch.
Nothing here depends on the wall clock, so the same ledger state always
yields the same report.
"""

from datetime import date
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from app.schemas.transaction import TransactionOut


class CooperativeRef(BaseModel):
    id: str
    name: str
    province: str
    regency: str | None = None


class FarmerRef(BaseModel):
    id: str
    name: str
    contact: str | None = None


class LandRef(BaseModel):
    id: str
    name: str
    location: str | None = None
    area_hectares: float | None = None
    coffee_variety: str | None = None


# ── Stages ───────────────────────────────────────────────────

class OriginStage(BaseModel):
    stage: Literal["origin"] = "origin"
    status: str  # known | partial | unknown
    batch_code: str
    cooperative: CooperativeRef | None = None
    farmer: FarmerRef | None = None
    land: LandRef | None = None


class HarvestReceipt(BaseModel):
    transaction_id: str
    date: date
    operation: str
    quantity: float


class HarvestStage(BaseModel):
    stage: Literal["harvest"] = "harvest"
    status: str  # known | unknown
    batch_code: str
    product_type: str
    receipts: list[HarvestReceipt] = []
    total_received: float = 0.0


class ProcessingStep(BaseModel):
    operation_ref: str | None
    date: date
    source_code: str
    output_code: str
    output_product_type: str
    quantity_out: float
    quantity_in: float
    loss_quantity: float = 0.0


class ProcessingStage(BaseModel):
    stage: Literal["processing"] = "processing"
    status: str  # recorded | none
    steps: list[ProcessingStep] = []


class CurrentStatusStage(BaseModel):
    stage: Literal["current_status"] = "current_status"
    status: str  # depleted | partial | full
    batch_code: str
    product_type: str
    unit: str
    received: float
    issued: float
    on_hand: float


TraceStage = Annotated[
    Union[OriginStage, HarvestStage, ProcessingStage, CurrentStatusStage],
    Field(discriminator="stage"),
]


# ── Report ───────────────────────────────────────────────────

class CheckpointOut(BaseModel):
    id: str
    checkpoint_type: str
    name: str
    checkpoint_date: date
    score: float | None
    status: str
    notes: str | None

    model_config = {"from_attributes": True}


class TraceSummary(BaseModel):
    total_farms: int
    total_processing_steps: int
    quality_checks_total: int
    quality_checks_passed: int
    # Share of stages that resolved to known data (0.0 – 1.0)
    completeness: float


class TraceabilityReport(BaseModel):
    report_id: str
    batch_code: str
    lineage: list[str]
    stages: list[TraceStage]
    history: list[TransactionOut]
    quality_checkpoints: list[CheckpointOut]
    summary: TraceSummary
