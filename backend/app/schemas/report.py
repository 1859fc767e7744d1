"""Report schemas — rollups, supply projection, stock totals, dashboard, ledger audit."""

from datetime import date
from typing import Literal

from pydantic import BaseModel

from app.schemas.transaction import TransactionOut

RollupLevel = Literal["nation", "province", "cooperative", "farmer", "land"]
RollupMetric = Literal["harvest_total", "active_farmers", "land_area", "productivity"]


class RollupRow(BaseModel):
    key: str
    label: str
    # None when the metric is undefined for the key (productivity on zero area)
    value: float | None


class RollupOut(BaseModel):
    level: RollupLevel
    metric: RollupMetric
    rows: list[RollupRow]


class ProjectionRow(BaseModel):
    province: str
    month: str  # YYYY-MM
    estimated_kg: float


class ProductStock(BaseModel):
    product_type: str
    unit: str
    batch_count: int
    on_hand: float


class IntegrityFinding(BaseModel):
    check: str  # negative_balance | conservation | orphan_transform_in | cross_cooperative_parent | lineage_cycle
    severity: str  # critical | high | medium
    batch_code: str | None = None
    operation_ref: str | None = None
    message: str


class IntegrityReport(BaseModel):
    cooperative_id: str | None
    batches_checked: int
    operations_checked: int
    findings: list[IntegrityFinding]

    @property
    def ok(self) -> bool:
        return not self.findings


class NextHarvest(BaseModel):
    land_id: str
    land_name: str
    estimated_date: date
    estimated_kg: float | None


class CooperativeDashboard(BaseModel):
    """Cooperative admin overview; ``recent_transactions`` is newest first."""
    cooperative_id: str
    next_harvest: NextHarvest | None
    stock: list[ProductStock]
    total_on_hand: float
    recent_transactions: list[TransactionOut]
