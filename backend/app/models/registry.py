"""Reference registry — cooperatives, farmers, land parcels, activities, QC.

These tables are owned by the registry service (cooperative/farmer/land
record management, the cultivation calendar, quality-control scoring).
The ledger only reads them: to resolve a harvest's land and farmer, to
attach quality checkpoints to a traceability report, and to group
rollups by cooperative → province.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class ActivityType(str, enum.Enum):
    PLANTING = "PLANTING"
    HARVEST = "HARVEST"
    HARVEST_ESTIMATE = "HARVEST_ESTIMATE"


class Cooperative(Base):
    __tablename__ = "cooperatives"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Province drives provincial / national rollups
    province: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    regency: Mapped[str | None] = mapped_column(String(100))
    address: Mapped[str | None] = mapped_column(Text)
    contact_person: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Farmer(Base):
    __tablename__ = "farmers"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    cooperative_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cooperatives.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact: Mapped[str | None] = mapped_column(String(50))
    address: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    cooperative = relationship("Cooperative", backref="farmers")


class Land(Base):
    __tablename__ = "lands"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    cooperative_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cooperatives.id"), nullable=False, index=True
    )
    farmer_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("farmers.id"), index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str | None] = mapped_column(String(255))
    area_hectares: Mapped[float] = mapped_column(Float, default=0.0)
    coffee_variety: Mapped[str | None] = mapped_column(String(100))
    # new_planting | productive | inactive
    status: Mapped[str] = mapped_column(String(30), default="productive")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    cooperative = relationship("Cooperative", backref="lands")
    farmer = relationship("Farmer", backref="lands")


class CultivationActivity(Base):
    """Calendar entry for a land parcel: planting, harvest, or harvest estimate."""
    __tablename__ = "cultivation_activities"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    land_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("lands.id"), nullable=False, index=True
    )
    activity_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    activity_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Only meaningful for HARVEST_ESTIMATE
    estimated_date: Mapped[date | None] = mapped_column(Date, index=True)
    estimated_kg: Mapped[float | None] = mapped_column(Float)
    actual_kg: Mapped[float | None] = mapped_column(Float)
    # scheduled | done | pending
    status: Mapped[str] = mapped_column(String(30), default="scheduled")
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    land = relationship("Land", backref="activities")


class QualityCheckpoint(Base):
    """Quality-control record keyed by batch code (scored elsewhere)."""
    __tablename__ = "quality_checkpoints"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    batch_code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # HARVEST | PROCESSING | STORAGE | TRANSPORT | DELIVERY
    checkpoint_type: Mapped[str] = mapped_column(String(30), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    checkpoint_date: Mapped[date] = mapped_column(Date, nullable=False)
    score: Mapped[float | None] = mapped_column(Float)
    # PASSED | FAILED | PENDING
    status: Mapped[str] = mapped_column(String(20), default="PENDING")
    notes: Mapped[str | None] = mapped_column(Text)
    inspector_id: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
