"""Initial schema — reference registry, batches and the ledger.

Revision ID: 0001
Revises: (none)
Create Date: 2026-03-02

The registry tables (cooperatives … quality_checkpoints) are owned by the
cooperative management system; they are created here so the ledger can
join against them in a standalone deployment.
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    # ── Reference registry ───────────────────────────────────

    op.create_table(
        "cooperatives",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("province", sa.String(100), nullable=False),
        sa.Column("regency", sa.String(100), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("contact_person", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_cooperatives_province", "cooperatives", ["province"])

    op.create_table(
        "farmers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("cooperative_id", sa.String(36), sa.ForeignKey("cooperatives.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact", sa.String(50), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_farmers_cooperative_id", "farmers", ["cooperative_id"])

    op.create_table(
        "lands",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("cooperative_id", sa.String(36), sa.ForeignKey("cooperatives.id"), nullable=False),
        sa.Column("farmer_id", sa.String(36), sa.ForeignKey("farmers.id"), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("area_hectares", sa.Float(), server_default="0"),
        sa.Column("coffee_variety", sa.String(100), nullable=True),
        sa.Column("status", sa.String(30), server_default="productive"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_lands_cooperative_id", "lands", ["cooperative_id"])
    op.create_index("ix_lands_farmer_id", "lands", ["farmer_id"])

    op.create_table(
        "cultivation_activities",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("land_id", sa.String(36), sa.ForeignKey("lands.id"), nullable=False),
        sa.Column("activity_type", sa.String(30), nullable=False),
        sa.Column("activity_date", sa.Date(), nullable=False),
        sa.Column("estimated_date", sa.Date(), nullable=True),
        sa.Column("estimated_kg", sa.Float(), nullable=True),
        sa.Column("actual_kg", sa.Float(), nullable=True),
        sa.Column("status", sa.String(30), server_default="scheduled"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_cultivation_activities_land_id", "cultivation_activities", ["land_id"])
    op.create_index("ix_cultivation_activities_activity_type", "cultivation_activities", ["activity_type"])
    op.create_index("ix_cultivation_activities_estimated_date", "cultivation_activities", ["estimated_date"])

    op.create_table(
        "quality_checkpoints",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("batch_code", sa.String(50), nullable=False),
        sa.Column("checkpoint_type", sa.String(30), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("checkpoint_date", sa.Date(), nullable=False),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("status", sa.String(20), server_default="PENDING"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("inspector_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_quality_checkpoints_batch_code", "quality_checkpoints", ["batch_code"])

    # ── Batches ──────────────────────────────────────────────

    op.create_table(
        "batches",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("cooperative_id", sa.String(36), sa.ForeignKey("cooperatives.id"), nullable=False),
        sa.Column("product_type", sa.String(50), nullable=False),
        sa.Column("unit", sa.String(20), nullable=False, server_default="kg"),
        sa.Column("parent_code", sa.String(50), sa.ForeignKey("batches.code"), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_batches_code", "batches", ["code"], unique=True)
    op.create_index("ix_batches_cooperative_id", "batches", ["cooperative_id"])
    op.create_index("ix_batches_product_type", "batches", ["product_type"])
    op.create_index("ix_batches_parent_code", "batches", ["parent_code"])
    op.create_index("ix_batches_created_at", "batches", ["created_at"])

    # ── Ledger (append-only) ─────────────────────────────────

    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("batch_code", sa.String(50), sa.ForeignKey("batches.code"), nullable=False),
        sa.Column("cooperative_id", sa.String(36), sa.ForeignKey("cooperatives.id"), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("operation", sa.String(30), nullable=False),
        sa.Column("quantity_delta", sa.Float(), nullable=False),
        sa.Column("loss_quantity", sa.Float(), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("farmer_id", sa.String(36), sa.ForeignKey("farmers.id"), nullable=True),
        sa.Column("land_id", sa.String(36), sa.ForeignKey("lands.id"), nullable=True),
        sa.Column("counterparty", sa.String(255), nullable=True),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("operation_ref", sa.String(36), nullable=True),
        sa.Column(
            "reverses_id", sa.String(36),
            sa.ForeignKey("ledger_transactions.id"), nullable=True, unique=True,
        ),
        sa.Column("external_ref", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("recorded_by", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "kind IN ('RECEIPT', 'TRANSFORM_IN', 'TRANSFORM_OUT', 'DISPATCH')",
            name="ck_ledger_kind",
        ),
    )
    for column in (
        "batch_code", "cooperative_id", "kind", "operation", "date",
        "farmer_id", "land_id", "operation_ref", "created_at",
    ):
        op.create_index(f"ix_ledger_transactions_{column}", "ledger_transactions", [column])
    op.create_index("ix_ledger_batch_date", "ledger_transactions", ["batch_code", "date"])
    op.create_index(
        "ix_ledger_kind_operation_date", "ledger_transactions", ["kind", "operation", "date"]
    )


def downgrade() -> None:
    op.drop_table("ledger_transactions")
    op.drop_table("batches")
    op.drop_table("quality_checkpoints")
    op.drop_table("cultivation_activities")
    op.drop_table("lands")
    op.drop_table("farmers")
    op.drop_table("cooperatives")
