"""boxes, purchases, status_logs

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00

"""
from alembic import op
import sqlalchemy as sa


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "boxes",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("brand", sa.String(), nullable=False),
        sa.Column("price_per_kg", sa.Float(), nullable=False),
        sa.Column("cost_per_kg", sa.Float(), nullable=False),
        sa.Column("total_kg", sa.Float(), nullable=False),
        sa.Column("remaining_kg", sa.Float(), nullable=False),
        sa.Column("min_kg_per_person", sa.Float(), nullable=False),
        sa.Column("payment_type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_boxes_status", "boxes", ["status"])

    op.create_table(
        "purchases",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("order_number", sa.String(), nullable=False),
        sa.Column("box_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("kg_purchased", sa.Float(), nullable=False),
        sa.Column("total_amount", sa.Float(), nullable=False),
        sa.Column("status", sa.String(64), nullable=False),
        sa.Column("payment_status", sa.String(16), nullable=False),
        sa.Column("payment_link", sa.String(), nullable=True),
        sa.Column("payment_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispatch_steps", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_purchases_order_number", "purchases", ["order_number"])
    op.create_index("ix_purchases_box_id", "purchases", ["box_id"])
    op.create_index("ix_purchases_user_id", "purchases", ["user_id"])

    op.create_table(
        "status_logs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("entity_type", sa.String(16), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("previous_status", sa.String(64), nullable=False),
        sa.Column("next_status", sa.String(64), nullable=False),
        sa.Column("forced", sa.Boolean(), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("performed_by", sa.String(), nullable=False),
        sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_status_logs_entity_id", "status_logs", ["entity_id"])


def downgrade() -> None:
    op.drop_index("ix_status_logs_entity_id", table_name="status_logs")
    op.drop_table("status_logs")
    op.drop_index("ix_purchases_user_id", table_name="purchases")
    op.drop_index("ix_purchases_box_id", table_name="purchases")
    op.drop_index("ix_purchases_order_number", table_name="purchases")
    op.drop_table("purchases")
    op.drop_index("ix_boxes_status", table_name="boxes")
    op.drop_table("boxes")
