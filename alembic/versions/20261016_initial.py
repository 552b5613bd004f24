"""
Initial database schema for the p2p trade engine.

Creates the tables used by the database store: orders, users and
pending_payments.  They correspond to the SQLAlchemy metadata defined in
``engine/src/p2ptrade/services/db_store.py``.  Every table carries a
``version`` column for save-if-unchanged updates.

Revision ID: 20261016_initial
Revises:
Create Date: 2026-10-16
"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "20261016_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create orders, users and pending_payments tables."""
    op.create_table(
        "orders",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("type", sa.String(8), nullable=False),
        sa.Column("creator_id", sa.String(64), nullable=False),
        sa.Column("seller_id", sa.String(64), nullable=True),
        sa.Column("buyer_id", sa.String(64), nullable=True),
        sa.Column("amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("escrow_amount", sa.BigInteger(), nullable=True),
        sa.Column("fiat_amount", sa.Float(), nullable=True),
        sa.Column("fiat_code", sa.String(8), nullable=False),
        sa.Column("payment_method", sa.String(255), nullable=False, server_default=""),
        sa.Column("fee", sa.Float(), nullable=False, server_default="0"),
        sa.Column("hash", sa.String(64), nullable=True),
        sa.Column("secret", sa.String(64), nullable=True),
        sa.Column("buyer_invoice", sa.Text(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("buyer_cooperativecancel", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("seller_cooperativecancel", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("buyer_dispute", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("seller_dispute", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("canceled_by", sa.String(64), nullable=True),
        sa.Column("postings", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("taken_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_orders_creator_id", "orders", ["creator_id"])
    op.create_index("ix_orders_seller_id", "orders", ["seller_id"])
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
    op.create_index("ix_orders_hash", "orders", ["hash"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("username", sa.String(255), nullable=False, unique=True),
        sa.Column("disputes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("banned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_table(
        "pending_payments",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("order_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("payment_request", sa.Text(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_pending_payments_order_id", "pending_payments", ["order_id"])


def downgrade() -> None:
    """Drop all tables created in upgrade()."""
    op.drop_index("ix_pending_payments_order_id", table_name="pending_payments")
    op.drop_table("pending_payments")
    op.drop_table("users")
    for column in ("status", "hash", "buyer_id", "seller_id", "creator_id"):
        op.drop_index(f"ix_orders_{column}", table_name="orders")
    op.drop_table("orders")
