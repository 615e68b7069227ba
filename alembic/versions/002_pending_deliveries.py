"""Per-subscriber pending deliveries for the retry sweep.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "pending_deliveries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("status_change_id", sa.Integer(), sa.ForeignKey("status_changes.id"), nullable=False),
        sa.Column("chat_id", sa.BigInteger(), sa.ForeignKey("users.chat_id"), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("first_failed_at", sa.DateTime(), nullable=False),
        sa.Column("last_failed_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("status_change_id", "chat_id", name="uq_pending_delivery"),
    )
    op.create_index(
        "idx_pending_deliveries_chat",
        "pending_deliveries",
        ["chat_id", "status_change_id"],
    )


def downgrade() -> None:
    op.drop_index("idx_pending_deliveries_chat", table_name="pending_deliveries")
    op.drop_table("pending_deliveries")
