"""Subscribers, tracked tickets and notification ledgers.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("chat_id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("telegram_user_id", sa.BigInteger(), nullable=True),
        sa.Column("username", sa.String(length=100), nullable=True),
        sa.Column("first_name", sa.String(length=255), nullable=True),
        sa.Column("last_name", sa.String(length=255), nullable=True),
        sa.Column("notifications_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_users_username", "users", ["username"])
    op.create_index("ix_users_notifications_enabled", "users", ["notifications_enabled"])

    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("jira_key", sa.String(length=50), nullable=False),
        sa.Column("chat_id", sa.BigInteger(), sa.ForeignKey("users.chat_id"), nullable=True),
        sa.Column("telegram_user_id", sa.BigInteger(), nullable=True),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("title", sa.String(length=500), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=100), nullable=True),
        sa.Column("priority", sa.String(length=50), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
    )
    op.create_index("ix_tickets_jira_key", "tickets", ["jira_key"], unique=True)
    op.create_index("ix_tickets_chat_id", "tickets", ["chat_id"])

    op.create_table(
        "status_changes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("jira_key", sa.String(length=50), sa.ForeignKey("tickets.jira_key"), nullable=False),
        sa.Column("old_status", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("new_status", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("changed_by", sa.String(length=255), nullable=True),
        sa.Column("changed_at", sa.DateTime(), nullable=False),
        sa.Column("first_seen_at", sa.DateTime(), nullable=False),
        sa.Column("notification_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index(
        "idx_status_changes_lookup",
        "status_changes",
        ["jira_key", "old_status", "new_status", "changed_at"],
    )
    op.create_index(
        "idx_status_changes_pending",
        "status_changes",
        ["jira_key", "notification_sent", "first_seen_at"],
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("chat_id", sa.BigInteger(), sa.ForeignKey("users.chat_id"), nullable=False),
        sa.Column("jira_key", sa.String(length=50), sa.ForeignKey("tickets.jira_key"), nullable=False),
        sa.Column("notification_type", sa.String(length=50), nullable=False),
        sa.Column("old_value", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("new_value", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("sent_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "chat_id", "jira_key", "notification_type", "old_value", "new_value",
            name="uq_notification_tuple",
        ),
    )


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_index("idx_status_changes_pending", table_name="status_changes")
    op.drop_index("idx_status_changes_lookup", table_name="status_changes")
    op.drop_table("status_changes")
    op.drop_index("ix_tickets_chat_id", table_name="tickets")
    op.drop_index("ix_tickets_jira_key", table_name="tickets")
    op.drop_table("tickets")
    op.drop_index("ix_users_notifications_enabled", table_name="users")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
