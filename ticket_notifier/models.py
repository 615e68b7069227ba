"""SQLAlchemy models for subscribers, tracked tickets and the notification ledgers."""
from sqlalchemy import (
    BigInteger, Boolean, Column, Date, DateTime, ForeignKey, Index, Integer,
    String, Text, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


NOTIFICATION_TYPE_STATUS_CHANGE = "status_change"


class Subscriber(Base):
    """Telegram chat that opted in to ticket notifications."""
    __tablename__ = "users"

    chat_id = Column(BigInteger, primary_key=True, autoincrement=False)
    telegram_user_id = Column(BigInteger, nullable=True)
    username = Column(String(100), nullable=True, index=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    # Soft state: subscribers are never deleted, only toggled.
    notifications_enabled = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    tickets = relationship("Ticket", back_populates="subscriber")

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()


class Ticket(Base):
    """Jira ticket tracked on behalf of a subscriber."""
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    jira_key = Column(String(50), unique=True, nullable=False, index=True)
    chat_id = Column(BigInteger, ForeignKey("users.chat_id"), nullable=True, index=True)
    telegram_user_id = Column(BigInteger, nullable=True)
    category = Column(String(100), nullable=True)
    title = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    status = Column(String(100), nullable=True)
    priority = Column(String(50), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    start_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)

    # Relationships
    subscriber = relationship("Subscriber", back_populates="tickets")


class StatusChange(Base):
    """
    Append-only ledger of status transitions reported by Jira.

    At most one row per (jira_key, old_status, new_status) inside the match
    tolerance of changed_at; enforced by the ledger store, not by a constraint.
    """
    __tablename__ = "status_changes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    jira_key = Column(String(50), ForeignKey("tickets.jira_key"), nullable=False)
    old_status = Column(String(100), nullable=False, default="")
    new_status = Column(String(100), nullable=False, default="")
    changed_by = Column(String(255), nullable=True)
    changed_at = Column(DateTime, nullable=False)  # Jira timestamp, naive UTC
    first_seen_at = Column(DateTime, nullable=False)
    notification_sent = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_status_changes_lookup", "jira_key", "old_status", "new_status", "changed_at"),
        Index("idx_status_changes_pending", "jira_key", "notification_sent", "first_seen_at"),
    )


class PendingDelivery(Base):
    """
    Failed delivery of one status change to one subscriber, kept until it succeeds.

    The retry sweep selects from here, never from status_changes.notification_sent,
    which flips as soon as any subscriber has been told.
    """
    __tablename__ = "pending_deliveries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    status_change_id = Column(Integer, ForeignKey("status_changes.id"), nullable=False)
    chat_id = Column(BigInteger, ForeignKey("users.chat_id"), nullable=False)
    attempts = Column(Integer, nullable=False, default=1)
    first_failed_at = Column(DateTime, nullable=False)
    last_failed_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("status_change_id", "chat_id", name="uq_pending_delivery"),
        Index("idx_pending_deliveries_chat", "chat_id", "status_change_id"),
    )


class NotificationRecord(Base):
    """One row per notification actually delivered to a subscriber."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(BigInteger, ForeignKey("users.chat_id"), nullable=False)
    jira_key = Column(String(50), ForeignKey("tickets.jira_key"), nullable=False)
    notification_type = Column(String(50), nullable=False)
    # NULLs never compare equal in a unique index, so absent values are stored as "".
    old_value = Column(String(255), nullable=False, default="")
    new_value = Column(String(255), nullable=False, default="")
    sent_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "chat_id", "jira_key", "notification_type", "old_value", "new_value",
            name="uq_notification_tuple",
        ),
    )
