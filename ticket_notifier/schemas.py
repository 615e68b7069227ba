"""Pydantic schemas for API."""
from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime


class SubscriberIdentityIn(BaseModel):
    telegram_user_id: Optional[int] = None
    username: Optional[str] = None
    name: Optional[str] = None


class SubscriberResponse(BaseModel):
    chat_id: int
    telegram_user_id: Optional[int] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    notifications_enabled: bool
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class NotificationStatusResponse(BaseModel):
    """Monitoring snapshot of the notification ledgers."""
    enabled_subscribers: int
    unsent_status_changes: int
    pending_deliveries: int


class CycleReportResponse(BaseModel):
    subscribers: int
    tickets: int
    transitions: int
    retried: int
    delivered: int
    already_notified: int
    delivery_failures: int
    source_errors: int
    subscriber_errors: int
    ticket_errors: int
    persistence_errors: int


class WebhookUpdate(BaseModel):
    """Telegram update; only `message` is acted on, other update kinds are acknowledged."""
    update_id: int
    message: dict | None = None
