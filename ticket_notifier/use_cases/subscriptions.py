"""Subscriber opt-in / opt-out use-cases."""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..domain_errors import subscriber_identity_required, subscriber_not_found
from ..models import Subscriber
from ..services import ledger
from ..services.change_extractor import utcnow
from ..services.ledger import SubscriberIdentity

logger = logging.getLogger(__name__)


def enable_notifications_use_case(
    *, db: Session, chat_id: int, identity: SubscriberIdentity
) -> Subscriber:
    """Opt a chat in to status notifications, creating the subscriber on first use."""
    if not (identity.username or (identity.name or "").strip()):
        raise subscriber_identity_required(chat_id)

    subscriber = ledger.save_subscriber(db=db, chat_id=chat_id, identity=identity)

    # Idempotent: re-enabling only refreshes the identity.
    if not subscriber.notifications_enabled:
        subscriber.notifications_enabled = True
        logger.info(f"✅ Notifications enabled for chat {chat_id}")

    db.commit()
    return subscriber


def disable_notifications_use_case(*, db: Session, chat_id: int) -> Subscriber:
    """Opt a chat out of status notifications; the subscriber row is kept."""
    subscriber = ledger.get_subscriber(db=db, chat_id=chat_id)
    if not subscriber:
        raise subscriber_not_found(chat_id)

    # Idempotent.
    if not subscriber.notifications_enabled:
        return subscriber

    subscriber.notifications_enabled = False
    subscriber.updated_at = utcnow()
    db.commit()
    logger.info(f"🔕 Notifications disabled for chat {chat_id}")
    return subscriber
