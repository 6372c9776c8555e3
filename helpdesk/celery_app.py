"""
Celery worker for the order notification outbox.

Rows are written one per recipient and drained with SELECT ... FOR UPDATE SKIP LOCKED,
so several workers can run side by side without sending twice.
"""
import logging
from datetime import datetime, timedelta, timezone

import requests
from celery import Celery
from sqlalchemy import or_

from .config import settings
from .database import SessionLocal
from .enums import NotificationType
from .models import NotificationOutbox, Order, User

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

celery_app = Celery(
    "helpdesk",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def send_telegram_message(chat_id: str, message: str) -> tuple[bool, str | None]:
    """Send message via Telegram Bot API."""
    if not settings.TELEGRAM_BOT_TOKEN:
        return False, "TELEGRAM_BOT_TOKEN not configured"

    url = f"https://api.telegram.org/bot{settings.TELEGRAM_BOT_TOKEN}/sendMessage"

    try:
        response = requests.post(
            url,
            json={"chat_id": chat_id, "text": message, "parse_mode": "HTML"},
            timeout=10
        )
    except requests.RequestException as e:
        return False, f"EXCEPTION: {e}"

    if response.status_code == 200:
        return True, None
    if response.status_code == 429:
        retry_after = response.json().get('parameters', {}).get('retry_after', 60)
        return False, f"RATE_LIMIT:{retry_after}"
    if response.status_code == 403:
        return False, "BOT_BLOCKED"
    return False, f"HTTP_{response.status_code}: {response.text[:200]}"


def _record_failure(db, notification: NotificationOutbox, error: str | None) -> None:
    notification.attempts = (notification.attempts or 0) + 1
    notification.last_error = error

    if error and error.startswith("RATE_LIMIT:"):
        retry_after = int(error.split(":")[1])
        notification.next_retry_at = _utcnow() + timedelta(seconds=retry_after)
        logger.warning("outbox.rate_limited id=%s retry_after=%s", notification.id, retry_after)
    elif error == "BOT_BLOCKED":
        notification.status = 'failed'
        notification.failed_at = _utcnow()
        user = db.get(User, notification.recipient_user_id)
        if user is not None:
            user.telegram_chat_id = None
            logger.warning("outbox.bot_blocked user=%s chat unlinked", user.id)
    elif notification.attempts >= MAX_ATTEMPTS:
        notification.status = 'failed'
        notification.failed_at = _utcnow()
        logger.error("outbox.failed id=%s attempts=%s error=%s", notification.id, notification.attempts, error)
    else:
        backoff_seconds = 2 ** notification.attempts * 60
        notification.next_retry_at = _utcnow() + timedelta(seconds=backoff_seconds)
        logger.warning(
            "outbox.retry id=%s attempt=%s/%s in=%ss",
            notification.id,
            notification.attempts,
            MAX_ATTEMPTS,
            backoff_seconds,
        )


@celery_app.task(name="process_notification_outbox")
def process_notification_outbox(batch_size: int = 100):
    """Deliver pending notifications; concurrent workers skip rows another worker holds."""
    db = SessionLocal()
    processed_count = 0
    locked: list[NotificationOutbox] = []

    try:
        now = _utcnow()
        locked = (
            db.query(NotificationOutbox)
            .filter(
                NotificationOutbox.status == 'pending',
                or_(NotificationOutbox.next_retry_at.is_(None), NotificationOutbox.next_retry_at <= now),
            )
            .order_by(NotificationOutbox.created_at)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
            .all()
        )
        logger.info("outbox.locked count=%s", len(locked))

        for notification in locked:
            if notification.recipient_chat_id is None:
                notification.status = 'skipped'
                notification.last_error = "No telegram_chat_id"
                continue

            success, error = send_telegram_message(notification.recipient_chat_id, notification.message)
            if success:
                notification.status = 'sent'
                notification.sent_at = _utcnow()
                notification.last_error = None
                processed_count += 1
            else:
                _record_failure(db, notification, error)

        db.commit()
        logger.info("outbox.processed sent=%s locked=%s", processed_count, len(locked))
    except Exception:
        db.rollback()
        logger.exception("outbox.processing_failed")
        raise
    finally:
        db.close()

    return {"processed": processed_count, "total_locked": len(locked)}


@celery_app.task(name="create_notification_for_order")
def create_notification_for_order(
    order_id: int,
    notification_type: str,
    target_user_ids: list[int],
    message: str,
    event_key: str | None = None,
):
    """Create outbox entries, one per recipient, keyed by type:order_id:user_id[:event_key]."""
    NotificationType(notification_type)
    db = SessionLocal()

    try:
        order = db.get(Order, order_id)
        created = 0

        for user_id in dict.fromkeys(target_user_ids):
            user = db.get(User, user_id)
            if user is None:
                continue

            idempotency_key = f"{notification_type}:{order_id}:{user_id}"
            if event_key:
                idempotency_key = f"{idempotency_key}:{event_key}"
            existing = db.query(NotificationOutbox.id).filter(
                NotificationOutbox.idempotency_key == idempotency_key
            ).first()
            if existing:
                logger.info("outbox.duplicate_skipped key=%s", idempotency_key)
                continue

            db.add(NotificationOutbox(
                type=notification_type,
                order_id=order_id,
                order_name=order.name if order else None,
                recipient_user_id=user_id,
                recipient_chat_id=user.telegram_chat_id,  # snapshot at creation time
                message=message,
                idempotency_key=idempotency_key,
                status='pending',
                attempts=0,
            ))
            created += 1

        db.commit()
        logger.info("outbox.created count=%s order=%s", created, order_id)
        return created
    except Exception:
        db.rollback()
        logger.exception("outbox.create_failed order=%s", order_id)
        raise
    finally:
        db.close()


celery_app.conf.beat_schedule = {
    'process-outbox-every-30s': {
        'task': 'process_notification_outbox',
        'schedule': 30.0,
    },
}
